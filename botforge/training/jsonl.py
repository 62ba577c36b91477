"""Training example validation and JSONL serialization.

A training example is ``{"messages": [{"role": ..., "content": ...}, ...]}``.
Datasets store examples as newline-delimited JSON, one example per line.
"""

from __future__ import annotations

import json
import math
from dataclasses import dataclass, field
from typing import Any

import structlog

log = structlog.get_logger(__name__)

VALID_ROLES = frozenset({"user", "assistant", "system"})

TRAINING_SPLIT_RATIO = 0.8

# Messages longer than this are accepted but flagged during validation
_LONG_CONTENT_CHARS = 100_000
_SAMPLE_ENTRY_LIMIT = 3
PREVIEW_ENTRY_LIMIT = 10


def is_valid_example(example: Any) -> bool:
    """Return True for a well-formed example.

    Requires at least two messages, each with a known role and non-blank
    string content, including at least one ``user`` and one ``assistant``
    message, and the whole example must be JSON-serializable.
    """
    if not isinstance(example, dict):
        return False
    messages = example.get("messages")
    if not isinstance(messages, list) or len(messages) < 2:
        return False

    roles: set[str] = set()
    for message in messages:
        if not isinstance(message, dict):
            return False
        role = message.get("role")
        content = message.get("content")
        if role not in VALID_ROLES:
            return False
        if not isinstance(content, str) or not content.strip():
            return False
        roles.add(role)

    if "user" not in roles or "assistant" not in roles:
        return False

    try:
        json.dumps(example)
    except (TypeError, ValueError):
        return False
    return True


def clean_example(example: dict[str, Any]) -> dict[str, Any]:
    """Strip message content and drop messages that end up empty."""
    cleaned = []
    for message in example.get("messages", []):
        content = str(message.get("content", "")).strip()
        if content:
            cleaned.append({"role": message.get("role", "user"), "content": content})
    return {"messages": cleaned}


def to_jsonl(examples: list[dict[str, Any]]) -> str:
    """Serialize examples as JSONL (cleaned, no trailing newline)."""
    return "\n".join(
        json.dumps(clean_example(example), ensure_ascii=False) for example in examples
    )


def iter_jsonl_lines(content: str | None) -> list[str]:
    """Non-blank lines of a JSONL payload."""
    if not content:
        return []
    return [line for line in content.splitlines() if line.strip()]


def parse_jsonl(content: str | None) -> list[dict[str, Any]]:
    """Parse JSONL into examples, skipping malformed lines."""
    examples: list[dict[str, Any]] = []
    for line in iter_jsonl_lines(content):
        try:
            parsed = json.loads(line)
        except json.JSONDecodeError:
            continue
        if isinstance(parsed, dict):
            examples.append(parsed)
    return examples


def verify_jsonl(content: str) -> bool:
    """True when every line independently parses into a valid example."""
    for line in iter_jsonl_lines(content):
        try:
            parsed = json.loads(line)
        except json.JSONDecodeError:
            return False
        if not is_valid_example(parsed):
            return False
    return True


def split_examples(
    examples: list[dict[str, Any]],
    ratio: float = TRAINING_SPLIT_RATIO,
) -> tuple[list[dict[str, Any]], list[dict[str, Any]]]:
    """Split preserving order; the training share is floored."""
    training_count = math.floor(len(examples) * ratio)
    return examples[:training_count], examples[training_count:]


@dataclass
class TrainingDataValidation:
    """Outcome of validating an uploaded JSONL training file."""

    valid: bool
    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    entry_count: int = 0
    sample_entries: list[dict[str, Any]] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "valid": self.valid,
            "errors": self.errors,
            "warnings": self.warnings,
            "entry_count": self.entry_count,
            "sample_entries": self.sample_entries,
        }


def validate_training_data(content: str) -> TrainingDataValidation:
    """Check a JSONL training file line by line.

    Errors make the file unusable (bad JSON, missing messages, bad roles or
    content); warnings flag suspicious but accepted entries (very long
    content, a conversation not starting with ``system`` or ``user``).
    """
    errors: list[str] = []
    warnings: list[str] = []
    samples: list[dict[str, Any]] = []
    entry_count = 0

    for line in iter_jsonl_lines(content):
        entry_count += 1
        try:
            entry = json.loads(line)
        except json.JSONDecodeError as exc:
            errors.append(f"Line {entry_count}: Invalid JSON - {exc.msg}")
            continue

        messages = entry.get("messages") if isinstance(entry, dict) else None
        if not isinstance(messages, list):
            errors.append(f"Line {entry_count}: Missing or invalid 'messages' array")
            continue
        if not messages:
            errors.append(f"Line {entry_count}: 'messages' array is empty")
            continue

        for index, message in enumerate(messages, start=1):
            if not isinstance(message, dict):
                errors.append(f"Line {entry_count}, message {index}: Message must be an object")
                continue
            if message.get("role") not in VALID_ROLES:
                errors.append(
                    f"Line {entry_count}, message {index}: Invalid or missing 'role' "
                    "(must be 'user', 'assistant', or 'system')"
                )
            content_value = message.get("content")
            if not isinstance(content_value, str) or not content_value:
                errors.append(f"Line {entry_count}, message {index}: Missing or invalid 'content'")
            elif len(content_value) > _LONG_CONTENT_CHARS:
                warnings.append(
                    f"Line {entry_count}, message {index}: "
                    f"Content is very long ({len(content_value)} characters)"
                )

        first = messages[0]
        first_role = first.get("role") if isinstance(first, dict) else None
        if first_role not in ("system", "user"):
            warnings.append(
                f"Line {entry_count}: First message should typically be 'system' or 'user', "
                f"got '{first_role}'"
            )

        if len(samples) < _SAMPLE_ENTRY_LIMIT:
            samples.append(entry)

    result = TrainingDataValidation(
        valid=not errors,
        errors=errors,
        warnings=warnings,
        entry_count=entry_count,
        sample_entries=samples,
    )
    log.info(
        "training_data.validated",
        valid=result.valid,
        entry_count=entry_count,
        error_count=len(errors),
        warning_count=len(warnings),
    )
    return result


def preview_training_data(content: str, limit: int = PREVIEW_ENTRY_LIMIT) -> dict[str, Any]:
    """First ``limit`` parsed entries of a JSONL file, for a quick look.

    No structural checks are made, unlike validate_training_data. Lines that
    are not JSON are skipped but still counted in ``total``, which covers
    every non-blank line.
    """
    lines = iter_jsonl_lines(content)
    entries: list[Any] = []
    skipped = 0
    for number, line in enumerate(lines, start=1):
        if len(entries) >= limit:
            break
        try:
            entries.append(json.loads(line))
        except json.JSONDecodeError as exc:
            skipped += 1
            log.warning("training_data.preview_line_skipped", line=number, error=exc.msg)

    log.info("training_data.previewed", total=len(lines), preview_count=len(entries))
    return {"entries": entries, "total": len(lines), "skipped": skipped}
