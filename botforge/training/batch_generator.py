"""LLM-backed batch generation of training examples.

BatchGenerator.generate_batch() asks a chat model for ``count`` conversation
examples and tolerates the shapes models actually return: a JSON object with
an ``examples`` (or ``data``) array, a bare array, an array buried in prose
or code fences, or several objects concatenated back to back.

It never raises. Timeouts, provider errors and unparsable output fall back
to deterministic template examples built from the dataset title and
description; a parsable answer with no usable examples yields an empty list
and the caller decides whether to retry.
"""

from __future__ import annotations

import asyncio
import json
import re
from typing import Any

import structlog

from botforge.config import Settings, get_settings
from botforge.models.dataset import DatasetType
from botforge.providers.llm import LLMClient
from botforge.training.jsonl import VALID_ROLES

log = structlog.get_logger(__name__)

_TYPE_INSTRUCTIONS: dict[str, str] = {
    DatasetType.CHAT.value: "Chat interactions - text-based conversations.",
    DatasetType.CALLING.value: "Phone call interactions - concise, natural speech.",
    DatasetType.VOICE.value: "Voice assistant interactions - clear, concise responses.",
    DatasetType.ALL.value: "All interaction types - versatile and natural.",
}

_EXAMPLE_SHAPE = (
    '{"examples": [{"messages": [{"role": "user", "content": "question"}, '
    '{"role": "assistant", "content": "answer"}]}]}'
)

_FALLBACK_QUESTIONS = (
    "What is {topic}?",
    "Tell me about {topic}",
    "Can you explain {topic}?",
    "How does {topic} work?",
    "What are the benefits of {topic}?",
)

_CODE_FENCE_START = re.compile(r"^```(?:json)?\s*", re.IGNORECASE)
_CODE_FENCE_END = re.compile(r"\s*```$")
_FENCED_ARRAY = re.compile(r"```(?:json)?\s*(\[\{[\s\S]*\}\])\s*```")
_BARE_ARRAY = re.compile(r"(\[\{[\s\S]*\}\])")
_OBJECT_BOUNDARY = re.compile(r"\}\s*\{")


class ResponseParseError(ValueError):
    """Model output could not be parsed by any strategy."""


def build_messages(title: str, description: str, count: int, dataset_type: str) -> list[dict[str, str]]:
    """System + user prompt asking for ``count`` examples of ``dataset_type``."""
    instruction = _TYPE_INSTRUCTIONS.get(dataset_type, _TYPE_INSTRUCTIONS[DatasetType.ALL.value])
    system = (
        f"You generate fine-tuning data. Produce {count} conversation examples as JSON. "
        'Every example is an object with a "messages" array holding a user message and '
        f"an assistant reply. Respond with exactly one JSON object shaped like {_EXAMPLE_SHAPE} "
        "and nothing else: no prose, no several objects in a row. "
        "Keep assistant replies to one or two sentences. "
        f"Interaction type: {instruction}"
    )
    user = (
        f"Topic: {title}\nDescription: {description}\n\n"
        f"Write exactly {count} distinct conversations about this topic, each with a user "
        f"message and an assistant answer, returned as {_EXAMPLE_SHAPE}"
    )
    return [
        {"role": "system", "content": system},
        {"role": "user", "content": user},
    ]


def parse_model_output(raw: str) -> Any:
    """Parse model output with an ordered fallback chain.

    1. strict JSON (after stripping markdown code fences)
    2. the first ``[{...}]`` array found in the text
    3. concatenated objects split on ``}{`` boundaries, wrapped as
       ``{"examples": [...]}``

    Raises:
        ResponseParseError: when no strategy yields JSON
    """
    content = raw.strip()
    if content.startswith("```"):
        content = _CODE_FENCE_END.sub("", _CODE_FENCE_START.sub("", content)).strip()

    try:
        return json.loads(content)
    except json.JSONDecodeError as exc:
        strict_error = exc

    log.warning("batch_generator.strict_parse_failed", preview=content[:200])

    match = _FENCED_ARRAY.search(raw) or _BARE_ARRAY.search(content)
    if match is None:
        raise ResponseParseError(f"Unparsable model output: {strict_error.msg}")
    try:
        return json.loads(match.group(1))
    except json.JSONDecodeError:
        pass

    objects: list[Any] = []
    for line in _OBJECT_BOUNDARY.sub("}\n{", content).splitlines():
        line = line.strip()
        if not line:
            continue
        try:
            objects.append(json.loads(line))
        except json.JSONDecodeError:
            continue
    if not objects:
        raise ResponseParseError("Unparsable model output after repairing concatenated objects")
    return {"examples": objects}


def extract_examples(parsed: Any) -> list[Any]:
    """Candidate examples from a bare list or an ``examples``/``data`` key."""
    if isinstance(parsed, list):
        return parsed
    if isinstance(parsed, dict):
        for key in ("examples", "data"):
            value = parsed.get(key)
            if isinstance(value, list):
                return value
    return []


def normalize_example(candidate: Any) -> dict[str, Any] | None:
    """Normalize one candidate; None when it is not a usable example.

    Missing roles default to ``user``; messages with an unknown role or blank
    content are dropped. The survivor needs two or more messages including
    a user and an assistant message.
    """
    if not isinstance(candidate, dict) or not isinstance(candidate.get("messages"), list):
        return None

    messages = []
    for message in candidate["messages"]:
        if not isinstance(message, dict):
            continue
        role = message.get("role") or "user"
        content = message.get("content") or ""
        if not isinstance(content, str) or not content.strip() or role not in VALID_ROLES:
            continue
        messages.append({"role": role, "content": content})

    roles = {m["role"] for m in messages}
    if len(messages) < 2 or "user" not in roles or "assistant" not in roles:
        return None
    return {"messages": messages}


def fallback_examples(title: str, description: str, count: int) -> list[dict[str, Any]]:
    """Deterministic template examples used when the model cannot be used."""
    answer = f"{description} This is what {title} is about."
    return [
        {
            "messages": [
                {
                    "role": "user",
                    "content": _FALLBACK_QUESTIONS[i % len(_FALLBACK_QUESTIONS)].format(topic=title),
                },
                {"role": "assistant", "content": answer},
            ]
        }
        for i in range(count)
    ]


class BatchGenerator:
    """Generates batches of candidate training examples with a chat model."""

    def __init__(
        self,
        llm_client: LLMClient,
        settings: Settings | None = None,
    ) -> None:
        self._llm = llm_client
        self._settings = settings or get_settings()

    async def generate_batch(
        self,
        title: str,
        description: str,
        count: int,
        dataset_type: str,
    ) -> list[dict[str, Any]]:
        """Return at most ``count`` normalized examples; never raises."""
        if count <= 0:
            return []

        try:
            raw = await asyncio.wait_for(
                self._llm.complete_text(
                    model=self._settings.generation_model,
                    messages=build_messages(title, description, count, dataset_type),
                    temperature=0.7,
                    max_tokens=4000,
                    response_format={"type": "json_object"},
                ),
                timeout=self._settings.generation_timeout_seconds,
            )
            if not raw:
                raise ResponseParseError("Empty model output")
            parsed = parse_model_output(raw)
        except Exception as exc:
            log.warning(
                "batch_generator.fallback",
                reason=type(exc).__name__,
                error=str(exc),
                requested=count,
            )
            return fallback_examples(title, description, count)

        examples = []
        for candidate in extract_examples(parsed):
            normalized = normalize_example(candidate)
            if normalized is not None:
                examples.append(normalized)
            if len(examples) >= count:
                break

        log.debug("batch_generator.batch_parsed", requested=count, returned=len(examples))
        return examples
