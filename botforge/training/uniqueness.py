"""Duplicate detection for training examples.

An example's fingerprint is a SHA-256 over a canonical form: each message
reduced to its role and trimmed, lower-cased content, messages sorted by
(role, content), serialized deterministically. Reordered or re-cased copies
of the same conversation therefore collapse to one fingerprint.

The global fingerprint set is loaded fresh from stored datasets when a
generation job starts; it is not shared live between concurrently running
jobs.
"""

from __future__ import annotations

import hashlib
import json
from typing import Any

import structlog
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from botforge.models.dataset import Dataset
from botforge.training.jsonl import iter_jsonl_lines

log = structlog.get_logger(__name__)


def fingerprint(example: dict[str, Any]) -> str:
    """Return the canonical SHA-256 hex digest of an example."""
    normalized = [
        {
            "role": str(message.get("role") or "user"),
            "content": str(message.get("content") or "").strip().lower(),
        }
        for message in example.get("messages", [])
        if isinstance(message, dict)
    ]
    normalized.sort(key=lambda m: (m["role"], m["content"]))
    canonical = json.dumps(
        {"messages": normalized},
        sort_keys=True,
        separators=(",", ":"),
        ensure_ascii=False,
    )
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()


async def load_existing_fingerprints(db: AsyncSession) -> set[str]:
    """Fingerprints of every example stored in datasets with content.

    Malformed lines are skipped. A failing scan is logged and whatever was
    collected so far is returned; dedup then degrades to per-job only.
    """
    fingerprints: set[str] = set()
    datasets_scanned = 0
    try:
        result = await db.execute(select(Dataset.content).where(Dataset.content.is_not(None)))
        for content in result.scalars():
            datasets_scanned += 1
            for line in iter_jsonl_lines(content):
                try:
                    parsed = json.loads(line)
                except json.JSONDecodeError:
                    continue
                if not isinstance(parsed, dict) or not isinstance(parsed.get("messages"), list):
                    continue
                fingerprints.add(fingerprint(parsed))
    except Exception as exc:
        log.warning(
            "uniqueness.load_existing_failed",
            error=str(exc),
            loaded=len(fingerprints),
        )
        return fingerprints

    log.info(
        "uniqueness.loaded_existing",
        datasets=datasets_scanned,
        fingerprints=len(fingerprints),
    )
    return fingerprints


class UniquenessIndex:
    """Job-scoped duplicate filter.

    Owned by a single generation run: holds the global fingerprints loaded at
    job start plus the fingerprints accepted during this run. Batches must be
    checked sequentially so each check sees every earlier acceptance.
    """

    def __init__(self, existing: set[str] | None = None) -> None:
        self._existing = frozenset(existing or ())
        self._seen: set[str] = set()
        self.duplicates_rejected = 0

    @property
    def existing_count(self) -> int:
        return len(self._existing)

    @property
    def accepted_count(self) -> int:
        return len(self._seen)

    def is_duplicate(self, example: dict[str, Any]) -> bool:
        fp = fingerprint(example)
        return fp in self._existing or fp in self._seen

    def accept(self, example: dict[str, Any]) -> bool:
        """Record ``example`` if it is new; return False for a duplicate."""
        fp = fingerprint(example)
        if fp in self._existing or fp in self._seen:
            self.duplicates_rejected += 1
            return False
        self._seen.add(fp)
        return True
