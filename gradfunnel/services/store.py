from __future__ import annotations

import asyncio
from typing import Any, Literal, Protocol

UpsertOutcome = Literal["inserted", "updated"]

# Columns left untouched when an existing job_hash is written again: the
# first-seen timestamp and the freshness classified at first ingestion.
# last_seen_at only moves forward.
PRESERVED_ON_UPDATE = ("created_at", "posted_at", "freshness_tier")


class StoreError(Exception):
    """Base store error."""


class StoreUnavailableError(StoreError):
    """Raised when the backing store is unavailable or not configured."""


class StoreRejectedError(StoreError):
    """Raised when the store refuses a single record."""


class PostingStore(Protocol):
    async def upsert_posting(self, row: dict[str, Any]) -> UpsertOutcome: ...

    async def close(self) -> None: ...


class InMemoryStore:
    """Keyed upsert store for tests and dry runs."""

    def __init__(self) -> None:
        self.postings: dict[str, dict[str, Any]] = {}
        self._lock = asyncio.Lock()

    async def upsert_posting(self, row: dict[str, Any]) -> UpsertOutcome:
        job_hash = row.get("job_hash")
        if not job_hash:
            raise StoreRejectedError("job_hash is required")

        async with self._lock:
            existing = self.postings.get(job_hash)
            if existing is None:
                self.postings[job_hash] = dict(row)
                return "inserted"

            updated = dict(row)
            for column in PRESERVED_ON_UPDATE:
                updated[column] = existing[column]
            seen = [stamp for stamp in (existing.get("last_seen_at"), row.get("last_seen_at")) if stamp is not None]
            updated["last_seen_at"] = max(seen) if seen else None
            self.postings[job_hash] = updated
            return "updated"

    async def close(self) -> None:
        return None
