from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
import logging

from gradfunnel.schemas.records import Posting
from gradfunnel.services.store import PostingStore

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class UpsertResult:
    inserted: int = 0
    updated: int = 0
    errors: list[str] = field(default_factory=list)


class UpsertCoordinator:
    """Idempotent batch writes keyed by ``job_hash``.

    A failing record is reported in ``UpsertResult.errors`` and never stops
    its siblings from being written.
    """

    def __init__(self, store: PostingStore, *, max_concurrency: int = 8) -> None:
        self.store = store
        self.max_concurrency = max(1, max_concurrency)

    async def upsert(self, postings: list[Posting]) -> UpsertResult:
        result = UpsertResult()
        if not postings:
            return result

        semaphore = asyncio.Semaphore(self.max_concurrency)

        async def write(posting: Posting) -> None:
            async with semaphore:
                try:
                    outcome = await self.store.upsert_posting(posting.to_row())
                except Exception as exc:
                    logger.warning("upsert failed job_hash=%s title=%r: %s", posting.job_hash, posting.title, exc)
                    result.errors.append(f"{posting.job_hash}: {type(exc).__name__}: {exc}")
                    return
            if outcome == "inserted":
                result.inserted += 1
            else:
                result.updated += 1

        await asyncio.gather(*(write(posting) for posting in _unique_by_hash(postings)))
        return result


def _unique_by_hash(postings: list[Posting]) -> list[Posting]:
    # Same key twice in one batch would race on the store; the later copy wins.
    latest: dict[str, Posting] = {}
    for posting in postings:
        latest[posting.job_hash] = posting
    return list(latest.values())
