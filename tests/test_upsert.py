from __future__ import annotations

import asyncio
from datetime import datetime, timedelta, timezone
from typing import Any

import pytest

from gradfunnel.ingest.funnel import FunnelTelemetry
from gradfunnel.ingest.pipeline import IngestionPipeline
from gradfunnel.schemas.records import CandidateRecord, Posting
from gradfunnel.services.store import InMemoryStore, StoreRejectedError, UpsertOutcome
from gradfunnel.services.upsert import UpsertCoordinator

NOW = datetime(2025, 3, 1, 12, 0, tzinfo=timezone.utc)


def _posting(title: str = "Graduate Analyst", *, now: datetime = NOW, run_id: str = "run-1") -> Posting:
    record = CandidateRecord(
        source="greenhouse",
        title=title,
        company="Acme",
        location="Paris, France",
        description="Graduate programme in analytics",
        job_url=f"https://boards.example.com/acme/{title.lower().replace(' ', '-')}",
    )
    result = IngestionPipeline(run_id=run_id).process(record, FunnelTelemetry("greenhouse"), now=now)
    assert result.posting is not None
    return result.posting


class RejectingStore(InMemoryStore):
    def __init__(self, reject_titles: set[str]) -> None:
        super().__init__()
        self.reject_titles = reject_titles

    async def upsert_posting(self, row: dict[str, Any]) -> UpsertOutcome:
        if row["title"] in self.reject_titles:
            raise StoreRejectedError("value too long for column")
        return await super().upsert_posting(row)


def test_second_upsert_updates_without_regressing_first_seen() -> None:
    store = InMemoryStore()
    coordinator = UpsertCoordinator(store)

    first = asyncio.run(coordinator.upsert([_posting()]))
    later = NOW + timedelta(days=3)
    second = asyncio.run(coordinator.upsert([_posting(now=later, run_id="run-2")]))

    assert (first.inserted, first.updated, first.errors) == (1, 0, [])
    assert (second.inserted, second.updated, second.errors) == (0, 1, [])

    (row,) = store.postings.values()
    assert row["created_at"] == NOW
    assert row["last_seen_at"] == later
    assert row["scraper_run_id"] == "run-2"
    # Freshness stays as first classified.
    assert row["posted_at"] == NOW
    assert row["freshness_tier"] == "ultra_fresh"


def test_partial_failure_keeps_writing_siblings() -> None:
    store = RejectingStore({"Junior Analyst"})
    coordinator = UpsertCoordinator(store, max_concurrency=2)
    postings = [_posting("Graduate Analyst"), _posting("Junior Analyst"), _posting("Analyst Intern")]

    result = asyncio.run(coordinator.upsert(postings))

    assert result.inserted == 2
    assert result.updated == 0
    assert len(result.errors) == 1
    assert result.errors[0].startswith(f"{postings[1].job_hash}: StoreRejectedError:")
    assert set(store.postings) == {postings[0].job_hash, postings[2].job_hash}


def test_duplicate_keys_in_one_batch_write_once() -> None:
    store = InMemoryStore()
    later = NOW + timedelta(hours=1)

    result = asyncio.run(UpsertCoordinator(store).upsert([_posting(), _posting(now=later)]))

    assert (result.inserted, result.updated) == (1, 0)
    (row,) = store.postings.values()
    assert row["last_seen_at"] == later


def test_empty_batch_is_a_no_op() -> None:
    result = asyncio.run(UpsertCoordinator(InMemoryStore()).upsert([]))
    assert (result.inserted, result.updated, result.errors) == (0, 0, [])


def test_in_memory_store_rejects_rows_without_key() -> None:
    with pytest.raises(StoreRejectedError, match="job_hash"):
        asyncio.run(InMemoryStore().upsert_posting({"title": "x"}))


def test_late_arriving_write_does_not_move_last_seen_backwards() -> None:
    store = InMemoryStore()
    coordinator = UpsertCoordinator(store)
    later = NOW + timedelta(days=2)

    asyncio.run(coordinator.upsert([_posting(now=later, run_id="run-2")]))
    result = asyncio.run(coordinator.upsert([_posting(now=NOW, run_id="run-1")]))

    assert result.updated == 1
    (row,) = store.postings.values()
    assert row["last_seen_at"] == later
    assert row["scraper_run_id"] == "run-1"
