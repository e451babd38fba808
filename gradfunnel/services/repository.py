from __future__ import annotations

import asyncio
from typing import Any

import asyncpg  # type: ignore[import-untyped]
from asyncpg import exceptions as pg_exc

from gradfunnel.services.store import StoreRejectedError, StoreUnavailableError, UpsertOutcome

POSTINGS_DDL = """
create table if not exists jobs (
  id bigserial primary key,
  job_hash text not null unique,
  title text not null,
  company text not null,
  location text not null,
  job_url text not null,
  description text not null,
  categories text not null,
  experience_required text not null,
  work_environment text not null,
  source text not null,
  posted_at timestamptz not null,
  scraper_run_id text not null,
  company_profile_url text,
  is_active boolean not null default true,
  last_seen_at timestamptz not null,
  freshness_tier text not null,
  created_at timestamptz not null default now()
)
"""

UPSERT_POSTING_SQL = """
insert into jobs (
  title,
  company,
  location,
  job_url,
  description,
  categories,
  experience_required,
  work_environment,
  source,
  job_hash,
  posted_at,
  scraper_run_id,
  company_profile_url,
  is_active,
  last_seen_at,
  freshness_tier,
  created_at
)
values ($1, $2, $3, $4, $5, $6, $7, $8, $9, $10, $11, $12, $13, $14, $15, $16, $17)
on conflict (job_hash)
do update set
  title = excluded.title,
  company = excluded.company,
  location = excluded.location,
  job_url = excluded.job_url,
  description = excluded.description,
  categories = excluded.categories,
  experience_required = excluded.experience_required,
  work_environment = excluded.work_environment,
  source = excluded.source,
  scraper_run_id = excluded.scraper_run_id,
  company_profile_url = excluded.company_profile_url,
  is_active = excluded.is_active,
  last_seen_at = greatest(jobs.last_seen_at, excluded.last_seen_at)
returning (xmax = 0) as inserted
"""

ROW_COLUMNS = (
    "title",
    "company",
    "location",
    "job_url",
    "description",
    "categories",
    "experience_required",
    "work_environment",
    "source",
    "job_hash",
    "posted_at",
    "scraper_run_id",
    "company_profile_url",
    "is_active",
    "last_seen_at",
    "freshness_tier",
    "created_at",
)


class PostgresPostingStore:
    def __init__(self, database_url: str | None, min_pool_size: int = 1, max_pool_size: int = 5) -> None:
        self.database_url = database_url
        self.min_pool_size = min_pool_size
        self.max_pool_size = max(min_pool_size, max_pool_size)
        self._pool: asyncpg.Pool | None = None
        self._pool_lock = asyncio.Lock()

    async def close(self) -> None:
        if self._pool is not None:
            await self._pool.close()
            self._pool = None

    async def ensure_schema(self) -> None:
        pool = await self._get_pool()
        await pool.execute(POSTINGS_DDL)

    async def upsert_posting(self, row: dict[str, Any]) -> UpsertOutcome:
        pool = await self._get_pool()
        try:
            inserted = await pool.fetchval(UPSERT_POSTING_SQL, *(row.get(column) for column in ROW_COLUMNS))
        except (pg_exc.IntegrityConstraintViolationError, pg_exc.DataError) as exc:
            raise StoreRejectedError(f"{type(exc).__name__}: {exc}") from exc
        return "inserted" if inserted else "updated"

    async def fetch_posting(self, job_hash: str) -> dict[str, Any] | None:
        pool = await self._get_pool()
        row = await pool.fetchrow(
            f"select {', '.join(ROW_COLUMNS)} from jobs where job_hash = $1",
            job_hash,
        )
        return dict(row) if row else None

    async def _get_pool(self) -> asyncpg.Pool:
        if not self.database_url:
            raise StoreUnavailableError("GF_DATABASE_URL is required")

        async with self._pool_lock:
            if self._pool is not None:
                return self._pool
            try:
                self._pool = await asyncpg.create_pool(
                    dsn=self.database_url,
                    min_size=self.min_pool_size,
                    max_size=self.max_pool_size,
                    command_timeout=15,
                )
                return self._pool
            except Exception as exc:  # pragma: no cover - depends on environment
                raise StoreUnavailableError("database unavailable") from exc
