from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
import logging
import re
from typing import Literal

from gradfunnel.ingest import career, categories, eligibility, freshness, location, locator
from gradfunnel.ingest.funnel import FunnelTelemetry
from gradfunnel.ingest.identity import identity_hash
from gradfunnel.schemas.records import CandidateRecord, Posting

logger = logging.getLogger(__name__)

DESCRIPTION_PLACEHOLDER = "Description not available"
DEFAULT_DESCRIPTION_LIMIT = 2000

Stage = Literal["validation", "eligibility", "finalized"]

_REMOTE_RE = re.compile(r"\b(?:remote|work from home|wfh|telecommute)\b")


@dataclass(slots=True)
class StageResult:
    posting: Posting | None
    stage: Stage
    reason: str


class IngestionPipeline:
    """Turns candidate records from one source run into postings."""

    def __init__(
        self,
        *,
        run_id: str,
        description_limit: int = DEFAULT_DESCRIPTION_LIMIT,
    ) -> None:
        self.run_id = run_id
        self.description_limit = description_limit

    def process(
        self,
        record: CandidateRecord,
        funnel: FunnelTelemetry,
        *,
        now: datetime | None = None,
    ) -> StageResult:
        current = now or datetime.now(timezone.utc)
        funnel.record_raw()

        if not record.title or not record.company:
            return StageResult(posting=None, stage="validation", reason="missing_required_fields")

        decision = eligibility.classify(record.title, record.description)
        if not decision.eligible:
            logger.debug("filtered source=%s title=%r reason=%s", record.source, record.title, decision.reason)
            return StageResult(posting=None, stage="eligibility", reason=decision.reason)
        funnel.record_eligible()
        funnel.add_sample_title(record.title)

        is_remote = record.is_remote or bool(_REMOTE_RE.search(record.location.lower()))
        resolved = locator.resolve(record.job_url, record.company_url, record.title)
        location_tags = location.tag(record.location, is_remote)
        career_path = career.classify(record.title, record.description)
        posted_at = record.posted_at or current

        tags = categories.compose(
            career_path=career_path,
            location_tags=location_tags,
            eligibility=decision,
            locator_tags=resolved.tags,
            posted_at_known=record.posted_at is not None,
            department=record.department,
            is_remote=is_remote,
            source=record.source,
            platform_id=record.platform_id,
        )
        if career_path != career.UNKNOWN_CAREER_PATH:
            funnel.record_career_tagged()
        if location.is_known(tags[1]):
            funnel.record_location_tagged()

        posting = Posting(
            job_hash=identity_hash(record.title, record.company, resolved.url),
            title=record.title,
            company=record.company,
            location=record.location or "unknown",
            canonical_url=resolved.url,
            company_profile_url=record.company_url or None,
            description=self._truncate(record.description),
            tags=tags,
            experience_required="uncertain" if decision.uncertain else "early-career",
            work_environment="remote" if is_remote else "hybrid",
            source=record.source,
            posted_at=posted_at,
            freshness_tier=freshness.classify(posted_at, now=current),
            first_seen_at=current,
            last_seen_at=current,
            is_active=True,
            source_run_id=self.run_id,
        )
        return StageResult(
            posting=posting,
            stage="finalized",
            reason="eligible_uncertain" if decision.uncertain else "eligible_clear",
        )

    def _truncate(self, description: str) -> str:
        text = description.strip()
        if not text:
            return DESCRIPTION_PLACEHOLDER
        return text[: self.description_limit]
