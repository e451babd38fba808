from __future__ import annotations

from dataclasses import dataclass, field
import json
import logging
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from gradfunnel.core.errors import ConfigurationError

logger = logging.getLogger(__name__)

MAX_SAMPLES = 5
MAX_LOGGED_ERRORS = 3


class FunnelPolicy(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    min_eligible_ratio: float = Field(default=0.7, alias="minEligibleRatio", ge=0.0, le=1.0)
    max_unknown_location_ratio: float = Field(default=0.25, alias="maxUnknownLocationRatio", ge=0.0, le=1.0)


DEFAULT_FUNNEL_POLICY = FunnelPolicy()

DEFAULT_FUNNEL_POLICIES: dict[str, FunnelPolicy] = {
    "workday": FunnelPolicy(min_eligible_ratio=0.5),
    "remoteok": FunnelPolicy(max_unknown_location_ratio=0.4),
}


def load_funnel_policies(raw_json: str | None) -> dict[str, FunnelPolicy]:
    policies = dict(DEFAULT_FUNNEL_POLICIES)
    if not raw_json:
        return policies
    try:
        decoded: Any = json.loads(raw_json)
    except json.JSONDecodeError as exc:
        raise ConfigurationError(f"funnel policy JSON is not valid JSON: {exc.msg}") from exc
    if not isinstance(decoded, dict):
        raise ConfigurationError("funnel policy JSON must be an object keyed by source name")
    for raw_source, raw_policy in decoded.items():
        source = str(raw_source).strip().lower()
        try:
            policies[source] = FunnelPolicy.model_validate(raw_policy)
        except ValidationError as exc:
            raise ConfigurationError(f"invalid funnel policy for source={source}: {exc}") from exc
    return policies


@dataclass(frozen=True, slots=True)
class FunnelReport:
    source: str
    raw: int
    eligible: int
    career_tagged: int
    location_tagged: int
    inserted: int
    updated: int
    errors: tuple[str, ...]
    samples: tuple[str, ...]

    @property
    def eligible_ratio(self) -> float:
        return self.eligible / self.raw if self.raw else 0.0

    @property
    def unknown_location_ratio(self) -> float:
        # Discarded records never get a location tag, so they count as unknown.
        return (self.raw - self.location_tagged) / self.raw if self.raw else 0.0


@dataclass(slots=True)
class FunnelCounters:
    raw: int = 0
    eligible: int = 0
    career_tagged: int = 0
    location_tagged: int = 0
    inserted: int = 0
    updated: int = 0
    errors: list[str] = field(default_factory=list)
    samples: list[str] = field(default_factory=list)


class FunnelClosedError(RuntimeError):
    """Raised when a closed run's counters are written to."""


class FunnelTelemetry:
    """Staged counts for one source within one run."""

    def __init__(self, source: str, policy: FunnelPolicy | None = None) -> None:
        self.source = source
        self.policy = policy or DEFAULT_FUNNEL_POLICY
        self._counters = FunnelCounters()
        self._report: FunnelReport | None = None

    @property
    def closed(self) -> bool:
        return self._report is not None

    def record_raw(self) -> None:
        self._writable().raw += 1

    def record_eligible(self) -> None:
        self._writable().eligible += 1

    def record_career_tagged(self) -> None:
        self._writable().career_tagged += 1

    def record_location_tagged(self) -> None:
        self._writable().location_tagged += 1

    def record_upsert(self, inserted: int, updated: int) -> None:
        counters = self._writable()
        counters.inserted += inserted
        counters.updated += updated

    def record_error(self, error: str) -> None:
        self._writable().errors.append(error)

    def add_sample_title(self, title: str) -> None:
        counters = self._writable()
        if len(counters.samples) < MAX_SAMPLES:
            counters.samples.append(title)

    def snapshot(self) -> FunnelReport:
        if self._report is not None:
            return self._report
        counters = self._counters
        return FunnelReport(
            source=self.source,
            raw=counters.raw,
            eligible=counters.eligible,
            career_tagged=counters.career_tagged,
            location_tagged=counters.location_tagged,
            inserted=counters.inserted,
            updated=counters.updated,
            errors=tuple(counters.errors),
            samples=tuple(counters.samples),
        )

    def close(self) -> FunnelReport:
        if self._report is None:
            self._report = self.snapshot()
        return self._report

    def log(self, source_name: str | None = None) -> list[str]:
        """Log the summary line and return any advisory alarms raised."""
        report = self.snapshot()
        label = (source_name or self.source).upper()

        logger.info(
            "%s FUNNEL: Raw=%s, Eligible=%s (%.1f%%), Career=%s, Location=%s, Inserted=%s, Updated=%s, "
            "Errors=%s, UnknownLocation=%.1f%%",
            label,
            report.raw,
            report.eligible,
            report.eligible_ratio * 100,
            report.career_tagged,
            report.location_tagged,
            report.inserted,
            report.updated,
            len(report.errors),
            report.unknown_location_ratio * 100,
        )
        if report.samples:
            logger.info("%s SAMPLES: %s", label, " | ".join(report.samples))
        if report.errors:
            logger.info("%s ERRORS: %s", label, " | ".join(report.errors[:MAX_LOGGED_ERRORS]))

        alarms = evaluate_alarms(report, self.policy)
        for alarm in alarms:
            logger.warning("%s: %s", label, alarm)
        return alarms

    def _writable(self) -> FunnelCounters:
        if self._report is not None:
            raise FunnelClosedError(f"funnel for source={self.source} is closed")
        return self._counters


def evaluate_alarms(report: FunnelReport, policy: FunnelPolicy) -> list[str]:
    if report.raw == 0:
        return []

    alarms: list[str] = []
    if report.eligible_ratio < policy.min_eligible_ratio:
        alarms.append(
            f"eligible ratio {report.eligible_ratio * 100:.1f}% below minimum {policy.min_eligible_ratio * 100:.0f}%"
        )
    if report.unknown_location_ratio > policy.max_unknown_location_ratio:
        alarms.append(
            f"unknown location ratio {report.unknown_location_ratio * 100:.1f}% exceeds cap "
            f"{policy.max_unknown_location_ratio * 100:.0f}%"
        )
    if report.eligible and report.inserted + report.updated == 0:
        alarms.append(f"suspicious: {report.raw} raw jobs but 0 upserts")
    return alarms
