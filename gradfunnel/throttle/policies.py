from __future__ import annotations

import json
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError, model_validator

from gradfunnel.core.errors import ConfigurationError


class SourceRatePolicy(BaseModel):
    """Request envelope for one upstream source.

    Field aliases follow the camelCase keys of the policy table so that the
    JSON override in ``GF_RATE_POLICIES_JSON`` can be pasted from ops notes.
    """

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    requests_per_hour: int = Field(alias="requestsPerHour", gt=0)
    min_delay_ms: int = Field(alias="minDelayMs", ge=0)
    max_delay_ms: int = Field(alias="maxDelayMs", ge=0)
    burst_limit: int = Field(alias="burstLimit", ge=1)

    @model_validator(mode="after")
    def _max_not_below_min(self) -> "SourceRatePolicy":
        if self.max_delay_ms < self.min_delay_ms:
            raise ValueError("maxDelayMs must be >= minDelayMs")
        return self

    @property
    def min_delay_seconds(self) -> float:
        return self.min_delay_ms / 1000.0

    @property
    def max_delay_seconds(self) -> float:
        return self.max_delay_ms / 1000.0


def _policy(requests_per_hour: int, min_delay_ms: int, max_delay_ms: int, burst_limit: int) -> SourceRatePolicy:
    return SourceRatePolicy(
        requests_per_hour=requests_per_hour,
        min_delay_ms=min_delay_ms,
        max_delay_ms=max_delay_ms,
        burst_limit=burst_limit,
    )


# Tuned per source from observed blocking; ATS platforms are the strictest.
DEFAULT_RATE_POLICIES: dict[str, SourceRatePolicy] = {
    "greenhouse": _policy(45, 2000, 8000, 3),
    "lever": _policy(40, 2500, 10000, 2),
    "workday": _policy(18, 3000, 15000, 2),
    "graduatejobs": _policy(30, 3000, 12000, 2),
    "graduateland": _policy(25, 4000, 15000, 2),
    "iagora": _policy(20, 5000, 20000, 1),
    "wellfound": _policy(35, 2000, 8000, 3),
    "eth-zurich": _policy(25, 4000, 12000, 2),
    "tu-delft": _policy(25, 4000, 12000, 2),
    "trinity-dublin": _policy(25, 4000, 12000, 2),
    "eures": _policy(30, 3000, 10000, 2),
    "jobteaser": _policy(35, 2500, 8000, 3),
    "milkround": _policy(30, 3000, 10000, 2),
    "remoteok": _policy(60, 1000, 5000, 5),
    "smartrecruiters": _policy(40, 2000, 8000, 3),
}


def load_rate_policies(raw_json: str | None) -> dict[str, SourceRatePolicy]:
    """Merge the JSON override (if any) over the default policy table."""
    policies = dict(DEFAULT_RATE_POLICIES)
    if not raw_json:
        return policies

    try:
        decoded: Any = json.loads(raw_json)
    except json.JSONDecodeError as exc:
        raise ConfigurationError(f"rate policy JSON is not valid JSON: {exc.msg}") from exc
    if not isinstance(decoded, dict):
        raise ConfigurationError("rate policy JSON must be an object keyed by source name")

    for raw_source, raw_policy in decoded.items():
        source = str(raw_source).strip().lower()
        if not source:
            raise ConfigurationError("rate policy JSON contains an empty source name")
        try:
            policies[source] = SourceRatePolicy.model_validate(raw_policy)
        except ValidationError as exc:
            raise ConfigurationError(f"invalid rate policy for source={source}: {exc}") from exc
    return policies
