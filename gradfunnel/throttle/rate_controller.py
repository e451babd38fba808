from __future__ import annotations

from collections import deque
from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass, field
import logging
import random
import threading
import time
from typing import Any

from gradfunnel.core.errors import ConfigurationError
from gradfunnel.throttle.policies import SourceRatePolicy

logger = logging.getLogger(__name__)

WINDOW_SECONDS = 3600.0
MAX_THROTTLE_LEVEL = 5.0
THROTTLE_STEP = 0.5
THROTTLE_DECAY = 0.9
THROTTLE_FLOOR = 0.05
JITTER_RATIO = 0.2
THROTTLED_ABOVE = 3.0


@dataclass(slots=True)
class RateLimitState:
    policy: SourceRatePolicy
    request_times: deque[float] = field(default_factory=deque)
    throttle_level: float = 0.0
    lock: threading.Lock = field(default_factory=threading.Lock)


class RateController:
    """Per-source pacing for outbound fetches.

    One instance is built at startup and handed to every fetcher. State is
    kept per source and guarded by a per-source lock; different sources never
    contend with each other.

    ``delay`` records the request it is pacing, so callers must invoke it
    exactly once per outbound request, then sleep for the returned seconds.
    None of the public methods raise: on an internal error they log and fall
    back to the minimum configured delay.
    """

    def __init__(
        self,
        policies: Mapping[str, SourceRatePolicy],
        *,
        default_min_delay_ms: int = 2000,
        clock: Callable[[], float] = time.monotonic,
        rng: random.Random | None = None,
    ) -> None:
        self._states: dict[str, RateLimitState] = {
            name.lower(): RateLimitState(policy=policy) for name, policy in policies.items()
        }
        self._default_delay = max(0, default_min_delay_ms) / 1000.0
        self._clock = clock
        self._rng = rng or random.Random()

    def require(self, sources: Iterable[str]) -> None:
        missing = sorted({source.lower() for source in sources} - set(self._states))
        if missing:
            raise ConfigurationError(f"no rate policy configured for sources: {', '.join(missing)}")

    def policy(self, source: str) -> SourceRatePolicy | None:
        state = self._states.get(source.lower())
        return state.policy if state else None

    def delay(self, source: str) -> float:
        state = self._states.get(source.lower())
        if state is None:
            logger.warning("no rate policy for source=%s; using default delay %.1fs", source, self._default_delay)
            return self._default_delay

        try:
            with state.lock:
                now = self._clock()
                state.request_times.append(now)
                self._prune(state, now)
                policy = state.policy
                if len(state.request_times) >= policy.requests_per_hour:
                    logger.warning(
                        "source=%s approaching hourly ceiling requests=%s limit=%s",
                        source,
                        len(state.request_times),
                        policy.requests_per_hour,
                    )
                    return policy.max_delay_seconds

                multiplier = 1.0 + THROTTLE_STEP * state.throttle_level
                paced = min(policy.min_delay_seconds * multiplier, policy.max_delay_seconds)
                return paced + paced * JITTER_RATIO * self._rng.random()
        except Exception:
            logger.exception("rate controller failed for source=%s; failing open", source)
            return state.policy.min_delay_seconds

    def should_pause(self, source: str) -> bool:
        """True while the hourly ceiling or the burst ceiling is exceeded.

        A burst is more than ``burst_limit`` requests inside one minimum-delay
        interval, i.e. callers firing faster than they are being paced.
        """
        state = self._states.get(source.lower())
        if state is None:
            return False
        try:
            with state.lock:
                now = self._clock()
                self._prune(state, now)
                policy = state.policy
                if len(state.request_times) >= policy.requests_per_hour:
                    return True
                burst_start = now - policy.min_delay_seconds
                in_burst = sum(1 for stamp in state.request_times if stamp > burst_start)
                return in_burst > policy.burst_limit
        except Exception:
            logger.exception("pause check failed for source=%s; failing open", source)
            return False

    def report_outcome(self, source: str, was_blocked: bool) -> None:
        state = self._states.get(source.lower())
        if state is None:
            return
        try:
            with state.lock:
                if was_blocked:
                    state.throttle_level = min(state.throttle_level + 1.0, MAX_THROTTLE_LEVEL)
                    logger.warning("block detected source=%s throttle_level=%.2f", source, state.throttle_level)
                elif state.throttle_level > 0.0:
                    decayed = state.throttle_level * THROTTLE_DECAY
                    state.throttle_level = decayed if decayed >= THROTTLE_FLOOR else 0.0
        except Exception:
            logger.exception("outcome report failed for source=%s", source)

    def throttle_level(self, source: str) -> float:
        state = self._states.get(source.lower())
        if state is None:
            return 0.0
        with state.lock:
            return state.throttle_level

    def is_throttled(self, source: str) -> bool:
        return self.throttle_level(source) > THROTTLED_ABOVE

    def reset(self, source: str) -> None:
        state = self._states.get(source.lower())
        if state is None:
            return
        with state.lock:
            state.request_times.clear()
            state.throttle_level = 0.0
        logger.info("rate state reset source=%s", source)

    def stats(self) -> dict[str, dict[str, Any]]:
        snapshot: dict[str, dict[str, Any]] = {}
        for source, state in self._states.items():
            with state.lock:
                self._prune(state, self._clock())
                recent = len(state.request_times)
                level = state.throttle_level
            limit = state.policy.requests_per_hour
            snapshot[source] = {
                "requests_last_hour": recent,
                "max_requests_per_hour": limit,
                "throttle_level": round(level, 3),
                "is_throttled": level > THROTTLED_ABOVE,
                "utilization_percent": round(recent / limit * 100),
            }
        return snapshot

    @staticmethod
    def _prune(state: RateLimitState, now: float) -> None:
        cutoff = now - WINDOW_SECONDS
        while state.request_times and state.request_times[0] <= cutoff:
            state.request_times.popleft()
