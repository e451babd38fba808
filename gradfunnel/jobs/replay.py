from __future__ import annotations

from collections.abc import AsyncIterator
import json
import logging
from pathlib import Path

from pydantic import ValidationError

from gradfunnel.jobs.fetch import FetchContext
from gradfunnel.schemas.records import CandidateRecord

logger = logging.getLogger(__name__)


class JsonlReplaySource:
    """Replays candidate records captured as JSON lines.

    Each line is one JSON object; ``source`` defaults to the replay name when
    the line omits it. Undecodable lines are logged and skipped.
    """

    requires_rate_policy = False

    def __init__(self, name: str, path: str | Path) -> None:
        self.name = name.strip().lower()
        self.path = Path(path)

    async def fetch(self, context: FetchContext) -> AsyncIterator[CandidateRecord]:
        with self.path.open("r", encoding="utf-8") as handle:
            for line_number, line in enumerate(handle, start=1):
                if not line.strip():
                    continue
                record = self._decode(line, line_number)
                if record is not None:
                    yield record

    def _decode(self, line: str, line_number: int) -> CandidateRecord | None:
        try:
            payload = json.loads(line)
        except json.JSONDecodeError as exc:
            logger.warning("skipping replay line source=%s line=%s: %s", self.name, line_number, exc.msg)
            return None
        if not isinstance(payload, dict):
            logger.warning("skipping replay line source=%s line=%s: not an object", self.name, line_number)
            return None

        payload.setdefault("source", self.name)
        try:
            return CandidateRecord.model_validate(payload)
        except ValidationError as exc:
            logger.warning(
                "skipping replay line source=%s line=%s: %s",
                self.name,
                line_number,
                exc.errors()[0]["msg"],
            )
            return None
