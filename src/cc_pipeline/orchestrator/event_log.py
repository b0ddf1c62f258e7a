"""Append-only JSONL event log and the state replayed from it."""

from __future__ import annotations

import json
import logging
import os
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

from cc_pipeline.orchestrator.models import (
    DONE_STEP,
    PENDING_STEP,
    STATE_RELEVANT_EVENTS,
    EventKind,
    PipelineState,
    PipelineStatus,
    ResumePoint,
)
from cc_pipeline.orchestrator.resume import derive_resume_point

logger = logging.getLogger(__name__)


def utc_now() -> datetime:
    """Current UTC timestamp."""

    return datetime.now(tz=UTC)


class EventLog:
    """Pipeline progress stored as one JSON object per line.

    The file is the only record of progress. Readers tolerate a truncated
    trailing line left by a crash mid-write.
    """

    def __init__(self, path: Path) -> None:
        self.path = path

    def append(self, kind: EventKind | str, *, phase: int, **fields: Any) -> dict[str, Any]:
        """Stamp the record with ``ts`` and append it as one line."""

        event = kind.value if isinstance(kind, EventKind) else str(kind)
        record: dict[str, Any] = {"event": event, "phase": phase, **fields}
        record["ts"] = utc_now().isoformat()

        self.path.parent.mkdir(parents=True, exist_ok=True)
        line = json.dumps(record, ensure_ascii=False) + "\n"
        with self.path.open("a", encoding="utf-8") as handle:
            handle.write(line)
            handle.flush()
            os.fsync(handle.fileno())
        logger.debug("Event appended: %s", line.rstrip())
        return record

    def read(self) -> list[dict[str, Any]]:
        """Return all parsable records in file order."""

        if not self.path.exists():
            return []

        events: list[dict[str, Any]] = []
        with self.path.open(encoding="utf-8", errors="replace") as handle:
            for line in handle:
                text = line.strip()
                if not text:
                    continue
                try:
                    payload = json.loads(text)
                except json.JSONDecodeError:
                    continue
                if isinstance(payload, dict):
                    events.append(payload)
        return events

    def current_state(self) -> PipelineState:
        return state_from_events(self.read())

    def resume_point(self, step_names: list[str]) -> ResumePoint:
        return derive_resume_point(self.current_state(), step_names)

    def clear(self) -> bool:
        """Delete the log. Only used by an explicit reset."""

        if not self.path.exists():
            return False
        self.path.unlink()
        return True


def state_from_events(events: list[dict[str, Any]]) -> PipelineState:
    """Map the last state-relevant event to a ``PipelineState``."""

    last: dict[str, Any] | None = None
    for event in events:
        if event.get("event") in STATE_RELEVANT_EVENTS:
            last = event
    if last is None:
        return PipelineState.initial()

    phase = _coerce_phase(last.get("phase"))
    step = last.get("step") or PENDING_STEP
    kind = last["event"]
    if kind == EventKind.STEP_START.value:
        return PipelineState(phase=phase, step=str(step), status=PipelineStatus.RUNNING)
    if kind in {EventKind.STEP_DONE.value, EventKind.STEP_SKIP.value}:
        return PipelineState(phase=phase, step=str(step), status=PipelineStatus.COMPLETE)
    return PipelineState(phase=phase, step=DONE_STEP, status=PipelineStatus.COMPLETE)


def _coerce_phase(value: object) -> int:
    if isinstance(value, bool):
        return 1
    if isinstance(value, int) and value >= 1:
        return value
    if isinstance(value, str) and value.strip().isdigit() and int(value) >= 1:
        return int(value)
    return 1
