"""Domain models for the pipeline event log and derived execution state."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum


class EventKind(str, Enum):
    """Event types written to the pipeline log."""

    STEP_START = "step_start"
    STEP_SKIP = "step_skip"
    STEP_RETRY = "step_retry"
    STEP_DONE = "step_done"
    STEP_COMPLETE = "step_complete"
    OUTPUT_VERIFIED = "output_verified"
    OUTPUT_MISSING = "output_missing"
    TEST_GATE_PASSED = "test_gate_passed"
    TEST_GATE_FAILED = "test_gate_failed"
    PHASE_COMPLETE = "phase_complete"
    INTERRUPTED = "interrupted"
    PIPELINE_STOPPED = "pipeline_stopped"
    PROJECT_COMPLETE = "project_complete"


STATE_RELEVANT_EVENTS: frozenset[str] = frozenset(
    {
        EventKind.STEP_START.value,
        EventKind.STEP_DONE.value,
        EventKind.STEP_SKIP.value,
        EventKind.PHASE_COMPLETE.value,
    },
)

PENDING_STEP = "pending"
DONE_STEP = "done"


class PipelineStatus(str, Enum):
    """Coarse status derived from the last state-relevant event."""

    READY = "ready"
    RUNNING = "running"
    COMPLETE = "complete"


class RunOutcome(str, Enum):
    """Non-fatal ways a run can end."""

    PROJECT_COMPLETE = "project_complete"
    PHASE_LIMIT_REACHED = "phase_limit_reached"
    MAX_PHASES_REACHED = "max_phases_reached"


@dataclass(frozen=True, slots=True)
class PipelineState:
    """Execution position replayed from the event log. Never persisted."""

    phase: int
    step: str
    status: PipelineStatus

    @classmethod
    def initial(cls) -> PipelineState:
        return cls(phase=1, step=PENDING_STEP, status=PipelineStatus.READY)


@dataclass(frozen=True, slots=True)
class ResumePoint:
    """Phase and step the engine executes next."""

    phase: int
    step_name: str
