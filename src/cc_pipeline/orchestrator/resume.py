"""Resume-point policy: where a new run picks up after any crash point."""

from __future__ import annotations

from collections.abc import Sequence

from cc_pipeline.orchestrator.models import (
    DONE_STEP,
    PipelineState,
    PipelineStatus,
    ResumePoint,
)


def derive_resume_point(state: PipelineState, step_names: Sequence[str]) -> ResumePoint:
    """Return the step to execute next for ``state``.

    A step that was started but never confirmed done is executed again
    (at-least-once). A completed step name that no longer exists in the
    workflow restarts the whole run at phase 1.
    """

    if not step_names:
        raise ValueError("Cannot derive a resume point for an empty step list.")
    first = step_names[0]

    if state.status == PipelineStatus.READY:
        return ResumePoint(phase=1, step_name=first)

    if state.status == PipelineStatus.RUNNING:
        if state.step in step_names:
            return ResumePoint(phase=state.phase, step_name=state.step)
        return ResumePoint(phase=1, step_name=first)

    if state.step == DONE_STEP:
        return ResumePoint(phase=state.phase + 1, step_name=first)

    if state.step not in step_names:
        return ResumePoint(phase=1, step_name=first)

    next_index = list(step_names).index(state.step) + 1
    if next_index >= len(step_names):
        return ResumePoint(phase=state.phase + 1, step_name=first)
    return ResumePoint(phase=state.phase, step_name=step_names[next_index])
