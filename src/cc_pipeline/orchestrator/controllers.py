"""Controllers for pipeline CLI commands."""

from __future__ import annotations

import logging
import shutil
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path

from cc_pipeline.config import Settings
from cc_pipeline.orchestrator.engine import PipelineEngine
from cc_pipeline.orchestrator.errors import WorkflowConfigError
from cc_pipeline.orchestrator.event_log import EventLog
from cc_pipeline.orchestrator.models import PipelineState, RunOutcome
from cc_pipeline.orchestrator.workdir import PipelineWorkdir
from cc_pipeline.orchestrator.workflow import DEFAULT_PHASES_DIR, WorkflowConfig, load_workflow

logger = logging.getLogger(__name__)

RECENT_EVENTS_LIMIT = 10
STATUS_FILE_NAME = "STATUS.md"


@dataclass(slots=True)
class PipelineRunCommand:
    """CLI input for a pipeline run."""

    project_dir: Path
    phases: int = 0
    model: str | None = None


@dataclass(slots=True)
class PipelineStatusCommand:
    """CLI input for status inspection."""

    project_dir: Path


@dataclass(slots=True)
class PipelineResetCommand:
    """CLI input for wiping run progress."""

    project_dir: Path


@dataclass(slots=True)
class PipelineRunResult:
    """Run report to render in CLI."""

    outcome: RunOutcome
    lines: list[str]


class PipelineCliController:
    """Coordinates engine runs and log inspection for the CLI."""

    def __init__(self, settings: Settings | None = None) -> None:
        self.settings = settings or Settings.from_env()

    def banner(self, command: PipelineRunCommand) -> list[str]:
        workflow = load_workflow(command.project_dir)
        workdir = PipelineWorkdir(command.project_dir, phases_dir=workflow.phases_dir)
        state = EventLog(workdir.event_log_path).current_state()
        return render_banner_lines(workflow, command.project_dir, state)

    def run(self, command: PipelineRunCommand) -> PipelineRunResult:
        workflow = load_workflow(command.project_dir)
        workdir = PipelineWorkdir(command.project_dir, phases_dir=workflow.phases_dir)
        engine = PipelineEngine(
            workdir=workdir,
            workflow=workflow,
            settings=self.settings.engine,
            agent_settings=self.settings.agents,
        )
        outcome = engine.run(phase_limit=command.phases, model=command.model)
        phase, _ = engine.position
        if outcome == RunOutcome.PROJECT_COMPLETE:
            lines = [f"PROJECT COMPLETE detected in phase {phase - 1} reflections."]
        elif outcome == RunOutcome.PHASE_LIMIT_REACHED:
            lines = [f"Completed {command.phases} phase(s) as requested. Stopping."]
        else:
            lines = [f"Hit MAX_PHASES ({self.settings.engine.max_phases}). Stopping."]
        return PipelineRunResult(outcome=outcome, lines=lines)

    def status(self, command: PipelineStatusCommand) -> list[str]:
        workdir = PipelineWorkdir(command.project_dir)
        event_log = EventLog(workdir.event_log_path)
        if not event_log.path.exists():
            return ["No pipeline.jsonl found. Pipeline has not started yet."]

        state = event_log.current_state()
        lines = [
            "=== Pipeline Status ===",
            f"Phase: {state.phase}",
            f"Step: {state.step}",
            f"Status: {state.status.value}",
        ]
        try:
            workflow = load_workflow(command.project_dir)
        except WorkflowConfigError as error:
            logger.warning("Cannot derive resume point: %s", error)
        else:
            resume = event_log.resume_point(workflow.step_names())
            lines.append(f"Next: phase={resume.phase} step={resume.step_name}")

        lines.append("")
        lines.append(f"=== Recent Events (last {RECENT_EVENTS_LIMIT}) ===")
        for event in event_log.read()[-RECENT_EVENTS_LIMIT:]:
            lines.append(_format_event(event))
        return lines

    def reset(self, command: PipelineResetCommand) -> list[str]:
        project_dir = command.project_dir
        try:
            phases_dir = load_workflow(project_dir).phases_dir
        except WorkflowConfigError:
            phases_dir = DEFAULT_PHASES_DIR
        workdir = PipelineWorkdir(project_dir, phases_dir=phases_dir)

        lines = ["Resetting pipeline..."]
        if EventLog(workdir.event_log_path).clear():
            lines.append("  Removed pipeline.jsonl (event log)")
        else:
            lines.append("  No pipeline.jsonl found")

        if workdir.phases_root.exists():
            shutil.rmtree(workdir.phases_root)
            lines.append(f"  Removed {phases_dir}/ (phase outputs)")
        else:
            lines.append("  No phases directory found")

        status_file = project_dir / STATUS_FILE_NAME
        if status_file.exists():
            status_file.unlink()
            lines.append(f"  Removed {STATUS_FILE_NAME}")

        for path in workdir.scratch_paths():
            path.unlink(missing_ok=True)

        lines.append("Pipeline reset. Run `cc-pipeline run` to start fresh.")
        return lines


def render_banner_lines(
    workflow: WorkflowConfig,
    project_dir: Path,
    state: PipelineState,
) -> list[str]:
    lines = [
        workflow.name,
        f"Project: {project_dir.resolve().name}",
        "",
        "Pipeline Steps:",
    ]
    for index, step in enumerate(workflow.steps, start=1):
        marker = ">" if step.name == state.step else " "
        lines.append(f"{marker} {index}. {step.name}")
    lines.append("")
    lines.append(f"Phase: {state.phase} | Status: {state.status.value}")
    return lines


def _format_event(event: dict[str, object]) -> str:
    ts = event.get("ts")
    timestamp = str(ts or "")
    if isinstance(ts, str):
        try:
            timestamp = datetime.fromisoformat(ts).strftime("%Y-%m-%d %H:%M:%S")
        except ValueError:
            timestamp = ts
    fields = " ".join(
        f"{key}={value}" for key, value in event.items() if key not in {"ts", "event"}
    )
    return f"[{timestamp}] {event.get('event', '?')} {fields}".rstrip()
