"""Shared test fixtures."""

from __future__ import annotations

from collections.abc import Callable
from pathlib import Path

import pytest
import yaml

from cc_pipeline.config import AgentSettings, EngineSettings
from cc_pipeline.orchestrator.agents import AgentResult, RunContext
from cc_pipeline.orchestrator.errors import UnknownAgentError
from cc_pipeline.orchestrator.registry import ProcessRegistry
from cc_pipeline.orchestrator.workdir import PipelineWorkdir
from cc_pipeline.orchestrator.workflow import StepDefinition, load_workflow


@pytest.fixture()
def project_dir(tmp_path: Path) -> Path:
    project = tmp_path / "demo-project"
    (project / ".pipeline").mkdir(parents=True)
    return project


def write_workflow(project_dir: Path, steps: list[dict], **extra: object) -> Path:
    payload = {"name": "Demo Pipeline", "version": 1, **extra, "steps": steps}
    path = project_dir / ".pipeline" / "workflow.yaml"
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(yaml.safe_dump(payload, sort_keys=False), "utf-8")
    return path


def fast_engine_settings(**overrides: object) -> EngineSettings:
    values: dict[str, object] = {
        "phase_delay_seconds": 0.0,
        "retry_delays_seconds": (0.0, 0.0, 0.0),
        "child_grace_seconds": 0.5,
        "force_exit_seconds": 30.0,
    }
    values.update(overrides)
    return EngineSettings(**values)


def fast_agent_settings(**overrides: object) -> AgentSettings:
    values: dict[str, object] = {
        "startup_poll_attempts": 3,
        "startup_poll_seconds": 0.01,
        "startup_settle_seconds": 0.0,
        "sentinel_poll_seconds": 0.01,
        "keystroke_pause_seconds": 0.0,
    }
    values.update(overrides)
    return AgentSettings(**values)


def make_context(project_dir: Path, **agent_overrides: object) -> RunContext:
    return RunContext(
        workdir=PipelineWorkdir(project_dir),
        workflow=load_workflow(project_dir),
        registry=ProcessRegistry(),
        settings=fast_agent_settings(**agent_overrides),
    )


class ScriptedAgent:
    """Returns queued exit codes and records every call."""

    def __init__(
        self,
        exit_codes: list[int] | None = None,
        *,
        on_run: Callable[[int, StepDefinition], None] | None = None,
    ) -> None:
        self.exit_codes = list(exit_codes or [])
        self.on_run = on_run
        self.calls: list[tuple[int, str, str]] = []

    def run(self, phase, step, prompt_ref, model, context) -> AgentResult:
        self.calls.append((phase, step.name, model))
        if self.on_run is not None:
            self.on_run(phase, step)
        exit_code = self.exit_codes.pop(0) if self.exit_codes else 0
        return AgentResult(exit_code=exit_code)


class ScriptedAgentFactory:
    """Agent factory double mapping kinds to ``ScriptedAgent`` instances."""

    def __init__(self, **agents: ScriptedAgent) -> None:
        self.agents = agents

    def __call__(self, kind: str, *, step: str = "") -> ScriptedAgent:
        try:
            return self.agents[kind]
        except KeyError:
            raise UnknownAgentError(kind, step=step) from None
