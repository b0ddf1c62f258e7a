"""Workflow definition loading from ``.pipeline/workflow.yaml``."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

import yaml

from cc_pipeline.orchestrator.errors import WorkflowConfigError
from cc_pipeline.orchestrator.workdir import PipelineWorkdir

DEFAULT_WORKFLOW_NAME = "Unnamed Pipeline"
DEFAULT_PHASES_DIR = "docs/phases"


@dataclass(frozen=True, slots=True)
class StepDefinition:
    """One named step, replayed in order every phase."""

    name: str
    agent: str
    description: str = ""
    command: str | None = None
    prompt: str | None = None
    model: str | None = None
    skip_unless: str | None = None
    output: str | None = None
    test_gate: bool | str | None = None


@dataclass(frozen=True, slots=True)
class WorkflowConfig:
    """Immutable snapshot of the workflow for one run."""

    name: str = DEFAULT_WORKFLOW_NAME
    version: int | str = 1
    phases_dir: str = DEFAULT_PHASES_DIR
    steps: tuple[StepDefinition, ...] = ()

    def step_names(self) -> list[str]:
        return [step.name for step in self.steps]

    def first_step(self) -> StepDefinition:
        if not self.steps:
            raise WorkflowConfigError("No steps defined in workflow.")
        return self.steps[0]

    def step_index(self, name: str) -> int:
        """Index of ``name`` in the step list, or -1."""

        for index, step in enumerate(self.steps):
            if step.name == name:
                return index
        return -1

    def get_step(self, name: str) -> StepDefinition | None:
        index = self.step_index(name)
        return self.steps[index] if index >= 0 else None

    def next_step(self, name: str) -> str:
        """Name of the step after ``name``, or ``"done"`` after the last one."""

        index = self.step_index(name)
        if index < 0:
            raise WorkflowConfigError(f"Step not found: {name}")
        if index + 1 >= len(self.steps):
            return "done"
        return self.steps[index + 1].name


def load_workflow(project_dir: Path) -> WorkflowConfig:
    """Parse and validate the workflow file of ``project_dir``."""

    workflow_path = PipelineWorkdir(project_dir).workflow_path
    if not workflow_path.exists():
        raise WorkflowConfigError(
            f"Workflow file not found: {workflow_path}",
        )
    try:
        raw = yaml.safe_load(workflow_path.read_text("utf-8"))
    except (OSError, yaml.YAMLError) as error:
        raise WorkflowConfigError(f"Cannot read workflow file {workflow_path}: {error}") from error
    return parse_workflow(raw or {})


def parse_workflow(raw: object) -> WorkflowConfig:
    if not isinstance(raw, dict):
        raise WorkflowConfigError("Workflow file must contain a mapping at the top level.")

    raw_steps = raw.get("steps") or []
    if not isinstance(raw_steps, list):
        raise WorkflowConfigError("Workflow `steps` must be a list.")

    steps: list[StepDefinition] = []
    seen: set[str] = set()
    for position, raw_step in enumerate(raw_steps, start=1):
        step = _parse_step(raw_step, position=position)
        if step.name in seen:
            raise WorkflowConfigError(f"Duplicate step name: {step.name!r}")
        seen.add(step.name)
        steps.append(step)
    if not steps:
        raise WorkflowConfigError("No steps defined in workflow.")

    return WorkflowConfig(
        name=str(raw.get("name") or DEFAULT_WORKFLOW_NAME),
        version=raw.get("version") or 1,
        phases_dir=str(raw.get("phases_dir") or DEFAULT_PHASES_DIR),
        steps=tuple(steps),
    )


def _parse_step(raw_step: object, *, position: int) -> StepDefinition:
    if not isinstance(raw_step, dict):
        raise WorkflowConfigError(f"Step #{position} must be a mapping.")
    name = raw_step.get("name")
    if not isinstance(name, str) or not name.strip():
        raise WorkflowConfigError(f"Step #{position} is missing a name.")
    agent = raw_step.get("agent")
    if not isinstance(agent, str) or not agent.strip():
        raise WorkflowConfigError(f"Step {name!r} is missing an agent.")

    test_gate = raw_step.get("test_gate")
    if test_gate is not None and not isinstance(test_gate, (bool, str)):
        raise WorkflowConfigError(f"Step {name!r}: test_gate must be a boolean or a command.")

    return StepDefinition(
        name=name.strip(),
        agent=agent.strip(),
        description=str(raw_step.get("description") or ""),
        command=_optional_str(raw_step.get("command")),
        prompt=_optional_str(raw_step.get("prompt")),
        model=_optional_str(raw_step.get("model")),
        skip_unless=_optional_str(raw_step.get("skip_unless")),
        output=_optional_str(raw_step.get("output")),
        test_gate=test_gate,
    )


def _optional_str(value: object) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    return text or None
