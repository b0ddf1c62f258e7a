"""Agent interface shared by every step executor."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Protocol

from cc_pipeline.config import AgentSettings
from cc_pipeline.orchestrator.registry import ProcessRegistry
from cc_pipeline.orchestrator.workdir import PipelineWorkdir
from cc_pipeline.orchestrator.workflow import StepDefinition, WorkflowConfig

DEFAULT_MODEL = "default"


@dataclass(slots=True)
class AgentResult:
    """Outcome of one step attempt."""

    exit_code: int
    output_path: Path | None = None
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.exit_code == 0

    @classmethod
    def failure(cls, error: str, *, output_path: Path | None = None) -> AgentResult:
        return cls(exit_code=1, output_path=output_path, error=error)


@dataclass(slots=True)
class RunContext:
    """Everything an agent may touch during a run."""

    workdir: PipelineWorkdir
    workflow: WorkflowConfig
    registry: ProcessRegistry
    settings: AgentSettings

    @property
    def project_dir(self) -> Path:
        return self.workdir.project_dir


class Agent(Protocol):
    """Protocol implemented by step executors."""

    def run(
        self,
        phase: int,
        step: StepDefinition,
        prompt_ref: str | None,
        model: str,
        context: RunContext,
    ) -> AgentResult:
        """Execute one attempt and return its result without raising."""


def uses_model_override(model: str | None) -> bool:
    return bool(model) and model != DEFAULT_MODEL
