"""Error taxonomy for pipeline execution."""

from __future__ import annotations


class PipelineError(RuntimeError):
    """Base class for fatal pipeline conditions."""


class WorkflowConfigError(PipelineError):
    """Workflow definition is missing, unreadable, or malformed."""


class UnknownAgentError(PipelineError):
    """Step declares an agent kind this engine cannot dispatch."""

    def __init__(self, agent: str, *, step: str, supported: tuple[str, ...] = ()) -> None:
        message = f"Unknown agent {agent!r} for step {step!r}"
        if supported:
            message += f" (supported: {', '.join(supported)})"
        super().__init__(message)
        self.agent = agent
        self.step = step
        self.supported = supported


class PipelineStoppedError(PipelineError):
    """Step exhausted its retry schedule."""

    def __init__(self, *, phase: int, step: str, attempts: int) -> None:
        super().__init__(
            f"Step {step!r} failed after {attempts} attempts in phase {phase}. Pipeline stopped.",
        )
        self.phase = phase
        self.step = step
        self.attempts = attempts


class PipelineInterruptedError(PipelineError):
    """Run was stopped by SIGINT/SIGTERM."""

    def __init__(self, *, signal_name: str, exit_code: int) -> None:
        super().__init__(f"Pipeline interrupted by {signal_name}")
        self.signal_name = signal_name
        self.exit_code = exit_code


class AgentError(RuntimeError):
    """Agent-internal failure; converted into a failed attempt, never fatal."""
