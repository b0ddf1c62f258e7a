"""Shell-command step executor."""

from __future__ import annotations

import logging
import subprocess

from cc_pipeline.orchestrator.agents.base import AgentResult, RunContext
from cc_pipeline.orchestrator.workflow import StepDefinition

logger = logging.getLogger(__name__)

PHASE_TOKEN = "{{PHASE}}"


def render_command(command: str, phase: int) -> str:
    return command.replace(PHASE_TOKEN, str(phase))


class BashAgent:
    """Run the step's ``command`` through the shell with inherited stdio."""

    def run(
        self,
        phase: int,
        step: StepDefinition,
        prompt_ref: str | None,
        model: str,
        context: RunContext,
    ) -> AgentResult:
        if not step.command:
            return AgentResult.failure(f"Bash step {step.name!r} requires a command.")

        command = render_command(step.command, phase)
        logger.info("Executing: %s", command)
        return run_shell_command(command, context=context)


def run_shell_command(command: str, *, context: RunContext) -> AgentResult:
    """Spawn ``command`` via the shell, tracked by the run registry."""

    try:
        process = subprocess.Popen(  # noqa: S602
            command,
            shell=True,
            cwd=context.project_dir,
        )
    except OSError as error:
        logger.error("Bash agent error: %s", error)
        return AgentResult.failure(f"Failed to start command: {error}")

    with context.registry.tracking(process):
        returncode = process.wait()

    if returncode < 0:
        logger.warning("Command terminated by signal %d", -returncode)
        return AgentResult(exit_code=128 - returncode, error=f"terminated by signal {-returncode}")
    return AgentResult(exit_code=returncode)
