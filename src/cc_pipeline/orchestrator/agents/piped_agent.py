"""One-shot ``claude -p`` executor with the prompt streamed over stdin."""

from __future__ import annotations

import logging
import subprocess

from cc_pipeline.orchestrator.agents.base import AgentResult, RunContext, uses_model_override
from cc_pipeline.orchestrator.errors import AgentError
from cc_pipeline.orchestrator.prompts import render_prompt
from cc_pipeline.orchestrator.workflow import StepDefinition

logger = logging.getLogger(__name__)


def build_piped_args(base_command: tuple[str, ...], model: str | None) -> list[str]:
    args = [*base_command, "-p", "--dangerously-skip-permissions"]
    if uses_model_override(model):
        args.extend(["--model", str(model)])
    return args


class ClaudePipedAgent:
    """Render the prompt, pipe it to the assistant, capture all output in one log."""

    def run(
        self,
        phase: int,
        step: StepDefinition,
        prompt_ref: str | None,
        model: str,
        context: RunContext,
    ) -> AgentResult:
        output_path = context.workdir.step_output_path
        try:
            if not prompt_ref:
                raise AgentError(f"Step {step.name!r} requires a prompt.")
            prompt = render_prompt(context.workdir, phase, prompt_ref)
            prompt_path = context.workdir.prompt_path
            prompt_path.parent.mkdir(parents=True, exist_ok=True)
            prompt_path.write_text(prompt, "utf-8")

            args = build_piped_args(context.settings.claude_command, model)
            exit_code = self._run_process(args, prompt=prompt, context=context)
        except (AgentError, OSError) as error:
            logger.error("Piped agent failed for step %s: %s", step.name, error)
            return AgentResult.failure(str(error), output_path=output_path)

        return AgentResult(exit_code=exit_code, output_path=output_path)

    def _run_process(self, args: list[str], *, prompt: str, context: RunContext) -> int:
        output_path = context.workdir.step_output_path
        output_path.parent.mkdir(parents=True, exist_ok=True)
        with output_path.open("w", encoding="utf-8") as output_handle:
            try:
                process = subprocess.Popen(  # noqa: S603
                    args,
                    stdin=subprocess.PIPE,
                    stdout=output_handle,
                    stderr=subprocess.STDOUT,
                    cwd=context.project_dir,
                    text=True,
                )
            except FileNotFoundError as error:
                raise AgentError(f"Assistant command not found: {args[0]}") from error

            with context.registry.tracking(process):
                # Returns only after stdin is closed and the child has exited,
                # so the log holds the full output.
                process.communicate(input=prompt)

        returncode = process.returncode
        if returncode is None or returncode < 0:
            return 1
        return returncode
