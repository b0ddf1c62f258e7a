"""Interactive assistant sessions driven through tmux.

The assistant runs in a tmux session named after the project directory.
Work is handed over by asking the assistant to read the rendered prompt
file, and completion is signalled by a sentinel file the assistant touches
as its last action.
"""

from __future__ import annotations

import logging
import re
import shlex
import subprocess
import time
from pathlib import Path

from cc_pipeline.orchestrator.agents.base import AgentResult, RunContext, uses_model_override
from cc_pipeline.orchestrator.errors import AgentError
from cc_pipeline.orchestrator.prompts import render_prompt
from cc_pipeline.orchestrator.workflow import StepDefinition

logger = logging.getLogger(__name__)

CLAUDE_INTERACTIVE = "claude-interactive"
CODEX_INTERACTIVE = "codex-interactive"

STARTUP_MARKERS = re.compile(r"bypass permissions|Welcome back|Claude Code v|Codex CLI")
SHELL_PROMPT = re.compile(r"\A\$|%\s*\Z")

SENTINEL_INSTRUCTION = (
    "\n\n---\n"
    "When you have completed ALL tasks above, run this command as your FINAL action:\n"
    "`touch {sentinel}`"
)


class TmuxSession:
    """Thin wrapper over the tmux CLI for one named session."""

    def __init__(self, name: str, *, tmux_command: str = "tmux") -> None:
        self.name = name
        self.tmux_command = tmux_command

    def _tmux(self, *args: str) -> str:
        completed = subprocess.run(  # noqa: S603
            [self.tmux_command, *args],
            check=True,
            capture_output=True,
            text=True,
        )
        return completed.stdout or ""

    def exists(self) -> bool:
        try:
            self._tmux("has-session", "-t", self.name)
        except subprocess.CalledProcessError:
            return False
        return True

    def ensure(self, start_dir: Path) -> None:
        if self.exists():
            return
        self._tmux("new-session", "-d", "-s", self.name, "-c", str(start_dir))

    def send_keys(self, *keys: str) -> None:
        self._tmux("send-keys", "-t", self.name, *keys)

    def send_text(self, text: str) -> None:
        """Type ``text`` literally, without pressing Enter."""

        self._tmux("send-keys", "-t", self.name, "-l", text)

    def capture(self, lines: int) -> str:
        return self._tmux("capture-pane", "-t", self.name, "-p", "-S", f"-{lines}")


def build_launch_command(
    kind: str,
    base_command: tuple[str, ...],
    project_dir: Path,
    model: str | None,
) -> str:
    """Shell line typed into the session to start the assistant."""

    args = list(base_command)
    if kind == CLAUDE_INTERACTIVE:
        if uses_model_override(model):
            args.extend(["--model", str(model)])
        args.append("--dangerously-skip-permissions")
    elif kind == CODEX_INTERACTIVE:
        if uses_model_override(model):
            args.extend(["--model", str(model)])
    else:
        raise AgentError(f"Unknown interactive agent: {kind}")
    return f"cd {shlex.quote(str(project_dir))} && {shlex.join(args)}"


class InteractiveAgent:
    """Start-or-reuse a tmux session, deliver the prompt, wait for the sentinel."""

    def __init__(self, kind: str) -> None:
        self.kind = kind

    def run(
        self,
        phase: int,
        step: StepDefinition,
        prompt_ref: str | None,
        model: str,
        context: RunContext,
    ) -> AgentResult:
        workdir = context.workdir
        try:
            if not prompt_ref:
                raise AgentError(f"Step {step.name!r} requires a prompt.")
            prompt = render_prompt(workdir, phase, prompt_ref)
            self._write_prompt(prompt, context=context)
        except (AgentError, OSError) as error:
            logger.error("Interactive agent failed for step %s: %s", step.name, error)
            return AgentResult.failure(str(error))

        session = self._session(context)
        try:
            self.start(session, model=model, context=context)
            self.deliver_prompt(session, workdir.prompt_path, context=context)
            self.wait_for_sentinel(workdir.sentinel_path, context=context)
            workdir.sentinel_path.unlink(missing_ok=True)
            context.registry.sleep(1.0)
        except (AgentError, OSError, subprocess.SubprocessError) as error:
            logger.error("Interactive agent failed for step %s: %s", step.name, error)
            return AgentResult.failure(str(error))
        finally:
            self.stop(session, context=context)

        return AgentResult(exit_code=0)

    def _session(self, context: RunContext) -> TmuxSession:
        return TmuxSession(
            context.workdir.session_name,
            tmux_command=context.settings.tmux_command,
        )

    def _write_prompt(self, prompt: str, *, context: RunContext) -> None:
        workdir = context.workdir
        workdir.prompt_path.parent.mkdir(parents=True, exist_ok=True)
        instruction = SENTINEL_INSTRUCTION.format(sentinel=workdir.sentinel_path)
        workdir.prompt_path.write_text(prompt + instruction, "utf-8")
        workdir.sentinel_path.unlink(missing_ok=True)

    def _base_command(self, context: RunContext) -> tuple[str, ...]:
        if self.kind == CODEX_INTERACTIVE:
            return context.settings.codex_command
        return context.settings.claude_command

    def start(self, session: TmuxSession, *, model: str, context: RunContext) -> None:
        """Launch the assistant and block until its UI is visible."""

        settings = context.settings
        registry = context.registry
        launch = build_launch_command(
            self.kind,
            self._base_command(context),
            context.project_dir,
            model,
        )

        session.ensure(context.project_dir)
        # A leftover CLAUDECODE makes the assistant refuse to start as a nested session.
        session.send_keys("unset CLAUDECODE", "Enter")
        registry.sleep(settings.keystroke_pause_seconds)

        logger.info("Starting %s session in tmux...", self.kind)
        session.send_keys(launch, "Enter")

        timeout = settings.startup_poll_attempts * settings.startup_poll_seconds
        deadline = time.monotonic() + timeout
        for _ in range(settings.startup_poll_attempts):
            if registry.interrupted:
                raise AgentError("Interrupted during startup")
            try:
                pane = session.capture(5)
            except subprocess.CalledProcessError:
                pane = ""
            if STARTUP_MARKERS.search(pane):
                registry.sleep(settings.startup_settle_seconds)
                logger.info("%s session started", self.kind)
                return
            if time.monotonic() >= deadline:
                break
            registry.sleep(settings.startup_poll_seconds)

        try:
            final_pane = session.capture(20)
        except subprocess.CalledProcessError:
            final_pane = "(unable to capture)"
        logger.error("Tmux pane content at timeout:\n%s", final_pane)
        raise AgentError(f"{self.kind} failed to start after {timeout:.0f}s")

    def deliver_prompt(self, session: TmuxSession, prompt_path: Path, *, context: RunContext) -> None:
        """Point the assistant at the prompt file; text and Enter go separately."""

        session.send_text(f"Read and follow all instructions in @{prompt_path}")
        context.registry.sleep(context.settings.keystroke_pause_seconds)
        session.send_keys("Enter")

    def wait_for_sentinel(self, sentinel_path: Path, *, context: RunContext) -> None:
        logger.info("Waiting for step completion...")
        while not sentinel_path.exists():
            if context.registry.interrupted:
                raise AgentError("Interrupted during execution")
            context.registry.sleep(context.settings.sentinel_poll_seconds)
        logger.info("Step completed")

    def stop(self, session: TmuxSession, *, context: RunContext) -> None:
        """Exit the assistant unless the pane already shows a shell prompt."""

        logger.info("Stopping interactive session...")
        registry = context.registry
        try:
            pane = session.capture(3)
        except (OSError, subprocess.SubprocessError):
            logger.info("Session not found")
            return
        if SHELL_PROMPT.search(pane.rstrip("\n")):
            logger.info("Session already exited")
            return

        try:
            session.send_keys("/exit", "Enter", "Enter")
            registry.sleep(1.0)
            session.send_keys("Escape")
            registry.sleep(0.5)
            session.send_keys("Enter", "Enter")
            registry.sleep(2.0)
        except (OSError, subprocess.SubprocessError) as error:
            logger.warning("Failed to stop interactive session %s: %s", session.name, error)
            return
        logger.info("Session stopped")
