"""Phase/step scheduler that executes the workflow from its resume point."""

from __future__ import annotations

import logging
import os
import re
import signal
import threading
from collections.abc import Callable, Iterator
from contextlib import contextmanager

from cc_pipeline.config import AgentSettings, EngineSettings
from cc_pipeline.orchestrator.agents import (
    DEFAULT_MODEL,
    Agent,
    AgentResult,
    RunContext,
    create_agent,
)
from cc_pipeline.orchestrator.agents.bash_agent import render_command, run_shell_command
from cc_pipeline.orchestrator.errors import PipelineInterruptedError, PipelineStoppedError
from cc_pipeline.orchestrator.event_log import EventLog
from cc_pipeline.orchestrator.models import EventKind, ResumePoint, RunOutcome
from cc_pipeline.orchestrator.registry import ProcessRegistry, terminate_process
from cc_pipeline.orchestrator.workdir import PipelineWorkdir
from cc_pipeline.orchestrator.workflow import StepDefinition, WorkflowConfig

logger = logging.getLogger(__name__)

PROJECT_COMPLETE_PATTERN = re.compile(r"PROJECT COMPLETE", re.IGNORECASE)

AgentFactory = Callable[..., Agent]


class PipelineEngine:
    """Runs phases of the workflow until completion, a limit, or a fatal stop.

    Progress is only ever read from and written to the event log, so a new
    engine started after any crash continues from the derived resume point.
    """

    def __init__(  # noqa: PLR0913
        self,
        *,
        workdir: PipelineWorkdir,
        workflow: WorkflowConfig,
        event_log: EventLog | None = None,
        registry: ProcessRegistry | None = None,
        settings: EngineSettings | None = None,
        agent_settings: AgentSettings | None = None,
        agent_factory: AgentFactory = create_agent,
        force_exit: Callable[[int], object] = os._exit,
    ) -> None:
        self.workdir = workdir
        self.workflow = workflow
        self.event_log = event_log or EventLog(workdir.event_log_path)
        self.registry = registry or ProcessRegistry()
        self.settings = settings or EngineSettings()
        self.context = RunContext(
            workdir=workdir,
            workflow=workflow,
            registry=self.registry,
            settings=agent_settings or AgentSettings(),
        )
        self.agent_factory = agent_factory
        self._force_exit = force_exit
        self._phase = 1
        self._step = workflow.first_step().name
        self._stop_signal_name: str | None = None
        self._stop_exit_code = 130
        self._force_exit_timer: threading.Timer | None = None

    @property
    def position(self) -> tuple[int, str]:
        return self._phase, self._step

    def resume_point(self) -> ResumePoint:
        return self.event_log.resume_point(self.workflow.step_names())

    def run(self, *, phase_limit: int = 0, model: str | None = None) -> RunOutcome:
        """Execute from the resume point.

        Args:
            phase_limit: Stop cleanly after this many phases complete in this
                run (0 = no limit besides ``max_phases``).
            model: Model override applied to every step.
        """

        resume = self.resume_point()
        state = self.event_log.current_state()
        logger.info(
            "Resumed state: phase=%d step=%s status=%s",
            resume.phase,
            resume.step_name,
            state.status.value,
        )
        self._set_position(resume.phase, resume.step_name)
        with self._signal_handlers():
            return self._run_phases(resume, phase_limit=phase_limit, model_override=model)

    def _run_phases(
        self,
        resume: ResumePoint,
        *,
        phase_limit: int,
        model_override: str | None,
    ) -> RunOutcome:
        phase = resume.phase
        step_name = resume.step_name
        first_step = self.workflow.first_step().name
        phases_run = 0

        while phase <= self.settings.max_phases:
            if self._project_complete(phase):
                return RunOutcome.PROJECT_COMPLETE

            start_index = max(0, self.workflow.step_index(step_name))
            for step in self.workflow.steps[start_index:]:
                self._check_interrupted()
                self._set_position(phase, step.name)
                self._run_step(phase, step, model_override=model_override)

            self.event_log.append(EventKind.PHASE_COMPLETE, phase=phase)
            logger.info("Phase %d complete", phase)
            phases_run += 1

            if phase_limit > 0 and phases_run >= phase_limit:
                logger.info("Completed %d phase(s) as requested. Stopping.", phases_run)
                return RunOutcome.PHASE_LIMIT_REACHED

            phase += 1
            step_name = first_step
            self._set_position(phase, step_name)
            if phase > self.settings.max_phases:
                break
            if self.registry.sleep(self.settings.phase_delay_seconds):
                self._raise_interrupted()

        logger.warning("Hit MAX_PHASES (%d). Stopping.", self.settings.max_phases)
        return RunOutcome.MAX_PHASES_REACHED

    def _project_complete(self, phase: int) -> bool:
        if phase <= 1:
            return False
        reflections_path = self.workdir.reflections_path(phase - 1)
        if not reflections_path.exists():
            return False
        text = reflections_path.read_text("utf-8", errors="replace")
        first_line = text.split("\n", 1)[0]
        if not PROJECT_COMPLETE_PATTERN.search(first_line):
            return False
        self.event_log.append(EventKind.PROJECT_COMPLETE, phase=phase - 1)
        logger.info("PROJECT COMPLETE detected in phase %d reflections.", phase - 1)
        return True

    def _run_step(self, phase: int, step: StepDefinition, *, model_override: str | None) -> None:
        agent = self.agent_factory(step.agent, step=step.name)

        if step.skip_unless and not self.workdir.phase_file(phase, step.skip_unless).exists():
            self.event_log.append(
                EventKind.STEP_SKIP,
                phase=phase,
                step=step.name,
                reason=f"{step.skip_unless} not found",
            )
            logger.info("Skipping %s (%s not found)", step.name, step.skip_unless)
        else:
            model = model_override or step.model or DEFAULT_MODEL
            self.event_log.append(
                EventKind.STEP_START,
                phase=phase,
                step=step.name,
                agent=step.agent,
                model=model,
            )
            logger.info("Running step: %s (phase %d, agent: %s)", step.name, phase, step.agent)
            result = self._run_with_retries(phase, step, agent=agent, model=model)
            self.event_log.append(
                EventKind.STEP_DONE,
                phase=phase,
                step=step.name,
                agent=step.agent,
                status="ok",
                exit_code=result.exit_code,
                output_path=str(result.output_path) if result.output_path else None,
            )

        self._verify_output(phase, step)
        self._run_test_gate(phase, step)
        self.event_log.append(EventKind.STEP_COMPLETE, phase=phase, step=step.name)

    def _run_with_retries(
        self,
        phase: int,
        step: StepDefinition,
        *,
        agent: Agent,
        model: str,
    ) -> AgentResult:
        delays = self.settings.retry_delays_seconds
        attempts = len(delays)
        for attempt, delay in enumerate(delays, start=1):
            if delay > 0:
                logger.info(
                    "Retrying %s in %.0fs (attempt %d/%d)",
                    step.name,
                    delay,
                    attempt,
                    attempts,
                )
                if self.registry.sleep(delay):
                    self._raise_interrupted()
            self._check_interrupted()

            result = self._dispatch(agent, phase, step, model)
            self._check_interrupted()
            if result.ok:
                return result

            logger.warning(
                "Step %s failed (attempt %d/%d, exit code %d)%s",
                step.name,
                attempt,
                attempts,
                result.exit_code,
                f": {result.error}" if result.error else "",
            )
            if attempt < attempts:
                self.event_log.append(
                    EventKind.STEP_RETRY,
                    phase=phase,
                    step=step.name,
                    attempt=attempt,
                    exit_code=result.exit_code,
                    next_delay=delays[attempt],
                    error=result.error,
                )

        self.event_log.append(
            EventKind.PIPELINE_STOPPED,
            phase=phase,
            step=step.name,
            reason="retries_exhausted",
            attempts=attempts,
        )
        logger.error("Step %s failed after %d attempts. Pipeline stopped.", step.name, attempts)
        raise PipelineStoppedError(phase=phase, step=step.name, attempts=attempts)

    def _dispatch(self, agent: Agent, phase: int, step: StepDefinition, model: str) -> AgentResult:
        try:
            return agent.run(phase, step, step.prompt, model, self.context)
        except Exception as error:  # noqa: BLE001
            logger.exception("Agent %s raised during step %s", step.agent, step.name)
            return AgentResult.failure(str(error))

    def _verify_output(self, phase: int, step: StepDefinition) -> None:
        if not step.output:
            return
        if self.workdir.phase_file(phase, step.output).exists():
            self.event_log.append(
                EventKind.OUTPUT_VERIFIED,
                phase=phase,
                step=step.name,
                file=step.output,
            )
            return
        self.event_log.append(
            EventKind.OUTPUT_MISSING,
            phase=phase,
            step=step.name,
            file=step.output,
        )
        logger.warning("Expected output %s not found after %s", step.output, step.name)

    def _run_test_gate(self, phase: int, step: StepDefinition) -> None:
        gate = step.test_gate
        if gate is None or gate is False:
            return
        if gate is True:
            logger.info("Test gate enabled for %s but no command configured", step.name)
            return

        command = render_command(gate, phase)
        logger.info("Running test gate for %s: %s", step.name, command)
        result = run_shell_command(command, context=self.context)
        if result.ok:
            self.event_log.append(
                EventKind.TEST_GATE_PASSED,
                phase=phase,
                step=step.name,
                command=command,
            )
            return
        self.event_log.append(
            EventKind.TEST_GATE_FAILED,
            phase=phase,
            step=step.name,
            command=command,
            exit_code=result.exit_code,
        )
        logger.warning("Test gate failed for %s (exit code %d)", step.name, result.exit_code)

    def _set_position(self, phase: int, step: str) -> None:
        self._phase = phase
        self._step = step

    def _check_interrupted(self) -> None:
        if self.registry.interrupted:
            self._raise_interrupted()

    def _raise_interrupted(self) -> None:
        raise PipelineInterruptedError(
            signal_name=self._stop_signal_name or "interrupt",
            exit_code=self._stop_exit_code,
        )

    @contextmanager
    def _signal_handlers(self) -> Iterator[None]:
        if not hasattr(signal, "SIGINT"):
            yield
            return

        original_sigint = signal.getsignal(signal.SIGINT)
        original_sigterm = signal.getsignal(signal.SIGTERM)

        def _handler(signum: int, _: object | None) -> None:
            self.request_stop(signum)

        try:
            signal.signal(signal.SIGINT, _handler)
            signal.signal(signal.SIGTERM, _handler)
            installed = True
        except ValueError:
            # Signal handlers can only be installed in main thread.
            installed = False
        try:
            yield
        finally:
            if self._force_exit_timer is not None:
                self._force_exit_timer.cancel()
            if installed:
                signal.signal(signal.SIGINT, original_sigint)
                signal.signal(signal.SIGTERM, original_sigterm)

    def request_stop(self, signum: int) -> None:
        """Handle SIGINT/SIGTERM: record, stop the child, bound the shutdown."""

        if not self.registry.mark_interrupted():
            return
        try:
            name = signal.Signals(signum).name
        except ValueError:
            name = str(signum)
        self._stop_signal_name = name
        self._stop_exit_code = 128 + signum
        logger.warning("Received %s, shutting down gracefully...", name)

        phase, step = self.position
        self.event_log.append(EventKind.INTERRUPTED, phase=phase, step=step, signal=name)

        child = self.registry.current_child
        if child is not None:
            threading.Thread(
                target=terminate_process,
                args=(child,),
                kwargs={"grace_seconds": self.settings.child_grace_seconds},
                name="cc-pipeline-child-terminator",
                daemon=True,
            ).start()

        self._force_exit_timer = threading.Timer(
            self.settings.force_exit_seconds,
            self._exit_now,
            args=(self._stop_exit_code,),
        )
        self._force_exit_timer.daemon = True
        self._force_exit_timer.start()

    def _exit_now(self, exit_code: int) -> None:
        logger.error("Shutdown did not finish in time, forcing exit (%d)", exit_code)
        self._force_exit(exit_code)
