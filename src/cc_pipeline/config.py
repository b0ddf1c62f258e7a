"""Runtime configuration for the pipeline engine and its agents."""

from __future__ import annotations

import logging
import os
import shlex
from dataclasses import dataclass, field

MAX_PHASES = 20
PHASE_DELAY_SECONDS = 5.0
RETRY_DELAYS_SECONDS: tuple[float, ...] = (0.0, 30.0, 60.0)
CHILD_GRACE_SECONDS = 2.0
FORCE_EXIT_SECONDS = 3.0


@dataclass(slots=True)
class EngineSettings:
    """Scheduler limits and delays."""

    max_phases: int = MAX_PHASES
    phase_delay_seconds: float = PHASE_DELAY_SECONDS
    retry_delays_seconds: tuple[float, ...] = RETRY_DELAYS_SECONDS
    child_grace_seconds: float = CHILD_GRACE_SECONDS
    force_exit_seconds: float = FORCE_EXIT_SECONDS


@dataclass(slots=True)
class AgentSettings:
    """How external assistants and tmux are invoked."""

    claude_command: tuple[str, ...] = ("claude",)
    codex_command: tuple[str, ...] = ("codex",)
    tmux_command: str = "tmux"
    startup_poll_attempts: int = 60
    startup_poll_seconds: float = 2.0
    startup_settle_seconds: float = 3.0
    sentinel_poll_seconds: float = 5.0
    keystroke_pause_seconds: float = 0.5


@dataclass(slots=True)
class Settings:
    """Application settings grouped by concern."""

    log_level: str = "INFO"
    engine: EngineSettings = field(default_factory=EngineSettings)
    agents: AgentSettings = field(default_factory=AgentSettings)

    @classmethod
    def from_env(cls) -> Settings:
        """Load settings from ``CC_PIPELINE_*`` environment variables."""

        return cls(
            log_level=os.getenv("CC_PIPELINE_LOG_LEVEL", "INFO").strip().upper(),
            engine=EngineSettings(
                max_phases=_env_int("CC_PIPELINE_MAX_PHASES", MAX_PHASES),
            ),
            agents=AgentSettings(
                claude_command=_env_command("CC_PIPELINE_CLAUDE_COMMAND", ("claude",)),
                codex_command=_env_command("CC_PIPELINE_CODEX_COMMAND", ("codex",)),
                tmux_command=os.getenv("CC_PIPELINE_TMUX_COMMAND", "tmux").strip() or "tmux",
            ),
        )

    def validate(self) -> None:
        """Raise configuration error for values the engine cannot honor."""

        if self.engine.max_phases <= 0:
            raise ValueError("CC_PIPELINE_MAX_PHASES must be a positive integer.")
        if not self.engine.retry_delays_seconds:
            raise ValueError("Retry schedule must contain at least one attempt.")
        if any(delay < 0 for delay in self.engine.retry_delays_seconds):
            raise ValueError("Retry delays must be >= 0.")
        if not isinstance(logging.getLevelName(self.log_level), int):
            raise ValueError(f"Invalid CC_PIPELINE_LOG_LEVEL: {self.log_level!r}")
        if not self.agents.claude_command or not self.agents.codex_command:
            raise ValueError("Assistant commands must not be empty.")


def _env_int(name: str, default: int) -> int:
    value = os.getenv(name)
    if value is None or not value.strip():
        return default
    try:
        return int(value)
    except ValueError as error:
        raise ValueError(f"Invalid integer value for {name}: {value!r}") from error


def _env_command(name: str, default: tuple[str, ...]) -> tuple[str, ...]:
    value = os.getenv(name, "").strip()
    if not value:
        return default
    return tuple(shlex.split(value))
