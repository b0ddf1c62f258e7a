"""Step executors and the dispatch from agent kind to implementation."""

from cc_pipeline.orchestrator.agents.base import (
    DEFAULT_MODEL,
    Agent,
    AgentResult,
    RunContext,
)
from cc_pipeline.orchestrator.agents.bash_agent import BashAgent
from cc_pipeline.orchestrator.agents.interactive_agent import (
    CLAUDE_INTERACTIVE,
    CODEX_INTERACTIVE,
    InteractiveAgent,
)
from cc_pipeline.orchestrator.agents.piped_agent import ClaudePipedAgent
from cc_pipeline.orchestrator.errors import UnknownAgentError

BASH = "bash"
CLAUDE_PIPED = "claude-piped"
SUPPORTED_AGENTS: tuple[str, ...] = (BASH, CLAUDE_PIPED, CLAUDE_INTERACTIVE, CODEX_INTERACTIVE)


def create_agent(kind: str, *, step: str = "") -> Agent:
    """Return the executor for ``kind`` or raise ``UnknownAgentError``."""

    if kind == BASH:
        return BashAgent()
    if kind == CLAUDE_PIPED:
        return ClaudePipedAgent()
    if kind in {CLAUDE_INTERACTIVE, CODEX_INTERACTIVE}:
        return InteractiveAgent(kind)
    raise UnknownAgentError(kind, step=step, supported=SUPPORTED_AGENTS)


__all__ = [
    "BASH",
    "CLAUDE_INTERACTIVE",
    "CLAUDE_PIPED",
    "CODEX_INTERACTIVE",
    "DEFAULT_MODEL",
    "SUPPORTED_AGENTS",
    "Agent",
    "AgentResult",
    "BashAgent",
    "ClaudePipedAgent",
    "InteractiveAgent",
    "RunContext",
    "create_agent",
]
