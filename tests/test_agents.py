from __future__ import annotations

import sys
from pathlib import Path

import allure
import pytest
from conftest import make_context, write_workflow

from cc_pipeline.orchestrator.agents import (
    CLAUDE_INTERACTIVE,
    CODEX_INTERACTIVE,
    BashAgent,
    ClaudePipedAgent,
    InteractiveAgent,
    create_agent,
)
from cc_pipeline.orchestrator.agents.interactive_agent import build_launch_command
from cc_pipeline.orchestrator.agents.piped_agent import build_piped_args
from cc_pipeline.orchestrator.errors import AgentError, UnknownAgentError
from cc_pipeline.orchestrator.workflow import StepDefinition

pytestmark = [
    allure.epic("Agents"),
    allure.feature("Step Executors"),
]

_FAKE_ASSISTANT = (
    "import sys\n"
    "prompt = sys.stdin.read()\n"
    "print('ARGS: ' + ' '.join(sys.argv[1:]))\n"
    "print('PROMPT: ' + prompt)\n"
    "print('to stderr', file=sys.stderr)\n"
    "sys.exit({exit_code})\n"
)


@pytest.fixture()
def workflow_project(project_dir: Path) -> Path:
    write_workflow(project_dir, [{"name": "build", "agent": "bash"}])
    prompt = project_dir / ".pipeline" / "prompts" / "build.md"
    prompt.parent.mkdir(parents=True)
    prompt.write_text("Build phase {{PHASE}}.", "utf-8")
    return project_dir


def test_create_agent_dispatches_known_kinds() -> None:
    assert isinstance(create_agent("bash"), BashAgent)
    assert isinstance(create_agent("claude-piped"), ClaudePipedAgent)
    assert create_agent(CLAUDE_INTERACTIVE).kind == CLAUDE_INTERACTIVE
    assert create_agent(CODEX_INTERACTIVE).kind == CODEX_INTERACTIVE
    with pytest.raises(UnknownAgentError, match="'nope' for step 'spec'") as excinfo:
        create_agent("nope", step="spec")
    assert "supported: bash, claude-piped, claude-interactive, codex-interactive" in str(excinfo.value)


def test_bash_agent_substitutes_phase_and_runs_in_project(workflow_project: Path) -> None:
    context = make_context(workflow_project)
    step = StepDefinition(name="build", agent="bash", command="echo {{PHASE}} > phase.txt")

    result = BashAgent().run(4, step, None, "default", context)

    assert result.ok
    assert (workflow_project / "phase.txt").read_text("utf-8").strip() == "4"
    assert context.registry.current_child is None


def test_bash_agent_propagates_exit_code(workflow_project: Path) -> None:
    step = StepDefinition(name="build", agent="bash", command="exit 7")

    result = BashAgent().run(1, step, None, "default", make_context(workflow_project))

    assert result.exit_code == 7
    assert not result.ok


def test_bash_agent_treats_signal_death_as_failure(workflow_project: Path) -> None:
    step = StepDefinition(name="build", agent="bash", command="kill -TERM $$")

    result = BashAgent().run(1, step, None, "default", make_context(workflow_project))

    assert result.exit_code == 143
    assert result.error == "terminated by signal 15"


def test_bash_agent_without_command_fails(workflow_project: Path) -> None:
    step = StepDefinition(name="build", agent="bash")

    result = BashAgent().run(1, step, None, "default", make_context(workflow_project))

    assert not result.ok
    assert "requires a command" in result.error


def test_build_piped_args_adds_model_only_when_overridden() -> None:
    assert build_piped_args(("claude",), "default") == [
        "claude",
        "-p",
        "--dangerously-skip-permissions",
    ]
    assert build_piped_args(("claude",), "opus")[-2:] == ["--model", "opus"]


def test_piped_agent_streams_prompt_and_captures_output(workflow_project: Path) -> None:
    context = make_context(
        workflow_project,
        claude_command=(sys.executable, "-c", _FAKE_ASSISTANT.format(exit_code=0)),
    )
    step = StepDefinition(name="build", agent="claude-piped", prompt="prompts/build.md")

    result = ClaudePipedAgent().run(3, step, step.prompt, "opus", context)

    assert result.ok
    assert result.output_path == context.workdir.step_output_path
    output = result.output_path.read_text("utf-8")
    assert "ARGS: -p --dangerously-skip-permissions --model opus" in output
    assert "PROMPT: Build phase 3." in output
    assert "to stderr" in output
    assert context.workdir.prompt_path.read_text("utf-8") == "Build phase 3."
    assert context.registry.current_child is None


def test_piped_agent_propagates_exit_code(workflow_project: Path) -> None:
    context = make_context(
        workflow_project,
        claude_command=(sys.executable, "-c", _FAKE_ASSISTANT.format(exit_code=4)),
    )
    step = StepDefinition(name="build", agent="claude-piped", prompt="prompts/build.md")

    result = ClaudePipedAgent().run(1, step, step.prompt, "default", context)

    assert result.exit_code == 4


def test_piped_agent_missing_executable_is_failed_attempt(workflow_project: Path) -> None:
    context = make_context(workflow_project, claude_command=("cc-pipeline-missing-assistant",))
    step = StepDefinition(name="build", agent="claude-piped", prompt="prompts/build.md")

    result = ClaudePipedAgent().run(1, step, step.prompt, "default", context)

    assert not result.ok
    assert "not found" in result.error


def test_piped_agent_missing_template_is_failed_attempt(workflow_project: Path) -> None:
    step = StepDefinition(name="build", agent="claude-piped", prompt="prompts/absent.md")

    result = ClaudePipedAgent().run(1, step, step.prompt, "default", make_context(workflow_project))

    assert not result.ok
    assert "Prompt file not found" in result.error


def test_build_launch_command_per_assistant(tmp_path: Path) -> None:
    claude = build_launch_command(CLAUDE_INTERACTIVE, ("claude",), tmp_path, "opus")
    codex_default = build_launch_command(CODEX_INTERACTIVE, ("codex",), tmp_path, "default")

    assert claude == f"cd {tmp_path} && claude --model opus --dangerously-skip-permissions"
    assert codex_default == f"cd {tmp_path} && codex"
    with pytest.raises(AgentError):
        build_launch_command("claude-piped", ("claude",), tmp_path, None)


class FakeTmuxSession:
    """Records tmux interactions; plays the assistant by touching the sentinel."""

    def __init__(self, sentinel: Path, *, ui_text: str = "Welcome back!") -> None:
        self.name = "fake"
        self.sentinel = sentinel
        self.ui_text = ui_text
        self.calls: list[tuple] = []
        self.prompt_sent = False
        self.finished = False

    def ensure(self, start_dir: Path) -> None:
        self.calls.append(("ensure", start_dir))

    def send_keys(self, *keys: str) -> None:
        self.calls.append(("send_keys", keys))
        if keys == ("Enter",) and self.prompt_sent:
            self.sentinel.touch()
            self.finished = True

    def send_text(self, text: str) -> None:
        self.calls.append(("send_text", text))
        self.prompt_sent = True

    def capture(self, lines: int) -> str:
        self.calls.append(("capture", lines))
        return "$ " if self.finished else self.ui_text


def test_interactive_agent_delivers_prompt_and_waits_for_sentinel(workflow_project: Path) -> None:
    context = make_context(workflow_project)
    session = FakeTmuxSession(context.workdir.sentinel_path)
    agent = InteractiveAgent(CLAUDE_INTERACTIVE)
    agent._session = lambda _context: session
    step = StepDefinition(name="build", agent=CLAUDE_INTERACTIVE, prompt="prompts/build.md")

    result = agent.run(2, step, step.prompt, "default", context)

    assert result.ok
    prompt = context.workdir.prompt_path.read_text("utf-8")
    assert prompt.startswith("Build phase 2.")
    assert f"`touch {context.workdir.sentinel_path}`" in prompt
    assert not context.workdir.sentinel_path.exists()

    sent = [call for call in session.calls if call[0] in {"send_keys", "send_text"}]
    assert sent[0] == ("send_keys", ("unset CLAUDECODE", "Enter"))
    assert sent[1][1][0].endswith("claude --dangerously-skip-permissions")
    text_index = sent.index(
        ("send_text", f"Read and follow all instructions in @{context.workdir.prompt_path}"),
    )
    assert sent[text_index + 1] == ("send_keys", ("Enter",))
    # Shell prompt was visible, so no exit sequence was typed.
    assert ("send_keys", ("/exit", "Enter", "Enter")) not in sent


def test_interactive_agent_startup_timeout_raises(workflow_project: Path) -> None:
    context = make_context(workflow_project)
    session = FakeTmuxSession(context.workdir.sentinel_path, ui_text="loading...")

    with pytest.raises(AgentError, match="failed to start"):
        InteractiveAgent(CODEX_INTERACTIVE).start(session, model="default", context=context)

    captures = [call for call in session.calls if call[0] == "capture"]
    assert captures[-1] == ("capture", 20)


def test_interactive_agent_stop_sends_exit_sequence(workflow_project: Path) -> None:
    context = make_context(workflow_project)
    session = FakeTmuxSession(context.workdir.sentinel_path, ui_text="> working")

    InteractiveAgent(CLAUDE_INTERACTIVE).stop(session, context=context)

    keys = [call[1] for call in session.calls if call[0] == "send_keys"]
    assert keys == [("/exit", "Enter", "Enter"), ("Escape",), ("Enter", "Enter")]


def test_interactive_agent_missing_prompt_fails_without_tmux(workflow_project: Path) -> None:
    step = StepDefinition(name="build", agent=CLAUDE_INTERACTIVE)

    result = InteractiveAgent(CLAUDE_INTERACTIVE).run(
        1,
        step,
        None,
        "default",
        make_context(workflow_project),
    )

    assert not result.ok
    assert "requires a prompt" in result.error


def test_interactive_agent_stop_ignores_dollar_lines_inside_transcript(workflow_project: Path) -> None:
    context = make_context(workflow_project)
    session = FakeTmuxSession(
        context.workdir.sentinel_path,
        ui_text="> Running tests\n$ pytest -q\n12 passed\n> Claude is working...\n",
    )

    InteractiveAgent(CLAUDE_INTERACTIVE).stop(session, context=context)

    keys = [call[1] for call in session.calls if call[0] == "send_keys"]
    assert keys == [("/exit", "Enter", "Enter"), ("Escape",), ("Enter", "Enter")]


def test_interactive_agent_stop_skips_exit_at_shell_prompt(workflow_project: Path) -> None:
    context = make_context(workflow_project)
    session = FakeTmuxSession(context.workdir.sentinel_path, ui_text="$ ")

    InteractiveAgent(CLAUDE_INTERACTIVE).stop(session, context=context)

    assert [call for call in session.calls if call[0] == "send_keys"] == []
