"""Prompt template rendering for assistant steps."""

from __future__ import annotations

from cc_pipeline.orchestrator.errors import AgentError
from cc_pipeline.orchestrator.workdir import PipelineWorkdir

FILE_TREE_PLACEHOLDER = "(file tree generation not yet implemented)"


def render_prompt(workdir: PipelineWorkdir, phase: int, prompt_ref: str) -> str:
    """Read ``.pipeline/<prompt_ref>`` and substitute the phase tokens.

    Supported tokens: ``{{PHASE}}``, ``{{PREV_REFLECTIONS}}``, ``{{BRIEF}}``
    and ``{{FILE_TREE}}``. A missing reflections file or brief yields an
    empty substitution.
    """

    template_path = workdir.template_path(prompt_ref)
    if not template_path.exists():
        raise AgentError(f"Prompt file not found: {template_path}")

    prompt = template_path.read_text("utf-8")
    prompt = prompt.replace("{{PHASE}}", str(phase))

    prev_reflections = ""
    if phase > 1:
        reflections_path = workdir.reflections_path(phase - 1)
        if reflections_path.exists():
            prev_reflections = f"Previous phase reflections (read this file): {reflections_path}"
    prompt = prompt.replace("{{PREV_REFLECTIONS}}", prev_reflections)

    brief = workdir.brief_path.read_text("utf-8") if workdir.brief_path.exists() else ""
    prompt = prompt.replace("{{BRIEF}}", brief)

    return prompt.replace("{{FILE_TREE}}", FILE_TREE_PLACEHOLDER)
