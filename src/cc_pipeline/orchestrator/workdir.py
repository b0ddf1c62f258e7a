"""Filesystem layout of a pipeline project."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

PIPELINE_DIR_NAME = ".pipeline"
REFLECTIONS_FILE_NAME = "REFLECTIONS.md"
BRIEF_FILE_NAME = "BRIEF.md"


@dataclass(slots=True)
class PipelineWorkdir:
    """Resolves every path the engine and agents read or write."""

    project_dir: Path
    phases_dir: str = "docs/phases"

    @property
    def pipeline_dir(self) -> Path:
        return self.project_dir / PIPELINE_DIR_NAME

    @property
    def workflow_path(self) -> Path:
        return self.pipeline_dir / "workflow.yaml"

    @property
    def event_log_path(self) -> Path:
        return self.pipeline_dir / "pipeline.jsonl"

    @property
    def prompt_path(self) -> Path:
        return self.pipeline_dir / "current-prompt.md"

    @property
    def sentinel_path(self) -> Path:
        return self.pipeline_dir / ".step-done"

    @property
    def step_output_path(self) -> Path:
        return self.pipeline_dir / "step-output.log"

    @property
    def brief_path(self) -> Path:
        return self.project_dir / BRIEF_FILE_NAME

    @property
    def phases_root(self) -> Path:
        return self.project_dir / self.phases_dir

    @property
    def session_name(self) -> str:
        return self.project_dir.resolve().name

    def phase_dir(self, phase: int) -> Path:
        return self.phases_root / f"phase-{phase}"

    def phase_file(self, phase: int, name: str) -> Path:
        return self.phase_dir(phase) / name

    def reflections_path(self, phase: int) -> Path:
        return self.phase_file(phase, REFLECTIONS_FILE_NAME)

    def template_path(self, prompt_ref: str) -> Path:
        return self.pipeline_dir / prompt_ref

    def scratch_paths(self) -> tuple[Path, ...]:
        return (self.prompt_path, self.sentinel_path, self.step_output_path)
