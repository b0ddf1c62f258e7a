"""CLI entrypoint for cc-pipeline."""

import logging
import os
from pathlib import Path

import rich_click as click

from cc_pipeline import __version__
from cc_pipeline.config import Settings
from cc_pipeline.orchestrator.controllers import (
    PipelineCliController,
    PipelineResetCommand,
    PipelineRunCommand,
    PipelineStatusCommand,
)
from cc_pipeline.orchestrator.errors import PipelineError, PipelineInterruptedError

click.rich_click.USE_MARKDOWN = True
LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


@click.group()
@click.version_option(version=__version__, prog_name="cc-pipeline")
def cc_pipeline() -> None:
    """Resumable multi-phase pipeline for CLI coding assistants."""

    _configure_logging()


@cc_pipeline.command("run")
@click.option(
    "--project-dir",
    type=click.Path(path_type=Path, file_okay=False),
    default=Path(),
    show_default=True,
    help="Project root containing `.pipeline/workflow.yaml`.",
)
@click.option(
    "--phases",
    type=click.IntRange(min=0),
    default=0,
    show_default=True,
    help="Stop after this many phases complete in this run (0 = no limit).",
)
@click.option("--model", default=None, help="Model override applied to every step.")
def run(project_dir: Path, phases: int, model: str | None) -> None:
    """Run the pipeline from its resume point."""

    command = PipelineRunCommand(project_dir=project_dir, phases=phases, model=model)
    controller = _controller()
    try:
        _emit_lines(controller.banner(command))
        result = controller.run(command)
    except PipelineInterruptedError as error:
        click.echo(f"{error}. Progress saved to the event log.", err=True)
        raise SystemExit(error.exit_code) from error
    except PipelineError as error:
        raise click.ClickException(str(error)) from error
    _emit_lines(result.lines)


@cc_pipeline.command("status")
@click.option(
    "--project-dir",
    type=click.Path(path_type=Path, file_okay=False),
    default=Path(),
    show_default=True,
    help="Project root containing `.pipeline/`.",
)
def status(project_dir: Path) -> None:
    """Show derived state and recent events."""

    _emit_lines(_controller().status(PipelineStatusCommand(project_dir=project_dir)))


@cc_pipeline.command("reset")
@click.option(
    "--project-dir",
    type=click.Path(path_type=Path, file_okay=False),
    default=Path(),
    show_default=True,
    help="Project root containing `.pipeline/`.",
)
@click.confirmation_option(prompt="Delete the event log and all phase outputs?")
def reset(project_dir: Path) -> None:
    """Delete the event log, phase outputs and scratch files."""

    _emit_lines(_controller().reset(PipelineResetCommand(project_dir=project_dir)))


def _controller() -> PipelineCliController:
    try:
        settings = Settings.from_env()
        settings.validate()
    except ValueError as error:
        raise click.ClickException(str(error)) from error
    return PipelineCliController(settings)


def _configure_logging() -> None:
    level_name = os.getenv("CC_PIPELINE_LOG_LEVEL", "INFO").strip().upper()
    level = logging.getLevelName(level_name)
    logging.basicConfig(
        level=level if isinstance(level, int) else logging.INFO,
        format=LOG_FORMAT,
        force=True,
    )


def _emit_lines(lines: list[str]) -> None:
    for line in lines:
        click.echo(line)


if __name__ == "__main__":  # pragma: no cover
    cc_pipeline()
