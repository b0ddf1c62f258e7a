"""Resumable phase/step orchestrator for CLI coding assistants.

A run replays ``.pipeline/pipeline.jsonl`` to find where it left off, then
executes the configured steps of each phase in order through one of the
agent executors (shell command, piped assistant, or an interactive
assistant driven through tmux). Every transition is appended to the log
before the engine moves on, so killing the process at any point loses at
most the step that was running.
"""
