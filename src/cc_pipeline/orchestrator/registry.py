"""Per-run registry of the running child process and the interrupt flag."""

from __future__ import annotations

import logging
import subprocess
import time
from collections.abc import Iterator
from contextlib import contextmanager

logger = logging.getLogger(__name__)

_SLEEP_TICK_SECONDS = 0.1


class ProcessRegistry:
    """Single-owner state shared by agents and the signal handler.

    Agents register the child they spawned and clear it once it finished.
    The signal handler is the only party that terminates a child.
    """

    def __init__(self) -> None:
        self._current_child: subprocess.Popen | None = None
        self._interrupted = False

    @property
    def current_child(self) -> subprocess.Popen | None:
        return self._current_child

    @property
    def interrupted(self) -> bool:
        return self._interrupted

    def mark_interrupted(self) -> bool:
        """Set the flag. Returns ``False`` if it was already set."""

        if self._interrupted:
            return False
        self._interrupted = True
        return True

    @contextmanager
    def tracking(self, process: subprocess.Popen) -> Iterator[subprocess.Popen]:
        """Register ``process`` for the duration of the block."""

        if self._current_child is not None and self._current_child is not process:
            raise RuntimeError("Another child process is already registered.")
        self._current_child = process
        try:
            yield process
        finally:
            self._current_child = None

    def sleep(self, seconds: float) -> bool:
        """Sleep up to ``seconds``; return ``True`` if interrupted."""

        deadline = time.monotonic() + max(0.0, seconds)
        while not self._interrupted and time.monotonic() < deadline:
            time.sleep(min(_SLEEP_TICK_SECONDS, max(0.0, deadline - time.monotonic())))
        return self._interrupted


def terminate_process(process: subprocess.Popen, *, grace_seconds: float = 2.0) -> None:
    """SIGTERM ``process``, then SIGKILL if it outlives ``grace_seconds``."""

    if process.poll() is not None:
        return
    try:
        process.terminate()
    except OSError:
        return
    try:
        process.wait(timeout=grace_seconds)
    except subprocess.TimeoutExpired:
        logger.warning("Child pid=%s ignored SIGTERM, sending SIGKILL", process.pid)
        try:
            process.kill()
        except OSError:
            return
        try:
            process.wait(timeout=grace_seconds)
        except subprocess.TimeoutExpired:
            logger.error("Child pid=%s did not exit after SIGKILL", process.pid)
