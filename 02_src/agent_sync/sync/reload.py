"""Reload signalling for the process consuming agents.json."""

import os
import signal
from pathlib import Path
from typing import Protocol

from ..logging_config import get_logger

logger = get_logger(__name__)


class IReloader(Protocol):
    """Tells the consumer that a new document is available."""

    def signal_reload(self) -> bool:
        """Returns True if the consumer was signalled. Never raises."""
        ...


class NoopReloader:
    """Used when no consumer process is configured."""

    def signal_reload(self) -> bool:
        logger.debug("No reload target configured")
        return False


class ProcessSignalReloader:
    """Sends a signal to the pid found in a pid file."""

    def __init__(self, pid_file: Path, sig: signal.Signals = signal.SIGUSR1):
        self._pid_file = Path(pid_file)
        self._signal = sig

    def _read_pid(self) -> int | None:
        try:
            text = self._pid_file.read_text(encoding="utf-8").strip()
        except OSError as e:
            logger.warning("Cannot read pid file %s: %s", self._pid_file, e)
            return None
        try:
            return int(text)
        except ValueError:
            logger.warning("Pid file %s does not contain a pid: %r", self._pid_file, text)
            return None

    def signal_reload(self) -> bool:
        pid = self._read_pid()
        if pid is None:
            return False
        try:
            os.kill(pid, self._signal)
        except OSError as e:
            logger.warning("Failed to signal %s to pid %s: %s", self._signal.name, pid, e)
            return False
        logger.info("Sent %s to pid %s", self._signal.name, pid)
        return True
