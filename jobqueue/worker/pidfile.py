"""
PID marker files for running workers.

Purely operational: nothing in the queue reads them back.
"""

import logging
import os
from pathlib import Path

from jobqueue.constants import PID_FILE_PREFIX

logger = logging.getLogger(__name__)


class PidFile:
    """A best-effort pid file at <pid_dir>/jobqueue.<pid>.pid."""

    def __init__(self, pid_dir: str | os.PathLike[str], pid: int | None = None):
        self.pid = pid or os.getpid()
        self.path = Path(pid_dir) / f"{PID_FILE_PREFIX}.{self.pid}.pid"

    def write(self) -> None:
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            self.path.write_text(str(self.pid))
        except OSError as e:
            logger.warning(f"Could not write pid file {self.path}: {e}")

    def remove(self) -> None:
        try:
            self.path.unlink(missing_ok=True)
        except OSError as e:
            logger.warning(f"Could not remove pid file {self.path}: {e}")
