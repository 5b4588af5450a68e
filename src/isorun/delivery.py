"""Job delivery strategies: how a job's source reaches the child interpreter.

``PipeJobDelivery`` writes the job straight into the child's stdin.
``TempFileJobDelivery`` writes it to a temporary file and pipes a one-line
``runpy`` bootstrap instead, which sidesteps console code-page and pipe
buffering quirks on Windows. The strategy is chosen once per process by
``default_delivery()``.
"""

from __future__ import annotations

import abc
import contextlib
import logging
import os
from pathlib import Path
import tempfile
from typing import IO

logger = logging.getLogger(__name__)


class JobDelivery(abc.ABC):
    """Delivers a job to a spawned child process."""

    @abc.abstractmethod
    def deliver(self, pipe: IO[bytes], job: str) -> None:
        """Write *job* (or a reference to it) to the child's stdin *pipe*.

        The caller closes the pipe afterwards.
        """

    def cleanup(self) -> None:  # noqa: B027
        """Release transient artifacts created by ``deliver``."""


class PipeJobDelivery(JobDelivery):
    """Writes the job source directly to the child's stdin."""

    def deliver(self, pipe: IO[bytes], job: str) -> None:
        pipe.write(job.encode("utf-8"))


class TempFileJobDelivery(JobDelivery):
    """Writes the job to a temporary file and pipes a ``runpy`` reference to it.

    Attributes:
        temp_file: Path of the current job file, or ``None`` when no job is
            pending cleanup.
    """

    def __init__(self, directory: str | None = None) -> None:
        self._directory = directory
        self.temp_file: Path | None = None

    def deliver(self, pipe: IO[bytes], job: str) -> None:
        fd, name = tempfile.mkstemp(prefix="isorun_", suffix=".py", dir=self._directory)
        self.temp_file = Path(name)
        with os.fdopen(fd, "w", encoding="utf-8") as handle:
            handle.write(job)

        logger.debug("Job written to %s", self.temp_file)
        bootstrap = f"import runpy; runpy.run_path({str(self.temp_file)!r}, run_name='__main__')\n"
        pipe.write(bootstrap.encode("utf-8"))

    def cleanup(self) -> None:
        if self.temp_file is None:
            return
        with contextlib.suppress(FileNotFoundError):
            self.temp_file.unlink()
        logger.debug("Removed job file %s", self.temp_file)
        self.temp_file = None


def delivery_class_for(os_name: str) -> type[JobDelivery]:
    """Return the job delivery strategy for an ``os.name`` value.

    Args:
        os_name: Platform name as reported by ``os.name``.

    Returns:
        ``TempFileJobDelivery`` for Windows (``"nt"``), ``PipeJobDelivery``
        for every other platform.
    """
    if os_name == "nt":
        return TempFileJobDelivery
    return PipeJobDelivery


_PLATFORM_DELIVERY = delivery_class_for(os.name)


def default_delivery() -> JobDelivery:
    """Create a fresh instance of the host platform's delivery strategy."""
    return _PLATFORM_DELIVERY()
