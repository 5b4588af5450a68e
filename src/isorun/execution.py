"""Execution harness: runtime resolution, child process launch, and stream drain.

Provides functions for resolving the Python interpreter used for isolated
runs, spawning it with three pipes, and draining the pipes in a fixed order
(write job, close stdin, read stdout, read stderr, wait) so that the parent
never blocks writing while the child blocks on a full output buffer.
"""

from __future__ import annotations

import contextlib
import logging
import os
import subprocess
import sys
from typing import TYPE_CHECKING

from isorun.errors import ProcessCreationError
from isorun.models import PYTHON_BINARY_ENV, RawOutput

if TYPE_CHECKING:
    from collections.abc import Mapping

    from isorun.delivery import JobDelivery

logger = logging.getLogger(__name__)


def resolve_runtime_binary(
    env: Mapping[str, str] | None = None,
    override: str | None = None,
) -> str:
    """Resolve the interpreter to spawn for an isolated run.

    An explicit *override* wins, then the ``PYTHON_BINARY`` environment
    variable, then the interpreter running the parent.

    Args:
        env: Environment to consult, or ``None`` for ``os.environ``.
        override: Explicitly configured interpreter path.

    Returns:
        Path of the interpreter executable.
    """
    if override:
        return override
    environ = os.environ if env is None else env
    binary = environ.get(PYTHON_BINARY_ENV)
    if binary:
        return binary
    return sys.executable


# ---------------------------------------------------------------------------
# Process launch
# ---------------------------------------------------------------------------


def launch_process(binary: str) -> subprocess.Popen[bytes]:
    """Spawn *binary* with no arguments and three binary pipes.

    The child reads its program from stdin, so no script argument is passed.

    Args:
        binary: Interpreter executable to run.

    Returns:
        The running process; the caller owns all three pipes.

    Raises:
        ProcessCreationError: If the process or its pipes cannot be created.
    """
    try:
        proc = subprocess.Popen(  # nosec B603
            [binary],
            stdin=subprocess.PIPE,
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
        )
    except (OSError, ValueError) as exc:
        msg = "Unable to create process for process isolation."
        raise ProcessCreationError(
            msg, diagnostics={"binary": binary, "reason": str(exc)}
        ) from exc

    logger.debug("Spawned %s (pid %d)", binary, proc.pid)
    return proc


# ---------------------------------------------------------------------------
# Stream drain
# ---------------------------------------------------------------------------


def _close_pipes(proc: subprocess.Popen[bytes]) -> None:
    for pipe in (proc.stdin, proc.stdout, proc.stderr):
        if pipe is not None and not pipe.closed:
            with contextlib.suppress(OSError):
                pipe.close()


def drain_process(
    proc: subprocess.Popen[bytes],
    job: str,
    delivery: JobDelivery,
) -> RawOutput:
    """Deliver *job* to *proc* and collect everything it writes.

    The job is written and stdin closed before any output is read; stdout
    is then read to EOF, followed by stderr. Pipes are closed, the child is
    reaped and the delivery strategy cleaned up even when a step fails.

    Args:
        proc: A process returned by ``launch_process``.
        job: Python source to execute in the child.
        delivery: Strategy that gets the job onto the child's stdin.

    Returns:
        The bytes the child wrote to stdout and stderr.
    """
    assert proc.stdin is not None
    assert proc.stdout is not None
    assert proc.stderr is not None

    try:
        try:
            delivery.deliver(proc.stdin, job)
        except BrokenPipeError:
            # The child exited before reading its input; its streams say why.
            logger.warning("Child %d closed stdin before the job was written", proc.pid)
        with contextlib.suppress(BrokenPipeError):
            proc.stdin.close()

        stdout = proc.stdout.read()
        proc.stdout.close()

        stderr = proc.stderr.read()
        proc.stderr.close()
    finally:
        _close_pipes(proc)
        exit_code = proc.wait()
        delivery.cleanup()

    logger.debug(
        "Child %d exited with %d (%d stdout bytes, %d stderr bytes)",
        proc.pid,
        exit_code,
        len(stdout),
        len(stderr),
    )
    return RawOutput(stdout=stdout, stderr=stderr)
