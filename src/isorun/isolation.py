"""Isolated job runner: entry points and logging setup.

``run_job`` runs one job in a child interpreter. With a parent result it
reconciles the child's outcome into that result; without one it returns the
child's raw streams (standalone mode, used for diagnostics). ``run_test``
renders the job for a ``unittest`` test and runs it.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import TYPE_CHECKING

from isorun.delivery import default_delivery
from isorun.errors import IsolatedProcessError
from isorun.execution import drain_process, launch_process, resolve_runtime_binary
from isorun.job import build_job
from isorun.models import IsolationConfig
from isorun.reconcile import process_child_result

if TYPE_CHECKING:
    from isorun.delivery import JobDelivery
    from isorun.models import RawOutput
    from isorun.reconcile import IsolatedTest, TestRunResult

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Logging configuration
# ---------------------------------------------------------------------------

_LOG_FORMAT = "%(asctime)s %(levelname)-8s %(name)s — %(message)s"


def configure_logging(config: IsolationConfig) -> None:
    """Configure Python logging for isolated runs.

    Sets up the ``"isorun"`` logger with a console handler and an optional
    file handler. Repeated calls do not duplicate handlers.

    Args:
        config: Configuration providing ``log_level`` and optional
            ``log_file``.
    """
    isorun_logger = logging.getLogger("isorun")
    isorun_logger.setLevel(config.numeric_log_level)

    # Avoid duplicating handlers on repeated calls
    if not any(isinstance(h, logging.StreamHandler) for h in isorun_logger.handlers):
        console = logging.StreamHandler()
        console.setFormatter(logging.Formatter(_LOG_FORMAT))
        isorun_logger.addHandler(console)

    if config.log_file is not None:
        has_file = any(
            isinstance(h, logging.FileHandler)
            and getattr(h, "baseFilename", None) == str(Path(config.log_file).resolve())
            for h in isorun_logger.handlers
        )
        if not has_file:
            file_handler = logging.FileHandler(config.log_file)
            file_handler.setFormatter(logging.Formatter(_LOG_FORMAT))
            isorun_logger.addHandler(file_handler)


# ---------------------------------------------------------------------------
# Runner
# ---------------------------------------------------------------------------


def run_job(
    job: str,
    test: IsolatedTest | None = None,
    result: TestRunResult | None = None,
    *,
    delivery: JobDelivery | None = None,
    binary: str | None = None,
) -> RawOutput | None:
    """Run *job* in a separate interpreter.

    Only a failure to create the process escapes when reconciling; any
    later delivery or drain fault is recorded as an error of *test*. In
    standalone mode such faults propagate.

    Args:
        job: Python source executed by the child.
        test: The test the job runs; required when *result* is given.
        result: Parent result to reconcile into, or ``None`` for standalone mode.
        delivery: Job delivery strategy; the platform default when ``None``.
        binary: Interpreter override; otherwise ``PYTHON_BINARY`` or
            ``sys.executable``.

    Returns:
        ``None`` after reconciling into *result*; the child's ``RawOutput``
        in standalone mode.

    Raises:
        ValueError: If *result* is given without *test*.
        ProcessCreationError: If the child process cannot be created.
    """
    if result is not None and test is None:
        msg = "A test is required to reconcile into a result"
        raise ValueError(msg)

    proc = launch_process(resolve_runtime_binary(override=binary))
    strategy = delivery if delivery is not None else default_delivery()

    if result is None or test is None:
        return drain_process(proc, job, strategy)

    result.start_test(test)
    try:
        raw = drain_process(proc, job, strategy)
    except Exception as exc:
        logger.warning("Running %s in isolation failed: %s", test.test_id, exc)
        error = IsolatedProcessError(
            f"Unable to run job in isolated process: {exc}",
            diagnostics={"stage": "drain", "reason": str(exc)},
        )
        error.__cause__ = exc
        result.add_error(test, error, 0.0)
        result.end_test(test, 0.0)
        return None

    process_child_result(test, result, raw)
    return None


def run_test(
    test: IsolatedTest,
    result: TestRunResult,
    config: IsolationConfig | None = None,
    *,
    delivery: JobDelivery | None = None,
) -> None:
    """Run the ``unittest`` test identified by ``test.test_id`` in isolation.

    Args:
        test: Parent-side handle of the test.
        result: Parent result to reconcile into.
        config: Isolation settings; defaults when ``None``.
        delivery: Job delivery strategy; the platform default when ``None``.
    """
    cfg = config if config is not None else IsolationConfig()
    job = build_job(test.test_id, extra_sys_path=cfg.extra_sys_path, bootstrap=cfg.bootstrap)
    logger.debug("Running %s in isolation", test.test_id)
    run_job(job, test, result, delivery=delivery, binary=cfg.python_binary)
