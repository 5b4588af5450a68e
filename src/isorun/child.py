"""Child-side harness: runs one ``unittest`` test and prints the payload.

Executed inside the isolated interpreter by the script ``job.build_job``
renders. Everything the test prints is captured so that the child's stdout
carries nothing but the pickled payload.
"""

from __future__ import annotations

import contextlib
import functools
import io
import pickle  # nosec B403
import sys
import time
import traceback
from types import TracebackType
from typing import TYPE_CHECKING, Any
import unittest

from isorun.classification import strip_mangling
from isorun.decoding import encode_payload, unpickle
from isorun.errors import SyntheticError
from isorun.models import OutcomeCategory, OutcomeSet, TestFailure

if TYPE_CHECKING:
    from collections.abc import Callable


_ExcInfo = tuple[type[BaseException], BaseException, TracebackType | None]

_coverage_provider: Callable[[], dict[str, set[int]] | None] | None = None


def set_coverage_provider(provider: Callable[[], dict[str, set[int]] | None] | None) -> None:
    """Register the callable that reports executed lines after the test runs.

    Meant to be called from a bootstrap file: the provider is invoked once the
    test has finished and its result (file path to executed line numbers) is
    sent to the parent as ``code_coverage``. ``None`` unregisters it.
    """
    global _coverage_provider
    _coverage_provider = provider


def _annotate_exception(exc: BaseException, tb: TracebackType | None) -> None:
    """Attach ``message``, ``code``, ``file``, ``line`` and ``trace`` to *exc*.

    Attributes the exception already defines (mangled or not) are kept.
    """
    frames = traceback.extract_tb(tb)
    last = frames[-1] if frames else None
    defaults = {
        "message": str(exc),
        "code": 0,
        "file": last.filename if last else None,
        "line": last.lineno if last else None,
        "trace": traceback.format_list(frames),
    }
    present = {strip_mangling(key) for key in getattr(exc, "__dict__", {})}
    for key, value in defaults.items():
        if key in present or hasattr(exc, key):
            continue
        with contextlib.suppress(AttributeError, TypeError):
            setattr(exc, key, value)


def _survives_transfer(value: Any) -> bool:
    """True when *value* pickles and the parent's unpickler can rebuild it."""
    try:
        unpickle(pickle.dumps(value))
    except Exception:
        return False
    return True


def _picklable_exception(exc: BaseException) -> BaseException:
    if not _survives_transfer(exc):
        return SyntheticError(
            f"{type(exc).__qualname__}: {exc}",
            getattr(exc, "code", 0),
            getattr(exc, "file", None),
            getattr(exc, "line", None),
            getattr(exc, "trace", None),
        )
    return exc


def _picklable_value(value: Any) -> Any:
    return value if _survives_transfer(value) else repr(value)


class _OutcomeCollector(unittest.TestResult):
    """Sorts unittest outcomes into the four payload categories."""

    def __init__(self) -> None:
        super().__init__()
        self.entries: dict[OutcomeCategory, list[TestFailure]] = {
            category: [] for category in OutcomeCategory
        }

    def _record(self, category: OutcomeCategory, test: unittest.TestCase, exc: BaseException) -> None:
        self.entries[category].append(
            TestFailure(test_name=test.id(), thrown_exception=_picklable_exception(exc))
        )

    def _record_exc_info(self, test: unittest.TestCase, err: _ExcInfo, *, failure: bool) -> None:
        _, exc, tb = err
        _annotate_exception(exc, tb)
        if failure:
            category = OutcomeCategory.FAILURE
        elif isinstance(exc, NotImplementedError):
            category = OutcomeCategory.NOT_IMPLEMENTED
        else:
            category = OutcomeCategory.ERROR
        self._record(category, test, exc)

    def addError(self, test: unittest.TestCase, err: _ExcInfo) -> None:  # type: ignore[override]  # noqa: N802
        self._record_exc_info(test, err, failure=False)

    def addFailure(self, test: unittest.TestCase, err: _ExcInfo) -> None:  # type: ignore[override]  # noqa: N802
        self._record_exc_info(test, err, failure=True)

    def addSubTest(  # type: ignore[override]  # noqa: N802
        self, test: unittest.TestCase, subtest: unittest.TestCase, err: _ExcInfo | None
    ) -> None:
        if err is not None:
            self._record_exc_info(subtest, err, failure=issubclass(err[0], test.failureException))

    def addSkip(self, test: unittest.TestCase, reason: str) -> None:  # noqa: N802
        skip = unittest.SkipTest(reason)
        _annotate_exception(skip, None)
        self._record(OutcomeCategory.SKIPPED, test, skip)

    def addUnexpectedSuccess(self, test: unittest.TestCase) -> None:  # noqa: N802
        error = AssertionError("Unexpected success")
        _annotate_exception(error, None)
        self._record(OutcomeCategory.FAILURE, test, error)

    def outcome_set(
        self, elapsed: float, code_coverage: dict[str, set[int]] | None = None
    ) -> OutcomeSet:
        return OutcomeSet(
            time=elapsed,
            not_implemented=self.entries[OutcomeCategory.NOT_IMPLEMENTED],
            skipped=self.entries[OutcomeCategory.SKIPPED],
            errors=self.entries[OutcomeCategory.ERROR],
            failures=self.entries[OutcomeCategory.FAILURE],
            code_coverage=code_coverage,
        )


class _AssertionCounter:
    """Counts top-level ``assert*`` calls made by a test case."""

    def __init__(self) -> None:
        self.count = 0
        self._depth = 0

    def _wrap(self, method: Any) -> Any:
        @functools.wraps(method)
        def counted(*args: Any, **kwargs: Any) -> Any:
            if self._depth == 0:
                self.count += 1
            self._depth += 1
            try:
                return method(*args, **kwargs)
            finally:
                self._depth -= 1

        return counted

    def install(self, test: unittest.TestCase) -> None:
        for name in dir(test):
            if not name.startswith("assert"):
                continue
            method = getattr(test, name, None)
            if callable(method):
                setattr(test, name, self._wrap(method))


def _capture_return_value(test: unittest.TestCase, returned: list[Any]) -> None:
    method_name = getattr(test, "_testMethodName", None)
    method = getattr(test, method_name, None) if method_name else None
    if not callable(method):
        return

    @functools.wraps(method)
    def capturing(*args: Any, **kwargs: Any) -> None:
        returned.append(method(*args, **kwargs))

    setattr(test, method_name, capturing)


def _flatten(suite: unittest.TestSuite | unittest.TestCase) -> list[unittest.TestCase]:
    if isinstance(suite, unittest.TestSuite):
        return [case for item in suite for case in _flatten(item)]
    return [suite]


def run_test(test_id: str) -> bytes:
    """Run the test(s) named *test_id* and return the encoded payload.

    Args:
        test_id: Dotted name accepted by ``unittest.TestLoader.loadTestsFromName``.

    Returns:
        Payload bytes in the format ``decoding.decode_payload`` reads.
    """
    collector = _OutcomeCollector()
    counter = _AssertionCounter()
    returned: list[Any] = []

    # Module-level prints happen during loading and must not reach stdout.
    captured = io.StringIO()
    with contextlib.redirect_stdout(captured):
        loaded = unittest.defaultTestLoader.loadTestsFromName(test_id)
        for case in _flatten(loaded):
            counter.install(case)
            _capture_return_value(case, returned)

        start = time.perf_counter()
        loaded.run(collector)
        elapsed = time.perf_counter() - start
        coverage = _coverage_provider() if _coverage_provider is not None else None

    return encode_payload(
        output=captured.getvalue(),
        test_result=_picklable_value(returned[-1] if returned else None),
        num_assertions=counter.count,
        result=collector.outcome_set(elapsed, coverage),
    )


def run_isolated(test_id: str) -> None:
    """Run *test_id* and write the payload to the raw stdout stream."""
    payload = run_test(test_id)
    out = sys.stdout.buffer
    out.write(payload)
    out.flush()
