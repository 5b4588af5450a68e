"""Parent-side test result model and reconciliation of child outcomes.

``TestRunResult`` is the aggregate result of a test run in the parent.
``process_child_result`` merges one child's captured streams into it: the
payload's output, assertion count, opaque test state and coverage are
applied, the selected outcome is recorded as an error or a failure, and the
test is ended with the child's reported time.
"""

from __future__ import annotations

import logging
import sys
from typing import Any, Protocol, runtime_checkable

from isorun.classification import classify_outcome
from isorun.decoding import DecodeFailure, decode_payload
from isorun.errors import IsolatedProcessError
from isorun.models import RawOutput

logger = logging.getLogger(__name__)


@runtime_checkable
class IsolatedTest(Protocol):
    """A test entity that can absorb the state reported by its child run."""

    test_id: str

    def set_result(self, result: Any) -> None: ...  # noqa: D102

    def add_to_assertion_count(self, count: int) -> None: ...  # noqa: D102


class TestCase:
    """Parent-side handle for a test that runs in a child process.

    Attributes:
        test_id: Dotted ``unittest`` name of the test.
        result: Opaque state reported by the child (the test method's
            return value).
        num_assertions: Assertions performed, accumulated across runs.
    """

    __test__ = False

    def __init__(self, test_id: str) -> None:
        self.test_id = test_id
        self.result: Any = None
        self.num_assertions = 0

    def set_result(self, result: Any) -> None:
        self.result = result

    def add_to_assertion_count(self, count: int) -> None:
        self.num_assertions += count

    def __repr__(self) -> str:
        return f"TestCase({self.test_id!r})"


class CodeCoverage:
    """Accumulates executed line numbers per file across child runs."""

    def __init__(self) -> None:
        self.lines: dict[str, set[int]] = {}

    def merge(self, data: dict[str, set[int]] | None) -> None:
        """Union *data* into the accumulated coverage."""
        if not data:
            return
        for path, lines in data.items():
            self.lines.setdefault(path, set()).update(lines)

    def __len__(self) -> int:
        return sum(len(lines) for lines in self.lines.values())


class TestRunResult:
    """Aggregate result of a test run.

    Attributes:
        collect_code_coverage: Merge child coverage into ``code_coverage``.
        code_coverage: Coverage accumulated from child runs.
        errors: ``(test, exception)`` pairs recorded as errors.
        failures: ``(test, exception)`` pairs recorded as failures.
        run_count: Number of tests started.
        time: Total reported time of ended tests, in seconds.
    """

    __test__ = False

    def __init__(self, collect_code_coverage: bool = False) -> None:
        self.collect_code_coverage = collect_code_coverage
        self.code_coverage = CodeCoverage()
        self.errors: list[tuple[IsolatedTest, BaseException]] = []
        self.failures: list[tuple[IsolatedTest, BaseException]] = []
        self.run_count = 0
        self.time = 0.0

    def start_test(self, test: IsolatedTest) -> None:
        logger.info("Starting %s", test.test_id)
        self.run_count += 1

    def end_test(self, test: IsolatedTest, time: float) -> None:
        logger.info("Finished %s in %.3fs", test.test_id, time)
        self.time += time

    def add_error(self, test: IsolatedTest, error: BaseException, time: float) -> None:
        logger.info("Error in %s: %s", test.test_id, error)
        self.errors.append((test, error))

    def add_failure(self, test: IsolatedTest, failure: BaseException, time: float) -> None:
        logger.info("Failure in %s: %s", test.test_id, failure)
        self.failures.append((test, failure))

    @property
    def error_count(self) -> int:
        return len(self.errors)

    @property
    def failure_count(self) -> int:
        return len(self.failures)

    def was_successful(self) -> bool:
        """True when no error or failure has been recorded."""
        return not self.errors and not self.failures


def _failure_error(failure: DecodeFailure) -> IsolatedProcessError:
    error = IsolatedProcessError(failure.message, diagnostics={"source": failure.source})
    error.__cause__ = failure.cause
    return error


def process_child_result(test: IsolatedTest, result: TestRunResult, raw: RawOutput) -> None:
    """Merge the outcome of one child run into *result* and end *test*.

    Args:
        test: The test that ran in the child.
        result: The parent's aggregate result.
        raw: The child's captured streams.
    """
    time = 0.0
    decoded = decode_payload(raw)

    if isinstance(decoded, DecodeFailure):
        result.add_error(test, _failure_error(decoded), time)
    else:
        payload = decoded.payload
        if payload.output:
            sys.stdout.write(payload.output)

        test.set_result(payload.test_result)
        test.add_to_assertion_count(payload.num_assertions)

        outcomes = payload.result
        if result.collect_code_coverage:
            result.code_coverage.merge(outcomes.code_coverage)

        time = outcomes.time
        outcome = classify_outcome(outcomes)
        if outcome is not None:
            if outcome.is_failure:
                result.add_failure(test, outcome.exception, time)
            else:
                result.add_error(test, outcome.exception, time)

    result.end_test(test, time)
