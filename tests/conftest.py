"""Shared fixtures for the isorun test suite."""

from __future__ import annotations

from pathlib import Path
import sys
import textwrap
import types
from typing import Any
import uuid

from isorun.decoding import encode_payload
from isorun.models import IsolationConfig, OutcomeSet, RawOutput, TestFailure
from isorun.reconcile import TestCase, TestRunResult
import pytest

# ---------------------------------------------------------------------------
# Factory functions (plain functions, importable from conftest)
# ---------------------------------------------------------------------------


def make_outcome_set(**overrides: Any) -> OutcomeSet:
    """Build a clean OutcomeSet with sensible defaults.

    Args:
        **overrides: Field values to override.

    Returns:
        A fully constructed OutcomeSet instance.
    """
    defaults: dict[str, Any] = {"time": 0.002}
    defaults.update(overrides)
    return OutcomeSet(**defaults)


def make_entry(exception: Any, test_name: str = "tests.sample.TestX.test_y") -> TestFailure:
    """Wrap *exception* in a TestFailure entry."""
    return TestFailure(test_name=test_name, thrown_exception=exception)


def make_payload_bytes(*, marker: bool = False, **overrides: Any) -> bytes:
    """Encode a child payload with sensible defaults.

    Args:
        marker: Prefix the payload with the marker line.
        **overrides: ``output``, ``test_result``, ``num_assertions`` or ``result``.

    Returns:
        Payload bytes as a child would write them.
    """
    fields: dict[str, Any] = {
        "output": "",
        "test_result": None,
        "num_assertions": 1,
        "result": make_outcome_set(),
    }
    fields.update(overrides)
    return encode_payload(marker=marker, **fields)


def make_raw(stdout: bytes = b"", stderr: bytes = b"") -> RawOutput:
    """Build a RawOutput from the given streams."""
    return RawOutput(stdout=stdout, stderr=stderr)


class RecordingResult(TestRunResult):
    """TestRunResult that also records every notification in order."""

    __test__ = False

    def __init__(self, collect_code_coverage: bool = False) -> None:
        super().__init__(collect_code_coverage=collect_code_coverage)
        self.events: list[tuple[Any, ...]] = []

    def start_test(self, test: Any) -> None:
        super().start_test(test)
        self.events.append(("start", test))

    def end_test(self, test: Any, time: float) -> None:
        super().end_test(test, time)
        self.events.append(("end", test, time))

    def add_error(self, test: Any, error: BaseException, time: float) -> None:
        super().add_error(test, error, time)
        self.events.append(("error", test, error, time))

    def add_failure(self, test: Any, failure: BaseException, time: float) -> None:
        super().add_failure(test, failure, time)
        self.events.append(("failure", test, failure, time))


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture()
def recording_result() -> RecordingResult:
    """Return a fresh RecordingResult."""
    return RecordingResult()


@pytest.fixture()
def isolated_test() -> TestCase:
    """Return a parent-side test handle."""
    return TestCase("tests.sample.TestX.test_y")


@pytest.fixture()
def vanishing_module(monkeypatch: pytest.MonkeyPatch) -> types.ModuleType:
    """Register a throwaway module that tests can remove after pickling.

    Classes attached to it pickle normally; once the module is removed from
    ``sys.modules`` the unpickler can no longer locate them.
    """
    module = types.ModuleType(f"isorun_vanished_{uuid.uuid4().hex[:8]}")
    monkeypatch.setitem(sys.modules, module.__name__, module)
    return module


_SAMPLE_TESTS = '''\
import os
import sys
import unittest


class VanishingError(Exception):
    pass


class TwoArgError(AssertionError):
    def __init__(self, expected, actual):
        super().__init__("%r != %r" % (expected, actual))
        self.expected = expected
        self.actual = actual


class Sample(unittest.TestCase):
    def test_pass(self):
        print("hello from child")
        self.assertEqual(1, 1)
        self.assertTrue(True)
        return 42

    def test_fail(self):
        self.assertEqual(1, 2)

    def test_custom_failure(self):
        raise TwoArgError(1, 2)

    def test_error(self):
        raise VanishingError("bad")

    def test_not_implemented(self):
        raise NotImplementedError("later")

    @unittest.skip("not today")
    def test_skipped(self):
        pass

    def test_fail_and_error(self):
        with self.subTest(step=1):
            self.fail("first")
        with self.subTest(step=2):
            raise RuntimeError("second")

    def test_stderr(self):
        sys.stderr.write("boom\\n")

    def test_hard_exit(self):
        os._exit(3)
'''


@pytest.fixture()
def sample_tests(tmp_path: Path) -> tuple[str, IsolationConfig]:
    """Write a unittest module the parent cannot import.

    Returns:
        The module name and a config whose ``extra_sys_path`` lets the
        child import it.
    """
    module_name = f"isorun_sample_{uuid.uuid4().hex[:8]}"
    tests_dir = tmp_path / "child_path"
    tests_dir.mkdir()
    (tests_dir / f"{module_name}.py").write_text(textwrap.dedent(_SAMPLE_TESTS), encoding="utf-8")
    return module_name, IsolationConfig(extra_sys_path=[str(tests_dir)])
