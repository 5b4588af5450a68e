"""Core data models for isolated test execution.

Defines the pydantic models that cross the parent/child boundary (the
``ChildPayload`` and its ``OutcomeSet``), the raw stream capture returned by
the stream drain, the classified outcome handed to the reconciler, and the
``IsolationConfig`` that drives a run.

The child pickles instances of ``OutcomeSet`` and ``TestFailure``; both sides
import this module, so these classes always resolve when the parent
unpickles the payload.
"""

from __future__ import annotations

from enum import StrEnum
import logging
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

# ---------------------------------------------------------------------------
# Wire format constants
# ---------------------------------------------------------------------------

PAYLOAD_MARKER: bytes = b"#!/usr/bin/env python\n"
"""Optional single marker line that may precede the pickled payload."""

PYTHON_BINARY_ENV = "PYTHON_BINARY"
"""Environment variable consulted before falling back to ``sys.executable``."""


# ---------------------------------------------------------------------------
# Stream capture
# ---------------------------------------------------------------------------


class RawOutput(BaseModel):
    """Bytes captured from a child process.

    Produced once by the stream drain and consumed once by the payload
    decoder. Also the return value of a standalone (non-test) run.

    Attributes:
        stdout: Everything the child wrote to its output stream.
        stderr: Everything the child wrote to its error stream.
    """

    model_config = ConfigDict(frozen=True)

    stdout: bytes
    stderr: bytes

    @property
    def stdout_text(self) -> str:
        """Stdout decoded as UTF-8 with replacement characters."""
        return self.stdout.decode("utf-8", errors="replace")

    @property
    def stderr_text(self) -> str:
        """Stderr decoded as UTF-8 with replacement characters."""
        return self.stderr.decode("utf-8", errors="replace")


# ---------------------------------------------------------------------------
# Child outcome model
# ---------------------------------------------------------------------------


class OutcomeCategory(StrEnum):
    """Child-side classification of a test outcome, in priority order."""

    NOT_IMPLEMENTED = "not_implemented"
    SKIPPED = "skipped"
    ERROR = "error"
    FAILURE = "failure"


_CATEGORY_FIELDS: dict[OutcomeCategory, str] = {
    OutcomeCategory.NOT_IMPLEMENTED: "not_implemented",
    OutcomeCategory.SKIPPED: "skipped",
    OutcomeCategory.ERROR: "errors",
    OutcomeCategory.FAILURE: "failures",
}


class TestFailure(BaseModel):
    """A single recorded problem from the child run.

    Attributes:
        test_name: Identifier of the test that produced the entry.
        thrown_exception: The exception value raised in the child. After
            decoding this is either a real exception instance or an
            ``IncompleteObject`` when the class is unknown to the parent.
    """

    __test__ = False

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    test_name: str
    thrown_exception: Any


class OutcomeSet(BaseModel):
    """Classified results of one child run.

    Attributes:
        time: Elapsed time of the test in seconds, as measured by the child.
        not_implemented: Entries for tests that raised ``NotImplementedError``.
        skipped: Entries for skipped tests.
        errors: Entries for unexpected exceptions.
        failures: Entries for failed assertions.
        code_coverage: Optional mapping of file path to executed line numbers.
    """

    model_config = ConfigDict(frozen=True)

    time: float = Field(default=0.0, ge=0.0)
    not_implemented: list[TestFailure] = Field(default_factory=list)
    skipped: list[TestFailure] = Field(default_factory=list)
    errors: list[TestFailure] = Field(default_factory=list)
    failures: list[TestFailure] = Field(default_factory=list)
    code_coverage: dict[str, set[int]] | None = None

    def entries(self, category: OutcomeCategory) -> list[TestFailure]:
        """Return the entry list for *category*."""
        return getattr(self, _CATEGORY_FIELDS[category])  # type: ignore[no-any-return]

    @property
    def is_clean(self) -> bool:
        """True when no category holds an entry."""
        return not any(self.entries(category) for category in OutcomeCategory)


class ChildPayload(BaseModel):
    """The structured result a child writes to its output stream.

    Any object that does not validate against this model is a decode failure;
    unexpected keys are rejected.

    Attributes:
        output: Text the test printed while its stdout was captured.
        test_result: Opaque state reattached to the parent test entity.
        num_assertions: Number of assertions the test performed.
        result: The classified outcomes of the run.
    """

    model_config = ConfigDict(frozen=True, extra="forbid", arbitrary_types_allowed=True)

    output: str
    test_result: Any
    num_assertions: int = Field(ge=0, strict=True)
    result: OutcomeSet


class ClassifiedOutcome(BaseModel):
    """The single outcome selected for reporting from an ``OutcomeSet``.

    Attributes:
        category: Category the entry was drawn from.
        exception: The resolved exception to report to the parent result.
    """

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    category: OutcomeCategory
    exception: BaseException

    @property
    def is_failure(self) -> bool:
        """True for assertion failures; every other category reports as an error."""
        return self.category is OutcomeCategory.FAILURE


# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------

_LOG_LEVELS = frozenset({"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"})


class IsolationConfig(BaseModel):
    """Configuration for isolated runs.

    Attributes:
        python_binary: Interpreter to spawn. Takes precedence over the
            ``PYTHON_BINARY`` environment variable when set.
        extra_sys_path: Additional import paths prepended in the child.
        bootstrap: Optional Python file executed in the child before the test.
        collect_code_coverage: Merge child coverage data into the parent result.
            The child reports coverage only when a provider was registered
            with ``isorun.child.set_coverage_provider``, typically from the
            ``bootstrap`` file; otherwise there is nothing to merge.
        log_level: Logging level name for the ``isorun`` logger.
        log_file: Optional log file path.
    """

    model_config = ConfigDict(frozen=True)

    python_binary: str | None = None
    extra_sys_path: list[str] = Field(default_factory=list)
    bootstrap: str | None = None
    collect_code_coverage: bool = False
    log_level: str = "INFO"
    log_file: str | None = None

    @field_validator("log_level")
    @classmethod
    def _known_log_level(cls, v: str) -> str:
        """Normalize and validate the logging level name."""
        level = v.upper()
        if level not in _LOG_LEVELS:
            msg = f"Unknown log level {v!r}; expected one of {sorted(_LOG_LEVELS)}"
            raise ValueError(msg)
        return level

    @property
    def numeric_log_level(self) -> int:
        """The ``logging`` module constant for ``log_level``."""
        return getattr(logging, self.log_level)  # type: ignore[no-any-return]
