"""Error taxonomy for isolated test execution.

Only ``ProcessCreationError`` ever escapes ``run_job``; the other classes are
values recorded against a test in the parent result.
"""

from __future__ import annotations

from typing import Any


class IsolationError(Exception):
    """Base class for isolation failures, with diagnostic context.

    Attributes:
        diagnostics: Structured context about the failure (binary, exit code).
    """

    def __init__(self, message: str, *, diagnostics: dict[str, Any] | None = None) -> None:
        """Initialize with a message and optional structured diagnostics.

        Args:
            message: Human-readable error description.
            diagnostics: Structured context for debugging.
        """
        super().__init__(message)
        self.message = message
        self.diagnostics = diagnostics if diagnostics is not None else {}


class ProcessCreationError(IsolationError):
    """The operating system could not create the child process or its pipes."""


class IsolatedProcessError(IsolationError):
    """The child wrote to its error stream or produced an undecodable payload.

    Recorded as the error of the test; ``__cause__`` carries the decode fault
    when there is one.
    """


class SyntheticError(IsolationError):
    """Stand-in for a child exception whose class the parent cannot load.

    Attributes:
        code: The original exception's code (``0`` when it had none).
        file: File in which the original exception was raised.
        line: Line at which the original exception was raised.
        trace: Formatted traceback frames from the child.
    """

    def __init__(
        self,
        message: str,
        code: Any = 0,
        file: str | None = None,
        line: int | None = None,
        trace: list[str] | None = None,
    ) -> None:
        super().__init__(
            message,
            diagnostics={"code": code, "file": file, "line": line},
        )
        self.code = code
        self.file = file
        self.line = line
        self.trace = list(trace) if trace is not None else []
