"""isorun: run a test in a separate Python interpreter and reconcile its result."""

from isorun.errors import ProcessCreationError, SyntheticError
from isorun.isolation import run_job, run_test
from isorun.models import IsolationConfig, RawOutput
from isorun.reconcile import TestCase, TestRunResult

__all__ = [
    "IsolationConfig",
    "ProcessCreationError",
    "RawOutput",
    "SyntheticError",
    "TestCase",
    "TestRunResult",
    "run_job",
    "run_test",
]
