"""Outcome classification for decoded child results.

Selects the single outcome reported for a child run and repairs exceptions
whose class the parent could not load into ``SyntheticError`` instances.
Only the first entry of the highest-priority non-empty category is
reported; the rest are dropped.
"""

from __future__ import annotations

import logging
import re
from typing import Any

from isorun.decoding import INCOMPLETE_CLASS_NAME_KEY, IncompleteObject
from isorun.errors import SyntheticError
from isorun.models import ClassifiedOutcome, OutcomeCategory, OutcomeSet, TestFailure

logger = logging.getLogger(__name__)

CATEGORY_PRIORITY: tuple[OutcomeCategory, ...] = (
    OutcomeCategory.NOT_IMPLEMENTED,
    OutcomeCategory.SKIPPED,
    OutcomeCategory.ERROR,
    OutcomeCategory.FAILURE,
)

# ``_Foo__message`` -> ``message``
_MANGLED_PREFIX: re.Pattern[str] = re.compile(r"^_[A-Za-z0-9]\w*?__(?=\w)")


def strip_mangling(key: str) -> str:
    """Strip a private name-mangling prefix from an attribute name."""
    return _MANGLED_PREFIX.sub("", key, count=1)


def normalize_fields(fields: dict[str, Any]) -> dict[str, Any]:
    """Return *fields* with name-mangling prefixes removed from every key.

    When a mangled and an unmangled key collide, the later key in
    iteration order wins.
    """
    return {strip_mangling(key): value for key, value in fields.items()}


def build_synthetic_error(fields: dict[str, Any]) -> SyntheticError:
    """Build a ``SyntheticError`` from the raw fields of an unresolvable exception.

    Args:
        fields: Instance state of the original exception, including the
            ``INCOMPLETE_CLASS_NAME_KEY`` entry. Keys may be name-mangled.

    Returns:
        An error whose message is ``"<class name>: <message>"``.
    """
    normalized = normalize_fields(fields)
    class_name = normalized.get(INCOMPLETE_CLASS_NAME_KEY, "UnknownError")
    message = normalized.get("message", "")
    return SyntheticError(
        f"{class_name}: {message}",
        normalized.get("code", 0),
        normalized.get("file"),
        normalized.get("line"),
        normalized.get("trace") or [],
    )


def resolve_exception(entry: TestFailure) -> BaseException:
    """Return the exception to report for *entry*.

    Real exception instances pass through unchanged. Placeholders for
    classes missing from the parent are rebuilt as ``SyntheticError``.
    """
    exception = entry.thrown_exception
    if isinstance(exception, IncompleteObject):
        fields = exception.raw_fields()
        if "message" not in normalize_fields(fields) and exception.args:
            fields["message"] = str(exception.args[0])
        logger.debug("Rebuilding %s from the child as a SyntheticError", exception.class_name)
        return build_synthetic_error(fields)
    if isinstance(exception, BaseException):
        return exception
    return SyntheticError(f"{type(exception).__name__}: {exception!r}")


def classify_outcome(outcomes: OutcomeSet) -> ClassifiedOutcome | None:
    """Pick the outcome to report for a child run.

    Categories are consulted in ``CATEGORY_PRIORITY`` order and the first
    entry of the first non-empty category is used.

    Args:
        outcomes: The child's classified results.

    Returns:
        The selected outcome, or ``None`` when the run passed cleanly.
    """
    for category in CATEGORY_PRIORITY:
        entries = outcomes.entries(category)
        if entries:
            if len(entries) > 1:
                logger.debug("Reporting the first of %d %s entries", len(entries), category)
            return ClassifiedOutcome(category=category, exception=resolve_exception(entries[0]))
    return None
