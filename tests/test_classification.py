"""Tests for outcome classification and SyntheticError reconstruction."""

from __future__ import annotations

from typing import Any
import unittest

from hypothesis import given, settings, strategies as st
from isorun.classification import (
    CATEGORY_PRIORITY,
    build_synthetic_error,
    classify_outcome,
    normalize_fields,
    resolve_exception,
    strip_mangling,
)
from isorun.decoding import INCOMPLETE_CLASS_NAME_KEY, incomplete_class
from isorun.errors import SyntheticError
from isorun.models import OutcomeCategory, OutcomeSet
import pytest

from tests.conftest import make_entry, make_outcome_set

_FIELDS = {
    "not_implemented": OutcomeCategory.NOT_IMPLEMENTED,
    "skipped": OutcomeCategory.SKIPPED,
    "errors": OutcomeCategory.ERROR,
    "failures": OutcomeCategory.FAILURE,
}


def _placeholder(name: str, fields: dict[str, Any], args: tuple[Any, ...] = ()) -> Any:
    cls = incomplete_class("vanished.module", name)
    obj = cls(*args)
    obj.__setstate__(fields)
    return obj


# ===========================================================================
# Name-mangling normalization
# ===========================================================================


@pytest.mark.unit
class TestStripMangling:
    """Private name-mangling prefixes are removed from field keys."""

    @pytest.mark.parametrize(
        ("key", "expected"),
        [
            ("_Foo__message", "message"),
            ("_My_Error__code", "code"),
            ("message", "message"),
            ("_private", "_private"),
            ("__dunder__", "__dunder__"),
            (INCOMPLETE_CLASS_NAME_KEY, INCOMPLETE_CLASS_NAME_KEY),
        ],
    )
    def test_strip(self, key: str, expected: str) -> None:
        """Only ``_Class__attr`` style keys are rewritten."""
        assert strip_mangling(key) == expected

    def test_normalize_fields(self) -> None:
        """Every key of a mapping is normalized."""
        assert normalize_fields({"_Foo__a": 1, "b": 2}) == {"a": 1, "b": 2}


# ===========================================================================
# SyntheticError reconstruction
# ===========================================================================


@pytest.mark.unit
class TestBuildSyntheticError:
    """SyntheticError carries the original class name and fields."""

    def test_message_format_and_fields(self) -> None:
        """The message is ``<class>: <message>`` and the rest is copied."""
        error = build_synthetic_error(
            {
                INCOMPLETE_CLASS_NAME_KEY: "Foo",
                "message": "bad",
                "code": 0,
                "file": "f",
                "line": 10,
                "trace": [],
            }
        )
        assert isinstance(error, SyntheticError)
        assert str(error) == "Foo: bad"
        assert error.message == "Foo: bad"
        assert error.code == 0
        assert error.file == "f"
        assert error.line == 10
        assert error.trace == []

    def test_mangled_fields(self) -> None:
        """Mangled keys are read as their plain names."""
        error = build_synthetic_error(
            {INCOMPLETE_CLASS_NAME_KEY: "Foo", "_Foo__message": "bad", "_Foo__line": 3}
        )
        assert str(error) == "Foo: bad"
        assert error.line == 3

    def test_missing_fields_default(self) -> None:
        """Absent fields fall back to neutral defaults."""
        error = build_synthetic_error({INCOMPLETE_CLASS_NAME_KEY: "Foo"})
        assert str(error) == "Foo: "
        assert error.code == 0
        assert error.file is None
        assert error.line is None
        assert error.trace == []


@pytest.mark.unit
class TestResolveException:
    """Known exceptions pass through; placeholders are repaired."""

    def test_known_exception_passthrough(self) -> None:
        """Real exceptions are returned as-is."""
        exc = ValueError("x")
        assert resolve_exception(make_entry(exc)) is exc

    def test_placeholder_repaired(self) -> None:
        """An unresolvable exception becomes a SyntheticError."""
        obj = _placeholder(
            "Foo", {"message": "bad", "code": 0, "file": "f", "line": 10, "trace": []}
        )
        error = resolve_exception(make_entry(obj))
        assert isinstance(error, SyntheticError)
        assert str(error) == "Foo: bad"
        assert (error.file, error.line) == ("f", 10)

    def test_placeholder_message_from_args(self) -> None:
        """Without a message field the first constructor argument is used."""
        obj = _placeholder("Foo", {"line": 4}, args=("from args",))
        error = resolve_exception(make_entry(obj))
        assert str(error) == "Foo: from args"

    def test_non_exception_value(self) -> None:
        """A non-exception value is wrapped rather than reported raw."""
        error = resolve_exception(make_entry("just a string"))
        assert isinstance(error, SyntheticError)
        assert "just a string" in str(error)


# ===========================================================================
# Priority classification
# ===========================================================================


@pytest.mark.unit
class TestClassifyOutcome:
    """Only the first entry of the highest-priority category is reported."""

    def test_clean_pass(self) -> None:
        """No entries means no outcome."""
        assert classify_outcome(OutcomeSet()) is None

    def test_priority_order(self) -> None:
        """The priority tuple is not-implemented, skipped, error, failure."""
        assert CATEGORY_PRIORITY == (
            OutcomeCategory.NOT_IMPLEMENTED,
            OutcomeCategory.SKIPPED,
            OutcomeCategory.ERROR,
            OutcomeCategory.FAILURE,
        )

    def test_first_entry_wins(self) -> None:
        """Later entries of the same category are dropped."""
        first, second = AssertionError("first"), AssertionError("second")
        outcome = classify_outcome(
            make_outcome_set(failures=[make_entry(first), make_entry(second)])
        )
        assert outcome is not None
        assert outcome.category is OutcomeCategory.FAILURE
        assert outcome.exception is first

    def test_skip_outranks_error_and_failure(self) -> None:
        """A skipped entry wins over errors and failures."""
        skip = unittest.SkipTest("later")
        outcome = classify_outcome(
            make_outcome_set(
                skipped=[make_entry(skip)],
                errors=[make_entry(RuntimeError("e"))],
                failures=[make_entry(AssertionError("f"))],
            )
        )
        assert outcome is not None
        assert outcome.category is OutcomeCategory.SKIPPED
        assert outcome.exception is skip

    @given(present=st.sets(st.sampled_from(sorted(_FIELDS)), min_size=1))
    @settings(max_examples=30)
    def test_highest_priority_category_selected(self, present: set[str]) -> None:
        """For any mix of categories the highest-priority one is reported."""
        exceptions = {field: RuntimeError(field) for field in present}
        outcomes = make_outcome_set(
            **{field: [make_entry(exc), make_entry(RuntimeError("extra"))] for field, exc in exceptions.items()}
        )
        expected = next(cat for cat in CATEGORY_PRIORITY if _field_for(cat) in present)

        outcome = classify_outcome(outcomes)

        assert outcome is not None
        assert outcome.category is expected
        assert outcome.exception is exceptions[_field_for(expected)]


def _field_for(category: OutcomeCategory) -> str:
    return next(field for field, cat in _FIELDS.items() if cat is category)
