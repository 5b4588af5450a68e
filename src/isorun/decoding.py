"""Payload codec: the pickled result a child writes to its output stream.

The child writes an optional marker line followed by a pickled dict with the
keys ``output``, ``test_result``, ``num_assertions`` and ``result``.
``decode_payload`` turns captured child output into either a validated
``ChildPayload`` or a ``DecodeFailure``; it never raises, whatever the bytes.

Classes the parent cannot import (typically exception types defined in the
child's ``__main__`` or in modules missing from the parent's path) are
replaced by ``IncompleteObject`` subclasses that keep the original class name
and the raw instance state, so a single unknown exception does not make the
whole payload undecodable.
"""

from __future__ import annotations

import functools
import io
import logging
import pickle  # nosec B403
from typing import Any, Literal
import warnings

from pydantic import BaseModel, ConfigDict, ValidationError

from isorun.models import PAYLOAD_MARKER, ChildPayload, OutcomeSet, RawOutput

logger = logging.getLogger(__name__)

INCOMPLETE_CLASS_NAME_KEY = "_incomplete_class_name"
"""Key under which ``IncompleteObject.raw_fields`` reports the original class name."""


# ---------------------------------------------------------------------------
# Unresolvable classes
# ---------------------------------------------------------------------------


class IncompleteObject:
    """An instance of a class that could not be located during unpickling.

    Accepts whatever constructor arguments and state the pickle stream
    supplies. Subclasses are created per missing class by
    ``incomplete_class``.

    Attributes:
        class_name: Qualified name of the missing class.
        module_name: Module the missing class was expected in.
    """

    class_name: str = "IncompleteObject"
    module_name: str = ""

    def __init__(self, *args: Any, **kwargs: Any) -> None:
        self._incomplete_args = args
        self._incomplete_kwargs = kwargs

    def __setstate__(self, state: Any) -> None:
        slot_state: dict[str, Any] | None = None
        if isinstance(state, tuple) and len(state) == 2:
            state, slot_state = state
        if isinstance(state, dict):
            self.__dict__.update(state)
        if isinstance(slot_state, dict):
            self.__dict__.update(slot_state)

    def raw_fields(self) -> dict[str, Any]:
        """Return the instance state with the original class name added.

        Keys are reported exactly as pickled, including private
        name-mangling prefixes such as ``_Foo__message``.
        """
        fields = {
            key: value
            for key, value in self.__dict__.items()
            if key not in ("_incomplete_args", "_incomplete_kwargs")
        }
        fields[INCOMPLETE_CLASS_NAME_KEY] = self.class_name
        return fields

    @property
    def args(self) -> tuple[Any, ...]:
        """Positional arguments the pickle stream passed to the constructor."""
        return self.__dict__.get("_incomplete_args", ())

    def __repr__(self) -> str:
        return f"<IncompleteObject {self.module_name}.{self.class_name}>"


@functools.cache
def incomplete_class(module: str, name: str) -> type[IncompleteObject]:
    """Return the placeholder class standing in for ``module.name``.

    Repeated lookups of the same missing class yield the same placeholder.
    """
    return type(
        name.rpartition(".")[2] or "IncompleteObject",
        (IncompleteObject,),
        {"class_name": name, "module_name": module, "__module__": __name__},
    )


class _PayloadUnpickler(pickle.Unpickler):
    """Unpickler that only resolves classes.

    Classes it cannot find become placeholders. Any other global (a function
    such as ``builtins.exit`` or ``os.system``) is refused, so unpickling
    never calls anything but a constructor.
    """

    def find_class(self, module: str, name: str) -> Any:
        try:
            found = super().find_class(module, name)
        except (ImportError, AttributeError):
            logger.debug("Class %s.%s is not available; using a placeholder", module, name)
            return incomplete_class(module, name)
        if not isinstance(found, type):
            msg = f"Refusing to load {module}.{name}: not a class"
            raise pickle.UnpicklingError(msg)
        return found


# ---------------------------------------------------------------------------
# Decode result types
# ---------------------------------------------------------------------------


class DecodeSuccess(BaseModel):
    """A child payload that unpickled and validated."""

    model_config = ConfigDict(frozen=True)

    payload: ChildPayload


class DecodeFailure(BaseModel):
    """Child output that could not be turned into a payload.

    Attributes:
        message: Trimmed stderr text, or trimmed stdout text for a bad payload.
        source: Which stream the failure was derived from.
        cause: The exception raised while decoding, if any.
    """

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    message: str
    source: Literal["stderr", "stdout"]
    cause: BaseException | None = None


DecodeResult = DecodeSuccess | DecodeFailure


# ---------------------------------------------------------------------------
# Encode / decode
# ---------------------------------------------------------------------------


def strip_marker(data: bytes) -> bytes:
    """Remove a single leading ``PAYLOAD_MARKER`` line from *data*, if present."""
    if data.startswith(PAYLOAD_MARKER):
        return data[len(PAYLOAD_MARKER) :]
    return data


def encode_payload(
    *,
    output: str,
    test_result: Any,
    num_assertions: int,
    result: OutcomeSet,
    marker: bool = False,
) -> bytes:
    """Serialize a child payload in the wire format ``decode_payload`` reads.

    Args:
        output: Captured print output of the test.
        test_result: Opaque state for the parent test entity.
        num_assertions: Number of assertions performed.
        result: The classified outcomes of the run.
        marker: Prefix the payload with ``PAYLOAD_MARKER``.

    Returns:
        The bytes to write to stdout.
    """
    body = pickle.dumps(
        {
            "output": output,
            "test_result": test_result,
            "num_assertions": num_assertions,
            "result": result,
        }
    )
    return PAYLOAD_MARKER + body if marker else body


def unpickle(data: bytes) -> Any:
    """Unpickle *data*, substituting placeholders for missing classes.

    Warnings raised during unpickling are escalated to exceptions.
    """
    with warnings.catch_warnings():
        warnings.simplefilter("error")
        return _PayloadUnpickler(io.BytesIO(data)).load()  # nosec B301


def decode_payload(raw: RawOutput) -> DecodeResult:
    """Decode captured child output into a payload.

    Non-empty stderr short-circuits decoding. Otherwise the optional marker
    line is stripped and the remainder unpickled and validated against
    ``ChildPayload``. A ``None`` or ``False`` result counts as a failure.

    Args:
        raw: The child's captured streams.

    Returns:
        ``DecodeSuccess`` with the payload, or ``DecodeFailure`` describing
        why no payload is available.
    """
    if raw.stderr:
        logger.warning("Child wrote %d bytes to stderr", len(raw.stderr))
        return DecodeFailure(message=raw.stderr_text.strip(), source="stderr")

    data = strip_marker(raw.stdout)
    message = data.decode("utf-8", errors="replace").strip()

    try:
        obj = unpickle(data)
    except Exception as exc:
        logger.warning("Undecodable child payload: %s", exc)
        return DecodeFailure(message=message, source="stdout", cause=exc)

    if obj is None or obj is False:
        logger.warning("Child payload decoded to %r", obj)
        return DecodeFailure(message=message, source="stdout")

    try:
        payload = ChildPayload.model_validate(obj)
    except ValidationError as exc:
        logger.warning("Malformed child payload: %d validation errors", exc.error_count())
        return DecodeFailure(message=message, source="stdout", cause=exc)

    return DecodeSuccess(payload=payload)
