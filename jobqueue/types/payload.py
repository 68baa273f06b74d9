"""
Payload contract and registry.

A payload is the unit of work stored in a job's handler column. Payloads
form a closed set of registered variants: the serialized form carries a
"kind" discriminator and the variant's validated fields, and loading goes
through the registry. Arbitrary objects and code strings cannot be stored.
"""

import logging
from collections.abc import Callable
from typing import Any, ClassVar, TypeVar

from pydantic import BaseModel, ConfigDict, ValidationError

from jobqueue.constants import PAYLOAD_DATA_KEY, PAYLOAD_KIND_KEY
from jobqueue.types.job import JobResult

logger = logging.getLogger(__name__)


class DeserializationError(ValueError):
    """Raised when a stored handler cannot be turned back into a payload."""


class Payload(BaseModel):
    """
    Base class for everything that can be enqueued.

    Subclasses declare their fields as pydantic fields, implement
    perform(), and register themselves with @register_payload("kind").
    perform() may return a failed JobResult to report a failure without
    raising; returning None (or a successful result) means success.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    kind: ClassVar[str] = ""

    async def perform(self) -> JobResult | None:
        raise NotImplementedError

    @property
    def display_name(self) -> str:
        return type(self).__name__


P = TypeVar("P", bound=type[Payload])

# Payload registry
_payload_types: dict[str, type[Payload]] = {}


def register_payload(kind: str) -> Callable[[P], P]:
    """
    Decorator to register a payload variant.

    Args:
        kind: The discriminator stored with serialized payloads.

    Raises:
        ValueError: If the kind is empty or already registered.

    Example:
        @register_payload("send_email")
        class SendEmail(Payload):
            to: str

            async def perform(self) -> None:
                ...
    """
    if not kind:
        raise ValueError("Payload kind must not be empty")

    def decorator(cls: P) -> P:
        if not (isinstance(cls, type) and issubclass(cls, Payload)):
            raise TypeError(f"{cls!r} is not a Payload subclass")
        existing = _payload_types.get(kind)
        if existing is not None and existing is not cls:
            raise ValueError(f"Payload kind already registered: {kind}")
        cls.kind = kind
        _payload_types[kind] = cls
        logger.debug(f"Registered payload kind: {kind}")
        return cls

    return decorator


def get_payload_type(kind: str) -> type[Payload] | None:
    """Get the payload class registered for a kind."""
    return _payload_types.get(kind)


def list_payload_kinds() -> list[str]:
    """List all registered payload kinds."""
    return list(_payload_types.keys())


def serialize_payload(payload: Any) -> dict[str, Any]:
    """
    Serialize a payload for storage.

    Raises:
        TypeError: If the value is not a registered Payload.
    """
    if not isinstance(payload, Payload):
        raise TypeError(
            f"Cannot enqueue {type(payload).__name__}: "
            "jobs must be Payload instances with a perform() method"
        )
    if _payload_types.get(payload.kind) is not type(payload):
        raise TypeError(f"Payload class {type(payload).__name__} is not registered")

    return {
        PAYLOAD_KIND_KEY: payload.kind,
        PAYLOAD_DATA_KEY: payload.model_dump(mode="json"),
    }


def build_payload(kind: str, data: dict[str, Any] | None = None) -> Payload:
    """
    Build a payload from its kind and field values.

    Raises:
        DeserializationError: If the kind is unknown or the data is invalid.
    """
    payload_type = get_payload_type(kind)
    if payload_type is None:
        raise DeserializationError(f"Unknown payload kind: {kind}")
    try:
        return payload_type.model_validate(data or {})
    except ValidationError as e:
        raise DeserializationError(f"Invalid data for payload kind {kind}: {e}") from e


def deserialize_payload(handler: dict[str, Any]) -> Payload:
    """
    Load a payload from its stored form.

    Raises:
        DeserializationError: If the handler is malformed, the kind is
            unknown, or the data does not validate.
    """
    if not isinstance(handler, dict) or PAYLOAD_KIND_KEY not in handler:
        raise DeserializationError(f"Malformed job handler: {handler!r}")
    return build_payload(handler[PAYLOAD_KIND_KEY], handler.get(PAYLOAD_DATA_KEY))
