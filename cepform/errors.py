"""Exception types and error records for the cepform engine.

Two families live here:

- Field-level records (FieldError) produced by the validation layer and the
  entity shape validator. These are data, rendered inline next to a field.
- Exceptions rooted at FormError. Persistence failures are classified into
  ConflictError, DetailedRemoteError and UnknownRemoteError so the controller
  can map each to a distinct user-visible notification. Lookup failures are
  raised as LookupFailure.

None of these are fatal: every failure is recoverable within the same
editing session.
"""

from dataclasses import dataclass
from http import HTTPStatus
from typing import Any, Dict, List, Mapping, Optional

from cepform.types import FailureKind, FieldErrorCode, ResolverState


@dataclass(frozen=True)
class FieldError:
    """Per-field validation error details.

    Attributes:
        path: Field name (dot notation for nested entity fields, e.g. "address.cep")
        code: Specific validation error code
        message: Human-readable error description
        received: Optional - the offending value

    Examples:
        >>> err = FieldError(path="cpf", code=FieldErrorCode.REQUIRED, message="Insira um CPF")
        >>> err.to_dict()
        {'path': 'cpf', 'code': 'required', 'message': 'Insira um CPF'}
    """
    path: str
    code: FieldErrorCode
    message: str
    received: Optional[Any] = None

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dict for serialization."""
        result: Dict[str, Any] = {
            "path": self.path,
            "code": self.code.value if isinstance(self.code, FieldErrorCode) else self.code,
            "message": self.message,
        }
        if self.received is not None:
            result["received"] = self.received
        return result

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "FieldError":
        """Create FieldError from dict."""
        code = data["code"]
        if isinstance(code, str):
            code = FieldErrorCode(code)
        return cls(
            path=data["path"],
            code=code,
            message=data["message"],
            received=data.get("received"),
        )


class FormError(Exception):
    """Base class for every error raised by the engine."""


class UnknownFieldError(FormError, KeyError):
    """Raised when an operation names a field the form does not declare."""

    def __init__(self, field: str):
        self.field = field
        super().__init__(f"Unknown field '{field}'")

    def __str__(self) -> str:
        return self.args[0]


class IdentityFieldLockedError(FormError):
    """Raised when writing to the identity field after an entity was loaded."""

    def __init__(self, field: str):
        self.field = field
        super().__init__(f"Field '{field}' is locked: the entity already exists")


class InvalidResolverTransitionError(FormError):
    """Raised when a resolver is driven into a state it cannot reach.

    Attributes:
        current_state: The state before the attempted transition
        target_state: The state that was attempted
    """

    def __init__(self, current_state: ResolverState, target_state: ResolverState):
        self.current_state = current_state
        self.target_state = target_state
        super().__init__(
            f"Invalid resolver transition: cannot go from "
            f"'{current_state.value}' to '{target_state.value}'"
        )


class EntityShapeError(FormError):
    """Raised when a loaded or outbound entity does not match the entity schema.

    Attributes:
        errors: Field-level details, one per schema violation
    """

    def __init__(self, errors: List[FieldError]):
        self.errors = errors
        paths = ", ".join(e.path or "<root>" for e in errors)
        super().__init__(f"Entity does not match the expected shape: {paths}")


class LookupFailure(FormError):
    """Raised when the live lookup for a trigger field fails.

    The resolver has already cleared its busy flag and left the dependent
    fields untouched when this is raised. The lookup's exception is chained
    as __cause__.
    """

    def __init__(self, trigger_field: str, trigger_value: str, request_id: int):
        self.trigger_field = trigger_field
        self.trigger_value = trigger_value
        self.request_id = request_id
        super().__init__(
            f"Lookup for '{trigger_field}'={trigger_value!r} "
            f"(request {request_id}) failed"
        )


class RemoteError(FormError):
    """Failure reported by a remote collaborator.

    Collaborators raise this with an HTTP-style status and the decoded
    response body, which may carry ``{"message": ...}`` or
    ``{"details": [...]}``.
    """

    def __init__(self, status: Optional[int], data: Optional[Mapping[str, Any]] = None):
        self.status = status
        self.data: Dict[str, Any] = dict(data or {})
        super().__init__(f"Remote call failed with status {status}")


class SubmitError(FormError):
    """A classified persistence failure.

    Attributes:
        kind: Failure category
        messages: User-visible messages, one notification each
        status: HTTP-style status, when the failure came from a RemoteError
    """

    kind: FailureKind = FailureKind.UNKNOWN

    def __init__(self, messages: List[str], status: Optional[int] = None):
        self.messages = list(messages)
        self.status = status
        super().__init__("; ".join(self.messages))

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dict for serialization."""
        result: Dict[str, Any] = {
            "kind": self.kind.value,
            "messages": list(self.messages),
        }
        if self.status is not None:
            result["status"] = self.status
        return result

    @classmethod
    def from_exception(cls, exc: BaseException, fallback_message: str) -> "SubmitError":
        """Classify a failure raised by the persistence collaborator.

        Args:
            exc: Whatever the collaborator raised
            fallback_message: Message used when the failure carries none

        Returns:
            ConflictError for a duplicate identity key, DetailedRemoteError when
            the body lists details, UnknownRemoteError otherwise.

        Examples:
            >>> err = SubmitError.from_exception(RemoteError(409, {"message": "CPF em uso"}), "erro")
            >>> type(err).__name__, err.messages
            ('ConflictError', ['CPF em uso'])
        """
        if not isinstance(exc, RemoteError):
            return UnknownRemoteError([fallback_message])

        if exc.status == HTTPStatus.CONFLICT:
            message = exc.data.get("message") or fallback_message
            return ConflictError([message], status=exc.status)

        details = exc.data.get("details")
        if details:
            return DetailedRemoteError([str(d) for d in details], status=exc.status)

        return UnknownRemoteError([fallback_message], status=exc.status)


class ConflictError(SubmitError):
    """The identity key already belongs to another entity."""

    kind = FailureKind.CONFLICT


class DetailedRemoteError(SubmitError):
    """The backend rejected the entity with a list of messages."""

    kind = FailureKind.DETAILED


class UnknownRemoteError(SubmitError):
    """Any other persistence failure."""

    kind = FailureKind.UNKNOWN


__all__ = [
    "FieldError",
    "FormError",
    "UnknownFieldError",
    "IdentityFieldLockedError",
    "InvalidResolverTransitionError",
    "EntityShapeError",
    "LookupFailure",
    "RemoteError",
    "SubmitError",
    "ConflictError",
    "DetailedRemoteError",
    "UnknownRemoteError",
]
