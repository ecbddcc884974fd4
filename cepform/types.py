"""Core type definitions for the cepform engine.

This module defines the fundamental types used throughout the engine:
- EventType: Event types emitted on the form's event stream
- FieldErrorCode: Validation error codes for individual fields
- ResolverState: States of a dependent-field resolver
- LookupOutcome / SubmitOutcome: Results of asynchronous operations
- FailureKind: Categories of remote submit failures
- Field, LookupRequest, FormView: small immutable value types

These types form the contract between the engine and its collaborators
(rendering layer, persistence and lookup services).
"""

from dataclasses import dataclass, field
from datetime import date
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional, Union

FieldValue = Union[str, date, None]
"""Value held by a single form field."""

FormSnapshot = Mapping[str, FieldValue]
"""Read-only ordered mapping of field name to value."""

ErrorSnapshot = Dict[str, str]
"""Mapping of field name to error message. A missing key means valid."""


class EventType(str, Enum):
    """Event types for the form event stream."""
    FIELD_UPDATED = "field.updated"
    FORM_RESET = "form.reset"
    LOOKUP_REQUESTED = "lookup.requested"
    LOOKUP_RESOLVED = "lookup.resolved"
    LOOKUP_DISCARDED = "lookup.discarded"
    LOOKUP_FAILED = "lookup.failed"
    VALIDATION_PASSED = "validation.passed"
    VALIDATION_FAILED = "validation.failed"
    SUBMISSION_SAVED = "submission.saved"
    SUBMISSION_FAILED = "submission.failed"
    NOTIFICATION = "notification"


class FieldErrorCode(str, Enum):
    """Validation error codes for individual field failures."""
    REQUIRED = "required"
    INVALID_FORMAT = "invalid_format"
    INVALID_VALUE = "invalid_value"
    CUSTOM = "custom"


class ResolverState(str, Enum):
    """States of a DependentFieldResolver.

    PENDING means a live lookup request is outstanding; superseding a pending
    request re-enters PENDING with a new request id.
    """
    IDLE = "idle"
    PENDING = "pending"


class LookupOutcome(str, Enum):
    """How a single lookup request ended."""
    RESOLVED = "resolved"
    DISCARDED = "discarded"
    FAILED = "failed"


class SubmitOutcome(str, Enum):
    """How a single submit attempt ended."""
    SKIPPED = "skipped"
    INVALID = "invalid"
    SAVED = "saved"
    FAILED = "failed"


class FailureKind(str, Enum):
    """Categories of persistence failures surfaced to the user."""
    CONFLICT = "conflict"
    DETAILED = "detailed"
    UNKNOWN = "unknown"


class NotificationLevel(str, Enum):
    SUCCESS = "success"
    ERROR = "error"


@dataclass(frozen=True)
class Field:
    """A single form field as seen by the rendering layer.

    Attributes:
        name: Field identity, unique within a form
        value: Current value
        error: Current error message, or None when the field is valid

    Examples:
        >>> Field(name="cep", value="01310-100").to_dict()
        {'name': 'cep', 'value': '01310-100', 'error': None}
    """
    name: str
    value: FieldValue = None
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dict for serialization."""
        value = self.value.isoformat() if isinstance(self.value, date) else self.value
        return {"name": self.name, "value": value, "error": self.error}


@dataclass(frozen=True)
class LookupRequest:
    """One issued lookup for a trigger field.

    Attributes:
        trigger_value: Unmasked trigger value sent to the lookup collaborator
        request_id: Monotonic id; only the live id may write to the form
    """
    trigger_value: str
    request_id: int


@dataclass(frozen=True)
class FormView:
    """Read model consumed by the rendering layer.

    Attributes:
        data: Current form snapshot
        errors: Current error snapshot
        busy: True while a dependent-field lookup is outstanding
        disabled_identity_field: True once an existing entity was loaded
        submitting: True while a save is in flight
        disabled_fields: Fields the rendering layer should disable
    """
    data: FormSnapshot
    errors: ErrorSnapshot
    busy: bool = False
    disabled_identity_field: bool = False
    submitting: bool = False
    disabled_fields: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dict for serialization."""
        return {
            "data": dict(self.data),
            "errors": dict(self.errors),
            "busy": self.busy,
            "disabledIdentityField": self.disabled_identity_field,
            "submitting": self.submitting,
            "disabledFields": list(self.disabled_fields),
        }


__all__ = [
    "FieldValue",
    "FormSnapshot",
    "ErrorSnapshot",
    "EventType",
    "FieldErrorCode",
    "ResolverState",
    "LookupOutcome",
    "SubmitOutcome",
    "FailureKind",
    "NotificationLevel",
    "Field",
    "LookupRequest",
    "FormView",
]
