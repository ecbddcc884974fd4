"""Rule-based validation for form snapshots.

This module provides a ValidationRuleSet that validates a form snapshot
against a declarative list of per-field rules and produces structured,
human-readable results.

Every rule sees the full snapshot, so cross-field rules are expressed the same
way as single-field ones. Rules for a field run in registration order and the
first failing rule wins: a field carries at most one error. Register the
presence check first, then shape checks, then semantic checks.

Rules must be pure and synchronous. Asynchronous correctness belongs to the
dependent-field resolver, not to validation.
"""

import inspect
import logging
import re
from dataclasses import dataclass
from datetime import date, datetime
from typing import Any, Callable, Collection, Dict, List, Optional

from dateutil import parser as date_parser

from cepform.errors import FieldError
from cepform.masks import unmask
from cepform.types import ErrorSnapshot, FieldErrorCode, FieldValue, FormSnapshot

logger = logging.getLogger(__name__)

_ISO_DATE = re.compile(r"^\d{4}-\d{2}-\d{2}")
_EARLY_DEFAULT = datetime(1, 1, 1)
_LATE_DEFAULT = datetime(2, 2, 2)

Predicate = Callable[[FieldValue, FormSnapshot], bool]


@dataclass(frozen=True)
class ValidationRule:
    """One check for one field.

    Attributes:
        field: Field the error is reported against
        predicate: callable(value, snapshot) -> True when the value is valid
        message: Error message when the predicate fails
        code: Error code reported alongside the message
    """
    field: str
    predicate: Predicate
    message: str
    code: FieldErrorCode = FieldErrorCode.CUSTOM


@dataclass(frozen=True)
class ValidationResult:
    """Result of validating a snapshot against a rule set.

    Attributes:
        is_valid: Whether the snapshot passed all rules
        errors: One FieldError per failing field, in rule registration order
        missing_fields: Fields that failed a presence check
        invalid_fields: Fields that failed any other check

    Examples:
        >>> rules = ValidationRuleSet().require("name", "Digite seu nome")
        >>> result = rules.check({"name": ""})
        >>> result.is_valid
        False
        >>> result.messages
        {'name': 'Digite seu nome'}
    """
    is_valid: bool
    errors: List[FieldError]
    missing_fields: Optional[List[str]] = None
    invalid_fields: Optional[List[str]] = None

    @property
    def messages(self) -> ErrorSnapshot:
        """Error snapshot: field name -> message for each failing field."""
        return {e.path: e.message for e in self.errors}

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dict for serialization."""
        result: Dict[str, Any] = {
            "isValid": self.is_valid,
            "errors": [e.to_dict() for e in self.errors],
        }
        if self.missing_fields is not None:
            result["missingFields"] = self.missing_fields
        if self.invalid_fields is not None:
            result["invalidFields"] = self.invalid_fields
        return result


class ValidationRuleSet:
    """Ordered, declarative list of validation rules.

    Examples:
        >>> rules = ValidationRuleSet()
        >>> _ = rules.require("cpf", "Insira um CPF")
        >>> _ = rules.add("cpf", has_digits(11), "Insira um CPF válido", FieldErrorCode.INVALID_FORMAT)
        >>> rules.validate({"cpf": ""})
        {'cpf': 'Insira um CPF'}
        >>> rules.validate({"cpf": "123.456"})
        {'cpf': 'Insira um CPF válido'}
        >>> rules.validate({"cpf": "123.456.789-00"})
        {}
    """

    def __init__(self, rules: Optional[List[ValidationRule]] = None) -> None:
        self._rules: List[ValidationRule] = []
        for rule in rules or []:
            self._register(rule)

    def add(
        self,
        field: str,
        predicate: Predicate,
        message: str,
        code: FieldErrorCode = FieldErrorCode.CUSTOM,
    ) -> "ValidationRuleSet":
        """Register a rule. Returns self so registrations can be chained.

        Raises:
            TypeError: If the predicate is a coroutine function
        """
        self._register(ValidationRule(field=field, predicate=predicate, message=message, code=code))
        return self

    def require(self, field: str, message: str) -> "ValidationRuleSet":
        """Register a presence check for ``field``."""
        return self.add(field, is_present, message, FieldErrorCode.REQUIRED)

    def _register(self, rule: ValidationRule) -> None:
        if inspect.iscoroutinefunction(rule.predicate):
            raise TypeError(
                f"Rule for '{rule.field}' is asynchronous; validation rules must be synchronous"
            )
        self._rules.append(rule)

    @property
    def rules(self) -> List[ValidationRule]:
        return list(self._rules)

    @property
    def fields(self) -> List[str]:
        """Fields with at least one rule, in registration order."""
        return list(dict.fromkeys(rule.field for rule in self._rules))

    def check(self, snapshot: FormSnapshot) -> ValidationResult:
        """Run every rule against the snapshot.

        Args:
            snapshot: Full form snapshot

        Returns:
            ValidationResult with one error per failing field
        """
        errors: List[FieldError] = []
        missing_fields: List[str] = []
        invalid_fields: List[str] = []

        for field in self.fields:
            error = self._first_failure(field, snapshot)
            if error is None:
                continue
            errors.append(error)
            if error.code == FieldErrorCode.REQUIRED:
                missing_fields.append(field)
            else:
                invalid_fields.append(field)

        if errors:
            logger.debug("Validation failed for %s", [e.path for e in errors])

        return ValidationResult(
            is_valid=not errors,
            errors=errors,
            missing_fields=missing_fields,
            invalid_fields=invalid_fields,
        )

    def validate(self, snapshot: FormSnapshot) -> ErrorSnapshot:
        """Return the error snapshot for ``snapshot``. Empty means valid."""
        return self.check(snapshot).messages

    def validate_field(self, field: str, snapshot: FormSnapshot) -> Optional[str]:
        """Return the error message for a single field, or None when valid."""
        error = self._first_failure(field, snapshot)
        return error.message if error else None

    def _first_failure(self, field: str, snapshot: FormSnapshot) -> Optional[FieldError]:
        value = snapshot.get(field)
        for rule in self._rules:
            if rule.field != field:
                continue
            if not rule.predicate(value, snapshot):
                return FieldError(path=field, code=rule.code, message=rule.message, received=value)
        return None


def coerce_date(value: Any) -> Optional[date]:
    """Turn a date, datetime, ISO string or day-first date string into a date.

    Returns None for empty or unparseable values, and for strings that leave
    out the day, month or year.
    """
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    text = str(value)
    if _ISO_DATE.match(text):
        try:
            return date_parser.isoparse(text).date()
        except (ValueError, OverflowError):
            pass
    try:
        early = date_parser.parse(text, dayfirst=True, default=_EARLY_DEFAULT)
        late = date_parser.parse(text, dayfirst=True, default=_LATE_DEFAULT)
    except (ValueError, OverflowError):
        return None
    # A part missing from the text is filled from the default, so the two
    # parses only agree when day, month and year were all given.
    if early != late:
        return None
    return early.date()


def is_present(value: FieldValue, snapshot: FormSnapshot) -> bool:
    if value is None:
        return False
    if isinstance(value, str):
        return value.strip() != ""
    return True


def has_digits(count: int) -> Predicate:
    """Value holds exactly ``count`` digits once unmasked."""
    return has_digit_range(count, count)


def has_digit_range(minimum: int, maximum: int) -> Predicate:
    """Value holds between ``minimum`` and ``maximum`` digits once unmasked."""

    def predicate(value: FieldValue, snapshot: FormSnapshot) -> bool:
        return minimum <= len(unmask(value if isinstance(value, str) else None)) <= maximum

    return predicate


def one_of(values: Collection[Any]) -> Predicate:
    allowed = frozenset(values)

    def predicate(value: FieldValue, snapshot: FormSnapshot) -> bool:
        return value in allowed

    return predicate


def is_date(value: FieldValue, snapshot: FormSnapshot) -> bool:
    return coerce_date(value) is not None


def is_not_future_date(today: Callable[[], date] = date.today) -> Predicate:
    """Value is a date no later than ``today()``."""

    def predicate(value: FieldValue, snapshot: FormSnapshot) -> bool:
        parsed = coerce_date(value)
        return parsed is not None and parsed <= today()

    return predicate


def matches_field(other: str) -> Predicate:
    """Cross-field rule: value equals the value of ``other``."""

    def predicate(value: FieldValue, snapshot: FormSnapshot) -> bool:
        return value == snapshot.get(other)

    return predicate


__all__ = [
    "Predicate",
    "ValidationRule",
    "ValidationResult",
    "ValidationRuleSet",
    "coerce_date",
    "is_present",
    "has_digits",
    "has_digit_range",
    "one_of",
    "is_date",
    "is_not_future_date",
    "matches_field",
]
