"""Form state: field values, dirty flags, errors and the identity lock.

FormState owns the snapshot of one editing session. The snapshot is
copy-on-write: every mutation builds a new dict and swaps it in with a single
assignment, and callers only ever receive a read-only view. A snapshot handed
out earlier is therefore never changed by later mutations, which lets callers
diff successive snapshots, and a multi-field merge is never observable half
applied.

Usage:
    >>> state = FormState({"cpf": "", "cep": "", "street": ""}, identity_field="cpf")
    >>> before = state.snapshot
    >>> after = state.set("cep", "01310-100")
    >>> before["cep"], after["cep"]
    ('', '01310-100')
    >>> _ = state.reset({"cpf": "12345678900"})
    >>> state.is_locked("cpf")
    True
"""

import logging
from types import MappingProxyType
from typing import Dict, Iterable, List, Mapping, Optional, Set

from cepform.errors import IdentityFieldLockedError, UnknownFieldError
from cepform.types import ErrorSnapshot, Field, FieldValue, FormSnapshot

logger = logging.getLogger(__name__)


class FormState:
    """Values and errors for a fixed, ordered set of fields.

    The field set and its order come from ``initial_values`` and never change.

    Attributes:
        identity_field: Field that becomes read-only once an existing entity
            has been loaded through ``reset``
    """

    def __init__(
        self,
        initial_values: Mapping[str, FieldValue],
        identity_field: Optional[str] = None,
    ) -> None:
        self._initial: Dict[str, FieldValue] = dict(initial_values)
        if identity_field is not None and identity_field not in self._initial:
            raise UnknownFieldError(identity_field)
        self.identity_field = identity_field
        self._values: Dict[str, FieldValue] = dict(self._initial)
        self._errors: ErrorSnapshot = {}
        self._dirty: Set[str] = set()
        self._locked = False

    @property
    def snapshot(self) -> FormSnapshot:
        return MappingProxyType(self._values)

    @property
    def field_names(self) -> List[str]:
        return list(self._initial)

    def value(self, field: str) -> FieldValue:
        self._check_known([field])
        return self._values[field]

    def fields(self) -> List[Field]:
        """Fields in display order, with their current error."""
        return [
            Field(name=name, value=value, error=self._errors.get(name))
            for name, value in self._values.items()
        ]

    def initialize(self, values: Optional[Mapping[str, FieldValue]] = None) -> FormSnapshot:
        """Seed the snapshot. Nothing is dirty afterwards and nothing is locked."""
        values = values or {}
        self._check_known(values)
        self._initial = {name: values.get(name, default) for name, default in self._initial.items()}
        self._values = dict(self._initial)
        self._errors = {}
        self._dirty = set()
        self._locked = False
        return self.snapshot

    def set(self, field: str, value: FieldValue) -> FormSnapshot:
        """Replace one field's value and return the new snapshot.

        Raises:
            UnknownFieldError: If the form has no such field
            IdentityFieldLockedError: If ``field`` is the locked identity field
        """
        return self.merge({field: value})

    def merge(self, partial: Mapping[str, FieldValue]) -> FormSnapshot:
        """Apply several field updates at once.

        Every key is checked before anything is written: either all updates
        land or none do.

        Raises:
            UnknownFieldError: If any key is not a field of the form
            IdentityFieldLockedError: If any key is the locked identity field
        """
        self._check_known(partial)
        if self._locked and self.identity_field in partial:
            if partial[self.identity_field] != self._values[self.identity_field]:
                raise IdentityFieldLockedError(self.identity_field)

        changed = {k: v for k, v in partial.items() if self._values[k] != v}
        if changed:
            self._values = {**self._values, **changed}
            self._dirty |= set(changed)
        return self.snapshot

    def reset(self, values: Mapping[str, FieldValue], lock_identity: bool = True) -> FormSnapshot:
        """Replace the entire snapshot, e.g. with a previously saved entity.

        Fields missing from ``values`` fall back to their initial value. Dirty
        flags and errors are cleared. When ``lock_identity`` is set, the
        identity field becomes read-only for the rest of the session.
        """
        self._check_known(values)
        self._values = {name: values.get(name, default) for name, default in self._initial.items()}
        self._errors = {}
        self._dirty = set()
        if lock_identity and self.identity_field is not None:
            self._locked = True
        logger.debug("Form state reset (identity locked: %s)", self._locked)
        return self.snapshot

    @property
    def errors(self) -> ErrorSnapshot:
        return dict(self._errors)

    def error(self, field: str) -> Optional[str]:
        return self._errors.get(field)

    def set_errors(self, errors: Mapping[str, str]) -> None:
        """Replace the error snapshot wholesale."""
        self._check_known(errors)
        self._errors = dict(errors)

    @property
    def locked(self) -> bool:
        return self._locked

    def is_locked(self, field: str) -> bool:
        return self._locked and field == self.identity_field

    def is_dirty(self, field: str) -> bool:
        return field in self._dirty

    @property
    def dirty_fields(self) -> List[str]:
        return [name for name in self._values if name in self._dirty]

    def _check_known(self, fields: Iterable[str]) -> None:
        for name in fields:
            if name not in self._initial:
                raise UnknownFieldError(name)


__all__ = [
    "FormState",
]
