"""FormController: the composition root of a form editing session.

The controller wires FormState, a ValidationRuleSet and any number of
DependentFieldResolvers into the two entry points the rendering layer calls:
``handle_change`` for every edit and ``handle_submit`` for the save action.
It also receives ``on_entity_loaded`` when an existing record becomes
available, and exposes the read model through ``view()``.

Usage:
    >>> import asyncio
    >>> from cepform.state import FormState
    >>> from cepform.validation import ValidationRuleSet
    >>> class Store:
    ...     async def save(self, entity):
    ...         self.saved = entity
    >>> store = Store()
    >>> controller = FormController(
    ...     FormState({"name": ""}),
    ...     ValidationRuleSet().require("name", "Digite seu nome"),
    ...     store,
    ... )
    >>> controller.handle_change("name", "Ana")
    >>> asyncio.run(controller.handle_submit())
    <SubmitOutcome.SAVED: 'saved'>
    >>> store.saved
    {'name': 'Ana'}
"""

import asyncio
import logging
import uuid
from dataclasses import dataclass
from functools import partial
from typing import Any, Callable, Dict, List, Mapping, Optional, Set

from typing_extensions import Protocol

from cepform.errors import LookupFailure, SubmitError
from cepform.events import EventEmitter, FormEvent
from cepform.resolver import DependentFieldResolver
from cepform.schema import EntitySchemaValidator
from cepform.state import FormState
from cepform.types import (
    EventType,
    FieldValue,
    FormSnapshot,
    FormView,
    LookupOutcome,
    LookupRequest,
    NotificationLevel,
    SubmitOutcome,
)
from cepform.validation import ValidationRuleSet

logger = logging.getLogger(__name__)

Entity = Dict[str, Any]
Transform = Callable[[Any], FieldValue]


class Persistence(Protocol):
    """Persistence collaborator.

    ``save`` raises cepform.errors.RemoteError (status + decoded body) when the
    backend rejects the entity.
    """

    async def save(self, entity: Entity) -> None:
        ...


@dataclass
class Messages:
    """User-visible notification texts."""
    saved: str = "Salvo com sucesso!"
    save_failed: str = "Não foi possível"
    lookup_failed: str = "Não foi possível buscar o endereço"


@dataclass
class SessionContext:
    """Session-scoped data shared between the components of one session.

    Passed to the controller explicitly. ``version`` increases every time a
    saved entity is published, so other components can tell a fresh save
    from a reload of the same record.
    """
    entity: Optional[Entity] = None
    version: int = 0

    def publish(self, entity: Entity) -> None:
        self.entity = entity
        self.version += 1


class FormController:
    """Orchestrates edits, lookups and submits for one editing session.

    Attributes:
        form_id: Identifier of this session, stamped on every event
        messages: Notification texts
        last_lookup_error: Most recent LookupFailure, if any
        last_submit_error: Most recent classified submit failure, if any
    """

    def __init__(
        self,
        state: FormState,
        rules: ValidationRuleSet,
        persistence: Persistence,
        resolvers: Optional[List[DependentFieldResolver]] = None,
        transforms: Optional[Mapping[str, Transform]] = None,
        build_payload: Optional[Callable[[FormSnapshot], Entity]] = None,
        flatten_entity: Optional[Callable[[Entity], Mapping[str, FieldValue]]] = None,
        entity_validator: Optional[EntitySchemaValidator] = None,
        context: Optional[SessionContext] = None,
        emitter: Optional[EventEmitter] = None,
        messages: Optional[Messages] = None,
        form_id: Optional[str] = None,
    ) -> None:
        self._state = state
        self._rules = rules
        self._persistence = persistence
        self._resolvers: Dict[str, DependentFieldResolver] = {
            r.trigger_field: r for r in resolvers or []
        }
        self._transforms: Dict[str, Transform] = dict(transforms or {})
        self._build_payload = build_payload or dict
        self._flatten_entity = flatten_entity or dict
        self._entity_validator = entity_validator
        self.context = context
        self.emitter = emitter or EventEmitter()
        self.messages = messages or Messages()
        self.form_id = form_id or f"form_{uuid.uuid4().hex[:16]}"

        self._tasks: Set["asyncio.Task[LookupOutcome]"] = set()
        self._submitting = False
        self._loaded_entity: Optional[Entity] = None
        self.last_lookup_error: Optional[LookupFailure] = None
        self.last_submit_error: Optional[SubmitError] = None

        if context is not None and context.entity is not None:
            self.on_entity_loaded(context.entity)

    @property
    def state(self) -> FormState:
        return self._state

    @property
    def busy(self) -> bool:
        """True while any dependent-field lookup is outstanding."""
        return any(r.busy for r in self._resolvers.values())

    @property
    def submitting(self) -> bool:
        return self._submitting

    @property
    def can_submit(self) -> bool:
        return not self.busy and not self._submitting

    def view(self) -> FormView:
        """Current read model for the rendering layer."""
        disabled: List[str] = []
        if self._state.locked and self._state.identity_field is not None:
            disabled.append(self._state.identity_field)
        for resolver in self._resolvers.values():
            if resolver.busy:
                disabled.extend(resolver.dependent_fields)
        return FormView(
            data=self._state.snapshot,
            errors=self._state.errors,
            busy=self.busy,
            disabled_identity_field=self._state.locked,
            submitting=self._submitting,
            disabled_fields=disabled,
        )

    def handle_change(self, field: str, value: Any) -> Optional["asyncio.Task[LookupOutcome]"]:
        """Apply one user edit.

        The value goes through the field's transform (mask, date format) and is
        written immediately. When ``field`` is a trigger field and the edit
        issues a lookup, the lookup runs as a task on the running event loop
        and that task is returned; the edit itself never waits for it.

        Edits to the locked identity field are ignored.

        Raises:
            RuntimeError: If the edit issues a lookup outside a running event
                loop. The value is kept and the request is withdrawn.
        """
        if self._state.is_locked(field):
            logger.debug("Ignoring edit to locked field '%s'", field)
            return None

        transform = self._transforms.get(field)
        if transform is not None:
            value = transform(value)
        self._state.set(field, value)
        self._emit(EventType.FIELD_UPDATED, {"field": field})

        resolver = self._resolvers.get(field)
        if resolver is None:
            return None
        request = resolver.notify(value)
        if request is None:
            return None

        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            resolver.withdraw(request)
            raise
        task = loop.create_task(self._resolve(resolver, request))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    def change_handler(self, field: str) -> Callable[[Any], Optional["asyncio.Task[LookupOutcome]"]]:
        """Curried ``handle_change`` bound to one field."""
        return partial(self.handle_change, field)

    async def _resolve(
        self, resolver: DependentFieldResolver, request: LookupRequest
    ) -> LookupOutcome:
        try:
            return await resolver.resolve(request)
        except LookupFailure as exc:
            self.last_lookup_error = exc
            logger.warning("%s: %s", exc, exc.__cause__)
            self._notify(NotificationLevel.ERROR, self.messages.lookup_failed)
            return LookupOutcome.FAILED

    async def drain(self) -> None:
        """Wait until every lookup scheduled by ``handle_change`` has finished."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks))

    async def handle_submit(self) -> SubmitOutcome:
        """Validate and save the current snapshot.

        Returns SKIPPED without doing anything while a lookup is pending or a
        previous submit is still in flight.
        """
        if not self.can_submit:
            logger.debug(
                "Submit ignored (busy=%s, submitting=%s)", self.busy, self._submitting
            )
            return SubmitOutcome.SKIPPED

        self._submitting = True
        try:
            return await self._submit()
        finally:
            self._submitting = False

    async def _submit(self) -> SubmitOutcome:
        snapshot = self._state.snapshot
        result = self._rules.check(snapshot)
        self._state.set_errors(result.messages)
        if not result.is_valid:
            self._emit(EventType.VALIDATION_FAILED, result.to_dict())
            return SubmitOutcome.INVALID
        self._emit(EventType.VALIDATION_PASSED)

        payload = self._build_payload(snapshot)
        if self._entity_validator is not None:
            self._entity_validator.validate(payload)

        try:
            await self._persistence.save(payload)
        except Exception as exc:
            error = SubmitError.from_exception(exc, self.messages.save_failed)
            self.last_submit_error = error
            logger.warning("Save failed (%s): %s", error.kind.value, exc)
            self._emit(EventType.SUBMISSION_FAILED, error.to_dict())
            for message in error.messages:
                self._notify(NotificationLevel.ERROR, message)
            return SubmitOutcome.FAILED

        logger.info("Form %s saved", self.form_id)
        self.last_submit_error = None
        self._emit(EventType.SUBMISSION_SAVED)
        self._notify(NotificationLevel.SUCCESS, self.messages.saved)
        if self.context is not None:
            self.context.publish(payload)
        self.on_entity_loaded(payload)
        return SubmitOutcome.SAVED

    def on_entity_loaded(self, entity: Entity) -> bool:
        """Seed the form from an existing entity and lock the identity field.

        Delivering the same entity object again is a no-op.

        Returns:
            True if the form was reset, False for a repeated delivery

        Raises:
            EntityShapeError: If an entity validator is configured and the
                entity does not match it
        """
        if entity is self._loaded_entity:
            return False
        if self._entity_validator is not None:
            self._entity_validator.validate(entity)

        self._state.reset(self._flatten_entity(entity))
        for trigger_field, resolver in self._resolvers.items():
            resolver.rebase(self._state.value(trigger_field))
        self._loaded_entity = entity
        self._emit(EventType.FORM_RESET)
        logger.info("Form %s loaded an existing entity", self.form_id)
        return True

    def _notify(self, level: NotificationLevel, message: str) -> None:
        self.emitter.notify(self.form_id, level, message)

    def _emit(self, event_type: EventType, payload: Optional[Dict[str, Any]] = None) -> None:
        self.emitter.emit(FormEvent.create(event_type, self.form_id, payload))


__all__ = [
    "Entity",
    "Transform",
    "Persistence",
    "Messages",
    "SessionContext",
    "FormController",
]
