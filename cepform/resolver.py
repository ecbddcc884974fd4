"""Asynchronous resolution of dependent fields from a trigger field.

A DependentFieldResolver watches one trigger field (e.g. a CEP). When the
unmasked trigger value reaches completeness, it issues a lookup whose result
fills several dependent fields (street, city, ...) in one merge.

The user may keep typing while a lookup is outstanding. Each issued lookup gets
a fresh, monotonically increasing request id, and only the response for the
live request may write to the form. Superseded responses, whether they succeed
or fail, are discarded when they arrive. Nothing is cancelled: superseding is
purely a request-id comparison at response time.

State machine:

    IDLE --complete value--> PENDING --live response--> IDLE
                              PENDING --new complete value--> PENDING (superseded)
                              PENDING --value becomes incomplete--> IDLE
"""

import logging
from typing import Any, Awaitable, Callable, Dict, List, Mapping, Optional, Set
import uuid

from cepform.errors import InvalidResolverTransitionError, LookupFailure, UnknownFieldError
from cepform.events import EventEmitter, FormEvent
from cepform.masks import unmask
from cepform.state import FormState
from cepform.types import EventType, LookupOutcome, LookupRequest, ResolverState

logger = logging.getLogger(__name__)

Lookup = Callable[[str], Awaitable[Mapping[str, Any]]]
CompletenessPredicate = Callable[[str], bool]

VALID_TRANSITIONS: Dict[ResolverState, Set[ResolverState]] = {
    ResolverState.IDLE: {ResolverState.PENDING},
    ResolverState.PENDING: {ResolverState.PENDING, ResolverState.IDLE},
}


def digit_count(count: int) -> CompletenessPredicate:
    """Completeness predicate: the unmasked value has exactly ``count`` digits."""

    def is_complete(unmasked: str) -> bool:
        return len(unmasked) == count and unmasked.isdigit()

    return is_complete


class DependentFieldResolver:
    """Fills dependent fields from an async lookup keyed by a trigger field.

    Attributes:
        trigger_field: Field whose completed value starts a lookup
        mapping: Lookup response key -> dependent field name

    Examples:
        >>> import asyncio
        >>> state = FormState({"cep": "", "street": ""})
        >>> async def lookup(cep):
        ...     return {"logradouro": "Avenida Paulista"}
        >>> resolver = DependentFieldResolver(
        ...     state, "cep", lookup, {"logradouro": "street"}, digit_count(8)
        ... )
        >>> asyncio.run(resolver.on_change("01310-100"))
        <LookupOutcome.RESOLVED: 'resolved'>
        >>> state.value("street")
        'Avenida Paulista'
    """

    def __init__(
        self,
        state: FormState,
        trigger_field: str,
        lookup: Lookup,
        mapping: Mapping[str, str],
        is_complete: CompletenessPredicate,
        emitter: Optional[EventEmitter] = None,
        form_id: Optional[str] = None,
    ) -> None:
        for name in [trigger_field, *mapping.values()]:
            if name not in state.field_names:
                raise UnknownFieldError(name)
        self._form = state
        self.trigger_field = trigger_field
        self.mapping = dict(mapping)
        self._lookup = lookup
        self._is_complete = is_complete
        self._emitter = emitter
        self._form_id = form_id or f"form_{uuid.uuid4().hex[:16]}"

        self._state = ResolverState.IDLE
        self._latest_request_id = 0
        self._live_request_id: Optional[int] = None
        self._last_issued_value: Optional[str] = None

    @property
    def state(self) -> ResolverState:
        return self._state

    @property
    def busy(self) -> bool:
        """True while the live request is outstanding."""
        return self._live_request_id is not None

    @property
    def latest_request_id(self) -> int:
        return self._latest_request_id

    @property
    def dependent_fields(self) -> List[str]:
        return list(self.mapping.values())

    def notify(self, value: Optional[str]) -> Optional[LookupRequest]:
        """Observe a new trigger value.

        Returns the LookupRequest to resolve when the value just reached
        completeness (or changed to another complete value), otherwise None.
        """
        unmasked = unmask(value)

        if not self._is_complete(unmasked):
            self._last_issued_value = None
            if self.busy:
                logger.debug(
                    "Trigger '%s' became incomplete; dropping request %s",
                    self.trigger_field, self._live_request_id,
                )
                self._live_request_id = None
                self._transition(ResolverState.IDLE)
            return None

        if unmasked == self._last_issued_value:
            return None

        self._latest_request_id += 1
        request = LookupRequest(trigger_value=unmasked, request_id=self._latest_request_id)
        self._live_request_id = request.request_id
        self._last_issued_value = unmasked
        self._transition(ResolverState.PENDING)
        self._emit(EventType.LOOKUP_REQUESTED, request)
        logger.debug("Issued lookup %s for '%s'", request.request_id, self.trigger_field)
        return request

    async def resolve(self, request: LookupRequest) -> LookupOutcome:
        """Run the lookup for ``request`` and commit it if still live.

        A live reply that is not a mapping counts as a failed lookup.

        Raises:
            LookupFailure: If the live request fails. Busy is already cleared
                and the dependent fields are unchanged.
        """
        try:
            payload = await self._lookup(request.trigger_value)
        except Exception as exc:
            if not self._is_live(request):
                self._discard(request)
                return LookupOutcome.DISCARDED
            raise self._fail(request, exc) from exc

        if not self._is_live(request):
            self._discard(request)
            return LookupOutcome.DISCARDED

        try:
            if not isinstance(payload, Mapping):
                raise TypeError(f"expected a mapping, got {type(payload).__name__}")
            updates = {
                field: payload[key] for key, field in self.mapping.items() if key in payload
            }
            self._form.merge(updates)
        except Exception as exc:
            raise self._fail(request, exc) from exc

        self._settle()
        self._emit(EventType.LOOKUP_RESOLVED, request, {"fields": sorted(updates)})
        return LookupOutcome.RESOLVED

    def rebase(self, value: Optional[str]) -> None:
        """Align with a trigger value written by a reset instead of typed.

        Any outstanding request is dropped, and a complete value counts as
        already looked up so it does not fire again until it changes.
        """
        if self.busy:
            self._live_request_id = None
            self._transition(ResolverState.IDLE)
        unmasked = unmask(value)
        self._last_issued_value = unmasked if self._is_complete(unmasked) else None

    def withdraw(self, request: LookupRequest) -> None:
        """Drop ``request`` without running it, as if it had never been issued.

        The same trigger value fires a fresh request on its next notify.
        """
        if not self._is_live(request):
            return
        self._settle()
        self._last_issued_value = None
        logger.debug("Withdrew lookup %s for '%s'", request.request_id, self.trigger_field)

    async def on_change(self, value: Optional[str]) -> Optional[LookupOutcome]:
        """Observe a trigger value and, when a lookup is issued, await it."""
        request = self.notify(value)
        if request is None:
            return None
        return await self.resolve(request)

    def _is_live(self, request: LookupRequest) -> bool:
        return request.request_id == self._live_request_id

    def _settle(self) -> None:
        self._live_request_id = None
        self._transition(ResolverState.IDLE)

    def _fail(self, request: LookupRequest, exc: Exception) -> LookupFailure:
        self._settle()
        self._last_issued_value = None
        self._emit(EventType.LOOKUP_FAILED, request, {"error": str(exc)})
        logger.warning(
            "Lookup %s for '%s' failed: %s", request.request_id, self.trigger_field, exc
        )
        return LookupFailure(self.trigger_field, request.trigger_value, request.request_id)

    def _discard(self, request: LookupRequest) -> None:
        logger.debug(
            "Discarding stale response %s for '%s' (live: %s)",
            request.request_id, self.trigger_field, self._live_request_id,
        )
        self._emit(EventType.LOOKUP_DISCARDED, request)

    def _transition(self, target: ResolverState) -> None:
        if target not in VALID_TRANSITIONS[self._state]:
            raise InvalidResolverTransitionError(self._state, target)
        self._state = target

    def _emit(
        self,
        event_type: EventType,
        request: LookupRequest,
        extra: Optional[Dict[str, Any]] = None,
    ) -> None:
        if self._emitter is None:
            return
        payload: Dict[str, Any] = {
            "field": self.trigger_field,
            "requestId": request.request_id,
            "triggerValue": request.trigger_value,
        }
        if extra:
            payload.update(extra)
        self._emitter.emit(FormEvent.create(event_type, self._form_id, payload))


__all__ = [
    "Lookup",
    "CompletenessPredicate",
    "VALID_TRANSITIONS",
    "digit_count",
    "DependentFieldResolver",
]
