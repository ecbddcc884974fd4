"""Shared fakes for the lookup and persistence collaborators."""

import asyncio
from typing import Any, Dict, List, Mapping, Optional

import pytest

from cepform.events import EventEmitter, FormEvent
from cepform.types import EventType


class FakeLookup:
    """Address lookup whose responses are released by the test.

    ``respond``/``fail`` settle the oldest outstanding call for a CEP. Called
    before the lookup starts, they pre-arrange its result instead.
    """

    def __init__(self) -> None:
        self.calls: List[str] = []
        self._arranged: Dict[str, List["asyncio.Future[Any]"]] = {}
        self._waiting: Dict[str, List["asyncio.Future[Any]"]] = {}

    async def get_address(self, cep: str) -> Mapping[str, Any]:
        self.calls.append(cep)
        arranged = self._arranged.get(cep)
        future = arranged.pop(0) if arranged else asyncio.get_running_loop().create_future()
        if not future.done():
            self._waiting.setdefault(cep, []).append(future)
        return await future

    def respond(self, cep: str, payload: Any) -> None:
        self._next(cep).set_result(payload)

    def fail(self, cep: str, exc: BaseException) -> None:
        self._next(cep).set_exception(exc)

    def _next(self, cep: str) -> "asyncio.Future[Any]":
        waiting = self._waiting.get(cep)
        if waiting:
            return waiting.pop(0)
        future = asyncio.get_running_loop().create_future()
        self._arranged.setdefault(cep, []).append(future)
        return future


class FakeStore:
    """Persistence collaborator recording saved entities.

    Set ``error`` to make ``save`` raise it; set ``gate`` to a future to hold
    ``save`` in flight until the test resolves it.
    """

    def __init__(self) -> None:
        self.saved: List[Dict[str, Any]] = []
        self.error: Optional[BaseException] = None
        self.gate: Optional["asyncio.Future[None]"] = None

    async def save(self, entity: Dict[str, Any]) -> None:
        if self.gate is not None:
            await self.gate
        if self.error is not None:
            raise self.error
        self.saved.append(entity)


class Recorder:
    """Collects every event emitted on an emitter."""

    def __init__(self, emitter: EventEmitter) -> None:
        self.events: List[FormEvent] = []
        emitter.on_any(self.events.append)

    def types(self) -> List[EventType]:
        return [e.type for e in self.events]

    def notifications(self) -> List[tuple]:
        return [
            (e.payload["level"], e.payload["message"])
            for e in self.events
            if e.type == EventType.NOTIFICATION
        ]


@pytest.fixture
def lookup() -> FakeLookup:
    return FakeLookup()


@pytest.fixture
def store() -> FakeStore:
    return FakeStore()


@pytest.fixture
def emitter() -> EventEmitter:
    return EventEmitter()


@pytest.fixture
def recorder(emitter: EventEmitter) -> Recorder:
    return Recorder(emitter)


@pytest.fixture
def address_payload() -> Dict[str, str]:
    return {
        "logradouro": "Avenida Paulista",
        "localidade": "São Paulo",
        "bairro": "Bela Vista",
        "uf": "SP",
    }
