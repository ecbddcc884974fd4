"""Unit tests for FormController.

Tests cover:
- Change handling: transforms, identity lock, lookup scheduling
- Submit blocking while a lookup is pending or a save is in flight
- Validation failure aborting the submit
- Persistence failure taxonomy mapped to notifications
- Entity loading (idempotent, from the session context)
- The rendering read model
"""

import asyncio

import pytest

from cepform.controller import FormController, Messages, SessionContext
from cepform.errors import ConflictError, DetailedRemoteError, LookupFailure, RemoteError, UnknownRemoteError
from cepform.resolver import DependentFieldResolver, digit_count
from cepform.state import FormState
from cepform.types import EventType, LookupOutcome, SubmitOutcome
from cepform.validation import ValidationRuleSet

INITIAL = {"name": "", "cpf": "", "cep": "", "street": ""}


def make_controller(store, lookup, emitter, context=None, transforms=None):
    state = FormState(INITIAL, identity_field="cpf")
    resolver = DependentFieldResolver(
        state,
        "cep",
        lookup.get_address,
        {"logradouro": "street"},
        digit_count(8),
        emitter=emitter,
        form_id="form_test",
    )
    rules = ValidationRuleSet().require("name", "Digite seu nome")
    return FormController(
        state,
        rules,
        store,
        resolvers=[resolver],
        transforms=transforms,
        context=context,
        emitter=emitter,
        form_id="form_test",
    )


@pytest.fixture
def controller(store, lookup, emitter):
    return make_controller(store, lookup, emitter)


class TestHandleChange:
    """Edits are applied immediately."""

    def test_plain_field(self, controller, recorder):
        assert controller.handle_change("name", "Ana") is None
        assert controller.state.value("name") == "Ana"
        assert recorder.types() == [EventType.FIELD_UPDATED]
        assert recorder.events[0].payload == {"field": "name"}

    def test_transform_applied_before_set(self, store, lookup, emitter):
        controller = make_controller(store, lookup, emitter, transforms={"name": str.upper})
        controller.handle_change("name", "ana")
        assert controller.state.value("name") == "ANA"

    def test_change_handler_is_curried(self, controller):
        on_name = controller.change_handler("name")
        on_name("Ana")
        assert controller.state.value("name") == "Ana"

    def test_incomplete_trigger_schedules_nothing(self, controller, lookup):
        assert controller.handle_change("cep", "0131") is None
        assert controller.busy is False
        assert lookup.calls == []

    def test_complete_trigger_schedules_lookup(self, controller, lookup):
        async def scenario():
            task = controller.handle_change("cep", "01310100")
            assert task is not None
            assert controller.busy is True
            assert controller.view().disabled_fields == ["street"]
            lookup.respond("01310100", {"logradouro": "Rua X"})
            return await task

        assert asyncio.run(scenario()) == LookupOutcome.RESOLVED
        assert controller.state.value("street") == "Rua X"
        assert controller.busy is False

    def test_edits_not_blocked_by_pending_lookup(self, controller, lookup):
        async def scenario():
            controller.handle_change("cep", "01310100")
            controller.handle_change("street", "Typed")
            controller.handle_change("name", "Ana")
            assert controller.state.value("street") == "Typed"
            lookup.respond("01310100", {"logradouro": "Rua X"})
            await controller.drain()

        asyncio.run(scenario())

    def test_lookup_failure_surfaced(self, controller, lookup, recorder):
        controller.state.set("street", "Rua antiga")

        async def scenario():
            controller.handle_change("cep", "01310100")
            lookup.fail("01310100", ConnectionError("down"))
            await controller.drain()

        asyncio.run(scenario())

        assert controller.busy is False
        assert controller.state.value("street") == "Rua antiga"
        assert isinstance(controller.last_lookup_error, LookupFailure)
        assert recorder.notifications() == [("error", Messages().lookup_failed)]

    def test_lookup_edit_outside_event_loop_does_not_stick_busy(self, controller, lookup):
        """A trigger edit from sync code raises without leaving the form busy."""
        with pytest.raises(RuntimeError):
            controller.handle_change("cep", "01310100")

        assert controller.state.value("cep") == "01310100"
        assert controller.busy is False
        assert controller.can_submit is True
        assert lookup.calls == []

        async def scenario():
            task = controller.handle_change("cep", "01310100")
            assert task is not None
            lookup.respond("01310100", {"logradouro": "Rua X"})
            return await task

        assert asyncio.run(scenario()) == LookupOutcome.RESOLVED
        assert controller.state.value("street") == "Rua X"

    def test_malformed_lookup_reply_surfaced(self, controller, lookup, recorder):
        async def scenario():
            controller.handle_change("name", "Ana")
            controller.handle_change("cep", "01310100")
            lookup.respond("01310100", None)
            await controller.drain()
            return await controller.handle_submit()

        assert asyncio.run(scenario()) == SubmitOutcome.SAVED
        assert isinstance(controller.last_lookup_error, LookupFailure)
        assert ("error", Messages().lookup_failed) in recorder.notifications()


class TestSubmitBlocking:
    """No submit while a lookup is pending or a save is in flight."""

    def test_submit_is_noop_while_lookup_pending(self, controller, lookup, store):
        async def scenario():
            controller.handle_change("name", "Ana")
            controller.handle_change("cep", "01310100")
            assert controller.can_submit is False
            assert await controller.handle_submit() == SubmitOutcome.SKIPPED
            assert store.saved == []

            lookup.respond("01310100", {"logradouro": "Rua X"})
            await controller.drain()
            assert controller.can_submit is True
            return await controller.handle_submit()

        assert asyncio.run(scenario()) == SubmitOutcome.SAVED
        assert len(store.saved) == 1

    def test_second_submit_while_saving_is_noop(self, controller, store):
        async def scenario():
            store.gate = asyncio.get_running_loop().create_future()
            controller.handle_change("name", "Ana")

            first = asyncio.ensure_future(controller.handle_submit())
            await asyncio.sleep(0)
            assert controller.submitting is True
            assert controller.view().submitting is True

            assert await controller.handle_submit() == SubmitOutcome.SKIPPED

            store.gate.set_result(None)
            return await first

        assert asyncio.run(scenario()) == SubmitOutcome.SAVED
        assert len(store.saved) == 1
        assert controller.submitting is False


class TestSubmitValidation:
    """Failing rules abort the submit."""

    def test_invalid_snapshot_not_saved(self, controller, store, recorder):
        outcome = asyncio.run(controller.handle_submit())

        assert outcome == SubmitOutcome.INVALID
        assert store.saved == []
        assert controller.state.errors == {"name": "Digite seu nome"}
        assert controller.view().errors == {"name": "Digite seu nome"}
        assert EventType.VALIDATION_FAILED in recorder.types()

    def test_errors_recomputed_on_next_submit(self, controller):
        asyncio.run(controller.handle_submit())
        controller.handle_change("name", "Ana")

        assert asyncio.run(controller.handle_submit()) == SubmitOutcome.SAVED
        assert controller.state.errors == {}


class TestSubmitFailures:
    """Each persistence failure category maps to its own notification."""

    def submit(self, controller, store, error):
        store.error = error
        controller.handle_change("name", "Ana")
        return asyncio.run(controller.handle_submit())

    def test_conflict(self, controller, store, recorder):
        outcome = self.submit(controller, store, RemoteError(409, {"message": "CPF já cadastrado"}))

        assert outcome == SubmitOutcome.FAILED
        assert isinstance(controller.last_submit_error, ConflictError)
        assert recorder.notifications() == [("error", "CPF já cadastrado")]

    def test_detailed(self, controller, store, recorder):
        error = RemoteError(400, {"details": ["cpf inválido", "phone inválido"]})
        self.submit(controller, store, error)

        assert isinstance(controller.last_submit_error, DetailedRemoteError)
        assert recorder.notifications() == [("error", "cpf inválido"), ("error", "phone inválido")]

    def test_unknown_remote(self, controller, store, recorder):
        self.submit(controller, store, RemoteError(500, {}))

        assert isinstance(controller.last_submit_error, UnknownRemoteError)
        assert recorder.notifications() == [("error", "Não foi possível")]

    def test_unexpected_exception(self, controller, store, recorder):
        self.submit(controller, store, ConnectionError("network down"))

        assert isinstance(controller.last_submit_error, UnknownRemoteError)
        assert recorder.notifications() == [("error", "Não foi possível")]

    def test_form_stays_editable_after_failure(self, controller, store):
        self.submit(controller, store, RemoteError(409, {"message": "dup"}))

        assert controller.state.locked is False
        assert controller.can_submit is True
        controller.handle_change("cpf", "999")
        assert controller.state.value("cpf") == "999"

    def test_custom_messages(self, store, lookup, emitter, recorder):
        controller = make_controller(store, lookup, emitter)
        controller.messages = Messages(save_failed="Could not save")
        self.submit(controller, store, RemoteError(500))
        assert recorder.notifications() == [("error", "Could not save")]


class TestSubmitSuccess:
    """A successful save re-seeds the form from the saved entity."""

    def test_success(self, store, lookup, emitter, recorder):
        context = SessionContext()
        controller = make_controller(store, lookup, emitter, context=context)
        controller.handle_change("name", "Ana")
        controller.handle_change("cpf", "123")

        assert asyncio.run(controller.handle_submit()) == SubmitOutcome.SAVED

        assert store.saved == [{"name": "Ana", "cpf": "123", "cep": "", "street": ""}]
        assert context.entity == store.saved[0]
        assert context.version == 1
        assert controller.state.locked is True
        assert controller.view().disabled_identity_field is True
        assert recorder.notifications() == [("success", "Salvo com sucesso!")]
        assert EventType.SUBMISSION_SAVED in recorder.types()
        assert EventType.FORM_RESET in recorder.types()


class TestEntityLoading:
    """Loading an existing entity."""

    ENTITY = {"name": "Ana", "cpf": "12345678900", "cep": "01310-100", "street": "Rua X"}

    def test_identity_immutable_after_load(self, controller):
        controller.on_entity_loaded(self.ENTITY)

        assert controller.handle_change("cpf", "00000000000") is None
        assert controller.state.value("cpf") == "12345678900"
        assert controller.view().disabled_identity_field is True
        assert controller.view().disabled_fields == ["cpf"]

    def test_repeated_delivery_is_noop(self, controller):
        assert controller.on_entity_loaded(self.ENTITY) is True
        controller.handle_change("name", "Edited")

        assert controller.on_entity_loaded(self.ENTITY) is False
        assert controller.state.value("name") == "Edited"

    def test_new_entity_object_resets(self, controller):
        controller.on_entity_loaded(self.ENTITY)
        controller.handle_change("name", "Edited")

        assert controller.on_entity_loaded(dict(self.ENTITY)) is True
        assert controller.state.value("name") == "Ana"

    def test_loaded_trigger_value_does_not_refire(self, controller, lookup):
        controller.on_entity_loaded(self.ENTITY)
        assert controller.handle_change("cep", "01310100") is None
        assert lookup.calls == []

    def test_entity_from_context_loaded_at_construction(self, store, lookup, emitter):
        context = SessionContext(entity=dict(self.ENTITY))
        controller = make_controller(store, lookup, emitter, context=context)

        assert controller.state.value("name") == "Ana"
        assert controller.state.locked is True


class TestView:
    """Read model for the rendering layer."""

    def test_view_to_dict(self, controller):
        controller.handle_change("name", "Ana")
        assert controller.view().to_dict() == {
            "data": {"name": "Ana", "cpf": "", "cep": "", "street": ""},
            "errors": {},
            "busy": False,
            "disabledIdentityField": False,
            "submitting": False,
            "disabledFields": [],
        }
