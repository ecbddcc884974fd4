"""The personal-information enrollment form.

Field list, masks, validation rules, the CEP -> address lookup wiring and the
conversions between the flat form snapshot and the nested entity the
persistence collaborator stores:

    {
        "name": ..., "cpf": ..., "birthday": "DD-MM-YYYY", "phone": "(DD) DDDDD-DDDD",
        "address": {"cep", "street", "city", "number", "state", "neighborhood", "addressDetail"},
    }

``create_enrollment_form`` builds a ready FormController for one session.
"""

import uuid
from datetime import date
from typing import Any, Callable, Dict, Mapping, Optional

from typing_extensions import Protocol, TypedDict

from cepform.controller import Entity, FormController, Messages, Persistence, SessionContext
from cepform.events import EventEmitter
from cepform.masks import CEP_MASK, CPF_MASK, format_phone, mask_transform, phone_mask
from cepform.resolver import DependentFieldResolver, digit_count
from cepform.schema import EntitySchemaValidator
from cepform.state import FormState
from cepform.types import FieldErrorCode, FieldValue, FormSnapshot
from cepform.validation import (
    ValidationRuleSet,
    coerce_date,
    has_digit_range,
    has_digits,
    is_date,
    is_not_future_date,
    one_of,
)

CEP_DIGITS = 8
CPF_DIGITS = 11
PHONE_MIN_DIGITS = 10
PHONE_MAX_DIGITS = 11
BIRTHDAY_FORMAT = "%d-%m-%Y"

IDENTITY_FIELD = "cpf"
TRIGGER_FIELD = "cep"

UF_LIST = (
    "AC", "AL", "AP", "AM", "BA", "CE", "DF", "ES", "GO", "MA", "MT", "MS", "MG", "PA",
    "PB", "PR", "PE", "PI", "RJ", "RN", "RS", "RO", "RR", "SC", "SP", "SE", "TO",
)

# Display order
INITIAL_VALUES: Dict[str, FieldValue] = {
    "name": "",
    "cpf": "",
    "birthday": None,
    "phone": "",
    "cep": "",
    "state": "",
    "city": "",
    "street": "",
    "number": "",
    "neighborhood": "",
    "addressDetail": "",
}

ADDRESS_FIELDS = ("cep", "street", "city", "number", "state", "neighborhood", "addressDetail")

ADDRESS_LOOKUP_MAPPING = {
    "logradouro": "street",
    "localidade": "city",
    "bairro": "neighborhood",
    "uf": "state",
}

_NULLABLE_STRING = {"type": ["string", "null"]}

ENROLLMENT_SCHEMA: Dict[str, Any] = {
    "type": "object",
    "properties": {
        "name": {"type": "string"},
        "cpf": {"type": "string"},
        "birthday": _NULLABLE_STRING,
        "phone": {"type": "string"},
        "address": {
            "type": "object",
            "properties": {
                "cep": {"type": "string", "pattern": r"^\d{5}-?\d{3}$"},
                "street": {"type": "string"},
                "city": {"type": "string"},
                "number": {"type": ["string", "integer"]},
                "state": {"enum": list(UF_LIST)},
                "neighborhood": {"type": "string"},
                "addressDetail": _NULLABLE_STRING,
            },
            "required": ["cep", "street", "city", "number", "state", "neighborhood"],
        },
    },
    "required": ["name", "cpf", "birthday", "address", "phone"],
}


class AddressPayload(TypedDict, total=False):
    """Response of the CEP lookup service."""
    logradouro: str
    localidade: str
    bairro: str
    uf: str


class AddressLookup(Protocol):
    async def get_address(self, cep: str) -> AddressPayload:
        ...


def format_birthday(value: Any) -> Optional[str]:
    """Normalize a picked date to ``DD-MM-YYYY``.

    Empty values become None. Unparseable strings are kept as typed so the
    date rule reports them.
    """
    if value is None or value == "":
        return None
    parsed = coerce_date(value)
    if parsed is None:
        return str(value)
    return parsed.strftime(BIRTHDAY_FORMAT)


TRANSFORMS: Dict[str, Callable[[Any], FieldValue]] = {
    "cpf": mask_transform(CPF_MASK),
    "phone": mask_transform(phone_mask),
    "cep": mask_transform(CEP_MASK),
    "birthday": format_birthday,
}


def build_rules(today: Callable[[], date] = date.today) -> ValidationRuleSet:
    """Validation rules: presence first, then shape, then meaning."""
    rules = ValidationRuleSet()
    rules.require("name", "Digite seu nome completo")

    rules.require("cpf", "Insira um CPF")
    rules.add("cpf", has_digits(CPF_DIGITS), "Insira um CPF válido", FieldErrorCode.INVALID_FORMAT)

    rules.require("birthday", "Selecione sua data de nascimento")
    rules.add("birthday", is_date, "Insira uma data válida", FieldErrorCode.INVALID_FORMAT)
    rules.add(
        "birthday",
        is_not_future_date(today),
        "A data de nascimento não pode estar no futuro",
        FieldErrorCode.INVALID_VALUE,
    )

    rules.require("phone", "Insira um telefone")
    rules.add(
        "phone",
        has_digit_range(PHONE_MIN_DIGITS, PHONE_MAX_DIGITS),
        "Insira um telefone válido",
        FieldErrorCode.INVALID_FORMAT,
    )

    rules.require("cep", "Insira um CEP")
    rules.add("cep", has_digits(CEP_DIGITS), "Insira um CEP válido", FieldErrorCode.INVALID_FORMAT)

    rules.require("state", "Selecione um estado")
    rules.add("state", one_of(UF_LIST), "Selecione um estado válido", FieldErrorCode.INVALID_VALUE)

    rules.require("city", "Insira uma cidade")
    rules.require("street", "Insira uma rua")
    rules.require("number", "Insira o número")
    rules.require("neighborhood", "Insira um bairro")
    return rules


def build_payload(snapshot: FormSnapshot) -> Entity:
    """Reshape the flat snapshot into the entity the backend stores."""
    return {
        "name": snapshot["name"],
        "cpf": snapshot["cpf"],
        "birthday": format_birthday(snapshot["birthday"]),
        "address": {name: snapshot[name] for name in ADDRESS_FIELDS},
        "phone": format_phone(snapshot["phone"]),
    }


def flatten_entity(entity: Mapping[str, Any]) -> Dict[str, FieldValue]:
    """Inverse of ``build_payload``: nested entity -> flat form values."""
    address = entity.get("address") or {}
    values: Dict[str, FieldValue] = {
        "name": entity.get("name", ""),
        "cpf": entity.get("cpf", ""),
        "birthday": entity.get("birthday"),
        "phone": entity.get("phone", ""),
    }
    for name in ADDRESS_FIELDS:
        value = address.get(name, INITIAL_VALUES[name])
        values[name] = str(value) if isinstance(value, int) else value
    return values


def create_enrollment_form(
    persistence: Persistence,
    lookup: AddressLookup,
    context: Optional[SessionContext] = None,
    emitter: Optional[EventEmitter] = None,
    messages: Optional[Messages] = None,
    today: Callable[[], date] = date.today,
) -> FormController:
    """Build the controller for one enrollment editing session.

    Args:
        persistence: Collaborator whose ``save`` stores the entity
        lookup: Collaborator whose ``get_address`` resolves a CEP
        context: Session context; an entity already in it is loaded for editing
        emitter: Event emitter shared by the controller and the CEP resolver
        messages: Notification texts
        today: Clock used by the birthday rule
    """
    emitter = emitter or EventEmitter()
    form_id = f"form_{uuid.uuid4().hex[:16]}"
    state = FormState(INITIAL_VALUES, identity_field=IDENTITY_FIELD)
    cep_resolver = DependentFieldResolver(
        state,
        TRIGGER_FIELD,
        lookup.get_address,
        ADDRESS_LOOKUP_MAPPING,
        digit_count(CEP_DIGITS),
        emitter=emitter,
        form_id=form_id,
    )
    return FormController(
        state,
        build_rules(today),
        persistence,
        resolvers=[cep_resolver],
        transforms=TRANSFORMS,
        build_payload=build_payload,
        flatten_entity=flatten_entity,
        entity_validator=EntitySchemaValidator(ENROLLMENT_SCHEMA),
        context=context,
        emitter=emitter,
        messages=messages,
        form_id=form_id,
    )


__all__ = [
    "CEP_DIGITS",
    "CPF_DIGITS",
    "UF_LIST",
    "INITIAL_VALUES",
    "ADDRESS_LOOKUP_MAPPING",
    "ENROLLMENT_SCHEMA",
    "AddressPayload",
    "AddressLookup",
    "TRANSFORMS",
    "format_birthday",
    "build_rules",
    "build_payload",
    "flatten_entity",
    "create_enrollment_form",
]
