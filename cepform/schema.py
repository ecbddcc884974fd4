"""JSON Schema checks for entities crossing the persistence boundary.

Rules in cepform.validation judge what the user typed. This module judges the
shape of whole entities: the record loaded for editing and the payload built
for the persistence collaborator. It wraps jsonschema and translates its
errors into FieldError records with dot-notation paths such as
``address.cep``.
"""

import logging
from typing import Any, Dict, List, Mapping

import jsonschema
from jsonschema import Draft7Validator

from cepform.errors import EntityShapeError, FieldError
from cepform.types import FieldErrorCode

logger = logging.getLogger(__name__)


class EntitySchemaValidator:
    """Validates entities against a JSON Schema.

    Examples:
        >>> schema = {
        ...     "type": "object",
        ...     "properties": {"address": {"type": "object", "required": ["cep"]}},
        ...     "required": ["address"],
        ... }
        >>> validator = EntitySchemaValidator(schema)
        >>> [e.path for e in validator.check({"address": {}})]
        ['address.cep']
    """

    def __init__(self, schema: Dict[str, Any]) -> None:
        """
        Raises:
            jsonschema.SchemaError: If the provided schema is invalid
        """
        Draft7Validator.check_schema(schema)
        self.schema = schema
        self.validator = Draft7Validator(schema)

    def check(self, entity: Mapping[str, Any]) -> List[FieldError]:
        """Return one FieldError per schema violation, sorted by path."""
        errors = [self._translate_error(e) for e in self.validator.iter_errors(entity)]
        return sorted(errors, key=lambda e: e.path)

    def validate(self, entity: Mapping[str, Any]) -> None:
        """
        Raises:
            EntityShapeError: If the entity violates the schema
        """
        errors = self.check(entity)
        if errors:
            logger.warning("Entity rejected by schema: %s", [e.path for e in errors])
            raise EntityShapeError(errors)

    def _translate_error(self, error: jsonschema.ValidationError) -> FieldError:
        path = ".".join(str(p) for p in error.path)

        if error.validator == "required":
            # jsonschema reports the missing property inside quotes in the message
            missing = error.message.split("'")[1] if "'" in error.message else "field"
            full_path = f"{path}.{missing}" if path else missing
            return FieldError(
                path=full_path,
                code=FieldErrorCode.REQUIRED,
                message=f"Field '{full_path}' is required but was not provided",
            )

        if error.validator == "type":
            return FieldError(
                path=path,
                code=FieldErrorCode.INVALID_FORMAT,
                message=(
                    f"Field '{path}' has invalid type. Expected {error.validator_value}, "
                    f"got {type(error.instance).__name__}"
                ),
                received=error.instance,
            )

        if error.validator == "pattern":
            return FieldError(
                path=path,
                code=FieldErrorCode.INVALID_FORMAT,
                message=f"Field '{path}' does not match required pattern: {error.validator_value}",
                received=error.instance,
            )

        if error.validator in ("enum", "const"):
            return FieldError(
                path=path,
                code=FieldErrorCode.INVALID_VALUE,
                message=f"Field '{path}' has invalid value. Must be one of: {error.validator_value}",
                received=error.instance,
            )

        return FieldError(
            path=path,
            code=FieldErrorCode.CUSTOM,
            message=f"Field '{path}' validation failed: {error.message}",
            received=error.instance,
        )


__all__ = [
    "EntitySchemaValidator",
]
