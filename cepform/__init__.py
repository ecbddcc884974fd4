"""cepform: form state & validation engine with async dependent-field resolution.

cepform provides:
- A form state model holding field values, dirty flags and errors
- A declarative, rule-based validator (first failing rule per field wins)
- Masked-input transforms for patterned text (CPF, CEP, phone)
- Race-free resolution of dependent fields from a trigger field, e.g. filling
  street/city/neighborhood/state from a CEP lookup
- A controller wiring all of the above into change and submit handlers

Basic usage:
    >>> from cepform.enrollment import create_enrollment_form
    >>> controller = create_enrollment_form(persistence=api.enrollment, lookup=api.cep)  # doctest: +SKIP
    >>> controller.handle_change("name", "Ana")  # doctest: +SKIP
    >>> await controller.handle_submit()  # doctest: +SKIP
"""

import logging

__version__ = "0.1.0"
__author__ = "cepform Team"

# Version info
VERSION = (0, 1, 0)

# Core exports
from cepform.controller import FormController, Messages, SessionContext
from cepform.enrollment import create_enrollment_form
from cepform.resolver import DependentFieldResolver
from cepform.state import FormState
from cepform.validation import ValidationRuleSet

logging.getLogger(__name__).addHandler(logging.NullHandler())

# Package metadata
__all__ = [
    "__version__",
    "VERSION",
    "FormController",
    "Messages",
    "SessionContext",
    "DependentFieldResolver",
    "FormState",
    "ValidationRuleSet",
    "create_enrollment_form",
]
