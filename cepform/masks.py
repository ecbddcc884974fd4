"""Masked-input transforms.

A mask pattern is a string where ``9`` is a digit placeholder and every other
character is a literal, e.g. ``"99999-999"`` for a CEP or
``"999.999.999-99"`` for a CPF.

Formatting strips every non-digit from the input and re-inserts the literals at
their fixed positions. A literal is emitted only when a digit follows it, so a
partially typed value never ends in a dangling separator. Digits beyond the
placeholder count are dropped.

A mask may also be a selector: a callable that receives the value being
formatted and returns the pattern to use. The selector is consulted again on
the produced value until the chosen pattern is stable, which makes re-applying
a mask to its own output a no-op.

Usage:
    >>> apply_mask("01310100", "99999-999")
    '01310-100'
    >>> apply_mask("1123456789", phone_mask)
    '(11) 2345-6789'
    >>> apply_mask("11234567890", phone_mask)
    '(11) 23456-7890'
    >>> unmask("(11) 23456-7890")
    '11234567890'
"""

import re
from functools import partial
from typing import Callable, Optional, Union

DIGIT_PLACEHOLDER = "9"

MaskSelector = Callable[[str], str]
Mask = Union[str, MaskSelector]

CPF_MASK = "999.999.999-99"
CEP_MASK = "99999-999"

# The short phone pattern carries one extra placeholder so the 11th digit can
# be typed; once the masked value reaches 15 characters the long pattern takes
# over and the digits regroup as (DD) DDDDD-DDDD.
PHONE_MASK_SHORT = "(99) 9999-99999"
PHONE_MASK_LONG = "(99) 99999-9999"
PHONE_SWITCH_LENGTH = 15

_NON_DIGITS = re.compile(r"\D")
_PHONE_DIGITS = re.compile(r"^(\d{2})(\d{4,5})(\d{4})$")

# A selector that keeps flipping between patterns would never settle.
_MAX_SELECTIONS = 4


def unmask(value: Optional[str]) -> str:
    """Strip every non-digit character."""
    if not value:
        return ""
    return _NON_DIGITS.sub("", str(value))


def placeholder_count(pattern: str) -> int:
    return pattern.count(DIGIT_PLACEHOLDER)


def format_pattern(value: Optional[str], pattern: str) -> str:
    """Lay the digits of ``value`` over a single pattern."""
    digits = unmask(value)
    out = []
    i = 0
    for char in pattern:
        if i >= len(digits):
            break
        if char == DIGIT_PLACEHOLDER:
            out.append(digits[i])
            i += 1
        else:
            out.append(char)
    return "".join(out)


def apply_mask(raw_value: Optional[str], mask: Mask) -> str:
    """Format ``raw_value`` with a fixed pattern or a pattern selector.

    Args:
        raw_value: Value as typed, masked or not
        mask: Pattern string, or callable(current_value) -> pattern

    Returns:
        The masked value. Deterministic for a given input and idempotent.
    """
    if not callable(mask):
        return format_pattern(raw_value, mask)

    current = raw_value or ""
    pattern = mask(current)
    masked = format_pattern(current, pattern)
    for _ in range(_MAX_SELECTIONS):
        next_pattern = mask(masked)
        if next_pattern == pattern:
            break
        pattern = next_pattern
        masked = format_pattern(current, pattern)
    return masked


def phone_mask(current_value: str) -> str:
    """Pick the phone pattern by the current masked length."""
    if len(current_value) < PHONE_SWITCH_LENGTH:
        return PHONE_MASK_SHORT
    return PHONE_MASK_LONG


def mask_transform(mask: Mask) -> Callable[[Optional[str]], str]:
    """Return a single-argument value transform for ``mask``.

    Examples:
        >>> to_cep = mask_transform(CEP_MASK)
        >>> to_cep("013101")
        '01310-1'
    """
    return partial(apply_mask, mask=mask)


def format_phone(value: Optional[str]) -> str:
    """Canonical phone representation for the backend.

    Ten digits become ``(DD) DDDD-DDDD`` and eleven become ``(DD) DDDDD-DDDD``,
    the same grouping the phone mask shows. Anything else is returned as bare
    digits.

    Examples:
        >>> format_phone("(21) 9876-54321")
        '(21) 98765-4321'
    """
    return _PHONE_DIGITS.sub(r"(\1) \2-\3", unmask(value))


__all__ = [
    "DIGIT_PLACEHOLDER",
    "Mask",
    "MaskSelector",
    "CPF_MASK",
    "CEP_MASK",
    "PHONE_MASK_SHORT",
    "PHONE_MASK_LONG",
    "unmask",
    "placeholder_count",
    "format_pattern",
    "apply_mask",
    "phone_mask",
    "mask_transform",
    "format_phone",
]
