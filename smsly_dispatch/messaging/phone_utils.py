"""
Phone Utilities
===============
Functions for phone number validation and normalization.
"""

import re
from typing import Optional

_E164 = re.compile(r'^\+[1-9]\d{1,14}$')


def validate_e164(phone: str) -> bool:
    """
    Validate E.164 phone number format.

    Args:
        phone: Phone number

    Returns:
        True if valid E.164 format
    """
    return bool(_E164.match(phone))


def normalize_phone(phone: str, default_country: str = "1") -> str:
    """
    Normalize a phone number to E.164 format.

    Opt-out lookups and admission checks key on this form, so every number
    entering the engine passes through here.

    Args:
        phone: Raw phone number
        default_country: Default country code (without +)

    Returns:
        E.164 formatted number
    """
    digits = re.sub(r'\D', '', phone)

    if phone.strip().startswith('+'):
        return f"+{digits}"

    # 10 digits: national NANP number
    if len(digits) == 10:
        return f"+{default_country}{digits}"

    # 11 digits starting with 1: NANP with country code
    if len(digits) == 11 and digits.startswith('1'):
        return f"+{digits}"

    return f"+{digits}"


def nanp_area_code(phone: str) -> Optional[str]:
    """Return the three-digit area code of a +1 number, if it is one."""
    normalized = normalize_phone(phone)
    if normalized.startswith("+1") and len(normalized) == 12:
        return normalized[2:5]
    return None
