"""CNPJ and phone number helpers.

Deterministic, no I/O. Security: NEVER log the values handled here.
"""

import re

CNPJ_LENGTH = 14
BRAZIL_DDI = "55"

_NON_DIGITS = re.compile(r"\D")

# Check digit weights: 5..2 then 9..2 (first digit), 6..2 then 9..2 (second)
_CNPJ_WEIGHTS_FIRST = [5, 4, 3, 2, 9, 8, 7, 6, 5, 4, 3, 2]
_CNPJ_WEIGHTS_SECOND = [6, 5, 4, 3, 2, 9, 8, 7, 6, 5, 4, 3, 2]


def only_digits(value: str | None) -> str:
    """Strip everything that is not a digit."""
    if not value:
        return ""
    return _NON_DIGITS.sub("", str(value))


def _check_digit(digits: str, weights: list[int]) -> int:
    total = sum(int(d) * w for d, w in zip(digits, weights))
    remainder = total % 11
    return 0 if remainder < 2 else 11 - remainder


def is_valid_cnpj(value: str | None) -> bool:
    """Validate a CNPJ: 14 digits, not a repeated digit, both check digits.

    Args:
        value: CNPJ with or without punctuation.

    Returns:
        True if the CNPJ is structurally valid.
    """
    digits = only_digits(value)
    if len(digits) != CNPJ_LENGTH:
        return False
    if digits == digits[0] * CNPJ_LENGTH:
        return False

    first = _check_digit(digits[:12], _CNPJ_WEIGHTS_FIRST)
    if first != int(digits[12]):
        return False
    second = _check_digit(digits[:13], _CNPJ_WEIGHTS_SECOND)
    return second == int(digits[13])


def format_cnpj(value: str | None) -> str:
    """Format as XX.XXX.XXX/XXXX-XX. Values that are not 14 digits are returned as-is."""
    digits = only_digits(value)
    if len(digits) != CNPJ_LENGTH:
        return value or ""
    return f"{digits[:2]}.{digits[2:5]}.{digits[5:8]}/{digits[8:12]}-{digits[12:]}"


def normalize_whatsapp_phone(value: str | None) -> str:
    """Normalize a phone to the WhatsApp format 55 + DDD + number.

    - 11 digits (DDD + 9 + number): prefix 55
    - 10 digits (DDD + number, legacy): prefix 55 and insert the mobile 9
    - Anything else: digits unchanged
    """
    digits = only_digits(value)
    if len(digits) == 11:
        return BRAZIL_DDI + digits
    if len(digits) == 10:
        return f"{BRAZIL_DDI}{digits[:2]}9{digits[2:]}"
    return digits


def phone_for_erp(value: str | None) -> str:
    """Phone as the ERP stores it: DDD + number, without the 55 DDI.

    A 12 digit number (55 + DDD + 8 digits) gets the mobile 9 inserted.
    """
    digits = only_digits(value)
    if len(digits) in (12, 13) and digits.startswith(BRAZIL_DDI):
        digits = digits[len(BRAZIL_DDI):]
    if len(digits) == 10:
        digits = f"{digits[:2]}9{digits[2:]}"
    return digits


def phones_match(left: str | None, right: str | None) -> bool:
    """Compare two phones ignoring DDI, punctuation and the mobile 9 prefix."""
    a = phone_for_erp(left)
    b = phone_for_erp(right)
    if not a or not b:
        return False
    return a == b
