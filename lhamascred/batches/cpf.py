"""CPF normalization."""

import re
from typing import Any, Optional

_NON_DIGITS = re.compile(r"\D")


def normalize_cpf(value: Any) -> Optional[str]:
    """
    Return the CPF as an 11-digit string, or None if it cannot be one.

    Spreadsheets often store CPFs as numbers, which drops leading zeros
    (and sometimes adds a trailing ".0"); those are restored here.
    """
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, float):
        if not value.is_integer():
            return None
        value = int(value)

    digits = _NON_DIGITS.sub("", str(value).strip())
    if not digits or len(digits) > 11:
        return None
    return digits.zfill(11)
