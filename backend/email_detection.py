"""
Syntactic email-likeness checks used to flag CSV rows.

Only the shape of the value is checked: no DNS/MX lookups and no
internationalized addresses. Local part and domain must start and end with a
letter or digit; the final domain label must be at least two letters.
Repeated interior dots in the local part (a..b@example.com) are accepted.
"""

import re
from collections.abc import Iterable

EMAIL_PATTERN = re.compile(
    r"[A-Za-z0-9]([A-Za-z0-9._%+-]*[A-Za-z0-9])?"
    r"@[A-Za-z0-9]([A-Za-z0-9.-]*[A-Za-z0-9])?"
    r"\.[A-Za-z]{2,}",
    re.IGNORECASE | re.ASCII,
)


def is_likely_email(value: str) -> bool:
    """
    Check whether a field value looks like an email address.

    Surrounding whitespace is ignored. The whole remaining value must match,
    so "contact: bob@example.com" is not an email.
    """
    value = value.strip()
    if not value:
        return False
    return EMAIL_PATTERN.fullmatch(value) is not None


def row_has_likely_email(fields: Iterable[str]) -> bool:
    """Return True if any field in the row looks like an email address."""
    return any(is_likely_email(field) for field in fields)
