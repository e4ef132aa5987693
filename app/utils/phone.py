"""Phone number utility functions."""

import re

E164_PATTERN = re.compile(r"^\+\d{8,15}$")


def normalize_phone(phone: str | None) -> str:
    """Strip formatting characters from a phone number.

    Removes spaces, dashes, dots and parentheses and keeps a single leading
    ``+`` if one was present.

    Examples:
        >>> normalize_phone("+1 (415) 555-0100")
        '+14155550100'
        >>> normalize_phone(None)
        ''
    """
    if not phone:
        return ""

    phone = re.sub(r"[^\d+]", "", phone.strip())

    # Keep only a leading +
    if "+" in phone:
        leading = phone.startswith("+")
        phone = phone.replace("+", "")
        if leading:
            phone = "+" + phone

    return phone


def is_e164(phone: str | None) -> bool:
    """Return True for ``+`` followed by 8 to 15 digits."""
    return bool(phone) and E164_PATTERN.match(phone) is not None
