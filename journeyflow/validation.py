"""Small input validators shared by the runtime and the authoring store."""

from __future__ import annotations

import re

from journeyflow.errors import ValidationError

# RFC 5322-ish pattern; accepts the vast majority of real-world emails
_EMAIL_RE = re.compile(
    r"^[a-zA-Z0-9.!#$%&'*+/=?^_`{|}~-]+"
    r"@[a-zA-Z0-9](?:[a-zA-Z0-9-]{0,61}[a-zA-Z0-9])?"
    r"(?:\.[a-zA-Z0-9](?:[a-zA-Z0-9-]{0,61}[a-zA-Z0-9])?)+$"
)

# Must be referenceable as ``@key`` in a template
_VARIABLE_KEY_RE = re.compile(r"^\w+$", re.ASCII)


def validate_email(email: str) -> str:
    """Return the stripped email, or raise ``ValidationError``."""
    if not email or not email.strip():
        raise ValidationError("An email address is required.")
    email = email.strip()
    if not _EMAIL_RE.match(email):
        raise ValidationError(f'"{email}" does not look like a valid email address.')
    return email


def validate_variable_key(key: str) -> str:
    key = (key or "").strip()
    if not _VARIABLE_KEY_RE.match(key):
        raise ValidationError(
            f"Variable key {key!r} must contain only letters, digits and underscores."
        )
    return key
