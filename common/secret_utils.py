# common/secret_utils.py
# -*- coding: utf-8 -*-
"""Password generation, validation and masking helpers."""

import secrets
import string

from common.errors import ValidationFailed

MIN_PASSWORD_LENGTH = 12
MASK = "********"

_ALPHABET = string.ascii_letters + string.digits


def generate_password(length: int = 20) -> str:
    """Alphanumeric password from the system CSPRNG."""
    return "".join(secrets.choice(_ALPHABET) for _ in range(length))


def validate_password(value: str) -> str:
    if len(value) < MIN_PASSWORD_LENGTH:
        raise ValidationFailed(
            f"Password must be at least {MIN_PASSWORD_LENGTH} characters long"
        )
    return value


def mask_value(value) -> str:
    return MASK if value else ""
