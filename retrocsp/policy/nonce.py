"""Random nonce generation for retrofitted policies."""

from __future__ import annotations

import base64
import secrets
import string
from collections.abc import Callable

_ALPHABET = string.ascii_uppercase + string.ascii_lowercase + string.digits

NONCE_BYTES = 16

NonceFactory = Callable[[], str]


def generate_nonce(length: int = NONCE_BYTES) -> str:
    """Generate a base64-encoded nonce from ``length`` CSPRNG bytes.

    Each byte is mapped onto a 62-symbol alphanumeric alphabet and the
    resulting token is base64-encoded so it is safe inside an HTML attribute.
    """
    token = "".join(_ALPHABET[value % len(_ALPHABET)] for value in secrets.token_bytes(length))
    return base64.b64encode(token.encode("ascii")).decode("ascii")
