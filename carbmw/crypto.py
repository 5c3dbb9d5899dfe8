"""Symmetric protection of token material at rest.

Tokens are encrypted with Fernet (AES-128-CBC + HMAC, random IV) using a key
derived from the account password, so the store never holds usable tokens
and the key itself is never written anywhere.
"""

from __future__ import annotations

import hashlib
from base64 import urlsafe_b64encode

from cryptography.fernet import Fernet, InvalidToken

__all__ = ["InvalidToken", "captcha_fingerprint", "decrypt", "encrypt"]


def _fernet(password: str) -> Fernet:
    raw = hashlib.sha256(password.encode("utf-8")).digest()
    return Fernet(urlsafe_b64encode(raw))


def encrypt(password: str, plaintext: str) -> str:
    """Encrypt ``plaintext`` with a key derived from ``password``."""

    return _fernet(password).encrypt(plaintext.encode("utf-8")).decode("ascii")


def decrypt(password: str, ciphertext: str) -> str:
    """Reverse :func:`encrypt`; raises ``InvalidToken`` on a wrong password."""

    return _fernet(password).decrypt(ciphertext.encode("ascii")).decode("utf-8")


def captcha_fingerprint(captcha_token: str) -> str:
    """Return a stable, non-reversible identifier for a captcha token."""

    return hashlib.sha256(captcha_token.encode("utf-8")).hexdigest()
