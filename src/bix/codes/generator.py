"""Redemption and referral code generation.

Codes are 8 characters from a 32-symbol alphabet without the look-alike
glyphs 0/O and 1/I, generated with a cryptographic random source.
"""

from __future__ import annotations

import secrets

CODE_ALPHABET = "ABCDEFGHJKLMNPQRSTUVWXYZ23456789"
CODE_LENGTH = 8
MIN_CODE_LENGTH = 6


def generate_code(length: int = CODE_LENGTH) -> str:
    """Generate a cryptographically random code."""
    return "".join(secrets.choice(CODE_ALPHABET) for _ in range(length))


def normalize_code(code: str) -> str:
    """Trim and uppercase a user-typed code for lookup."""
    return code.strip().upper()


def is_well_formed(code: object) -> bool:
    """Cheap syntactic check before touching the database."""
    return isinstance(code, str) and len(code.strip()) >= MIN_CODE_LENGTH
