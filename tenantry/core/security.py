"""
Credential primitives: password hashing, token hashing, random identifiers.
"""

from __future__ import annotations

import hashlib
import secrets

import bcrypt

# ---------------------------------------------------------------------------
# Password hashing
# ---------------------------------------------------------------------------

def hash_password(password: str) -> str:
    """Hash a password using bcrypt with cost factor 12."""
    return bcrypt.hashpw(password.encode(), bcrypt.gensalt(rounds=12)).decode()


def verify_password(password: str, hashed: str) -> bool:
    """Verify a password against a bcrypt hash."""
    try:
        return bcrypt.checkpw(password.encode(), hashed.encode())
    except ValueError:
        # Malformed stored hash
        return False


# ---------------------------------------------------------------------------
# Refresh token hashing
# ---------------------------------------------------------------------------

def hash_token(token: str) -> str:
    """One-way SHA-256 digest used as the storage key for refresh tokens."""
    return hashlib.sha256(token.encode()).hexdigest()


def generate_token_id() -> str:
    """Random identifier embedded in each refresh token (32 bytes, hex)."""
    return secrets.token_hex(32)


def generate_invitation_token() -> str:
    """URL-safe invitation token, 32 characters."""
    return secrets.token_urlsafe(24)
