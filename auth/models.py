"""
auth/models.py -- Domain dataclass for authentication entities.

Pattern: Data class (pure data container, zero logic). The store maps rows
to User; routes map User to response models.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

from dataclasses import dataclass


@dataclass
class User:
    """A locally registered account.

    email is the login identifier and is unique across the users table.
    hashed_password is a bcrypt hash -- the plaintext is never stored.
    """

    email: str
    name: str
    hashed_password: str
    id: int | None = None
    created_at: str | None = None
