# mynd_identity.py
# Content-derived identity for todo messages
# License: MIT

from __future__ import annotations
import hashlib

SHORT_ID_LEN = 8


def content_hash(message: str) -> str:
    """Lowercase hex SHA-256 of the exact (already normalized) message text."""
    return hashlib.sha256(message.encode("utf-8")).hexdigest()


def short_id(todo_id: str) -> str:
    return todo_id[:SHORT_ID_LEN]
