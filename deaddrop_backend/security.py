from __future__ import annotations

import hashlib
import re
import secrets

from .errors import InvalidName


_NAME_RE = re.compile(r"^[A-Za-z0-9_][A-Za-z0-9_-]{0,63}$")


def new_id() -> str:
    """Return 16 hex characters (8 bytes) from the OS CSPRNG.

    The result is used directly as a filename, so it only ever contains
    [0-9a-f].
    """
    return secrets.token_hex(8)


def normalize_name(name: str, kind: str = "name") -> str:
    """Validate a database or table name and return it stripped.

    Names become directory names, so only [A-Za-z0-9_-] is accepted and a
    leading '-' is refused.
    """
    if not isinstance(name, str):
        raise InvalidName(f"Invalid {kind}")
    name = name.strip()
    if not _NAME_RE.match(name):
        raise InvalidName(f"Invalid {kind}")
    return name


def mailbox_key(token: str) -> str:
    """Map a bearer token to its mailbox directory name.

    Tokens are opaque and may contain characters that are unsafe in paths,
    so the directory is named by the token's SHA-256 digest instead.
    """
    return hashlib.sha256(token.encode("utf-8")).hexdigest()
