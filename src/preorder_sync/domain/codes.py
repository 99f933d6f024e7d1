from __future__ import annotations

import re
import uuid

CODE_LENGTH = 8
_CODE_RE = re.compile(r"^[A-Z0-9]{%d}$" % CODE_LENGTH)


def generate_confirmation_code() -> str:
    """Return a random 8-character uppercase code (hex digits of a uuid4).

    32 random bits per code; callers retry on the unique-constraint collision.
    """
    return uuid.uuid4().hex[:CODE_LENGTH].upper()


def normalize_code(value: str) -> str:
    """Trim and uppercase user input (typed or scanned) for lookup."""
    return (value or "").strip().upper()


def looks_like_code(value: str) -> bool:
    return bool(_CODE_RE.match(normalize_code(value)))
