"""ULID generation utility for Photogate.

Provides a single `generate_ulid()` function that returns a 26-character ULID
(Universally Unique Lexicographically Sortable Identifier) suitable for use as:
  - moderation_id on every gate decision (logged, and echoed in rejection bodies)
  - X-Moderation-ID response header value
  - request_id bound to the logging context for one HTTP request

Uses the `python-ulid` library (see pyproject.toml) — do NOT hand-roll ULID generation.
"""

from __future__ import annotations

from ulid import ULID


def generate_ulid() -> str:
    """Generate a new ULID as a 26-character uppercase string.

    Returns:
        str: A 26-character ULID string in Crockford Base32.
    """
    return str(ULID())
