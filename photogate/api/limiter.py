"""Shared rate limiter for the public moderation endpoints.

Uses slowapi (Starlette-compatible rate limiting), keyed by client address.
The check endpoint runs a full decode + inference per call, so it is capped
per client to keep one caller from saturating the inference pool.

The Limiter instance is created here and shared between:
  - photogate/api/router.py (route decorators)
  - photogate/main.py       (app.state.limiter + SlowAPIMiddleware registration)
"""

from slowapi import Limiter
from slowapi.util import get_remote_address

limiter = Limiter(key_func=get_remote_address)
