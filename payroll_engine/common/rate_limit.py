"""Per-client rate limiting using slowapi.

The module-level Limiter is wired into the FastAPI app in main.py; routers
can tighten individual endpoints with ``@limiter.limit("N/period")``.
"""

from slowapi import Limiter
from slowapi.util import get_remote_address

from payroll_engine.config import settings

limiter = Limiter(
    key_func=get_remote_address,
    default_limits=[settings.RATE_LIMIT_DEFAULT],
)
