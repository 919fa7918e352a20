"""
api/limiter.py -- Shared slowapi rate limiter instance.

Import this in both api/main.py (to mount as middleware) and the routers
under api/routes/v1/ (to apply per-route limits with @limiter.limit()).

Using a single shared instance ensures all routes share the same in-memory
counter store. If this were instantiated in each module separately, each
module would get its own isolated counter and rate limits would never trigger.

Limits come from settings: DEFAULT_RATE_LIMIT applies to every route,
LOGIN_RATE_LIMIT to the credential-guessing surfaces (login and reset
request). RATE_LIMIT_ENABLED=false turns the limiter off (tests, or when a
proxy in front already limits).
"""

from slowapi import Limiter
from slowapi.util import get_remote_address

from core.config import get_settings

_settings = get_settings()

LOGIN_RATE_LIMIT = _settings.login_rate_limit

limiter = Limiter(
    key_func=get_remote_address,
    default_limits=[_settings.default_rate_limit],
    storage_uri="memory://",
    enabled=_settings.rate_limit_enabled,
)
