"""
api/limiter.py -- Shared slowapi rate limiter instance.

Import this in both api/main.py (to mount as middleware) and the v1 routers
(to apply per-route limits with @limiter.limit()).

Using a single shared instance ensures all routes share the same in-memory
counter store. If this were instantiated in each module separately, each
module would get its own isolated counter and rate limits would never trigger.

Limit strings come from Settings, but the routers are decorated at import
time, before Settings exist. The decorators therefore take the zero-argument
callables below, which slowapi evaluates per request. configure_limiter()
(called from the lifespan) fills in the configured values.

Callable limits are only checked by the route decorator, never by
SlowAPIMiddleware, so @limiter.limit() must sit directly under @router.post()
where its wrapper becomes the registered endpoint.
"""

from slowapi import Limiter
from slowapi.util import get_remote_address

from core.config import Settings

limiter = Limiter(key_func=get_remote_address, storage_uri="memory://")

_limits: dict[str, str] = {
    "login": "5/15minutes",
    "password_reset": "3/15minutes",
}


def login_limit() -> str:
    return _limits["login"]


def password_reset_limit() -> str:
    return _limits["password_reset"]


def configure_limiter(settings: Settings) -> None:
    _limits["login"] = settings.login_rate_limit
    _limits["password_reset"] = settings.password_reset_rate_limit
    limiter.enabled = settings.rate_limit_enabled
