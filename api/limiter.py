"""
api/limiter.py -- The one slowapi Limiter for the whole app.

api/main.py mounts it (app.state.limiter + SlowAPIMiddleware); route modules
decorate handlers with @limiter.limit(). All limits share one in-memory
counter store, so there must be exactly one instance.

Keyed by the socket peer address. X-Forwarded-For is client-supplied and only
feeds the activity and audit rows (auth.dependencies.client_ip), never the
bucket. RATE_LIMIT_ENABLED=false turns every limit off; the test suite runs
that way.
"""

from slowapi import Limiter
from slowapi.util import get_remote_address

from core.config import get_settings

limiter = Limiter(key_func=get_remote_address, storage_uri="memory://", enabled=get_settings().rate_limit_enabled)
