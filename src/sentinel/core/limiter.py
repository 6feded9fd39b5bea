"""Rate limits for operator endpoints that start remote work."""
from slowapi import Limiter
from slowapi.util import get_remote_address

from src.sentinel.core.config import settings

# Keyed by client IP
limiter = Limiter(key_func=get_remote_address)

ROLLBACK_LIMIT = settings.ROLLBACK_RATE_LIMIT
