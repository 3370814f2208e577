"""Rate limiting configuration using slowapi."""

from slowapi import Limiter
from slowapi.util import get_remote_address

# Limits the cheap catalog endpoints; generation calls go through the
# gateway's per-caller FixedWindowRateLimiter instead.
limiter = Limiter(key_func=get_remote_address)
