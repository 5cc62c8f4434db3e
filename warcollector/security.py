"""Rate limiting for the HTTP surface."""

from slowapi import Limiter
from slowapi.util import get_remote_address

# Rate limiter using client IP
limiter = Limiter(key_func=get_remote_address)
