from slowapi import Limiter
from slowapi.util import get_remote_address

# If later behind a proxy, parse X-Forwarded-For here.
limiter = Limiter(key_func=get_remote_address)

__all__ = ["limiter"]
