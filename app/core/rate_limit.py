from slowapi import Limiter
from slowapi.util import get_remote_address
from starlette.requests import Request

OPTIONS_RATE_LIMIT = "10/minute"
VERIFY_RATE_LIMIT = "5/minute"
LOGIN_RATE_LIMIT = "10/minute"


def get_real_client_ip(request: Request) -> str:
    # First hop of X-Forwarded-For is the client when running behind the proxy
    forwarded = request.headers.get("X-Forwarded-For")
    if forwarded:
        first_hop = forwarded.split(",")[0].strip()
        if first_hop:
            return first_hop
    return get_remote_address(request)


# Clients are identified by their IP address
limiter = Limiter(key_func=get_real_client_ip)
