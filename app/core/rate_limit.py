"""Per-IP rate limiting (SlowAPI), proxy aware (X-Forwarded-For)."""
from fastapi import Request

from slowapi import Limiter

from .config import settings


def client_ip(request: Request) -> str:
    """Real client IP behind a proxy (Nginx, load balancer)."""
    xff = request.headers.get("x-forwarded-for")
    if xff:
        return xff.split(",")[0].strip()
    if request.client and request.client.host:
        return request.client.host
    return "127.0.0.1"


limiter = Limiter(key_func=client_ip)


def write_rate_limit() -> str:
    """Per-IP limit on write endpoints; read from settings on every request."""
    return f"{settings.rate_limit_per_minute}/minute"
