"""
Simple in-memory rate limiter for the public ingestion endpoints.
Protects the tracker API, which accepts unauthenticated traffic from any origin.
"""
import time
from collections import defaultdict
from typing import Dict, Tuple
from fastapi import HTTPException, Request, status

import structlog

from app.core.config import settings

logger = structlog.get_logger(__name__)


class RateLimiter:
    """
    In-memory rate limiter using sliding window algorithm.
    For production with multiple workers, use Redis-based solution.
    """

    def __init__(self):
        # {ip: [timestamp, ...]}
        self._requests: Dict[str, list] = defaultdict(list)

    def _cleanup_old_requests(self, ip: str, window_seconds: int, now: float) -> list:
        """Remove requests older than the window; drop the IP once none remain."""
        cutoff = now - window_seconds
        kept = [ts for ts in self._requests.get(ip, ()) if ts > cutoff]
        if kept:
            self._requests[ip] = kept
        else:
            self._requests.pop(ip, None)
        return kept

    def is_rate_limited(self, ip: str, max_requests: int = 10, window_seconds: int = 60) -> Tuple[bool, int]:
        """
        Check if IP is rate limited.
        Returns (is_limited, retry_after_seconds)
        """
        now = time.time()
        recent = self._cleanup_old_requests(ip, window_seconds, now)

        if len(recent) >= max_requests:
            oldest = recent[0]
            return True, max(1, int(oldest + window_seconds - now))

        return False, 0

    def record_request(self, ip: str):
        """Record a request from an IP."""
        self._requests[ip].append(time.time())

    def clear(self):
        self._requests.clear()


# Global rate limiter instance
rate_limiter = RateLimiter()


def get_client_ip(request: Request) -> str:
    """Extract client IP, handling proxies."""
    forwarded = request.headers.get("X-Forwarded-For")
    if forwarded:
        # First IP in the list is the client
        return forwarded.split(",")[0].strip()

    real_ip = request.headers.get("X-Real-IP")
    if real_ip:
        return real_ip

    if request.client:
        return request.client.host

    return "unknown"


def ingest_rate_limit(request: Request) -> None:
    """
    FastAPI dependency limiting ingestion calls per client IP.

    ``INGEST_RATE_LIMIT`` requests per minute; 0 disables the limit.
    """
    if settings.INGEST_RATE_LIMIT <= 0:
        return

    ip = get_client_ip(request)
    is_limited, retry_after = rate_limiter.is_rate_limited(ip, settings.INGEST_RATE_LIMIT, 60)
    if is_limited:
        logger.warning("Ingestion rate limit hit", ip=ip, path=request.url.path)
        raise HTTPException(
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            detail="Too many requests",
            headers={"Retry-After": str(retry_after)},
        )

    rate_limiter.record_request(ip)
