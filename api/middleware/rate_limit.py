import asyncio
import logging
import os
import time
from typing import Dict, Optional

from cachetools import TTLCache
from fastapi import Request
from fastapi.responses import JSONResponse

logger = logging.getLogger("rate_limiter")

RATE_LIMIT_PER_MINUTE = int(os.getenv("RATE_LIMIT_PER_MINUTE", "120"))

# Health checks and CORS preflights are never limited
EXEMPT_PATHS = {"/health", "/"}


def client_ip(request: Request) -> Optional[str]:
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()
    real_ip = request.headers.get("x-real-ip")
    if real_ip:
        return real_ip.strip()
    if request.client and request.client.host:
        return request.client.host
    return None


class RateLimitMiddleware:
    """
    Per-IP sliding window limiter. Request timestamps live in a TTLCache
    so idle clients are forgotten after one window.
    """

    def __init__(self, requests_per_minute: int = RATE_LIMIT_PER_MINUTE, window_size: int = 60):
        self.rate_limit = requests_per_minute
        self.window_size = window_size
        self.clients: TTLCache = TTLCache(maxsize=10000, ttl=window_size)
        self.client_locks: Dict[str, asyncio.Lock] = {}
        self.global_lock = asyncio.Lock()

    async def _lock_for(self, ip: str) -> asyncio.Lock:
        async with self.global_lock:
            # Drop locks for clients the cache has already forgotten
            if len(self.client_locks) > self.clients.maxsize:
                self.client_locks = {k: v for k, v in self.client_locks.items() if k in self.clients}
            if ip not in self.client_locks:
                self.client_locks[ip] = asyncio.Lock()
            return self.client_locks[ip]

    async def __call__(self, request: Request, call_next):
        if request.url.path in EXEMPT_PATHS or request.method == "OPTIONS":
            return await call_next(request)

        ip = client_ip(request)
        if not ip:
            logger.warning("Rejecting request without a client IP")
            return JSONResponse(status_code=400, content={"detail": "Client IP required for rate limiting."})

        async with await self._lock_for(ip):
            now = time.time()
            history = [t for t in self.clients.get(ip, []) if t > now - self.window_size]
            if len(history) >= self.rate_limit:
                self.clients[ip] = history
                logger.warning(f"Rate limit exceeded for IP: {ip}")
                return JSONResponse(
                    status_code=429,
                    content={"detail": "Too many requests. Please try again later."},
                )
            history.append(now)
            self.clients[ip] = history

        return await call_next(request)
