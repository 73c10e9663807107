"""
Per-client token bucket rate limiting.

Every client address gets its own bucket, created lazily on first sight.
Buckets refill continuously at `requests_per_minute / 60` tokens per second
up to a capacity of `requests_per_minute`. The address map is bounded: when it
grows past `max_clients` the least recently used bucket is dropped.

Client addresses come from proxy headers when present, so they can be spoofed.
This gate protects the server from accidental floods, it is not a security
boundary.
"""
import ipaddress
import logging
import threading
import time
from collections import OrderedDict
from dataclasses import dataclass
from typing import Callable, Optional

from starlette.datastructures import Headers
from starlette.responses import JSONResponse
from starlette.types import ASGIApp, Receive, Scope, Send
from starlette.websockets import WebSocket

logger = logging.getLogger(__name__)

FALLBACK_ADDRESS = "127.0.0.1"
RATE_LIMITED_BODY = {"error": "Rate limit exceeded", "message": "Too many requests"}


@dataclass
class TokenBucket:
    """Token bucket state for a single client."""

    capacity: float
    refill_per_second: float
    tokens: float
    last_refill: float

    def refill(self, now: float) -> None:
        elapsed = max(0.0, now - self.last_refill)
        self.tokens = min(self.capacity, self.tokens + elapsed * self.refill_per_second)
        self.last_refill = now

    def try_consume(self, now: float) -> bool:
        self.refill(now)
        if self.tokens >= 1:
            self.tokens -= 1
            return True
        return False


class ClientRateLimiter:
    """
    Address -> TokenBucket map shared by every request.

    Attributes:
        requests_per_minute: Bucket capacity and per-minute refill.
        max_clients: Number of buckets kept before LRU eviction.
    """

    def __init__(
        self,
        requests_per_minute: int = 60,
        max_clients: int = 10000,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if requests_per_minute < 1:
            raise ValueError("requests_per_minute must be at least 1")
        self.requests_per_minute = requests_per_minute
        self.max_clients = max_clients
        self._clock = clock
        self._buckets: "OrderedDict[str, TokenBucket]" = OrderedDict()
        self._lock = threading.Lock()

        logger.info(
            "Rate limiter configured: %s requests per minute per client (max %s clients)",
            requests_per_minute, max_clients,
        )

    def __len__(self) -> int:
        with self._lock:
            return len(self._buckets)

    def _new_bucket(self, now: float) -> TokenBucket:
        return TokenBucket(
            capacity=float(self.requests_per_minute),
            refill_per_second=self.requests_per_minute / 60.0,
            tokens=float(self.requests_per_minute),
            last_refill=now,
        )

    def try_acquire(self, address: str) -> bool:
        """Consume one token for `address`; False when its bucket is empty."""
        now = self._clock()
        with self._lock:
            bucket = self._buckets.get(address)
            if bucket is None:
                bucket = self._new_bucket(now)
                self._buckets[address] = bucket
                while len(self._buckets) > self.max_clients:
                    evicted, _ = self._buckets.popitem(last=False)
                    logger.debug("Evicted rate limit bucket for %s", evicted)
            else:
                self._buckets.move_to_end(address)
            allowed = bucket.try_consume(now)

        if allowed:
            logger.debug("Rate limit check passed for %s", address)
        else:
            logger.warning("Rate limit exceeded for %s", address)
        return allowed

    def remaining(self, address: str) -> Optional[float]:
        """Tokens currently left for `address`, or None if it was never seen."""
        with self._lock:
            bucket = self._buckets.get(address)
            if bucket is None:
                return None
            bucket.refill(self._clock())
            return bucket.tokens


def _parse_ip(value: Optional[str]) -> Optional[str]:
    if not value:
        return None
    value = value.strip()
    try:
        return str(ipaddress.ip_address(value))
    except ValueError:
        return None


def resolve_client_address(headers: Headers, peer: Optional[str] = None) -> str:
    """X-Forwarded-For (first hop), then X-Real-IP, then the peer, then loopback."""
    forwarded = headers.get("x-forwarded-for")
    if forwarded:
        address = _parse_ip(forwarded.split(",")[0])
        if address:
            return address

    address = _parse_ip(headers.get("x-real-ip"))
    if address:
        return address

    return _parse_ip(peer) or FALLBACK_ADDRESS


def client_address_from_scope(scope: Scope) -> str:
    client = scope.get("client")
    peer = client[0] if client else None
    return resolve_client_address(Headers(scope=scope), peer)


class RateLimitMiddleware:
    """ASGI admission gate in front of every HTTP request and WebSocket handshake."""

    def __init__(self, app: ASGIApp, limiter: ClientRateLimiter) -> None:
        self.app = app
        self.limiter = limiter

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] not in ("http", "websocket"):
            await self.app(scope, receive, send)
            return

        address = client_address_from_scope(scope)
        if self.limiter.try_acquire(address):
            await self.app(scope, receive, send)
            return

        if scope["type"] == "websocket":
            websocket = WebSocket(scope, receive=receive, send=send)
            await websocket.close(code=1008, reason="Rate limit exceeded")
            return

        response = JSONResponse(RATE_LIMITED_BODY, status_code=429)
        await response(scope, receive, send)
