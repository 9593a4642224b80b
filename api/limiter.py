"""
api/limiter.py -- Fixed-window rate limiting.

One RateLimiter class with a pluggable cleanup strategy replaces per-concern
limiter copies:

  SweepOnSize    -- request path. When more than `threshold` identifiers are
                    tracked, the next check sweeps expired entries.
  ScheduledSweep -- standalone limiters. An asyncio task started in the app
                    lifespan sweeps every `interval` seconds.

Limiter instances are built per application in api/main.py's lifespan and
reached through request.app.state. Nothing here is a module-level singleton,
so every test (and every app) gets isolated counters.

Algorithm (fixed window, not sliding):
  no entry, or now > reset_time -> count = 1, reset_time = now + window, allow
  count >= max                  -> deny; count is NOT incremented
  otherwise                     -> count += 1, allow
remaining = max - count after the decision. Denials are counted separately so
callers can report only the first one in each window.

Identifiers come from proxy headers. Requests carrying none of them share the
single "unknown" bucket; that is a known weakness behind a misconfigured proxy.

FastAPI runs sync handlers in a thread pool, so the counter map is guarded by
a threading.Lock.
"""

from __future__ import annotations

import asyncio
import logging
import math
import threading
import time
from collections.abc import Callable, Mapping
from dataclasses import dataclass

from fastapi import HTTPException, Request

logger = logging.getLogger("agentpro.ratelimit")

_IDENTIFIER_HEADERS = ("x-forwarded-for", "x-real-ip", "cf-connecting-ip")


def client_identifier(headers: Mapping[str, str]) -> str:
    """Return the client id for rate limiting.

    Order: first X-Forwarded-For entry, X-Real-IP, CF-Connecting-IP, else
    "unknown".
    """
    for name in _IDENTIFIER_HEADERS:
        value = headers.get(name)
        if value:
            first = value.split(",")[0].strip()
            if first:
                return first
    return "unknown"


# ---------------------------------------------------------------------------
# Core types
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class RateLimitPolicy:
    name: str
    window_seconds: float
    max_requests: int

    @property
    def retry_after(self) -> int:
        """Retry-After hint: the full window length, not the time left in it."""
        return math.ceil(self.window_seconds)


@dataclass
class RateLimitEntry:
    count: int
    reset_time: float
    denied: int = 0


@dataclass(frozen=True)
class RateLimitResult:
    limited: bool
    remaining: int
    reset_in: float
    # True only for the first denied request of a window.
    first_denial: bool = False


class SweepOnSize:
    """Sweep expired entries once the map tracks more than threshold identifiers."""

    def __init__(self, threshold: int = 10_000) -> None:
        self.threshold = threshold

    def after_check(self, limiter: "RateLimiter") -> None:
        if limiter.size > self.threshold:
            limiter.sweep()


class ScheduledSweep:
    """Sweep on a timer. run() is the coroutine the lifespan schedules."""

    def __init__(self, interval: float = 60) -> None:
        self.interval = interval

    def after_check(self, limiter: "RateLimiter") -> None:
        pass

    async def run(self, limiter: "RateLimiter") -> None:
        while True:
            await asyncio.sleep(self.interval)
            removed = limiter.sweep()
            if removed:
                logger.debug("Scheduled sweep removed %d entries", removed)


class RateLimiter:
    """Fixed-window counters keyed by identifier.

    Args:
        cleanup: SweepOnSize or ScheduledSweep.
        clock:   Monotonic seconds. Injected in tests.
    """

    def __init__(self, cleanup: SweepOnSize | ScheduledSweep | None = None, clock: Callable[[], float] = time.monotonic) -> None:
        self.cleanup = cleanup if cleanup is not None else SweepOnSize()
        self.clock = clock
        self._entries: dict[str, RateLimitEntry] = {}
        self._lock = threading.Lock()

    @property
    def size(self) -> int:
        return len(self._entries)

    def check(self, key: str, policy: RateLimitPolicy) -> RateLimitResult:
        """Count one request for key under policy and return the decision."""
        with self._lock:
            now = self.clock()
            entry = self._entries.get(key)
            if entry is None or now > entry.reset_time:
                entry = RateLimitEntry(count=1, reset_time=now + policy.window_seconds)
                self._entries[key] = entry
                limited = False
            elif entry.count >= policy.max_requests:
                entry.denied += 1
                limited = True
            else:
                entry.count += 1
                limited = False
            result = RateLimitResult(
                limited=limited,
                remaining=max(policy.max_requests - entry.count, 0),
                reset_in=max(entry.reset_time - now, 0.0),
                first_denial=limited and entry.denied == 1,
            )
        self.cleanup.after_check(self)
        return result

    def sweep(self) -> int:
        """Drop every entry whose window has passed. Returns the number removed."""
        with self._lock:
            now = self.clock()
            expired = [key for key, entry in self._entries.items() if now > entry.reset_time]
            for key in expired:
                del self._entries[key]
        return len(expired)

    def reset(self) -> None:
        with self._lock:
            self._entries.clear()


# ---------------------------------------------------------------------------
# Middleware tier selection
# ---------------------------------------------------------------------------

# Exempt by exact path: session checks and auth helpers the browser calls on
# every page.
EXEMPT_PATHS = frozenset(
    {
        "/api/auth/session",
        "/api/auth/error",
        "/api/auth/providers",
        "/api/auth/csrf",
    }
)

# Credential submission endpoints get the strict auth tier.
AUTH_TIER_PATHS = ("/api/auth/login", "/api/auth/callback", "/api/auth/signin")


@dataclass(frozen=True)
class RateLimitTiers:
    api: RateLimitPolicy
    auth: RateLimitPolicy

    def select(self, path: str) -> RateLimitPolicy | None:
        """Return the policy for path, or None when the path is not limited."""
        if not path.startswith("/api/"):
            return None
        if path in EXEMPT_PATHS or path == "/api/health" or path.startswith("/api/health/"):
            return None
        if path.startswith(AUTH_TIER_PATHS):
            return self.auth
        return self.api


def rate_limit_key(identifier: str, policy: RateLimitPolicy) -> str:
    return f"{identifier}:{policy.name}"


# ---------------------------------------------------------------------------
# Standalone limiters as route dependencies
# ---------------------------------------------------------------------------


def rate_limit_dependency(limiter_attr: str, policy_attr: str) -> Callable[[Request], None]:
    """Build a dependency enforcing app.state.<limiter_attr> with app.state.<policy_attr>.

    Usage:
        @router.post("/files", dependencies=[Depends(rate_limit_dependency("upload_limiter", "upload_policy"))])
    """

    def _dependency(request: Request) -> None:
        limiter: RateLimiter = getattr(request.app.state, limiter_attr)
        policy: RateLimitPolicy = getattr(request.app.state, policy_attr)
        identifier = client_identifier(request.headers)
        result = limiter.check(rate_limit_key(identifier, policy), policy)
        if result.limited:
            logger.warning("Rate limit exceeded (tier=%s client=%s path=%s)", policy.name, identifier, request.url.path)
            raise HTTPException(
                status_code=429,
                detail="Too many requests",
                headers={"Retry-After": str(policy.retry_after), "X-RateLimit-Remaining": "0"},
            )

    return _dependency
