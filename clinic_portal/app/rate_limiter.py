"""
Login attempt throttling keyed by caller address.

Counters are best-effort: the in-memory backend resets on restart, the redis
backend is shared by every worker pointed at the same REDIS_URL.
"""

import logging
import time
from threading import Lock

from fastapi import Request
from redis.exceptions import RedisError

from .config import LOGIN_RATE_LIMIT_BACKEND, LOGIN_MAX_ATTEMPTS, LOGIN_WINDOW_SECONDS
from .dependencies import get_redis_client
from .errors import TooManyAttempts


class MemoryLoginThrottle:
    """Bounded, expiring attempt counter owned by the process."""

    def __init__(self, max_attempts=LOGIN_MAX_ATTEMPTS, window_seconds=LOGIN_WINDOW_SECONDS,
                 max_entries=10000, clock=time.monotonic):
        self.max_attempts = max_attempts
        self.window_seconds = window_seconds
        self.max_entries = max_entries
        self.clock = clock
        self._attempts = {}  # key -> (count, expires_at)
        self._lock = Lock()

    def hit(self, key):
        """Register an attempt; returns False once the key is over its budget."""
        now = self.clock()
        with self._lock:
            count, expires_at = self._attempts.get(key, (0, 0))
            if expires_at > now:
                if count >= self.max_attempts:
                    return False
                self._attempts[key] = (count + 1, expires_at)
            else:
                if len(self._attempts) >= self.max_entries:
                    self._prune(now)
                self._attempts[key] = (1, now + self.window_seconds)
            return True

    def reset(self):
        with self._lock:
            self._attempts.clear()

    def _prune(self, now):
        expired = [k for k, (_, expires_at) in self._attempts.items() if expires_at <= now]
        for k in expired:
            del self._attempts[k]
        # Still full: evict the entries closest to expiring
        overflow = len(self._attempts) - self.max_entries + 1
        if overflow > 0:
            for k, _ in sorted(self._attempts.items(), key=lambda item: item[1][1])[:overflow]:
                del self._attempts[k]


class RedisLoginThrottle:
    def __init__(self, redis_client, max_attempts=LOGIN_MAX_ATTEMPTS, window_seconds=LOGIN_WINDOW_SECONDS):
        self.redis_client = redis_client
        self.max_attempts = max_attempts
        self.window_seconds = window_seconds

    def hit(self, key):
        redis_key = f"login_attempts:{key}"
        try:
            count = self.redis_client.incr(redis_key)
            if count == 1:
                self.redis_client.expire(redis_key, self.window_seconds)
        except RedisError as e:
            # Fail open while redis is unreachable
            logging.error(f"Login throttle unavailable, allowing request: {str(e)}")
            return True
        return count <= self.max_attempts

    def reset(self):
        for redis_key in self.redis_client.scan_iter("login_attempts:*"):
            self.redis_client.delete(redis_key)


def build_login_throttle(backend=LOGIN_RATE_LIMIT_BACKEND):
    if backend == "redis":
        return RedisLoginThrottle(get_redis_client())
    return MemoryLoginThrottle()


login_throttle = build_login_throttle()


def client_address(request: Request):
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return request.client.host if request.client else "unknown"


def login_rate_limit(request: Request):
    """Dependency for sign-in endpoints."""
    key = f"{client_address(request)}:login"
    if not login_throttle.hit(key):
        logging.warning(f"Too many login attempts from {key}")
        raise TooManyAttempts(f"Too many attempts. Try again in {LOGIN_WINDOW_SECONDS // 60} minutes.")
