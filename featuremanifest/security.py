"""API authentication and rate limiting."""

from __future__ import annotations

import hmac
import ipaddress
import logging
import os
import re
import threading
import time
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from datetime import timedelta

logger = logging.getLogger(__name__)

_DEFAULT_RATE_LIMIT = 100
_WINDOW_SECONDS = 60.0
_U32_MAX = 2**32 - 1
_LOCALHOST = ipaddress.ip_address("127.0.0.1")

IPAddress = ipaddress.IPv4Address | ipaddress.IPv6Address


class RequestRejected(Exception):
    """A request was refused; ``status_code`` is the HTTP status to answer with."""

    def __init__(self, status_code: int, message: str) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.message = message


class RateLimiter:
    """In-memory sliding-window rate limiter keyed by client IP."""

    def __init__(self, max_requests: int, window: float | timedelta) -> None:
        self.max_requests = max_requests
        self.window = window.total_seconds() if isinstance(window, timedelta) else float(window)
        self._requests: dict[IPAddress, list[float]] = {}
        self._lock = threading.Lock()

    def check(self, ip: str | IPAddress) -> bool:
        """Record a request from ``ip``; return False if it exceeds the limit."""
        address = ipaddress.ip_address(ip) if isinstance(ip, str) else ip
        now = time.monotonic()
        cutoff = now - self.window
        with self._lock:
            stamps = [t for t in self._requests.get(address, []) if t > cutoff]
            allowed = len(stamps) < self.max_requests
            if allowed:
                stamps.append(now)
            self._requests[address] = stamps
        return allowed

    def cleanup(self) -> None:
        """Drop expired timestamps and clients with none left."""
        cutoff = time.monotonic() - self.window
        with self._lock:
            remaining = {
                ip: [t for t in stamps if t > cutoff] for ip, stamps in self._requests.items()
            }
            self._requests = {ip: stamps for ip, stamps in remaining.items() if stamps}

    def __len__(self) -> int:
        """Number of clients currently tracked."""
        with self._lock:
            return len(self._requests)


def _parse_u32(text: str) -> int | None:
    if not re.fullmatch(r"\+?[0-9]+", text):
        return None
    value = int(text)
    return value if value <= _U32_MAX else None


@dataclass
class SecurityConfig:
    """Authentication, CORS and rate-limit settings for the API."""

    api_key: str | None = field(default=None, repr=False)
    cors_origins: list[str] | None = None
    rate_limiter: RateLimiter | None = None

    @classmethod
    def from_env(cls) -> SecurityConfig:
        """Load settings from MANIFEST_API_KEY, MANIFEST_CORS_ORIGINS and MANIFEST_RATE_LIMIT."""
        api_key = os.environ.get("MANIFEST_API_KEY")
        origins_text = os.environ.get("MANIFEST_CORS_ORIGINS")
        cors_origins = (
            [origin.strip() for origin in origins_text.split(",")]
            if origins_text is not None
            else None
        )
        limit_text = os.environ.get("MANIFEST_RATE_LIMIT")
        limit = _parse_u32(limit_text) if limit_text is not None else None
        if limit is None:
            limit = _DEFAULT_RATE_LIMIT
        # Rate limiting only applies in remote mode, i.e. when a key is set.
        rate_limiter = RateLimiter(limit, _WINDOW_SECONDS) if api_key is not None else None
        return cls(api_key=api_key, cors_origins=cors_origins, rate_limiter=rate_limiter)

    @classmethod
    def disabled(cls) -> SecurityConfig:
        """No authentication, CORS restriction or rate limiting."""
        return cls()

    @classmethod
    def with_api_key(cls, key: str) -> SecurityConfig:
        """Authentication enabled with the given key."""
        return cls(api_key=key)

    @classmethod
    def with_cors_origins(cls, origins: Iterable[str]) -> SecurityConfig:
        """Restrict CORS to the given origins."""
        return cls(cors_origins=list(origins))

    @classmethod
    def with_rate_limit(cls, max_requests: int) -> SecurityConfig:
        """Rate limiting enabled at ``max_requests`` per minute."""
        return cls(rate_limiter=RateLimiter(max_requests, _WINDOW_SECONDS))


def _header(headers: Mapping[str, str], name: str) -> str | None:
    lowered = name.lower()
    return next(
        (value for key, value in headers.items() if key.lower() == lowered), None
    )


def authorize(config: SecurityConfig, headers: Mapping[str, str]) -> bool:
    """Check the bearer token in ``headers`` against the configured key.

    Returns False when no key is configured (nothing to check), True when the
    token matched; raises RequestRejected with status 401 otherwise.
    """
    expected = config.api_key
    if expected is None:
        return False
    header = _header(headers, "Authorization")
    if header is None:
        logger.warning("Missing Authorization header")
        raise RequestRejected(401, "Missing Authorization header")
    if not header.startswith("Bearer "):
        logger.warning("Invalid Authorization header format")
        raise RequestRejected(401, "Invalid Authorization header format")
    supplied = header[len("Bearer "):]
    if not hmac.compare_digest(supplied.encode(), expected.encode()):
        logger.warning("Invalid API key provided")
        raise RequestRejected(401, "Invalid API key")
    return True


def rate_limit(limiter: RateLimiter, headers: Mapping[str, str]) -> IPAddress:
    """Count a request against its client IP; raise RequestRejected (429) if over limit."""
    ip = extract_client_ip(headers)
    if not limiter.check(ip):
        logger.warning("Rate limit exceeded for IP: %s", ip)
        raise RequestRejected(429, "Too many requests")
    return ip


def _parse_ip(text: str) -> IPAddress | None:
    try:
        return ipaddress.ip_address(text.strip())
    except ValueError:
        return None


def extract_client_ip(headers: Mapping[str, str]) -> IPAddress:
    """Client IP from X-Forwarded-For, then X-Real-IP, else 127.0.0.1."""
    forwarded = _header(headers, "X-Forwarded-For")
    if forwarded is not None:
        ip = _parse_ip(forwarded.split(",")[0])
        if ip is not None:
            return ip
    real_ip = _header(headers, "X-Real-IP")
    if real_ip is not None:
        ip = _parse_ip(real_ip)
        if ip is not None:
            return ip
    return _LOCALHOST