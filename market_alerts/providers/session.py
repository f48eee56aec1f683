"""Session bootstrap for the NSE market-data API.

The data endpoints reject requests that do not carry the cookies the site
hands out to a browser visiting one of its HTML pages. SessionManager visits
that bootstrap page, keeps the resulting cookies, and re-acquires them on
demand when the fetcher reports a rejection or the session outlives its TTL.
"""

import threading
import time
from typing import Callable, Dict, List, Optional

import requests

from market_alerts.core.errors import AuthFailure
from market_alerts.core.logger import logger
from market_alerts.core.retry import RetryPolicy
from market_alerts.models.datatypes import (
    SESSION_EXPIRED, SESSION_VALID, SessionContext,
)
from market_alerts.providers.base import SessionProvider

BROWSER_HEADERS: Dict[str, str] = {
    "User-Agent": (
        "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
        "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
    ),
    "Accept": "*/*",
    "Accept-Language": "en-US,en;q=0.9",
    "Accept-Encoding": "gzip, deflate",
    "Connection": "keep-alive",
    "Cache-Control": "no-cache",
    "Pragma": "no-cache",
}


class SessionManager(SessionProvider):
    """Owns the one SessionContext shared by every data request in the process.

    Args:
        bootstrap_url: HTML page whose response sets the session cookies.
        base_url: Site origin, sent as Referer/Origin on data requests.
        policy: Attempt bound and backoff between acquisition attempts.
        timeout: Per-attempt request timeout in seconds.
        ttl_seconds: Age after which a valid session is re-acquired anyway.
        required_cookies: Cookie names that must be present for a session to
            count as acquired. Empty means any cookie will do.
        http: Object with a ``requests``-style ``get``; a fresh
            ``requests.Session``, closed after each acquisition, when omitted.
        sleep: Wait function used between attempts.
        clock: Monotonic time source.
    """

    def __init__(
        self,
        bootstrap_url: str,
        base_url: str,
        policy: RetryPolicy = RetryPolicy(max_attempts=3, base_delay=5.0),
        timeout: float = 10.0,
        ttl_seconds: float = 900.0,
        required_cookies: Optional[List[str]] = None,
        http=None,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.bootstrap_url = bootstrap_url
        self.base_url = base_url.rstrip("/")
        self.policy = policy
        self.timeout = timeout
        self.ttl_seconds = ttl_seconds
        self.required_cookies = list(required_cookies or [])
        self._http = http
        self._sleep = sleep
        self._clock = clock
        self._context: Optional[SessionContext] = None
        self._lock = threading.Lock()
        self.acquisitions = 0

    @classmethod
    def from_settings(cls, settings, http=None) -> "SessionManager":
        return cls(
            bootstrap_url=settings.bootstrap_url,
            base_url=settings.base_url,
            policy=RetryPolicy(
                max_attempts=settings.session_attempts,
                base_delay=settings.session_backoff_seconds,
                backoff="linear",
            ),
            timeout=settings.session_timeout,
            ttl_seconds=settings.session_ttl_seconds,
            required_cookies=settings.required_cookies,
            http=http,
        )

    # ── public API ──────────────────────────────────────────────────────────

    @property
    def context(self) -> Optional[SessionContext]:
        return self._context

    def ensure_valid_session(self) -> SessionContext:
        """Return the current session, acquiring a new one if it is missing or stale.

        Raises:
            AuthFailure: After ``policy.max_attempts`` failed acquisitions.
        """
        with self._lock:
            ctx = self._context
            if ctx is not None and ctx.state == SESSION_VALID:
                if self._clock() - ctx.acquired_at < self.ttl_seconds:
                    return ctx
                logger.info("SessionManager: session outlived its TTL, refreshing")
                ctx.state = SESSION_EXPIRED

            try:
                ctx = self.policy.call(
                    self._acquire,
                    retry_on=(AuthFailure, requests.RequestException),
                    sleep=self._sleep,
                )
            except requests.RequestException as exc:
                raise AuthFailure(f"session bootstrap failed: {exc}") from exc

            self._context = ctx
            return ctx

    def invalidate(self) -> None:
        with self._lock:
            if self._context is not None:
                self._context.state = SESSION_EXPIRED
                logger.info("SessionManager: session marked expired")

    # ── internal ─────────────────────────────────────────────────────────────

    def _acquire(self) -> SessionContext:
        """Run one bootstrap request and extract the session cookies."""
        self.acquisitions += 1
        logger.info(f"SessionManager: bootstrapping session from {self.bootstrap_url}")
        if self._http is not None:
            cookies = self._bootstrap(self._http)
        else:
            with requests.Session() as http:
                cookies = self._bootstrap(http)

        missing = [name for name in self.required_cookies if name not in cookies]
        if missing:
            raise AuthFailure(f"bootstrap response lacks required cookies {missing}")

        headers = dict(BROWSER_HEADERS)
        headers["Referer"] = f"{self.base_url}/"
        headers["Origin"] = self.base_url
        logger.info(f"SessionManager: session acquired with {len(cookies)} cookie(s)")
        return SessionContext(
            cookies=cookies,
            headers=headers,
            acquired_at=self._clock(),
            state=SESSION_VALID,
        )

    def _bootstrap(self, http) -> Dict[str, str]:
        resp = http.get(self.bootstrap_url, headers=BROWSER_HEADERS, timeout=self.timeout)
        if not 200 <= resp.status_code < 300:
            raise AuthFailure(f"bootstrap page returned HTTP {resp.status_code}")

        cookies = _cookie_dict(resp)
        if not cookies:
            cookies = _cookie_dict(http)
        if not cookies:
            raise AuthFailure("bootstrap response set no cookies")
        return cookies


def _cookie_dict(source) -> Dict[str, str]:
    """Read a cookie jar off a response or session into a plain dict."""
    jar = getattr(source, "cookies", None)
    if jar is None:
        return {}
    if hasattr(jar, "get_dict"):
        return dict(jar.get_dict())
    return dict(jar)
