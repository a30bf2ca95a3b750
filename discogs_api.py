#!/usr/bin/env python3
"""
VinylShelf Discogs API Integration Module

This module provides the boundary to the Discogs database API:
- Rate gating (minimum spacing between calls plus a low-quota cooldown)
- Quota tracking from the X-Discogs-Ratelimit-* response headers
- Release search, barcode search and release detail lookups
- Uniform result envelopes: nothing but a configuration error escapes
- Cooperative cancellation of superseded requests
"""

import os
import time
import logging
import threading
from dataclasses import dataclass, replace
from typing import Optional, Dict, Any, Tuple

import requests
from requests.adapters import HTTPAdapter

from config import Config
from validation import clean_barcode

# Configure module-specific logging
logger = logging.getLogger(__name__)

ERROR_RATE_LIMITED = 'rate_limited'
ERROR_UPSTREAM = 'upstream'
ERROR_NETWORK = 'network'
ERROR_CANCELLED = 'cancelled'

RATE_LIMITED_MESSAGE = 'Rate limit exceeded. Please try again later.'
CANCELLED_MESSAGE = 'Request cancelled'


class DiscogsAPIError(Exception):
    """Base exception for Discogs API errors."""
    kind = ERROR_UPSTREAM

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class DiscogsConfigurationError(DiscogsAPIError):
    """Exception for a missing or unusable API credential."""
    pass


class DiscogsRateLimitError(DiscogsAPIError):
    """Exception for rate limit exceeded."""
    kind = ERROR_RATE_LIMITED


class DiscogsUpstreamError(DiscogsAPIError):
    """Exception for non-2xx or malformed responses."""
    kind = ERROR_UPSTREAM


class DiscogsConnectionError(DiscogsAPIError):
    """Exception for connection issues."""
    kind = ERROR_NETWORK


class CancellationToken:
    """
    Cooperative cancellation flag handed to each outbound call.

    The client checks it before sending and again once the response
    arrives; a cancelled call yields a result with error_kind 'cancelled'.
    """

    def __init__(self):
        self._event = threading.Event()

    def cancel(self):
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()


@dataclass
class RateLimitState:
    """Last observed Discogs quota and the time of the last outbound request."""
    limit: Optional[int] = None
    used: Optional[int] = None
    remaining: Optional[int] = None
    last_request_at: Optional[float] = None


@dataclass
class DiscogsResult:
    """Result envelope returned by every DiscogsClient operation."""
    data: Any = None
    error: Optional[str] = None
    error_kind: Optional[str] = None
    status_code: Optional[int] = None

    @property
    def ok(self) -> bool:
        return self.error is None


class RateGate:
    """
    Serializes outbound Discogs calls.

    Calls are spaced at least ``min_interval`` seconds apart; when the last
    reported remaining quota is below ``low_water`` the next call also waits
    ``cooldown`` seconds. The gate only ever delays, it never fails.
    """

    def __init__(self, min_interval: float = Config.DISCOGS_MIN_REQUEST_INTERVAL,
                 low_water: int = Config.DISCOGS_RATE_LIMIT_LOW_WATER,
                 cooldown: float = Config.DISCOGS_RATE_LIMIT_COOLDOWN,
                 clock=time.monotonic, sleep=time.sleep):
        self.min_interval = min_interval
        self.low_water = low_water
        self.cooldown = cooldown
        self._clock = clock
        self._sleep = sleep
        self._state = RateLimitState()
        self._observed = False
        self._lock = threading.Lock()

    def acquire(self) -> float:
        """
        Wait until it is safe to issue the next request.

        Returns:
            float: Seconds spent waiting
        """
        with self._lock:
            wait_time = 0.0
            state = self._state

            if state.last_request_at is not None:
                elapsed = self._clock() - state.last_request_at
                if elapsed < self.min_interval:
                    wait_time += self.min_interval - elapsed

            if state.remaining is not None and state.remaining < self.low_water:
                logger.info(f"Discogs quota low ({state.remaining} remaining), cooling down")
                wait_time += self.cooldown

            if wait_time > 0:
                logger.debug(f"Rate gate waiting {wait_time:.2f} seconds")
                self._sleep(wait_time)

            # Reserve the slot so a concurrent caller measures from now
            state.last_request_at = self._clock()
            return wait_time

    def record_response(self, limit: int, used: int, remaining: int,
                        timestamp: Optional[float] = None):
        """Store the quota reported by a completed call."""
        with self._lock:
            self._state.limit = limit
            self._state.used = used
            self._state.remaining = remaining
            self._state.last_request_at = self._clock() if timestamp is None else timestamp
            self._observed = True

    def snapshot(self) -> Optional[RateLimitState]:
        """Copy of the current state, or None before the first response."""
        with self._lock:
            if not self._observed:
                return None
            return replace(self._state)


def parse_rate_limit_headers(headers, default_limit: int = Config.DISCOGS_DEFAULT_RATE_LIMIT
                             ) -> Tuple[int, int, int]:
    """
    Read the quota headers Discogs attaches to every response.

    Returns:
        Tuple of (limit, used, remaining)
    """
    def header_int(name: str, default: int) -> int:
        try:
            return int(headers.get(name, default))
        except (TypeError, ValueError):
            return default

    return (
        header_int('X-Discogs-Ratelimit', default_limit),
        header_int('X-Discogs-Ratelimit-Used', 0),
        header_int('X-Discogs-Ratelimit-Remaining', default_limit),
    )


class DiscogsSession:
    """
    Pooled HTTP session for the Discogs API.

    No transport-level retries are configured: a 429 must reach the caller
    untouched.
    """

    def __init__(self):
        self.session = requests.Session()

        adapter = HTTPAdapter(
            max_retries=0,
            pool_connections=5,
            pool_maxsize=10
        )

        self.session.mount("http://", adapter)
        self.session.mount("https://", adapter)

    def get(self, *args, **kwargs) -> requests.Response:
        """GET that converts transport failures into DiscogsConnectionError."""
        try:
            return self.session.get(*args, **kwargs)
        except requests.exceptions.Timeout as e:
            raise DiscogsConnectionError(str(e) or "Request timeout")
        except requests.exceptions.ConnectionError as e:
            raise DiscogsConnectionError(str(e) or "Connection error")
        except requests.exceptions.RequestException as e:
            raise DiscogsConnectionError(str(e) or "Request failed")

    def close(self):
        self.session.close()


class DiscogsClient:
    """
    Typed wrapper around the Discogs search and release endpoints.

    Every call passes through the injected RateGate. Failures come back as
    DiscogsResult envelopes; only DiscogsConfigurationError is raised.
    """

    def __init__(self, token: Optional[str] = None, rate_gate: Optional[RateGate] = None,
                 session: Optional[DiscogsSession] = None,
                 base_url: str = Config.DISCOGS_API_BASE,
                 user_agent: str = Config.DISCOGS_USER_AGENT,
                 timeout=Config.DISCOGS_REQUEST_TIMEOUT,
                 default_rate_limit: int = Config.DISCOGS_DEFAULT_RATE_LIMIT):
        self._token = token
        self.rate_gate = rate_gate or RateGate()
        self.session = session or DiscogsSession()
        self.base_url = base_url.rstrip('/')
        self.user_agent = user_agent
        self.timeout = timeout
        self.default_rate_limit = default_rate_limit

    def _auth_headers(self) -> Dict[str, str]:
        token = self._token or os.environ.get(Config.DISCOGS_TOKEN_ENV)
        if not token:
            raise DiscogsConfigurationError(
                f"{Config.DISCOGS_TOKEN_ENV} environment variable is not set"
            )

        return {
            'User-Agent': self.user_agent,
            'Authorization': f'Discogs token={token}',
            'Accept': 'application/json',
        }

    def _handle_response(self, response: requests.Response) -> Any:
        if response.status_code == 429:
            raise DiscogsRateLimitError(RATE_LIMITED_MESSAGE, 429)

        if not response.ok:
            message = None
            try:
                body = response.json()
                if isinstance(body, dict):
                    message = body.get('message')
            except ValueError:
                pass
            raise DiscogsUpstreamError(
                message or f"Discogs API error: {response.status_code}",
                response.status_code
            )

        try:
            return response.json()
        except ValueError as e:
            raise DiscogsUpstreamError(f"Malformed response from Discogs: {e}",
                                       response.status_code)

    def _request(self, endpoint: str, params: Optional[Dict[str, Any]] = None,
                 cancel_token: Optional[CancellationToken] = None) -> DiscogsResult:
        headers = self._auth_headers()

        self.rate_gate.acquire()
        if cancel_token is not None and cancel_token.cancelled:
            return DiscogsResult(error=CANCELLED_MESSAGE, error_kind=ERROR_CANCELLED)

        url = f"{self.base_url}{endpoint}"
        logger.debug(f"GET {url} params={params}")

        try:
            response = self.session.get(url, params=params, headers=headers,
                                        timeout=self.timeout)
        except DiscogsConnectionError as e:
            logger.warning(f"Discogs request to {endpoint} failed: {e}")
            return DiscogsResult(error=str(e), error_kind=e.kind)

        limit, used, remaining = parse_rate_limit_headers(response.headers,
                                                          self.default_rate_limit)
        self.rate_gate.record_response(limit, used, remaining)

        if cancel_token is not None and cancel_token.cancelled:
            logger.debug(f"Discarding response for cancelled request {endpoint}")
            return DiscogsResult(error=CANCELLED_MESSAGE, error_kind=ERROR_CANCELLED,
                                 status_code=response.status_code)

        try:
            data = self._handle_response(response)
        except DiscogsAPIError as e:
            logger.warning(f"Discogs error for {endpoint}: {e} (status {e.status_code})")
            return DiscogsResult(error=str(e), error_kind=e.kind, status_code=e.status_code)

        return DiscogsResult(data=data, status_code=response.status_code)

    def search_releases(self, query: str, page: int = 1,
                        per_page: int = Config.DISCOGS_SEARCH_PER_PAGE,
                        cancel_token: Optional[CancellationToken] = None) -> DiscogsResult:
        """
        Search Discogs releases by free text (artist, album, ...).

        Returns:
            DiscogsResult whose data is the raw ``{results, pagination}`` payload
        """
        params = {
            'q': query,
            'type': 'release',
            'page': page,
            'per_page': per_page,
        }
        return self._request('/database/search', params, cancel_token)

    def search_by_barcode(self, barcode: str, page: int = 1,
                          per_page: int = Config.DISCOGS_SEARCH_PER_PAGE,
                          cancel_token: Optional[CancellationToken] = None) -> DiscogsResult:
        """Search Discogs releases by UPC/EAN barcode (stripped to digits)."""
        params = {
            'barcode': clean_barcode(barcode),
            'type': 'release',
            'page': page,
            'per_page': per_page,
        }
        return self._request('/database/search', params, cancel_token)

    def get_release(self, release_id: int,
                    cancel_token: Optional[CancellationToken] = None) -> DiscogsResult:
        """Fetch full release details by Discogs release ID."""
        return self._request(f'/releases/{int(release_id)}', cancel_token=cancel_token)

    def get_rate_limit_info(self) -> Optional[RateLimitState]:
        """Last observed quota, or None before the first call."""
        return self.rate_gate.snapshot()

    def close(self):
        """Clean up resources."""
        self.session.close()
        logger.info("Discogs client closed")


# Module-level client instance for Flask app integration
_global_client: Optional[DiscogsClient] = None
_global_lock = threading.Lock()


def initialize_global_client(token: Optional[str] = None,
                             rate_gate: Optional[RateGate] = None) -> DiscogsClient:
    """
    Create the process-wide client, replacing any existing one.

    Args:
        token: Personal access token; read from the environment when omitted
        rate_gate: Gate to share; a fresh one is created when omitted
    """
    global _global_client

    with _global_lock:
        if _global_client is not None:
            _global_client.close()
        _global_client = DiscogsClient(token=token, rate_gate=rate_gate)
        logger.info("Global Discogs client initialized")
        return _global_client


def get_global_client() -> DiscogsClient:
    """Get the global client instance, creating it on first use."""
    global _global_client

    with _global_lock:
        if _global_client is None:
            _global_client = DiscogsClient()
            logger.info("Global Discogs client initialized")
        return _global_client


def shutdown_global_client():
    """Shutdown the global client instance."""
    global _global_client

    with _global_lock:
        if _global_client:
            _global_client.close()
            _global_client = None
            logger.info("Global Discogs client shutdown")
