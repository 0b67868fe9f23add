"""HTTP client for the Apollo/Sunshine web API.

Session handling:
- ``login()`` exchanges credentials for a session cookie
- The cookie is sent with every later call
- A 401 clears the cookie and raises AuthenticationError; the public calls
  log in again once and repeat the operation before giving up

Error recovery:
- Connection failures, timeouts, 5xx and 429 responses are retried with
  exponential backoff
- Authentication failures and other 4xx responses surface immediately

TLS certificate verification is off by default: hosts run the web UI on a
LAN with a self-signed certificate.
"""

import logging
import random
import time
from dataclasses import dataclass
from functools import wraps
from typing import Any, Callable, Optional, TypeVar

import httpx

from apollo_sync.config import ApolloConfig
from apollo_sync.exceptions import (
    ApiError,
    AuthenticationError,
    ConnectivityError,
    ValidationError,
)
from apollo_sync.models import Entry, validate_remote_apps

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_TIMEOUT = 10.0
CONNECTION_TEST_TIMEOUT = 5.0


@dataclass
class RetryPolicy:
    """Backoff settings for remote calls."""

    max_attempts: int = 3
    base_delay: float = 1.0
    max_delay: float = 10.0
    exponential_base: float = 2.0
    jitter: bool = True

    def delay_for(self, attempt: int) -> float:
        """Seconds to wait after the given (zero-based) failed attempt."""
        delay = min(self.base_delay * (self.exponential_base**attempt), self.max_delay)
        if self.jitter:
            # +/- 25%
            delay *= 0.75 + random.random() * 0.5
        return delay


def is_transient(error: BaseException) -> bool:
    """Whether an error is worth retrying."""
    if isinstance(error, ConnectivityError):
        return True
    if isinstance(error, ApiError) and error.status_code is not None:
        return error.status_code >= 500 or error.status_code == 429
    return False


def with_retry(
    policy: Optional[RetryPolicy] = None,
    should_retry: Callable[[BaseException], bool] = is_transient,
    operation_name: Optional[str] = None,
) -> Callable[[Callable[..., T]], Callable[..., T]]:
    """Decorator that retries transient failures with exponential backoff.

    Args:
        policy: Attempts and delays (default: RetryPolicy())
        should_retry: Predicate deciding whether an error is retried
        operation_name: Name used in log messages (default: function name)

    Returns:
        Decorated function. Once attempts are exhausted, or on an error the
        predicate rejects, the last error is re-raised unchanged.
    """
    policy = policy or RetryPolicy()

    def decorator(func: Callable[..., T]) -> Callable[..., T]:
        name = operation_name or func.__name__

        @wraps(func)
        def wrapper(*args: Any, **kwargs: Any) -> T:
            for attempt in range(policy.max_attempts):
                try:
                    result = func(*args, **kwargs)
                    if attempt > 0:
                        logger.info(f"{name} succeeded on attempt {attempt + 1}")
                    return result
                except Exception as e:
                    if attempt >= policy.max_attempts - 1 or not should_retry(e):
                        if attempt > 0:
                            logger.error(
                                f"{name} failed after {attempt + 1} attempts: {e}"
                            )
                        raise
                    delay = policy.delay_for(attempt)
                    logger.warning(
                        f"{name} failed (attempt {attempt + 1}/{policy.max_attempts}): {e}. "
                        f"Retrying in {delay:.1f}s..."
                    )
                    time.sleep(delay)
            raise AssertionError("unreachable")

        return wrapper

    return decorator


class ApolloClient:
    """Client for the Apollo/Sunshine app API."""

    def __init__(
        self,
        endpoint: str,
        username: str,
        password: str,
        timeout: float = DEFAULT_TIMEOUT,
        verify_ssl: bool = False,
        retry_policy: Optional[RetryPolicy] = None,
        transport: Optional[httpx.BaseTransport] = None,
    ):
        """Initialize client.

        Args:
            endpoint: Base URL of the web UI (e.g. https://192.168.1.10:47990)
            username: Web UI username
            password: Web UI password
            timeout: Per-request timeout in seconds
            verify_ssl: Whether to verify the host's TLS certificate
            retry_policy: Backoff settings (default: 3 attempts, 1s..10s)
            transport: Optional httpx transport (used by tests)
        """
        self.endpoint = endpoint.rstrip("/")
        self.username = username
        self.password = password
        self.timeout = timeout
        self.retry_policy = retry_policy or RetryPolicy()
        self.session_cookie = ""

        self.http = httpx.Client(
            base_url=self.endpoint,
            timeout=timeout,
            verify=verify_ssl,
            transport=transport,
        )

    @classmethod
    def from_config(cls, config: ApolloConfig, **kwargs: Any) -> "ApolloClient":
        """Create a client from validated configuration."""
        config.require_valid()
        return cls(config.endpoint, config.username, config.password, **kwargs)

    @property
    def is_authenticated(self) -> bool:
        return bool(self.session_cookie)

    def close(self) -> None:
        self.http.close()

    def __enter__(self) -> "ApolloClient":
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()

    def login(self) -> None:
        """Log in and store the session cookie.

        Raises:
            AuthenticationError: Bad credentials or no cookie returned
            ConnectivityError: Host unreachable after retries
            ApiError: Unexpected status after retries
        """
        logger.debug("Logging into Apollo...")
        self._retrying("Apollo login", self._login_once)
        logger.debug("Successfully logged into Apollo")

    def fetch_apps(self) -> list[Entry]:
        """Fetch the host's current app list.

        Returns:
            List of app entries in host order

        Raises:
            RemoteError: If the request fails after retries and one re-login
            ValidationError: If the response body is malformed
        """
        logger.debug("Fetching apps from Apollo...")

        def fetch() -> list[Entry]:
            response = self._request("GET", "/api/apps", "Fetch apps")
            try:
                data = response.json()
            except ValueError as e:
                raise ValidationError(f"Apps response is not JSON: {e}") from e
            return validate_remote_apps(data)

        apps = self._authenticated("Apollo fetch apps", fetch)
        logger.debug(f"Fetched {len(apps)} apps from Apollo")
        return apps

    def push_app(self, payload: dict[str, Any]) -> None:
        """Create or update one app.

        Args:
            payload: App entry plus numeric ``index`` (-1 creates a new app)
        """
        name = payload.get("name", "<unnamed>")
        logger.debug(f"Pushing app: {name} (index {payload.get('index')})")

        self._authenticated(
            f"Apollo update app {name}",
            lambda: self._request("POST", "/api/apps", f"Update app {name}", json=payload),
        )
        logger.debug(f"Pushed app: {name}")

    def delete_app(self, uuid: str) -> None:
        """Delete one app by its host-assigned identifier."""
        if not uuid:
            raise ApiError("Cannot delete an app without a uuid")
        logger.debug(f"Deleting app: {uuid}")

        self._authenticated(
            f"Apollo delete app {uuid}",
            lambda: self._request(
                "POST", "/api/apps/delete", f"Delete app {uuid}", json={"uuid": uuid}
            ),
        )
        logger.debug(f"Deleted app: {uuid}")

    def test_connection(self) -> int:
        """Log in and probe the app list once.

        Returns:
            Number of apps currently on the host
        """
        logger.debug("Testing Apollo connection...")
        self.login()

        try:
            response = self._request(
                "GET", "/api/apps", "Connection test", timeout=CONNECTION_TEST_TIMEOUT
            )
        except ConnectivityError as e:
            raise ConnectivityError(
                f"Connection test failed: is Apollo running on {self.endpoint}? ({e})"
            ) from e

        try:
            count = len(response.json().get("apps") or [])
        except (ValueError, AttributeError):
            count = 0
        logger.debug(f"Connection test successful. Found {count} apps.")
        return count

    def _retrying(self, operation_name: str, func: Callable[[], T]) -> T:
        return with_retry(self.retry_policy, operation_name=operation_name)(func)()

    def _authenticated(self, operation_name: str, func: Callable[[], T]) -> T:
        """Run an authenticated call, logging in again once on a 401."""
        if not self.session_cookie:
            self.login()

        try:
            return self._retrying(operation_name, func)
        except AuthenticationError:
            logger.info(f"{operation_name}: session expired, logging in again")
            self.login()
            return self._retrying(operation_name, func)

    def _login_once(self) -> None:
        response = self._send(
            "POST",
            "/api/login",
            "Login",
            json={"username": self.username, "password": self.password},
        )

        if response.status_code == 200:
            cookies = response.headers.get_list("set-cookie")
            # Sessions are tracked through our own header, not the cookie jar
            self.http.cookies.clear()
            if not cookies:
                raise AuthenticationError(
                    "Login successful but no session cookie received"
                )
            self.session_cookie = cookies[0].split(";")[0]
            return

        if response.status_code == 401:
            raise AuthenticationError("Invalid username or password")

        raise ApiError(
            f"Login failed: {response.status_code} - {response.reason_phrase}",
            response.status_code,
        )

    def _request(
        self,
        method: str,
        path: str,
        description: str,
        json: Any = None,
        timeout: Optional[float] = None,
    ) -> httpx.Response:
        """Send an authenticated request and check its status.

        Raises:
            AuthenticationError: 401 (the session cookie is cleared)
            ApiError: Any other non-200 status
            ConnectivityError: Transport failure
        """
        response = self._send(
            method,
            path,
            description,
            json=json,
            headers={"Cookie": self.session_cookie},
            timeout=timeout,
        )

        if response.status_code == 200:
            return response

        if response.status_code == 401:
            self.session_cookie = ""
            raise AuthenticationError("Session expired")

        raise ApiError(
            f"{description} failed: {response.status_code} - {response.reason_phrase}",
            response.status_code,
        )

    def _send(
        self,
        method: str,
        path: str,
        description: str,
        json: Any = None,
        headers: Optional[dict[str, str]] = None,
        timeout: Optional[float] = None,
    ) -> httpx.Response:
        """Send a request, translating transport errors."""
        try:
            return self.http.request(
                method,
                path,
                json=json,
                headers=headers,
                timeout=timeout if timeout is not None else self.timeout,
            )
        except httpx.TimeoutException as e:
            raise ConnectivityError(f"{description} timed out: {e}") from e
        except httpx.NetworkError as e:
            raise ConnectivityError(f"{description} could not connect: {e}") from e
        except httpx.HTTPError as e:
            raise ApiError(f"{description} failed: {e}") from e
