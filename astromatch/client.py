"""
Resilient HTTP fetch client.

Every outbound JSON call goes through ``fetch_with_retry``:

- each attempt is bounded by a fixed timeout,
- HTTP error responses are mapped onto a small error taxonomy and never retried,
- timeouts and connection failures are retried with a fixed backoff schedule,
- a ``CancelToken`` stops further attempts and discards late responses.

The client itself only talks to the network. Logging belongs to callers,
see ``handle_api_error``.
"""

import threading
import time
from typing import Any, Callable, Dict, Optional
from urllib.parse import urljoin

import requests

from .logger import get_logger
from .retry import RetryPhase, RetryState, scheduled_delay

API_TIMEOUT = 10  # seconds, per attempt
MAX_RETRIES = 3
RETRY_DELAYS = (1.0, 2.0, 4.0)


class AstroMatchError(Exception):
    """Base class for errors raised by astromatch."""
    pass


class RequestError(AstroMatchError):
    """An HTTP response with a non-success status."""

    def __init__(self, message: str, status: int, code: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.status = status
        self.code = code


class ValidationError(RequestError):
    """HTTP 400: the request itself is wrong and retrying will not help."""

    def __init__(self, message: str, code: Optional[str] = None):
        super().__init__(message, 400, code or "VALIDATION_ERROR")


class TimeoutOrNetworkError(AstroMatchError):
    """The request timed out or never reached the server."""

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class RequestCancelled(AstroMatchError):
    """The caller cancelled the request."""
    pass


class CancelToken:
    """Cancellation signal shared between a caller and its in-flight requests."""

    def __init__(self):
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def wait(self, seconds: float) -> bool:
        """Block for up to ``seconds``; return True if cancelled meanwhile."""
        return self._event.wait(seconds)

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise RequestCancelled("Request cancelled")


def _wait(
    delay: float,
    cancel_token: Optional[CancelToken],
    sleep: Optional[Callable[[float], None]],
) -> None:
    if cancel_token is not None:
        cancel_token.raise_if_cancelled()
    if sleep is not None:
        sleep(delay)
    elif cancel_token is not None:
        if cancel_token.wait(delay):
            raise RequestCancelled("Request cancelled during backoff")
        return
    else:
        time.sleep(delay)
    if cancel_token is not None:
        cancel_token.raise_if_cancelled()


def _send_once(
    url: str,
    options: Dict[str, Any],
    session: Optional[requests.Session],
    cancel_token: Optional[CancelToken],
) -> Any:
    """One attempt: send, classify failures, decode the JSON body."""
    kwargs = dict(options)
    method = kwargs.pop("method", "GET").upper()
    http = session if session is not None else requests

    try:
        response = http.request(method, url, timeout=API_TIMEOUT, **kwargs)
    except requests.exceptions.Timeout:
        raise TimeoutOrNetworkError("Request timed out")
    except requests.exceptions.ConnectionError as e:
        raise TimeoutOrNetworkError(f"Network error: {e}")

    # A response that lands after cancellation is never applied.
    if cancel_token is not None:
        cancel_token.raise_if_cancelled()

    status = response.status_code
    if not response.ok:
        try:
            error_data = response.json()
        except ValueError:
            raise RequestError(f"Request failed with status {status}", status)
        if not isinstance(error_data, dict):
            error_data = {}

        if status == 400:
            raise ValidationError(
                error_data.get("message") or "Validation failed",
                error_data.get("code"),
            )
        raise RequestError(
            error_data.get("message") or "An error occurred",
            status,
            error_data.get("code"),
        )

    if not response.content:
        return None
    try:
        return response.json()
    except ValueError:
        raise RequestError("Response body is not valid JSON", status)


def fetch_with_retry(
    url: str,
    options: Optional[Dict[str, Any]] = None,
    retry_count: int = 0,
    *,
    session: Optional[requests.Session] = None,
    cancel_token: Optional[CancelToken] = None,
    sleep: Optional[Callable[[float], None]] = None,
    on_retry: Optional[Callable[[int, Exception, float], None]] = None,
) -> Any:
    """
    Fetch ``url`` and return its decoded JSON body.

    Args:
        url: Absolute URL
        options: requests keyword arguments plus ``method`` (default GET)
        retry_count: Retries already spent by the caller
        session: Optional requests session (a module-level request otherwise)
        cancel_token: Aborts further attempts and backoff once cancelled
        sleep: Replacement for the backoff wait, mainly for tests
        on_retry: Optional callback(retry_number, exception, delay)

    Raises:
        ValidationError: HTTP 400
        RequestError: any other non-success status
        TimeoutOrNetworkError: after MAX_RETRIES retries of transient failures
        RequestCancelled: the token was cancelled
    """
    options = options or {}
    state = RetryState(max_retries=MAX_RETRIES, attempt=retry_count)

    while True:
        if cancel_token is not None:
            cancel_token.raise_if_cancelled()
        try:
            return _send_once(url, options, session, cancel_token)
        except TimeoutOrNetworkError as e:
            state = state.fail()
            if state.phase is RetryPhase.FAILED:
                raise

            delay = scheduled_delay(state.attempt, RETRY_DELAYS)
            if on_retry:
                on_retry(state.attempt + 1, e, delay)
            _wait(delay, cancel_token, sleep)
            state = state.next_attempt()


def handle_api_error(error: Exception, default_message: str = "An error occurred") -> str:
    """Log ``error`` and return the message a user should see."""
    logger = get_logger()
    logger.error("API error", error_type=type(error).__name__, error=str(error))

    if isinstance(error, ValidationError):
        return error.message
    if isinstance(error, RequestError):
        return error.message or default_message
    if isinstance(error, TimeoutOrNetworkError):
        return "Network error. Please check your connection and try again."
    return default_message


class ApiClient:
    """Thin wrapper binding a base URL, session and cancel token to fetch_with_retry."""

    def __init__(
        self,
        base_url: str,
        session: Optional[requests.Session] = None,
        cancel_token: Optional[CancelToken] = None,
        sleep: Optional[Callable[[float], None]] = None,
    ):
        self.base_url = base_url.rstrip("/") + "/"
        self.session = session or requests.Session()
        self.cancel_token = cancel_token
        self.sleep = sleep

    def url(self, path: str) -> str:
        return urljoin(self.base_url, path.lstrip("/"))

    def request(
        self,
        method: str,
        path: str,
        cancel_token: Optional[CancelToken] = None,
        **options,
    ) -> Any:
        get_logger().record_api_call()
        return fetch_with_retry(
            self.url(path),
            {"method": method, **options},
            session=self.session,
            cancel_token=cancel_token or self.cancel_token,
            sleep=self.sleep,
        )

    def get(self, path: str, params: Optional[Dict[str, Any]] = None, **kwargs) -> Any:
        return self.request("GET", path, params=params, **kwargs)

    def post(self, path: str, json: Any = None, **kwargs) -> Any:
        return self.request("POST", path, json=json, **kwargs)
