"""
Tests for the resilient fetch client.
"""

import pytest
import requests

from astromatch.client import (
    API_TIMEOUT,
    ApiClient,
    CancelToken,
    RequestCancelled,
    RequestError,
    TimeoutOrNetworkError,
    ValidationError,
    fetch_with_retry,
    handle_api_error,
)

URL = "http://api.test/api/compatibility/score"


class TestSuccessfulFetch:
    """Test decoding of successful responses."""

    def test_returns_json_body(self, http_session, response):
        http_session.request.return_value = response(200, {"total_gunas": 20})

        assert fetch_with_retry(URL, session=http_session) == {"total_gunas": 20}
        assert http_session.request.call_count == 1

    def test_empty_body_returns_none(self, http_session, response):
        http_session.request.return_value = response(204)

        assert fetch_with_retry(URL, session=http_session) is None

    def test_applies_fixed_timeout(self, http_session, response):
        http_session.request.return_value = response(200, {})

        fetch_with_retry(URL, session=http_session)

        assert http_session.request.call_args.kwargs["timeout"] == API_TIMEOUT == 10

    def test_method_and_options_are_forwarded(self, http_session, response):
        http_session.request.return_value = response(200, {"ok": True})

        fetch_with_retry(URL, {"method": "post", "json": {"a": 1}}, session=http_session)

        args, kwargs = http_session.request.call_args
        assert args == ("POST", URL)
        assert kwargs["json"] == {"a": 1}


class TestHttpErrors:
    """HTTP error responses are classified and never retried."""

    def test_400_raises_validation_error_without_retry(self, http_session, response):
        http_session.request.return_value = response(
            400, {"message": "Birth time is required", "code": "MISSING_BIRTH_TIME"}
        )
        slept = []

        with pytest.raises(ValidationError) as exc_info:
            fetch_with_retry(URL, session=http_session, sleep=slept.append)

        error = exc_info.value
        assert error.status == 400
        assert error.message == "Birth time is required"
        assert error.code == "MISSING_BIRTH_TIME"
        assert http_session.request.call_count == 1
        assert slept == []

    def test_400_defaults(self, http_session, response):
        http_session.request.return_value = response(400, {})

        with pytest.raises(ValidationError) as exc_info:
            fetch_with_retry(URL, session=http_session)

        assert exc_info.value.message == "Validation failed"
        assert exc_info.value.code == "VALIDATION_ERROR"

    def test_server_error_keeps_status_and_code(self, http_session, response):
        http_session.request.return_value = response(
            500, {"message": "Calculation Engine Failed", "code": "ENGINE"}
        )

        with pytest.raises(RequestError) as exc_info:
            fetch_with_retry(URL, session=http_session)

        error = exc_info.value
        assert not isinstance(error, ValidationError)
        assert error.status == 500
        assert error.message == "Calculation Engine Failed"
        assert error.code == "ENGINE"
        assert http_session.request.call_count == 1

    def test_unparseable_error_body(self, http_session, response):
        http_session.request.return_value = response(502, text="<html>Bad Gateway</html>")

        with pytest.raises(RequestError) as exc_info:
            fetch_with_retry(URL, session=http_session)

        assert exc_info.value.status == 502
        assert str(exc_info.value) == "Request failed with status 502"
        assert exc_info.value.code is None

    def test_unparseable_400_is_generic_request_error(self, http_session, response):
        http_session.request.return_value = response(400, text="nope")

        with pytest.raises(RequestError) as exc_info:
            fetch_with_retry(URL, session=http_session)

        assert not isinstance(exc_info.value, ValidationError)
        assert exc_info.value.status == 400


class TestNetworkRetries:
    """Timeouts and connection failures are retried 1s, 2s, 4s."""

    def test_always_timing_out_retries_three_times(self, http_session):
        http_session.request.side_effect = requests.exceptions.Timeout("read timed out")
        slept = []

        with pytest.raises(TimeoutOrNetworkError) as exc_info:
            fetch_with_retry(URL, session=http_session, sleep=slept.append)

        assert str(exc_info.value) == "Request timed out"
        assert http_session.request.call_count == 4  # initial + 3 retries
        assert slept == [1.0, 2.0, 4.0]

    def test_connection_error_then_success(self, http_session, response):
        http_session.request.side_effect = [
            requests.exceptions.ConnectionError("connection reset"),
            response(200, {"ok": True}),
        ]
        slept = []

        assert fetch_with_retry(URL, session=http_session, sleep=slept.append) == {"ok": True}
        assert slept == [1.0]

    def test_on_retry_callback(self, http_session, response):
        http_session.request.side_effect = [
            requests.exceptions.Timeout(),
            requests.exceptions.Timeout(),
            response(200, {}),
        ]
        calls = []

        fetch_with_retry(
            URL,
            session=http_session,
            sleep=lambda d: None,
            on_retry=lambda n, e, d: calls.append((n, type(e), d)),
        )

        assert calls == [(1, TimeoutOrNetworkError, 1.0), (2, TimeoutOrNetworkError, 2.0)]

    def test_retry_count_continues_the_schedule(self, http_session):
        http_session.request.side_effect = requests.exceptions.Timeout()
        slept = []

        with pytest.raises(TimeoutOrNetworkError):
            fetch_with_retry(URL, retry_count=2, session=http_session, sleep=slept.append)

        assert http_session.request.call_count == 2
        assert slept == [4.0]


class TestCancellation:
    """A cancelled token stops attempts and discards late responses."""

    def test_cancelled_before_start(self, http_session):
        token = CancelToken()
        token.cancel()

        with pytest.raises(RequestCancelled):
            fetch_with_retry(URL, session=http_session, cancel_token=token)

        http_session.request.assert_not_called()

    def test_cancel_during_backoff_suppresses_retry(self, http_session):
        http_session.request.side_effect = requests.exceptions.Timeout()
        token = CancelToken()

        with pytest.raises(RequestCancelled):
            fetch_with_retry(
                URL, session=http_session, cancel_token=token,
                sleep=lambda delay: token.cancel(),
            )

        assert http_session.request.call_count == 1

    def test_cancelled_token_interrupts_real_wait(self, http_session):
        token = CancelToken()

        def request_then_cancel(*args, **kwargs):
            token.cancel()
            raise requests.exceptions.Timeout()

        http_session.request.side_effect = request_then_cancel

        with pytest.raises(RequestCancelled):
            fetch_with_retry(URL, session=http_session, cancel_token=token)

        assert http_session.request.call_count == 1

    def test_no_backoff_after_cancel_in_flight(self, http_session):
        token = CancelToken()
        slept = []

        def request_then_cancel(*args, **kwargs):
            token.cancel()
            raise requests.exceptions.Timeout()

        http_session.request.side_effect = request_then_cancel

        with pytest.raises(RequestCancelled):
            fetch_with_retry(URL, session=http_session, cancel_token=token, sleep=slept.append)

        assert http_session.request.call_count == 1
        assert slept == []

    def test_late_response_is_discarded(self, http_session, response):
        token = CancelToken()

        def respond_after_cancel(*args, **kwargs):
            token.cancel()
            return response(200, {"total_gunas": 30})

        http_session.request.side_effect = respond_after_cancel

        with pytest.raises(RequestCancelled):
            fetch_with_retry(URL, session=http_session, cancel_token=token)


class TestHandleApiError:
    """User-facing messages for each error kind."""

    def test_validation_message_passes_through(self):
        assert handle_api_error(ValidationError("Bad date")) == "Bad date"

    def test_request_error_message(self):
        assert handle_api_error(RequestError("Server exploded", 500)) == "Server exploded"

    def test_request_error_without_message_uses_default(self):
        assert handle_api_error(RequestError("", 500), "Failed to load") == "Failed to load"

    def test_network_error(self):
        message = handle_api_error(TimeoutOrNetworkError("Request timed out"))
        assert message == "Network error. Please check your connection and try again."

    def test_unknown_error(self):
        assert handle_api_error(RuntimeError("x"), "Failed to load profiles") == "Failed to load profiles"


class TestApiClient:
    """Test the base-URL wrapper."""

    def test_get_joins_base_url_and_counts_call(self, http_session, response, quiet_logger):
        http_session.request.return_value = response(200, {"data": []})
        client = ApiClient("http://api.test/", session=http_session)

        client.get("/api/profiles", params={"page": 2, "limit": 20})

        args, kwargs = http_session.request.call_args
        assert args == ("GET", "http://api.test/api/profiles")
        assert kwargs["params"] == {"page": 2, "limit": 20}
        assert quiet_logger.metrics["api_calls"] == 1

    def test_post_sends_json(self, http_session, response):
        http_session.request.return_value = response(200, {"total_gunas": 12})
        client = ApiClient("http://api.test", session=http_session)

        assert client.post("functions/v1/calc", json={"user1Id": "a"}) == {"total_gunas": 12}
        args, kwargs = http_session.request.call_args
        assert args == ("POST", "http://api.test/functions/v1/calc")
        assert kwargs["json"] == {"user1Id": "a"}
