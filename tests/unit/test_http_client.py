"""Tests for the shared HTTP client."""

from unittest import mock

import pytest
import requests

from telemetry_agent.communication import HttpClient
from telemetry_agent.communication.http_client import USER_AGENT

pytestmark = pytest.mark.sinks

URL = "http://loki.test:3100/loki/api/v1/push"


@pytest.fixture
def session() -> mock.Mock:
    session = mock.Mock(spec=requests.Session)
    session.headers = {}
    session.request.return_value = mock.Mock(status_code=204)
    return session


class TestHttpClient:
    """Tests for HttpClient request handling."""

    def test_post_json_success(self, session) -> None:
        client = HttpClient(timeout=4.0, session=session)
        assert client.post_json(URL, {"a": 1}) == (True, None)
        session.request.assert_called_once_with("POST", URL, timeout=4.0, json={"a": 1})

    def test_user_agent_is_set(self, session) -> None:
        HttpClient(session=session)
        assert session.headers["User-Agent"] == USER_AGENT

    def test_invalid_url_makes_no_request(self, session) -> None:
        client = HttpClient(session=session)
        success, message = client.post_json("not-a-url", {})
        assert not success
        assert message.startswith("Invalid URL")
        session.request.assert_not_called()

    @pytest.mark.parametrize("error, expected", [
        (requests.exceptions.Timeout(), "Request timed out"),
        (requests.exceptions.ConnectionError(), "Unable to connect"),
        (requests.exceptions.RequestException("odd"), "Unexpected network error"),
    ])
    def test_transport_errors_become_results(self, session, error, expected) -> None:
        session.request.side_effect = error
        success, message = HttpClient(session=session).post_text(URL, b"x", "text/plain")
        assert not success
        assert expected in message

    def test_non_2xx_status_is_failure(self, session) -> None:
        response = mock.Mock(status_code=400)
        response.raise_for_status.side_effect = requests.exceptions.HTTPError(
            response=mock.Mock(status_code=400, text="bad request"))
        session.request.return_value = response
        assert HttpClient(session=session).post_json(URL, {}) == (False, "Server error 400")

    def test_close_closes_session(self, session) -> None:
        HttpClient(session=session).close()
        session.close.assert_called_once()
