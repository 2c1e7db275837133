import requests
from urllib.parse import urlparse
from typing import Dict, Any, Tuple, Optional

from telemetry_agent.utils import get_logger
from telemetry_agent.version import __version__

logger = get_logger(__name__)

USER_AGENT = f"TelemetryAgent/{__version__}"


class HttpClient:
    """
    Shared HTTP client used by the log and metrics sinks.

    Wraps one ``requests.Session`` so connections are pooled across flush
    cycles. Every call reports failure through its return value and never
    raises, so a failing endpoint cannot break the caller's loop.

    :ivar timeout: The request timeout in seconds.
    """

    def __init__(self, timeout: float = 10.0, session: Optional[requests.Session] = None):
        """
        Initializes the HTTP client.

        :param timeout: Request timeout in seconds.
        :type timeout: float
        :param session: Optional pre-built session (tests inject one).
        :type session: Optional[requests.Session]
        """
        self.timeout = timeout
        self._session = session or requests.Session()
        self._session.headers.setdefault('User-Agent', USER_AGENT)
        logger.info(f"HTTP client initialized. Timeout: {self.timeout}s")

    def post_json(self, url: str, payload: Dict[str, Any]) -> Tuple[bool, Optional[str]]:
        """
        POSTs a JSON body.

        :param url: Absolute target URL.
        :type url: str
        :param payload: JSON-serializable body.
        :type payload: Dict[str, Any]
        :return: Tuple (success_flag, error_message_or_none).
        :rtype: Tuple[bool, Optional[str]]
        """
        return self._make_request('POST', url, json=payload)

    def post_text(self, url: str, body: bytes, content_type: str) -> Tuple[bool, Optional[str]]:
        """
        POSTs a raw body with the given content type.

        :param url: Absolute target URL.
        :type url: str
        :param body: Encoded body.
        :type body: bytes
        :param content_type: Value of the Content-Type header.
        :type content_type: str
        :return: Tuple (success_flag, error_message_or_none).
        :rtype: Tuple[bool, Optional[str]]
        """
        return self._make_request('POST', url, data=body, headers={'Content-Type': content_type})

    def _make_request(self, method: str, url: str, **kwargs) -> Tuple[bool, Optional[str]]:
        """
        Internal helper method to make HTTP requests and handle common errors.

        :param method: HTTP method (e.g., 'POST').
        :type method: str
        :param url: Absolute URL.
        :type url: str
        :param kwargs: Additional arguments passed to Session.request (e.g., json, data, headers).
        :return: Tuple (success_flag, error_message). error_message is None on success.
        :rtype: Tuple[bool, Optional[str]]
        """
        parsed_url = urlparse(url)
        if not parsed_url.scheme or not parsed_url.netloc:
            logger.error(f"Invalid URL for {method} request: {url}")
            return False, f"Invalid URL: {url}"

        try:
            logger.debug(f"Making HTTP request: {method} {url} (Timeout: {self.timeout}s)")
            response = self._session.request(method, url, timeout=self.timeout, **kwargs)
            response.raise_for_status()
            logger.debug(f"Request successful ({response.status_code}): {method} {url}")
            return True, None

        except requests.exceptions.Timeout:
            logger.error(f"Request timed out after {self.timeout}s: {method} {url}")
            return False, f"Request timed out after {self.timeout} seconds."
        except requests.exceptions.ConnectionError as e:
            logger.error(f"Connection error: {method} {url} - {e}")
            return False, f"Unable to connect to {parsed_url.netloc}."
        except requests.exceptions.HTTPError as e:
            status_code = e.response.status_code if e.response is not None else 'unknown'
            error_text = e.response.text[:200] if e.response is not None else ''
            logger.error(f"HTTP error {status_code}: {method} {url}. Response: {error_text}")
            return False, f"Server error {status_code}"
        except requests.exceptions.RequestException as e:
            logger.error(f"An unexpected request error occurred: {method} {url} - {e}", exc_info=True)
            return False, f"Unexpected network error: {e}"

    def close(self):
        """Closes the underlying session."""
        try:
            self._session.close()
        except Exception as e:
            logger.warning(f"Error closing HTTP session: {e}")
