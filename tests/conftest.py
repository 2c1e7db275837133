"""Shared test fixtures for all test modules."""

import datetime
import logging
import threading
from typing import Any, Dict, List, Optional, Tuple

import pytest

from telemetry_agent.config import AppConfig
from telemetry_agent.core import SnapshotBroadcaster, SnapshotBuffer
from telemetry_agent.monitoring import Snapshot
from telemetry_agent.utils.logger import ROOT_LOGGER_NAME

LOKI_URL = "http://loki.test:3100/loki/api/v1/push"
PUSHGATEWAY_URL = "http://pushgateway.test:9091"


class RecordingHttpClient:
    """Stand-in for HttpClient that records requests instead of sending them."""

    def __init__(self, succeed: bool = True) -> None:
        self.succeed = succeed
        self.json_posts: List[Tuple[str, Dict[str, Any]]] = []
        self.text_posts: List[Tuple[str, bytes, str]] = []
        self.closed = False
        self._lock = threading.Lock()

    def _result(self) -> Tuple[bool, Optional[str]]:
        return (True, None) if self.succeed else (False, "Server error 500")

    def post_json(self, url: str, payload: Dict[str, Any]) -> Tuple[bool, Optional[str]]:
        with self._lock:
            self.json_posts.append((url, payload))
        return self._result()

    def post_text(self, url: str, body: bytes, content_type: str) -> Tuple[bool, Optional[str]]:
        with self._lock:
            self.text_posts.append((url, body, content_type))
        return self._result()

    def close(self) -> None:
        self.closed = True

    @property
    def loki_lines(self) -> List[str]:
        with self._lock:
            return [payload["streams"][0]["values"][0][1] for _, payload in self.json_posts]


@pytest.fixture(autouse=True)
def agent_logger():
    """Let agent log records reach caplog and undo any handler changes made by a test."""
    logger = logging.getLogger(ROOT_LOGGER_NAME)
    saved_handlers = list(logger.handlers)
    saved_level = logger.level
    saved_propagate = logger.propagate

    logger.propagate = True
    yield logger

    for handler in list(logger.handlers):
        if handler not in saved_handlers:
            logger.removeHandler(handler)
            handler.close()
    for handler in saved_handlers:
        if handler not in logger.handlers:
            logger.addHandler(handler)
    logger.setLevel(saved_level)
    logger.propagate = saved_propagate


@pytest.fixture
def http_client() -> RecordingHttpClient:
    return RecordingHttpClient()


@pytest.fixture
def app_config() -> AppConfig:
    """Fully configured settings pointing at fake endpoints."""
    return AppConfig(
        client="acme",
        region="eu-west",
        environment="prod",
        component="worker",
        log_type="metrics_raw",
        loki_url=LOKI_URL,
        push_gateway_url_base=PUSHGATEWAY_URL,
    )


@pytest.fixture
def buffer() -> SnapshotBuffer:
    return SnapshotBuffer()


@pytest.fixture
def broadcaster() -> SnapshotBroadcaster:
    return SnapshotBroadcaster()


@pytest.fixture
def make_snapshot():
    """Factory fixture for snapshots with distinguishable CPU values."""

    def factory(cpu_usage: float = 10.0, **overrides) -> Snapshot:
        values = {
            "timestamp": datetime.datetime(2024, 5, 1, 12, 0, 0, 250000, tzinfo=datetime.timezone.utc),
            "cpu_usage": cpu_usage,
            "memory_used_percent": 50.0,
            "disk_read_bps": 1024.0,
            "disk_write_bps": 2048.0,
            "net_in_bps_by_interface": {"Ethernet": 100.0},
            "net_out_bps_by_interface": {"Ethernet": 200.0},
        }
        values.update(overrides)
        return Snapshot(**values)

    return factory


@pytest.fixture
def failing_http_client() -> RecordingHttpClient:
    """HTTP client whose every request fails."""
    return RecordingHttpClient(succeed=False)


@pytest.fixture
def loki_url() -> str:
    return LOKI_URL


@pytest.fixture
def pushgateway_url() -> str:
    return PUSHGATEWAY_URL
