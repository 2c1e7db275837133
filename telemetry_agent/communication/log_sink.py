"""
Loki push sink: forwards each snapshot line to the log aggregator.
"""
import time
from typing import Any, Callable, Dict, Optional, TYPE_CHECKING

from telemetry_agent.utils import get_logger

if TYPE_CHECKING:
    from telemetry_agent.communication.http_client import HttpClient
    from telemetry_agent.config import AppConfig

logger = get_logger(__name__)


def _unix_nanos_now() -> str:
    return str(int(time.time() * 1000) * 1_000_000)


class LokiLogSink:
    """
    Pushes one log line per request to a Loki ``/loki/api/v1/push`` endpoint.

    With no ``lokiUrl`` configured the sink is disabled and every push is a
    silent no-op.
    """

    def __init__(self, config: 'AppConfig', host_name: str, http_client: 'HttpClient',
                 clock: Optional[Callable[[], str]] = None):
        self.url = (config.loki_url or "").strip()
        self.http_client = http_client
        self._clock = clock or _unix_nanos_now
        self.labels: Dict[str, str] = {
            "job": config.component,
            "host": host_name,
            "client": config.client,
            "region": config.region,
            "env": config.environment,
            "component": config.component,
            "log_type": config.log_type,
        }
        if self.enabled:
            logger.info(f"Loki log sink enabled: {self.url}")
        else:
            logger.info("Loki URL not configured, log push disabled.")

    @property
    def enabled(self) -> bool:
        return bool(self.url)

    def build_payload(self, log_line: str) -> Dict[str, Any]:
        return {
            "streams": [
                {
                    "stream": dict(self.labels),
                    "values": [[self._clock(), log_line]],
                }
            ]
        }

    def push(self, log_line: str) -> bool:
        """
        Sends one line to Loki.

        :param log_line: The serialized snapshot
        :type log_line: str
        :return: True if delivered (or the sink is disabled), False on failure
        :rtype: bool
        """
        if not self.enabled:
            return True

        success, error_message = self.http_client.post_json(self.url, self.build_payload(log_line))
        if not success:
            logger.error(f"Error sending telemetry to Loki: {error_message}")
        return success
