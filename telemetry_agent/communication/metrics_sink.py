"""
Pushgateway sink: labeled gauges exported in the Prometheus text format.
"""
import threading
from typing import Dict, Tuple, TYPE_CHECKING
from urllib.parse import quote

from prometheus_client import CollectorRegistry, Gauge, CONTENT_TYPE_LATEST, generate_latest

from telemetry_agent.monitoring.models import Snapshot
from telemetry_agent.utils import get_logger

if TYPE_CHECKING:
    from telemetry_agent.communication.http_client import HttpClient
    from telemetry_agent.config import AppConfig

logger = get_logger(__name__)

DEFAULT_JOB_NAME = "telemetry_worker"
BASE_LABELS = ("client", "region", "env", "instance")
INTERFACE_LABELS = ("interface",) + BASE_LABELS


class PushGatewayMetricsSink:
    """
    Owns a private ``CollectorRegistry`` with the telemetry gauges and pushes
    the whole registry to a Pushgateway.

    Gauge children are created lazily the first time a label tuple is seen
    and are never evicted, so every push carries the cumulative state of all
    hosts/interfaces seen so far, not just the last cycle's deltas.
    """

    def __init__(self, config: 'AppConfig', host_name: str, http_client: 'HttpClient'):
        self.config = config
        self.host_name = host_name
        self.http_client = http_client
        self.url_base = (config.push_gateway_url_base or "").strip().rstrip('/')
        self.job = config.component or DEFAULT_JOB_NAME

        self.registry = CollectorRegistry()
        self.cpu_gauge = Gauge("telemetry_cpu_usage_percent", "CPU usage in percent",
                               BASE_LABELS, registry=self.registry)
        self.mem_gauge = Gauge("telemetry_memory_used_percent", "Memory usage in percent",
                               BASE_LABELS, registry=self.registry)
        self.disk_read_gauge = Gauge("telemetry_disk_read_bps", "Disk read in bytes/sec",
                                     BASE_LABELS, registry=self.registry)
        self.disk_write_gauge = Gauge("telemetry_disk_write_bps", "Disk write in bytes/sec",
                                      BASE_LABELS, registry=self.registry)
        self.net_in_gauge = Gauge("telemetry_net_in_bps", "Bytes received per second",
                                  INTERFACE_LABELS, registry=self.registry)
        self.net_out_gauge = Gauge("telemetry_net_out_bps", "Bytes sent per second",
                                   INTERFACE_LABELS, registry=self.registry)

        # (gauge id, label tuple) -> gauge child
        self._children: Dict[Tuple[int, Tuple[str, ...]], object] = {}
        self._lock = threading.Lock()

    @property
    def base_labels(self) -> Tuple[str, ...]:
        return (self.config.client, self.config.region, self.config.environment, self.host_name)

    @property
    def push_url(self) -> str:
        return f"{self.url_base}/job/{quote(self.job, safe='')}/instance/{quote(self.host_name, safe='')}"

    def _child(self, gauge: Gauge, labels: Tuple[str, ...]):
        key = (id(gauge), labels)
        child = self._children.get(key)
        if child is None:
            child = gauge.labels(*labels)
            self._children[key] = child
        return child

    def update(self, snapshot: Snapshot) -> None:
        """Overwrites the gauges with the values of one snapshot."""
        base = self.base_labels
        with self._lock:
            self._child(self.cpu_gauge, base).set(snapshot.cpu_usage)
            self._child(self.mem_gauge, base).set(snapshot.memory_used_percent)
            self._child(self.disk_read_gauge, base).set(snapshot.disk_read_bps)
            self._child(self.disk_write_gauge, base).set(snapshot.disk_write_bps)

            for interface, value in snapshot.net_in_bps_by_interface.items():
                self._child(self.net_in_gauge, (interface,) + base).set(value)
            for interface, value in snapshot.net_out_bps_by_interface.items():
                self._child(self.net_out_gauge, (interface,) + base).set(value)

    @property
    def cache_size(self) -> int:
        with self._lock:
            return len(self._children)

    def exposition(self) -> bytes:
        """Serializes the full registry in the Prometheus text format."""
        with self._lock:
            return generate_latest(self.registry)

    def push(self) -> bool:
        """
        POSTs the full registry to ``{base}/job/{job}/instance/{instance}``.

        :return: True if the push succeeded, False if skipped or failed
        :rtype: bool
        """
        if not self.url_base:
            logger.warning("PushGateway URL base not set in config.")
            return False

        url = self.push_url
        success, error_message = self.http_client.post_text(url, self.exposition(), CONTENT_TYPE_LATEST)
        if success:
            logger.info(f"Metrics pushed to {url}")
        else:
            logger.warning(f"PushGateway push failed: {error_message}")
        return success
