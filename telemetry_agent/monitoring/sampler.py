"""
Fixed-interval sampling loop producing one Snapshot per tick.
"""
import datetime
import threading
from typing import Dict, Mapping, Optional, TYPE_CHECKING

from telemetry_agent.monitoring.metric_source import MetricSource, build_interface_name_map
from telemetry_agent.monitoring.models import Snapshot
from telemetry_agent.utils import get_logger

if TYPE_CHECKING:
    from telemetry_agent.core.buffer import SnapshotBuffer, SnapshotBroadcaster

logger = get_logger(__name__)

DEFAULT_SAMPLE_INTERVAL_SEC = 2.0
DEFAULT_WARMUP_DELAY_SEC = 1.0
ROUND_DIGITS = 2


def compute_memory_used_percent(available_mb: float, total_mb: float) -> float:
    """
    Percentage of physical memory in use, clamped to [0, 100].

    :raises ZeroDivisionError: if total_mb is zero
    """
    used = 100.0 - (available_mb / total_mb * 100.0)
    return min(100.0, max(0.0, used))


class Sampler(threading.Thread):
    """
    Reads the metric source every tick and hands the snapshot to the buffer
    and to the live stream broadcaster.

    A failed read never stops the loop: it is logged and replaced by the
    sentinel snapshot, which is still buffered and broadcast.
    """

    def __init__(self,
                 source: MetricSource,
                 buffer: 'SnapshotBuffer',
                 broadcaster: 'SnapshotBroadcaster',
                 stop_event: threading.Event,
                 interface_name_map: Mapping[str, str],
                 total_memory_mb: float,
                 interval_sec: float = DEFAULT_SAMPLE_INTERVAL_SEC,
                 warmup_delay_sec: float = DEFAULT_WARMUP_DELAY_SEC):
        super().__init__(name="TelemetrySampler")
        self.daemon = True

        self.source = source
        self.buffer = buffer
        self.broadcaster = broadcaster
        self._stop_event = stop_event
        self.interface_name_map: Dict[str, str] = dict(interface_name_map)
        self.total_memory_mb = total_memory_mb
        self.interval_sec = interval_sec
        self.warmup_delay_sec = warmup_delay_sec
        self.ticks = 0

    @classmethod
    def from_source(cls, source: MetricSource, buffer: 'SnapshotBuffer', broadcaster: 'SnapshotBroadcaster',
                    stop_event: threading.Event, **kwargs) -> 'Sampler':
        """
        Resolves the interface name map and total memory once, then builds the sampler.

        :param source: Metric source to sample
        :type source: MetricSource
        :return: A sampler ready to be started
        :rtype: Sampler
        """
        try:
            name_map = build_interface_name_map(source.network_instance_names(), source.enumerate_network_adapters())
            logger.info(f"Initialized network counters for {len(name_map)} interface(s).")
        except Exception as e:
            logger.error(f"Failed to enumerate network interfaces, network rates disabled: {e}", exc_info=True)
            name_map = {}

        total_memory_mb: float = 0.0
        try:
            total_memory_mb = source.total_physical_memory_mb()
        except Exception as e:
            logger.error(f"Failed to read total physical memory: {e}", exc_info=True)
        if total_memory_mb <= 0:
            logger.warning("Total physical memory unknown; memory readings will report failures.")

        return cls(source, buffer, broadcaster, stop_event, name_map, total_memory_mb, **kwargs)

    def collect_snapshot(self) -> Snapshot:
        """
        Reads every counter once and builds a snapshot.

        :return: The snapshot, or the sentinel snapshot if any read fails
        :rtype: Snapshot
        """
        timestamp = datetime.datetime.now(datetime.timezone.utc)
        try:
            reading = self.source.read_counters()
            memory_used = compute_memory_used_percent(reading.memory_available_mb, self.total_memory_mb)

            net_in: Dict[str, float] = {}
            net_out: Dict[str, float] = {}
            for instance_name, friendly_name in self.interface_name_map.items():
                if instance_name in reading.net_in_bps:
                    net_in[friendly_name] = round(reading.net_in_bps[instance_name], ROUND_DIGITS)
                if instance_name in reading.net_out_bps:
                    net_out[friendly_name] = round(reading.net_out_bps[instance_name], ROUND_DIGITS)

            return Snapshot(
                timestamp=timestamp,
                cpu_usage=round(reading.cpu_percent, ROUND_DIGITS),
                memory_used_percent=round(memory_used, ROUND_DIGITS),
                disk_read_bps=round(reading.disk_read_bps, ROUND_DIGITS),
                disk_write_bps=round(reading.disk_write_bps, ROUND_DIGITS),
                net_in_bps_by_interface=net_in,
                net_out_bps_by_interface=net_out,
            )
        except Exception as e:
            logger.error(f"Failed to collect performance snapshot: {e}", exc_info=True)
            return Snapshot.sentinel(timestamp)

    def tick(self) -> Snapshot:
        """Collects one snapshot, buffers it and broadcasts it."""
        snapshot = self.collect_snapshot()
        self.buffer.put(snapshot)
        self.broadcaster.publish(snapshot)
        self.ticks += 1
        logger.debug(f"Snapshot: {snapshot.to_json()}")
        return snapshot

    def warm_up(self) -> None:
        """Discards the first read of the rate counters."""
        try:
            self.source.warm_up()
        except Exception as e:
            logger.error(f"Counter warm-up failed: {e}", exc_info=True)
        self._stop_event.wait(self.warmup_delay_sec)

    def run(self):
        logger.info(f"Sampler thread started. Interval: {self.interval_sec}s")
        self.warm_up()

        while not self._stop_event.is_set():
            try:
                self.tick()
            except Exception as e:
                logger.error(f"Error collecting snapshot in background loop: {e}", exc_info=True)

            self._stop_event.wait(self.interval_sec)

        logger.info("Sampler thread finished.")
