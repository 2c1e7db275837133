"""
Periodic flush cycle: buffer -> staging log -> Loki and Pushgateway.
"""
import os
import threading
from typing import TYPE_CHECKING

from telemetry_agent.utils import get_logger, ensure_directory, secure_delete_file

if TYPE_CHECKING:
    from telemetry_agent.communication import LokiLogSink, PushGatewayMetricsSink
    from telemetry_agent.core.buffer import SnapshotBuffer

logger = get_logger(__name__)

DEFAULT_FLUSH_INTERVAL_SEC = 10.0


class FlushScheduler(threading.Thread):
    """
    Drains the snapshot buffer every ``interval_sec`` and forwards it.

    The thread waits on the shared stop event, so once shutdown begins no new
    cycle starts; a cycle already in progress runs to completion and the
    agent joins the thread during teardown.

    Delivery is at-most-once: if the staging log cannot be written, the
    snapshots drained for that cycle are dropped, never re-queued.
    """

    def __init__(self,
                 buffer: 'SnapshotBuffer',
                 log_sink: 'LokiLogSink',
                 metrics_sink: 'PushGatewayMetricsSink',
                 staging_path: str,
                 stop_event: threading.Event,
                 interval_sec: float = DEFAULT_FLUSH_INTERVAL_SEC):
        super().__init__(name="TelemetryFlushScheduler")
        self.daemon = True

        self.buffer = buffer
        self.log_sink = log_sink
        self.metrics_sink = metrics_sink
        self.staging_path = staging_path
        self.interval_sec = interval_sec
        self._stop_event = stop_event
        self._cycle_lock = threading.Lock()

    def run(self):
        logger.info(f"Flush scheduler started. Interval: {self.interval_sec}s, staging log: {self.staging_path}")

        while not self._stop_event.wait(self.interval_sec):
            try:
                self.flush()
            except Exception as e:
                logger.error(f"Unexpected error during flush cycle: {e}", exc_info=True)

        logger.info("Flush scheduler finished.")

    def flush(self) -> int:
        """
        Runs one flush cycle.

        :return: Number of snapshots written to the staging log (0 for an
                 empty buffer or an aborted cycle)
        :rtype: int
        """
        with self._cycle_lock:
            if self.buffer.is_empty:
                return 0

            snapshots = self.buffer.drain()
            if not snapshots:
                return 0

            ensure_directory(os.path.dirname(self.staging_path))

            # Every line must be on disk before anything leaves the host
            lines = [snapshot.to_json() for snapshot in snapshots]
            try:
                with open(self.staging_path, 'a', encoding='utf-8', newline='\n') as staging_file:
                    for line in lines:
                        staging_file.write(line + '\n')
                    staging_file.flush()
            except OSError as e:
                logger.error(f"Failed to write telemetry to disk, dropping {len(snapshots)} snapshot(s): {e}",
                             exc_info=True)
                return 0

            count = len(lines)
            logger.info(f"Wrote {count} snapshots to disk")

            failed_log_pushes = 0
            for snapshot, line in zip(snapshots, lines):
                self.metrics_sink.update(snapshot)
                if not self.log_sink.push(line):
                    failed_log_pushes += 1
            if failed_log_pushes:
                logger.warning(f"{failed_log_pushes} of {count} log line(s) could not be pushed to Loki")

            self.metrics_sink.push()

            deleted, error_message = secure_delete_file(self.staging_path)
            if deleted:
                logger.info("Temp file securely deleted after flush.")
            else:
                logger.warning(f"Failed to securely delete temp file after flush: {error_message}")

            return count
