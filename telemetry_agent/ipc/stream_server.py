"""
Live stream server: pushes every new snapshot to one local client.
"""
import threading
from typing import TYPE_CHECKING

from telemetry_agent.ipc.channels import ClientConnection, ClientDisconnected, StreamChannel
from telemetry_agent.utils import get_logger

if TYPE_CHECKING:
    from telemetry_agent.core.buffer import SnapshotBroadcaster

logger = get_logger(__name__)

SNAPSHOT_WAIT_TIMEOUT_SEC = 0.5
RETRY_DELAY_SEC = 1.0


class LiveStreamServer(threading.Thread):
    """
    Runs the live stream channel in a separate thread.

    While a client is connected, each snapshot published to the broadcaster
    is written to it as one JSON line. Nothing is replayed: a client that
    reconnects only receives snapshots produced after it connected. After a
    disconnect the server goes back to waiting for the next client, forever,
    until the stop event is set.
    """

    def __init__(self,
                 channel: StreamChannel,
                 broadcaster: 'SnapshotBroadcaster',
                 stop_event: threading.Event,
                 snapshot_wait_timeout_sec: float = SNAPSHOT_WAIT_TIMEOUT_SEC,
                 retry_delay_sec: float = RETRY_DELAY_SEC):
        """
        :param channel: Unopened channel to listen on
        :type channel: StreamChannel
        :param broadcaster: Source of new snapshots
        :type broadcaster: SnapshotBroadcaster
        :param stop_event: Shared cancellation signal
        :type stop_event: threading.Event
        """
        super().__init__(name="LiveStreamServer")
        self.daemon = True

        self.channel = channel
        self.broadcaster = broadcaster
        self.snapshot_wait_timeout_sec = snapshot_wait_timeout_sec
        self.retry_delay_sec = retry_delay_sec
        self._stop_event = stop_event
        self.listening = threading.Event()
        self.clients_served = 0

    def run(self):
        logger.info(f"Live stream server thread started. Channel: {self.channel.address}")

        try:
            while not self._stop_event.is_set():
                if not self.listening.is_set() and not self._open_channel():
                    self._stop_event.wait(self.retry_delay_sec)
                    continue

                try:
                    connection = self.channel.wait_for_client(self._stop_event)
                    if connection is None:
                        break

                    self.clients_served += 1
                    logger.info(f"Client connected to {self.channel.address}.")
                    self._stream_to_client(connection)
                except Exception as e:
                    logger.error(f"Unexpected error in live stream server loop: {e}", exc_info=True)
                    self._stop_event.wait(self.retry_delay_sec)
        finally:
            self.channel.close()
            self.listening.clear()

        logger.info("Live stream server thread finished.")

    def _open_channel(self) -> bool:
        try:
            self.channel.open()
        except OSError as e:
            logger.error(f"Failed to open live stream channel {self.channel.address}, retrying in "
                         f"{self.retry_delay_sec}s: {e}", exc_info=True)
            return False
        self.listening.set()
        return True

    def _stream_to_client(self, connection: ClientConnection):
        """Writes each new snapshot to the client until it disconnects or the agent stops."""
        last_sequence = self.broadcaster.sequence
        try:
            while not self._stop_event.is_set():
                update = self.broadcaster.wait_for_next(last_sequence, self.snapshot_wait_timeout_sec)
                if update is None:
                    continue
                last_sequence, snapshot = update

                try:
                    connection.write_line(snapshot.to_json())
                except ClientDisconnected:
                    logger.warning("Stream client disconnected. Waiting for new connection...")
                    return
                except OSError as e:
                    logger.error(f"Error writing snapshot to stream client: {e}", exc_info=True)
        finally:
            connection.close()

    def stop(self):
        """
        Signals the server thread to stop and unblocks a pending client wait.
        """
        logger.info("Stopping live stream server...")
        self._stop_event.set()
        self.channel.unblock()
