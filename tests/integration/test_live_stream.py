"""Tests for the live stream server over a Unix domain socket."""

import logging
import socket
import sys
import threading
from pathlib import Path

import pytest

from telemetry_agent.core import SnapshotBroadcaster
from telemetry_agent.ipc import LiveStreamServer, UnixSocketChannel, create_channel, read_snapshots
from telemetry_agent.ipc.channels import ClientDisconnected, SocketConnection
from telemetry_agent.monitoring import Sampler, StaticMetricSource

pytestmark = [
    pytest.mark.integration,
    pytest.mark.ipc,
    pytest.mark.skipif(sys.platform == "win32", reason="Unix domain socket channel"),
]


class Publisher(threading.Thread):
    """Publishes snapshots with increasing CPU values until stopped."""

    def __init__(self, broadcaster: SnapshotBroadcaster, make_snapshot, interval_sec: float = 0.02):
        super().__init__(daemon=True)
        self.broadcaster = broadcaster
        self.make_snapshot = make_snapshot
        self.interval_sec = interval_sec
        self.stop_event = threading.Event()
        self.published = 0

    def run(self):
        while not self.stop_event.is_set():
            self.published += 1
            self.broadcaster.publish(self.make_snapshot(cpu_usage=float(self.published)))
            self.stop_event.wait(self.interval_sec)


@pytest.fixture
def socket_path(tmp_path: Path) -> str:
    return str(tmp_path / "tp.sock")


@pytest.fixture
def stream_server(socket_path, broadcaster):
    stop_event = threading.Event()
    server = LiveStreamServer(UnixSocketChannel(socket_path), broadcaster, stop_event,
                              snapshot_wait_timeout_sec=0.05)
    server.start()
    assert server.listening.wait(timeout=5.0)
    yield server
    server.stop()
    server.join(timeout=5.0)


@pytest.fixture
def publisher(broadcaster, make_snapshot):
    publisher = Publisher(broadcaster, make_snapshot)
    publisher.start()
    yield publisher
    publisher.stop_event.set()
    publisher.join(timeout=2.0)


class TestLiveStreamServer:
    """Tests for LiveStreamServer."""

    def test_client_receives_snapshots_as_json_lines(self, stream_server, publisher, socket_path) -> None:
        received = list(read_snapshots(socket_path, count=3, timeout=5.0))
        assert len(received) == 3
        cpu_values = [s.cpu_usage for s in received]
        assert cpu_values == sorted(cpu_values)
        assert len(set(cpu_values)) == 3

    def test_reconnect_after_disconnect(self, stream_server, publisher, socket_path) -> None:
        """A client that reconnects only gets snapshots produced after it returned."""
        first = list(read_snapshots(socket_path, count=2, timeout=5.0))
        second = list(read_snapshots(socket_path, count=2, timeout=5.0))

        assert len(first) == 2 and len(second) == 2
        assert second[0].cpu_usage > first[-1].cpu_usage
        assert stream_server.clients_served >= 2
        assert stream_server.is_alive()

    def test_stop_removes_socket_file(self, socket_path, broadcaster) -> None:
        stop_event = threading.Event()
        server = LiveStreamServer(UnixSocketChannel(socket_path), broadcaster, stop_event)
        server.start()
        assert server.listening.wait(timeout=5.0)
        assert Path(socket_path).exists()

        server.stop()
        server.join(timeout=5.0)
        assert not server.is_alive()
        assert not Path(socket_path).exists()

    def test_stale_socket_file_is_replaced(self, socket_path, broadcaster) -> None:
        Path(socket_path).write_text("stale", encoding="utf-8")
        stop_event = threading.Event()
        server = LiveStreamServer(UnixSocketChannel(socket_path), broadcaster, stop_event)
        server.start()
        try:
            assert server.listening.wait(timeout=5.0)
        finally:
            server.stop()
            server.join(timeout=5.0)


class TestCreateChannel:

    def test_socket_path_gives_unix_channel(self, socket_path) -> None:
        assert isinstance(create_channel(socket_path), UnixSocketChannel)

    def test_named_pipe_rejected_off_windows(self) -> None:
        with pytest.raises(ValueError):
            create_channel(r"\\.\pipe\TelemetryPipe")


def wait_until(predicate, timeout: float = 5.0) -> bool:
    event = threading.Event()
    for _ in range(int(timeout / 0.01)):
        if predicate():
            return True
        event.wait(0.01)
    return predicate()


class TestChannelOpenRetry:

    def test_transient_open_failure_is_retried(self, tmp_path: Path, broadcaster, caplog) -> None:
        """The server keeps trying to open its channel until the socket directory appears."""
        socket_dir = tmp_path / "later"
        stop_event = threading.Event()
        server = LiveStreamServer(UnixSocketChannel(str(socket_dir / "tp.sock")), broadcaster, stop_event,
                                  retry_delay_sec=0.05)
        with caplog.at_level(logging.ERROR, logger="telemetry_agent"):
            server.start()
            try:
                assert wait_until(lambda: "Failed to open live stream channel" in caplog.text)
                assert server.is_alive()
                assert not server.listening.is_set()

                socket_dir.mkdir()
                assert server.listening.wait(timeout=5.0)
                assert (socket_dir / "tp.sock").exists()
            finally:
                server.stop()
                server.join(timeout=5.0)
        assert not server.is_alive()


class TestStreamWithSampler:
    """The live stream fed by a real sampling loop."""

    @pytest.fixture
    def stop_event(self):
        event = threading.Event()
        yield event
        event.set()

    def start_pipeline(self, source, buffer, broadcaster, stop_event, socket_path):
        sampler = Sampler.from_source(source, buffer, broadcaster, stop_event,
                                      interval_sec=0.02, warmup_delay_sec=0.0)
        server = LiveStreamServer(UnixSocketChannel(socket_path), broadcaster, stop_event,
                                  snapshot_wait_timeout_sec=0.05)
        sampler.start()
        server.start()
        assert server.listening.wait(timeout=5.0)
        return sampler, server

    def stop_pipeline(self, stop_event, sampler, server):
        server.stop()
        stop_event.set()
        server.join(timeout=5.0)
        sampler.join(timeout=5.0)

    def test_failed_reads_stream_sentinels(self, buffer, broadcaster, stop_event, socket_path) -> None:
        source = StaticMetricSource()
        source.read_error = RuntimeError("counter read failed")
        sampler, server = self.start_pipeline(source, buffer, broadcaster, stop_event, socket_path)
        try:
            received = list(read_snapshots(socket_path, count=2, timeout=5.0))
        finally:
            self.stop_pipeline(stop_event, sampler, server)

        assert len(received) == 2
        assert all(s.is_sentinel for s in received)
        assert all(s.cpu_usage == -1 and s.net_in_bps_by_interface == {} for s in received)

    def test_disconnect_is_logged_and_sampling_continues(self, buffer, broadcaster, stop_event,
                                                         socket_path, caplog) -> None:
        sampler, server = self.start_pipeline(StaticMetricSource(), buffer, broadcaster, stop_event, socket_path)
        try:
            with caplog.at_level(logging.WARNING, logger="telemetry_agent"):
                assert len(list(read_snapshots(socket_path, count=2, timeout=5.0))) == 2
                ticks_at_disconnect = sampler.ticks

                assert wait_until(lambda: "Stream client disconnected" in caplog.text)
                assert wait_until(lambda: sampler.ticks >= ticks_at_disconnect + 3)

            assert sampler.is_alive()
            assert server.is_alive()
            assert len(list(read_snapshots(socket_path, count=1, timeout=5.0))) == 1
        finally:
            self.stop_pipeline(stop_event, sampler, server)


class TestSocketConnection:

    def test_write_timeout_counts_as_disconnect(self) -> None:
        """A client that stops reading is dropped instead of receiving a torn line."""
        server_sock, client_sock = socket.socketpair()
        server_sock.settimeout(0.05)
        connection = SocketConnection(server_sock)
        line = "x" * 65536
        try:
            with pytest.raises(ClientDisconnected):
                for _ in range(1000):
                    connection.write_line(line)
        finally:
            connection.close()
            client_sock.close()
