"""Tests for the Sampler."""

import logging
import threading

import pytest

from telemetry_agent.monitoring import NetworkAdapter, Sampler, StaticMetricSource
from telemetry_agent.monitoring.sampler import compute_memory_used_percent

pytestmark = pytest.mark.monitoring


def make_sampler(source, buffer, broadcaster, **kwargs) -> Sampler:
    return Sampler.from_source(source, buffer, broadcaster, threading.Event(), **kwargs)


class TestComputeMemoryUsedPercent:

    def test_used_percent_from_available(self) -> None:
        assert compute_memory_used_percent(4096.0, 16384.0) == 75.0

    @pytest.mark.parametrize("available", [-10.0, 0.0, 8192.0, 16384.0, 20000.0])
    def test_result_is_clamped_to_percent_range(self, available: float) -> None:
        assert 0.0 <= compute_memory_used_percent(available, 16384.0) <= 100.0

    def test_zero_total_raises(self) -> None:
        with pytest.raises(ZeroDivisionError):
            compute_memory_used_percent(1.0, 0.0)


class TestCollectSnapshot:
    """Tests for Sampler.collect_snapshot."""

    def test_values_are_rounded_to_two_decimals(self, buffer, broadcaster) -> None:
        source = StaticMetricSource(cpu_percent=37.456, disk_read_bps=10.129, disk_write_bps=0.001,
                                    memory_available_mb=1000.0, total_memory_mb=3000.0)
        snapshot = make_sampler(source, buffer, broadcaster).collect_snapshot()
        assert snapshot.cpu_usage == 37.46
        assert snapshot.disk_read_bps == 10.13
        assert snapshot.disk_write_bps == 0.0
        assert snapshot.memory_used_percent == 66.67

    def test_network_rates_use_friendly_names(self, buffer, broadcaster) -> None:
        source = StaticMetricSource(
            net_in_bps={"Intel Adapter #2": 150.5},
            net_out_bps={"Intel Adapter #2": 75.25},
            adapters=[NetworkAdapter(name="Ethernet 2", description="Intel Adapter #2")],
        )
        snapshot = make_sampler(source, buffer, broadcaster).collect_snapshot()
        assert snapshot.net_in_bps_by_interface == {"Ethernet 2": 150.5}
        assert snapshot.net_out_bps_by_interface == {"Ethernet 2": 75.25}

    def test_loopback_only_host_has_no_network_entries(self, buffer, broadcaster) -> None:
        source = StaticMetricSource(
            net_in_bps={"lo": 10.0}, net_out_bps={"lo": 10.0},
            adapters=[NetworkAdapter(name="lo", description="lo", is_loopback=True)],
        )
        snapshot = make_sampler(source, buffer, broadcaster).collect_snapshot()
        assert snapshot.net_in_bps_by_interface == {}
        assert snapshot.net_out_bps_by_interface == {}
        assert snapshot.cpu_usage >= 0

    def test_read_failure_returns_sentinel(self, buffer, broadcaster, caplog) -> None:
        """A failing counter read is logged and replaced by the sentinel."""
        source = StaticMetricSource()
        source.read_error = OSError("counter unavailable")
        sampler = make_sampler(source, buffer, broadcaster)
        with caplog.at_level(logging.ERROR):
            snapshot = sampler.collect_snapshot()
        assert snapshot.is_sentinel
        assert "Failed to collect performance snapshot" in caplog.text

    def test_unknown_total_memory_returns_sentinel(self, buffer, broadcaster) -> None:
        source = StaticMetricSource(total_memory_mb=0.0)
        assert make_sampler(source, buffer, broadcaster).collect_snapshot().is_sentinel

    def test_memory_percent_stays_in_range(self, buffer, broadcaster) -> None:
        source = StaticMetricSource(memory_available_mb=50000.0, total_memory_mb=16384.0)
        snapshot = make_sampler(source, buffer, broadcaster).collect_snapshot()
        assert 0.0 <= snapshot.memory_used_percent <= 100.0


class TestTick:

    def test_tick_buffers_and_broadcasts(self, buffer, broadcaster) -> None:
        sampler = make_sampler(StaticMetricSource(), buffer, broadcaster)
        snapshot = sampler.tick()
        assert buffer.drain() == [snapshot]
        assert broadcaster.wait_for_next(0, timeout=0.1) == (1, snapshot)
        assert sampler.ticks == 1

    def test_sentinel_is_still_buffered(self, buffer, broadcaster) -> None:
        source = StaticMetricSource()
        source.read_error = RuntimeError("boom")
        make_sampler(source, buffer, broadcaster).tick()
        drained = buffer.drain()
        assert len(drained) == 1 and drained[0].is_sentinel


class TestSamplerThread:
    """Tests for the sampling loop."""

    def test_loop_keeps_running_through_failures(self, buffer, broadcaster) -> None:
        source = StaticMetricSource()
        source.read_error = RuntimeError("boom")
        stop_event = threading.Event()
        sampler = Sampler.from_source(source, buffer, broadcaster, stop_event,
                                      interval_sec=0.01, warmup_delay_sec=0.0)
        sampler.start()
        try:
            for _ in range(200):
                if sampler.ticks >= 3:
                    break
                stop_event.wait(0.01)
        finally:
            stop_event.set()
            sampler.join(timeout=2.0)

        assert not sampler.is_alive()
        assert source.warm_up_count == 1
        assert sampler.ticks >= 3
        assert all(s.is_sentinel for s in buffer.drain())

    def test_stop_event_ends_the_loop(self, buffer, broadcaster) -> None:
        stop_event = threading.Event()
        sampler = Sampler.from_source(StaticMetricSource(), buffer, broadcaster, stop_event,
                                      interval_sec=60.0, warmup_delay_sec=0.0)
        sampler.start()
        stop_event.set()
        sampler.join(timeout=2.0)
        assert not sampler.is_alive()
