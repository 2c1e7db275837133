"""
Host counter sources for the telemetry sampler.

The sampler only depends on the :class:`MetricSource` interface. Production
code uses :class:`PsutilMetricSource`; tests use :class:`StaticMetricSource`.
"""
import abc
import threading
import time
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple

import psutil

from telemetry_agent.utils import get_logger

logger = get_logger(__name__)

BYTES_PER_MB = 1024 * 1024
EXCLUDED_INSTANCE_MARKERS = ("loopback", "isatap")
LOOPBACK_ADDRESSES = ("127.0.0.1", "::1")

HYPERV_COUNTER_OBJECT = "Hyper-V Hypervisor Logical Processor"
HYPERV_COUNTER_NAME = "% Total Run Time"


@dataclass(frozen=True)
class NetworkAdapter:
    """
    A network adapter as reported by host enumeration.

    Attributes:
        name: Human-readable (friendly) adapter name.
        description: Adapter description, which is what counter instances are named after.
        is_loopback: True for loopback pseudo-interfaces.
    """

    name: str
    description: str
    is_loopback: bool = False


@dataclass(frozen=True)
class CounterReading:
    """Raw values from one read of every counter, before rounding."""

    cpu_percent: float
    memory_available_mb: float
    disk_read_bps: float
    disk_write_bps: float
    net_in_bps: Dict[str, float] = field(default_factory=dict)
    net_out_bps: Dict[str, float] = field(default_factory=dict)


class MetricSource(abc.ABC):
    """
    Capability interface over host counter and enumeration APIs.

    Rate counters are stateful: the first read after construction is only a
    baseline, which is why :meth:`warm_up` must run before sampling.
    """

    @abc.abstractmethod
    def warm_up(self) -> None:
        """Performs the discarded first read of every rate counter."""

    @abc.abstractmethod
    def total_physical_memory_mb(self) -> float:
        """Returns total physical memory in MB."""

    @abc.abstractmethod
    def network_instance_names(self) -> List[str]:
        """Returns the raw network counter instance names."""

    @abc.abstractmethod
    def enumerate_network_adapters(self) -> List[NetworkAdapter]:
        """Returns the adapters known to the host."""

    @abc.abstractmethod
    def read_counters(self) -> CounterReading:
        """
        Reads every counter once.

        Network rates are keyed by raw instance name.
        """

    def close(self) -> None:
        """Releases any native counter handles."""


def _is_excluded_instance(instance_name: str) -> bool:
    lowered = instance_name.lower()
    return lowered == "lo" or any(marker in lowered for marker in EXCLUDED_INSTANCE_MARKERS)


def build_interface_name_map(instance_names: List[str], adapters: List[NetworkAdapter]) -> Dict[str, str]:
    """
    Maps raw counter instance names to friendly adapter names.

    Loopback and ``isatap`` instances are left out. An instance is matched to
    an adapter by description first, then by name; an unmatched instance
    keeps its raw name.

    :param instance_names: Raw counter instance names
    :type instance_names: List[str]
    :param adapters: Adapters from host enumeration
    :type adapters: List[NetworkAdapter]
    :return: Mapping of raw instance name to friendly name
    :rtype: Dict[str, str]
    """
    by_description = {adapter.description: adapter for adapter in adapters}
    by_name = {adapter.name: adapter for adapter in adapters}

    name_map: Dict[str, str] = {}
    for instance_name in instance_names:
        if _is_excluded_instance(instance_name):
            continue

        adapter = by_description.get(instance_name) or by_name.get(instance_name)
        if adapter is not None:
            if adapter.is_loopback:
                continue
            name_map[instance_name] = adapter.name
            logger.info(f"Mapped {instance_name} => {adapter.name}")
        else:
            name_map[instance_name] = instance_name
            logger.info(f"Unmapped: {instance_name} (used raw name)")

    return name_map


class PsutilCpuCounter:
    """System-wide CPU usage from ``psutil.cpu_percent``."""

    def prime(self):
        psutil.cpu_percent(interval=None)

    def read(self) -> float:
        return psutil.cpu_percent(interval=None)

    def close(self):
        pass


class HyperVCpuCounter:
    """
    Hypervisor logical processor run time, read through the Windows PDH API.

    Guest-visible CPU counters under-report on Hyper-V hosts, so the host's
    ``% Total Run Time`` counter is used when ``hyperV`` is configured.
    """

    def __init__(self):
        import win32pdh

        self._pdh = win32pdh
        counter_path = win32pdh.MakeCounterPath(
            (None, HYPERV_COUNTER_OBJECT, "_Total", None, -1, HYPERV_COUNTER_NAME)
        )
        self._query = win32pdh.OpenQuery()
        try:
            self._counter = win32pdh.AddCounter(self._query, counter_path)
        except Exception:
            win32pdh.CloseQuery(self._query)
            raise

    def prime(self):
        """Collects the first raw sample; a rate counter has no formatted value until the second."""
        self._pdh.CollectQueryData(self._query)

    def read(self) -> float:
        self._pdh.CollectQueryData(self._query)
        _, value = self._pdh.GetFormattedCounterValue(self._counter, self._pdh.PDH_FMT_DOUBLE)
        return float(value)

    def close(self):
        try:
            self._pdh.CloseQuery(self._query)
        except Exception as e:
            logger.warning(f"Error closing PDH query: {e}")


def create_cpu_counter(hyper_v: bool):
    """
    Creates the CPU counter selected by the ``hyperV`` setting.

    Falls back to the standard processor counter if the Hyper-V counter
    cannot be opened.
    """
    if hyper_v:
        try:
            counter = HyperVCpuCounter()
            logger.info("Using Hyper-V counter.")
            return counter
        except Exception as e:
            logger.error(f"Failed to initialize CPU counter. Defaulting to standard processor counter: {e}", exc_info=True)

    logger.info("Using standard CPU counter.")
    return PsutilCpuCounter()


def _rate(current: int, previous: int, elapsed: float) -> float:
    if elapsed <= 0 or current < previous:
        return 0.0
    return (current - previous) / elapsed


class PsutilMetricSource(MetricSource):
    """
    Production :class:`MetricSource` backed by psutil.

    Disk and network throughput are computed from the difference between two
    consecutive cumulative byte counters divided by the elapsed time.
    """

    def __init__(self, hyper_v: bool = False, cpu_counter=None):
        self._cpu_counter = cpu_counter if cpu_counter is not None else create_cpu_counter(hyper_v)
        self._lock = threading.Lock()
        self._last_time: Optional[float] = None
        self._last_disk: Optional[Tuple[int, int]] = None
        self._last_net: Dict[str, Tuple[int, int]] = {}
        logger.debug("PsutilMetricSource initialized")

    def warm_up(self) -> None:
        with self._lock:
            self._take_rates(time.monotonic())
            self._cpu_counter.prime()

    def total_physical_memory_mb(self) -> float:
        return psutil.virtual_memory().total / BYTES_PER_MB

    def network_instance_names(self) -> List[str]:
        return list(psutil.net_io_counters(pernic=True).keys())

    def enumerate_network_adapters(self) -> List[NetworkAdapter]:
        adapters = []
        addresses = psutil.net_if_addrs()
        for name, stats in psutil.net_if_stats().items():
            flags = getattr(stats, "flags", "") or ""
            is_loopback = "loopback" in flags or any(
                addr.address in LOOPBACK_ADDRESSES for addr in addresses.get(name, [])
            )
            adapters.append(NetworkAdapter(name=name, description=name, is_loopback=is_loopback))
        return adapters

    def read_counters(self) -> CounterReading:
        with self._lock:
            cpu = self._cpu_counter.read()
            memory_available_mb = psutil.virtual_memory().available / BYTES_PER_MB
            disk_read, disk_write, net_in, net_out = self._take_rates(time.monotonic())

        return CounterReading(
            cpu_percent=cpu,
            memory_available_mb=memory_available_mb,
            disk_read_bps=disk_read,
            disk_write_bps=disk_write,
            net_in_bps=net_in,
            net_out_bps=net_out,
        )

    def _take_rates(self, now: float):
        """Reads cumulative disk/network counters and returns rates since the previous read."""
        disk = psutil.disk_io_counters()
        disk_totals = (disk.read_bytes, disk.write_bytes) if disk is not None else (0, 0)
        net_totals = {
            name: (counters.bytes_recv, counters.bytes_sent)
            for name, counters in psutil.net_io_counters(pernic=True).items()
        }

        elapsed = now - self._last_time if self._last_time is not None else 0.0
        disk_read = disk_write = 0.0
        if self._last_disk is not None:
            disk_read = _rate(disk_totals[0], self._last_disk[0], elapsed)
            disk_write = _rate(disk_totals[1], self._last_disk[1], elapsed)

        net_in: Dict[str, float] = {}
        net_out: Dict[str, float] = {}
        for name, (recv, sent) in net_totals.items():
            previous = self._last_net.get(name)
            net_in[name] = _rate(recv, previous[0], elapsed) if previous else 0.0
            net_out[name] = _rate(sent, previous[1], elapsed) if previous else 0.0

        self._last_time = now
        self._last_disk = disk_totals
        self._last_net = net_totals
        return disk_read, disk_write, net_in, net_out

    def close(self) -> None:
        self._cpu_counter.close()


class StaticMetricSource(MetricSource):
    """
    Deterministic :class:`MetricSource` returning configured values.

    Set ``read_error`` to make :meth:`read_counters` raise it.
    """

    def __init__(self,
                 cpu_percent: float = 12.345,
                 memory_available_mb: float = 4096.0,
                 total_memory_mb: float = 16384.0,
                 disk_read_bps: float = 1024.0,
                 disk_write_bps: float = 2048.0,
                 net_in_bps: Optional[Dict[str, float]] = None,
                 net_out_bps: Optional[Dict[str, float]] = None,
                 adapters: Optional[List[NetworkAdapter]] = None):
        self.cpu_percent = cpu_percent
        self.memory_available_mb = memory_available_mb
        self.total_memory_mb = total_memory_mb
        self.disk_read_bps = disk_read_bps
        self.disk_write_bps = disk_write_bps
        self.net_in_bps = dict(net_in_bps or {})
        self.net_out_bps = dict(net_out_bps or {})
        self.adapters = list(adapters or [])
        self.read_error: Optional[Exception] = None
        self.warm_up_count = 0
        self.read_count = 0

    def warm_up(self) -> None:
        self.warm_up_count += 1

    def total_physical_memory_mb(self) -> float:
        return self.total_memory_mb

    def network_instance_names(self) -> List[str]:
        return list(dict.fromkeys(list(self.net_in_bps) + list(self.net_out_bps)))

    def enumerate_network_adapters(self) -> List[NetworkAdapter]:
        return list(self.adapters)

    def read_counters(self) -> CounterReading:
        self.read_count += 1
        if self.read_error is not None:
            raise self.read_error
        return CounterReading(
            cpu_percent=self.cpu_percent,
            memory_available_mb=self.memory_available_mb,
            disk_read_bps=self.disk_read_bps,
            disk_write_bps=self.disk_write_bps,
            net_in_bps=dict(self.net_in_bps),
            net_out_bps=dict(self.net_out_bps),
        )
