"""
Snapshot value type shared by the sampler, buffer, sinks and live stream.
"""
import datetime
import json
from dataclasses import dataclass, field
from typing import Any, Dict, Mapping, Optional

SENTINEL_VALUE = -1.0
TIMESTAMP_FORMAT = "%Y-%m-%dT%H:%M:%S.%fZ"


def _utc_now() -> datetime.datetime:
    return datetime.datetime.now(datetime.timezone.utc)


def format_timestamp(timestamp: datetime.datetime) -> str:
    """Formats an instant as ISO-8601 UTC with a ``Z`` suffix."""
    if timestamp.tzinfo is None:
        timestamp = timestamp.replace(tzinfo=datetime.timezone.utc)
    return timestamp.astimezone(datetime.timezone.utc).strftime(TIMESTAMP_FORMAT)


def parse_timestamp(value: str) -> datetime.datetime:
    """Parses an ISO-8601 string into an aware UTC datetime."""
    if value.endswith("Z"):
        value = value[:-1] + "+00:00"
    parsed = datetime.datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=datetime.timezone.utc)
    return parsed.astimezone(datetime.timezone.utc)


@dataclass(frozen=True)
class Snapshot:
    """
    One timestamped reading of CPU, memory, disk and network counters.

    Attributes:
        timestamp: Capture instant (aware, UTC).
        cpu_usage: CPU usage in percent.
        memory_used_percent: Physical memory in use, in percent.
        disk_read_bps: Disk read throughput in bytes/sec.
        disk_write_bps: Disk write throughput in bytes/sec.
        net_in_bps_by_interface: Bytes received/sec keyed by adapter friendly name.
        net_out_bps_by_interface: Bytes sent/sec keyed by adapter friendly name.
    """

    timestamp: datetime.datetime
    cpu_usage: float
    memory_used_percent: float
    disk_read_bps: float
    disk_write_bps: float
    net_in_bps_by_interface: Mapping[str, float] = field(default_factory=dict)
    net_out_bps_by_interface: Mapping[str, float] = field(default_factory=dict)

    @classmethod
    def sentinel(cls, timestamp: Optional[datetime.datetime] = None) -> "Snapshot":
        """Builds the snapshot that signals a collection failure."""
        return cls(
            timestamp=timestamp or _utc_now(),
            cpu_usage=SENTINEL_VALUE,
            memory_used_percent=SENTINEL_VALUE,
            disk_read_bps=SENTINEL_VALUE,
            disk_write_bps=SENTINEL_VALUE,
        )

    @property
    def is_sentinel(self) -> bool:
        return (self.cpu_usage == SENTINEL_VALUE
                and self.memory_used_percent == SENTINEL_VALUE
                and self.disk_read_bps == SENTINEL_VALUE
                and self.disk_write_bps == SENTINEL_VALUE
                and not self.net_in_bps_by_interface
                and not self.net_out_bps_by_interface)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "timestamp": format_timestamp(self.timestamp),
            "cpuUsage": self.cpu_usage,
            "memoryUsedPercent": self.memory_used_percent,
            "diskReadBps": self.disk_read_bps,
            "diskWriteBps": self.disk_write_bps,
            "netInBpsByInterface": dict(self.net_in_bps_by_interface),
            "netOutBpsByInterface": dict(self.net_out_bps_by_interface),
        }

    def to_json(self) -> str:
        """Serializes to a single JSON line (no trailing newline)."""
        return json.dumps(self.to_dict(), ensure_ascii=False, separators=(",", ":"))

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Snapshot":
        """
        Builds a snapshot from its JSON object form.

        :raises KeyError: if a required field is missing
        :raises ValueError: if a field cannot be converted
        """
        return cls(
            timestamp=parse_timestamp(data["timestamp"]),
            cpu_usage=float(data["cpuUsage"]),
            memory_used_percent=float(data["memoryUsedPercent"]),
            disk_read_bps=float(data["diskReadBps"]),
            disk_write_bps=float(data["diskWriteBps"]),
            net_in_bps_by_interface={str(k): float(v) for k, v in (data.get("netInBpsByInterface") or {}).items()},
            net_out_bps_by_interface={str(k): float(v) for k, v in (data.get("netOutBpsByInterface") or {}).items()},
        )

    @classmethod
    def from_json(cls, line: str) -> "Snapshot":
        return cls.from_dict(json.loads(line))
