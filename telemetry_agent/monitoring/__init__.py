"""
Monitoring components for the Host Telemetry Agent.
"""
from telemetry_agent.monitoring.models import Snapshot
from telemetry_agent.monitoring.metric_source import (
    MetricSource,
    NetworkAdapter,
    CounterReading,
    PsutilMetricSource,
    StaticMetricSource,
    build_interface_name_map
)
from telemetry_agent.monitoring.sampler import Sampler

__all__ = [
    'Snapshot',
    'MetricSource',
    'NetworkAdapter',
    'CounterReading',
    'PsutilMetricSource',
    'StaticMetricSource',
    'build_interface_name_map',
    'Sampler'
]
