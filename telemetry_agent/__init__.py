"""
Host Telemetry Agent - Source Package

This package contains the worker that samples host resource counters,
buffers the snapshots, forwards them to Loki and a Prometheus Pushgateway,
and streams them live to a local client.

Main components:
- TelemetryAgent: The main agent class orchestrating all worker threads
- AgentContext: Shared configuration, HTTP client, sinks and buffers
- AgentState: Enumeration of possible agent operational states
- AppConfig / ConfigManager: Agent configuration
- Sampler / MetricSource: Fixed-interval counter sampling
- FlushScheduler: Periodic staging log write and sink forwarding
- LokiLogSink / PushGatewayMetricsSink: Remote sinks over HttpClient
- LiveStreamServer: Local live snapshot stream
"""


from .version import __version__, __app_name__


from .core import TelemetryAgent, AgentContext, AgentState
from .core import SnapshotBuffer, SnapshotBroadcaster, FlushScheduler


from .config import AppConfig, ConfigManager, load_app_config


from .communication import HttpClient, LokiLogSink, PushGatewayMetricsSink


from .monitoring import Snapshot, MetricSource, PsutilMetricSource, StaticMetricSource, Sampler


from .ipc import LiveStreamServer

__all__ = [

    '__version__',
    '__app_name__',


    'TelemetryAgent',
    'AgentContext',
    'AgentState',
    'SnapshotBuffer',
    'SnapshotBroadcaster',
    'FlushScheduler',


    'AppConfig',
    'ConfigManager',
    'load_app_config',


    'HttpClient',
    'LokiLogSink',
    'PushGatewayMetricsSink',


    'Snapshot',
    'MetricSource',
    'PsutilMetricSource',
    'StaticMetricSource',
    'Sampler',


    'LiveStreamServer'
]
