"""
Communication components for the Host Telemetry Agent.
"""
from .http_client import HttpClient
from .log_sink import LokiLogSink
from .metrics_sink import PushGatewayMetricsSink

__all__ = ['HttpClient', 'LokiLogSink', 'PushGatewayMetricsSink']
