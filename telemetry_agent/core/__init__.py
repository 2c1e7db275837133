"""
Core functionality for the Host Telemetry Agent.
"""
from telemetry_agent.core.agent_state import AgentState
from telemetry_agent.core.buffer import SnapshotBuffer, SnapshotBroadcaster
from telemetry_agent.core.flush_scheduler import FlushScheduler
from telemetry_agent.core.agent import AgentContext, TelemetryAgent

__all__ = [
    'AgentState',
    'SnapshotBuffer',
    'SnapshotBroadcaster',
    'FlushScheduler',
    'AgentContext',
    'TelemetryAgent'
]
