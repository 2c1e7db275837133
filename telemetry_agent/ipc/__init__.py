"""
IPC components for the local live stream.
"""
from telemetry_agent.ipc.channels import (
    ClientConnection,
    ClientDisconnected,
    StreamChannel,
    UnixSocketChannel,
    NamedPipeChannel,
    create_channel
)
from telemetry_agent.ipc.stream_server import LiveStreamServer
from telemetry_agent.ipc.stream_client import iter_stream_lines, read_snapshots

__all__ = [
    'ClientConnection',
    'ClientDisconnected',
    'StreamChannel',
    'UnixSocketChannel',
    'NamedPipeChannel',
    'create_channel',
    'LiveStreamServer',
    'iter_stream_lines',
    'read_snapshots'
]
