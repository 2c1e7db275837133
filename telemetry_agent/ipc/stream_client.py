"""
Minimal live stream client used by the ``watch`` command.
"""
import socket
import sys
from typing import Iterator, Optional

from telemetry_agent.ipc.channels import PIPE_BUFFER_SIZE, PIPE_PREFIX
from telemetry_agent.monitoring.models import Snapshot
from telemetry_agent.utils import get_logger

if sys.platform == 'win32':
    import pywintypes
    import win32file
    import win32pipe

logger = get_logger(__name__)

# Pipe connection configuration constants
PIPE_CONNECT_TIMEOUT_MS = 3000
ERROR_BROKEN_PIPE = 109


def _iter_socket_lines(address: str, timeout: Optional[float]) -> Iterator[str]:
    sock = socket.socket(socket.AF_UNIX, socket.SOCK_STREAM)
    try:
        sock.settimeout(timeout)
        sock.connect(address)
        logger.info(f"Connected to socket {address}.")
        with sock.makefile('r', encoding='utf-8', newline='\n') as stream:
            for line in stream:
                yield line.rstrip('\n')
    finally:
        sock.close()


def _iter_pipe_lines(address: str) -> Iterator[str]:
    win32pipe.WaitNamedPipe(address, PIPE_CONNECT_TIMEOUT_MS)
    pipe_handle = win32file.CreateFile(
        address,
        win32file.GENERIC_READ,
        0,
        None,
        win32file.OPEN_EXISTING,
        0,
        None
    )
    logger.info(f"Connected to pipe {address}.")

    pending = b''
    try:
        while True:
            try:
                hr, data = win32file.ReadFile(pipe_handle, PIPE_BUFFER_SIZE)
            except pywintypes.error as e:
                if e.winerror == ERROR_BROKEN_PIPE:
                    logger.info("Stream server closed the pipe.")
                    return
                raise OSError(f"Pipe read failed (winerror {e.winerror}): {e}") from e

            pending += data
            while b'\n' in pending:
                raw_line, pending = pending.split(b'\n', 1)
                yield raw_line.decode('utf-8')
    finally:
        win32file.CloseHandle(pipe_handle)


def iter_stream_lines(address: str, max_lines: Optional[int] = None,
                      timeout: Optional[float] = None) -> Iterator[str]:
    """
    Connects to the live stream and yields each line as it arrives.

    :param address: Named pipe path or socket file path
    :type address: str
    :param max_lines: Stop after this many lines (None for no limit)
    :type max_lines: Optional[int]
    :param timeout: Socket read timeout in seconds (socket channels only)
    :type timeout: Optional[float]
    :raises OSError: if the stream cannot be opened or read
    """
    if address.startswith(PIPE_PREFIX):
        lines = _iter_pipe_lines(address)
    else:
        lines = _iter_socket_lines(address, timeout)

    count = 0
    try:
        for line in lines:
            if not line:
                continue
            yield line
            count += 1
            if max_lines is not None and count >= max_lines:
                return
    finally:
        lines.close()


def read_snapshots(address: str, count: int, timeout: Optional[float] = 10.0) -> Iterator[Snapshot]:
    """
    Yields ``count`` snapshots from the live stream, then disconnects.

    :param address: Named pipe path or socket file path
    :type address: str
    :param count: Number of snapshots to read
    :type count: int
    :param timeout: Socket read timeout in seconds
    :type timeout: Optional[float]
    """
    for line in iter_stream_lines(address, max_lines=count, timeout=timeout):
        yield Snapshot.from_json(line)
