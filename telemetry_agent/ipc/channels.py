"""
Local single-client channels used by the live stream.

On Windows the channel is an outbound named pipe; elsewhere it is a Unix
domain socket file. Both accept one client at a time and expose the same
small interface to the stream server.
"""
import os
import socket
import sys
import threading
from abc import ABC, abstractmethod
from typing import Optional

from telemetry_agent.utils import get_logger

if sys.platform == 'win32':
    import pywintypes
    import win32file
    import win32pipe

logger = get_logger(__name__)

# Pipe configuration constants
PIPE_BUFFER_SIZE = 4096
PIPE_PREFIX = '\\\\.\\pipe\\'

# Win32 error codes
ERROR_FILE_NOT_FOUND = 2
ERROR_BROKEN_PIPE = 109
ERROR_PIPE_BUSY = 231
ERROR_NO_DATA = 232
ERROR_PIPE_NOT_CONNECTED = 233
ERROR_PIPE_CONNECTED = 535

_PIPE_DISCONNECT_ERRORS = (ERROR_BROKEN_PIPE, ERROR_NO_DATA, ERROR_PIPE_NOT_CONNECTED)

SOCKET_ACCEPT_TIMEOUT_SEC = 0.5
SOCKET_WRITE_TIMEOUT_SEC = 5.0


class ClientDisconnected(Exception):
    """Raised when the connected client has gone away."""


class ClientConnection(ABC):
    """One connected stream client."""

    @abstractmethod
    def write_line(self, line: str) -> None:
        """
        Writes one UTF-8 line terminated by a newline.

        :raises ClientDisconnected: if the client has disconnected
        :raises OSError: on any other write failure
        """

    @abstractmethod
    def close(self) -> None:
        pass


class StreamChannel(ABC):
    """A listening endpoint serving at most one client at a time."""

    def __init__(self, address: str):
        self.address = address

    def open(self) -> None:
        """Prepares the endpoint before the first client wait."""

    @abstractmethod
    def wait_for_client(self, stop_event: threading.Event) -> Optional[ClientConnection]:
        """
        Blocks until a client connects.

        :param stop_event: Cancellation signal observed while waiting
        :type stop_event: threading.Event
        :return: The connection, or None if cancelled
        :rtype: Optional[ClientConnection]
        """

    def unblock(self) -> None:
        """Wakes a blocked :meth:`wait_for_client` after the stop event is set."""

    def close(self) -> None:
        pass


class SocketConnection(ClientConnection):

    def __init__(self, sock: socket.socket):
        self._sock = sock

    def write_line(self, line: str) -> None:
        try:
            self._sock.sendall((line + '\n').encode('utf-8'))
        except (BrokenPipeError, ConnectionResetError, ConnectionAbortedError) as e:
            raise ClientDisconnected(str(e)) from e
        except socket.timeout as e:
            # A partial line may have been sent; the stream cannot be resumed
            raise ClientDisconnected(f"write timed out: {e}") from e

    def close(self) -> None:
        try:
            self._sock.close()
        except OSError as e:
            logger.debug(f"Error closing client socket: {e}")


class UnixSocketChannel(StreamChannel):
    """
    Stream channel over a Unix domain socket file.

    A stale socket file left by a previous run is removed on :meth:`open`,
    and the file is removed again on :meth:`close`.
    """

    def __init__(self, address: str, accept_timeout_sec: float = SOCKET_ACCEPT_TIMEOUT_SEC,
                 write_timeout_sec: float = SOCKET_WRITE_TIMEOUT_SEC):
        super().__init__(address)
        self.accept_timeout_sec = accept_timeout_sec
        self.write_timeout_sec = write_timeout_sec
        self._server_sock: Optional[socket.socket] = None

    def open(self) -> None:
        self._remove_socket_file()
        sock = socket.socket(socket.AF_UNIX, socket.SOCK_STREAM)
        try:
            sock.bind(self.address)
            sock.listen(1)
            sock.settimeout(self.accept_timeout_sec)
        except OSError:
            sock.close()
            raise
        self._server_sock = sock
        logger.debug(f"Listening on socket {self.address}")

    def wait_for_client(self, stop_event: threading.Event) -> Optional[ClientConnection]:
        if self._server_sock is None:
            self.open()

        while not stop_event.is_set():
            try:
                client_sock, _ = self._server_sock.accept()
            except socket.timeout:
                continue
            client_sock.settimeout(self.write_timeout_sec)
            return SocketConnection(client_sock)
        return None

    def close(self) -> None:
        if self._server_sock is not None:
            try:
                self._server_sock.close()
            except OSError as e:
                logger.warning(f"Error closing stream socket: {e}")
            finally:
                self._server_sock = None
        self._remove_socket_file()

    def _remove_socket_file(self):
        try:
            os.remove(self.address)
            logger.debug(f"Removed socket file {self.address}")
        except FileNotFoundError:
            pass
        except OSError as e:
            logger.warning(f"Could not remove socket file {self.address}: {e}")


class PipeConnection(ClientConnection):

    def __init__(self, pipe_handle):
        self._pipe_handle = pipe_handle

    def write_line(self, line: str) -> None:
        try:
            win32file.WriteFile(self._pipe_handle, (line + '\n').encode('utf-8'))
        except pywintypes.error as e:
            if e.winerror in _PIPE_DISCONNECT_ERRORS:
                raise ClientDisconnected(f"winerror {e.winerror}") from e
            raise OSError(f"Pipe write failed (winerror {e.winerror}): {e}") from e

    def close(self) -> None:
        if not self._pipe_handle:
            return
        try:
            win32pipe.DisconnectNamedPipe(self._pipe_handle)
        except pywintypes.error as e:
            if e.winerror not in _PIPE_DISCONNECT_ERRORS:
                logger.warning(f"Error disconnecting pipe client: {e}")
        try:
            win32file.CloseHandle(self._pipe_handle)
        except pywintypes.error as e:
            logger.warning(f"Error closing pipe handle: {e}")
        finally:
            self._pipe_handle = None


class NamedPipeChannel(StreamChannel):
    """
    Stream channel over an outbound Windows named pipe with one instance.

    A fresh pipe instance is created for every client wait. Waiting blocks in
    ``ConnectNamedPipe``; :meth:`unblock` makes a throwaway connection so the
    server thread can observe the stop event.
    """

    def __init__(self, address: str):
        super().__init__(address)
        self._pending_handle = None
        self._lock = threading.Lock()

    def wait_for_client(self, stop_event: threading.Event) -> Optional[ClientConnection]:
        if stop_event.is_set():
            return None

        pipe_handle = win32pipe.CreateNamedPipe(
            self.address,
            win32pipe.PIPE_ACCESS_OUTBOUND,
            win32pipe.PIPE_TYPE_BYTE | win32pipe.PIPE_WAIT,
            1,
            PIPE_BUFFER_SIZE,
            PIPE_BUFFER_SIZE,
            0,
            None
        )
        with self._lock:
            self._pending_handle = pipe_handle
        logger.debug(f"Pipe {self.address} created. Waiting for client connection...")

        try:
            win32pipe.ConnectNamedPipe(pipe_handle, None)
        except pywintypes.error as e:
            # Client connected between CreateNamedPipe and ConnectNamedPipe
            if e.winerror != ERROR_PIPE_CONNECTED:
                self._release_pending(close=True)
                raise
        self._release_pending(close=False)

        connection = PipeConnection(pipe_handle)
        if stop_event.is_set():
            connection.close()
            return None
        return connection

    def _release_pending(self, close: bool):
        with self._lock:
            pipe_handle, self._pending_handle = self._pending_handle, None
        if close and pipe_handle:
            try:
                win32file.CloseHandle(pipe_handle)
            except pywintypes.error as e:
                logger.warning(f"Error closing pipe handle: {e}")

    def unblock(self) -> None:
        with self._lock:
            if self._pending_handle is None:
                return

        def dummy_connect():
            try:
                logger.debug("Attempting dummy connection to unblock stream server...")
                handle = win32file.CreateFile(
                    self.address,
                    win32file.GENERIC_READ,
                    0, None,
                    win32file.OPEN_EXISTING,
                    0, None
                )
                win32file.CloseHandle(handle)
                logger.debug("Dummy connection successful and closed.")
            except pywintypes.error as e:
                if e.winerror not in (ERROR_FILE_NOT_FOUND, ERROR_PIPE_BUSY):
                    logger.warning(f"Error during dummy pipe connection: {e}")

        dummy_thread = threading.Thread(target=dummy_connect, daemon=True)
        dummy_thread.start()
        dummy_thread.join(timeout=1.0)

    def close(self) -> None:
        self._release_pending(close=True)


def create_channel(address: str) -> StreamChannel:
    """
    Picks the channel implementation for an address.

    :param address: Named pipe path (``\\\\.\\pipe\\...``) or socket file path
    :type address: str
    :return: An unopened channel
    :rtype: StreamChannel
    """
    if address.startswith(PIPE_PREFIX):
        if sys.platform != 'win32':
            raise ValueError(f"Named pipe channels are only available on Windows: {address}")
        return NamedPipeChannel(address)
    return UnixSocketChannel(address)
