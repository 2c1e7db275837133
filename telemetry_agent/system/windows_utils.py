"""
Platform helpers for the Host Telemetry Agent.
"""
import os
import sys
import socket

from telemetry_agent.utils import get_logger

logger = get_logger(__name__)


PIPE_NAME_TEMPLATE = r'\\.\pipe\{name}'
SOCKET_FILE_TEMPLATE = '{name}.sock'


def is_windows() -> bool:
    """
    Checks if the current operating system is Windows.

    :return: True on Windows, False otherwise
    :rtype: bool
    """
    return sys.platform == 'win32'


def get_executable_path() -> str:
    """
    Determines the absolute path to the currently running executable.
    Handles cases for PyInstaller packed executables and standard Python scripts.
    """
    if getattr(sys, 'frozen', False) and hasattr(sys, '_MEIPASS'):
        return os.path.abspath(sys.executable)

    import __main__
    if hasattr(__main__, '__file__') and __main__.__file__ is not None:
        return os.path.abspath(__main__.__file__)
    return os.path.abspath(sys.argv[0])


def get_host_name() -> str:
    """
    Returns the machine name used as the ``host``/``instance`` label.

    :return: Host name, or "unknown-host" if it cannot be resolved
    :rtype: str
    """
    try:
        host_name = socket.gethostname()
    except OSError as e:
        logger.error(f"Could not determine host name: {e}")
        return "unknown-host"
    return host_name or "unknown-host"


def determine_channel_address(pipe_name: str, base_directory: str) -> str:
    """
    Builds the live stream channel address for this platform.

    On Windows this is the named pipe path; elsewhere it is a Unix domain
    socket file inside the base directory.

    :param pipe_name: Well-known channel name (e.g. "TelemetryPipe")
    :type pipe_name: str
    :param base_directory: Agent base directory
    :type base_directory: str
    :return: Pipe path or socket file path
    :rtype: str
    """
    if is_windows():
        return PIPE_NAME_TEMPLATE.format(name=pipe_name)
    return os.path.join(base_directory, SOCKET_FILE_TEMPLATE.format(name=pipe_name))
