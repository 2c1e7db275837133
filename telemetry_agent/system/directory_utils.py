"""
Utilities for determining and creating the agent's directory structure.

Everything the worker writes (logs, staging log, stream socket) lives under a
single base directory, resolved the same way the service host resolves its
application directory.
"""
import datetime
import os
import sys
from typing import Optional

from telemetry_agent.system.windows_utils import get_executable_path
from telemetry_agent.utils import get_logger

logger = get_logger(__name__)


BASE_DIR_ENV_VAR = "TELEMETRY_AGENT_HOME"
LOGS_DIR_NAME = "Logs"
STAGING_LOG_FILENAME = "telemetry_buffered.jsonl"
STARTUP_MARKER_FILENAME = "worker-test.log"


def determine_base_directory(explicit_path: Optional[str] = None) -> str:
    """
    Determines the agent base directory.

    Precedence: explicit path, ``TELEMETRY_AGENT_HOME``, the directory of a
    frozen executable, then the current working directory.

    :param explicit_path: Directory given on the command line, if any
    :type explicit_path: Optional[str]
    :return: Absolute base directory path
    :rtype: str
    """
    if explicit_path:
        return os.path.abspath(explicit_path)

    env_path = os.environ.get(BASE_DIR_ENV_VAR)
    if env_path:
        return os.path.abspath(env_path)

    if getattr(sys, 'frozen', False):
        return os.path.dirname(get_executable_path())

    return os.path.abspath(os.getcwd())


def get_logs_directory(base_directory: str) -> str:
    """Returns the ``Logs`` directory under the base directory."""
    return os.path.join(base_directory, LOGS_DIR_NAME)


def get_staging_log_path(base_directory: str) -> str:
    """Returns the fixed path of the flush staging log."""
    return os.path.join(get_logs_directory(base_directory), STAGING_LOG_FILENAME)


def setup_directory_structure(base_directory: str) -> str:
    """
    Creates the ``Logs`` directory and records a startup marker line.

    :param base_directory: Agent base directory
    :type base_directory: str
    :return: Path of the logs directory
    :rtype: str
    """
    logs_dir = get_logs_directory(base_directory)
    try:
        os.makedirs(logs_dir, exist_ok=True)
        logger.debug(f"Created/verified directory: {logs_dir}")
    except OSError as e:
        logger.error(f"Failed to create directory {logs_dir}: {e}")
        return logs_dir

    marker_path = os.path.join(logs_dir, STARTUP_MARKER_FILENAME)
    try:
        with open(marker_path, 'a', encoding='utf-8') as f:
            f.write(f"Worker started at {datetime.datetime.now()}\n")
    except OSError as e:
        logger.warning(f"Could not write startup marker {marker_path}: {e}")

    return logs_dir
