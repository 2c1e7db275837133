"""
Utility functions for the Host Telemetry Agent.
"""
import os
from typing import Tuple

from telemetry_agent.utils.logger import get_logger

logger = get_logger(__name__)


def ensure_directory(directory_path: str) -> bool:
    """
    Create a directory (and parents) if it does not exist yet.

    :param directory_path: Directory to create
    :type directory_path: str
    :return: True if the directory exists afterwards, False otherwise
    :rtype: bool
    """
    if not directory_path:
        logger.error("Cannot create directory: Path is empty")
        return False

    try:
        os.makedirs(directory_path, exist_ok=True)
        return True
    except OSError as e:
        logger.error(f"Failed to create directory {directory_path}: {e}")
        return False


def secure_delete_file(file_path: str) -> Tuple[bool, str]:
    """
    Overwrite a file with empty contents, then delete it.

    :param file_path: Path to the file
    :type file_path: str
    :return: Tuple (success_flag, error_message)
    :rtype: Tuple[bool, str]
    """
    if not os.path.exists(file_path):
        logger.debug(f"File to delete does not exist: {file_path}")
        return True, ""

    try:
        with open(file_path, 'w', encoding='utf-8'):
            pass
        os.remove(file_path)
        return True, ""
    except PermissionError as e:
        return False, f"Permission denied deleting {file_path}: {e}"
    except OSError as e:
        return False, f"I/O error deleting {file_path}: {e}"
