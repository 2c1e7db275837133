"""
Utility functions for the Host Telemetry Agent.
"""
from telemetry_agent.utils.logger import get_logger, setup_logger
from telemetry_agent.utils.utils import ensure_directory, secure_delete_file

__all__ = [
    'get_logger',
    'setup_logger',
    'ensure_directory',
    'secure_delete_file'
]
