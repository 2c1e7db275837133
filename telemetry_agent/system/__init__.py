"""
System utilities for the Host Telemetry Agent.
"""
from telemetry_agent.system.windows_utils import (
    is_windows,
    get_executable_path,
    get_host_name,
    determine_channel_address
)
from telemetry_agent.system.directory_utils import (
    determine_base_directory,
    get_logs_directory,
    get_staging_log_path,
    setup_directory_structure
)

__all__ = [
    'is_windows',
    'get_executable_path',
    'get_host_name',
    'determine_channel_address',

    'determine_base_directory',
    'get_logs_directory',
    'get_staging_log_path',
    'setup_directory_structure'
]
