"""
Configuration management modules for the Host Telemetry Agent.
"""
from .config_manager import AppConfig, ConfigManager, load_app_config

__all__ = [
    'AppConfig',
    'ConfigManager',
    'load_app_config'
]
