"""
Configuration Manager module for the Host Telemetry Agent.
"""
import json
import os
from dataclasses import dataclass, replace
from typing import Any, Optional, Dict, List

from ..utils import get_logger

logger = get_logger(__name__)

PRIMARY_CONFIG_FILENAME = "config.json"
FALLBACK_CONFIG_FILENAME = "config.local.json"


@dataclass(frozen=True)
class AppConfig:
    """
    Immutable process-wide settings, loaded once at startup.

    Every field has a default so the worker runs with no configuration file.
    """
    client: str = "default"
    region: str = "default-region"
    environment: str = "dev"
    component: str = "worker"
    log_type: str = "metrics_raw"
    loki_url: str = ""
    push_gateway_url_base: str = ""
    hyper_v: bool = False
    sample_interval_sec: float = 2.0
    flush_interval_sec: float = 10.0
    pipe_name: str = "TelemetryPipe"
    http_timeout_sec: float = 10.0
    buffer_max_size: int = 10000
    log_level: str = "INFO"


# JSON key -> (AppConfig attribute, accepted types)
CONFIG_KEYS: Dict[str, tuple] = {
    "client": ("client", (str,)),
    "region": ("region", (str,)),
    "environment": ("environment", (str,)),
    "component": ("component", (str,)),
    "logType": ("log_type", (str,)),
    "lokiUrl": ("loki_url", (str,)),
    "pushGatewayUrlBase": ("push_gateway_url_base", (str,)),
    "hyperV": ("hyper_v", (bool,)),
    "sampleIntervalSec": ("sample_interval_sec", (int, float)),
    "flushIntervalSec": ("flush_interval_sec", (int, float)),
    "pipeName": ("pipe_name", (str,)),
    "httpTimeoutSec": ("http_timeout_sec", (int, float)),
    "bufferMaxSize": ("buffer_max_size", (int,)),
    "logLevel": ("log_level", (str,)),
}

_POSITIVE_NUMBER_FIELDS = ("sample_interval_sec", "flush_interval_sec", "http_timeout_sec", "buffer_max_size")


class ConfigManager:
    """
    Loads the agent configuration file and turns it into an :class:`AppConfig`.
    """

    def __init__(self, config_path: Optional[str]):
        """
        Initializes the ConfigManager by loading the configuration file.

        :param config_path: The path to the configuration JSON file
        :type config_path: Optional[str]
        :raises: FileNotFoundError if the configuration file path is provided but does not exist
        :raises: ValueError if the configuration file is invalid JSON or not a JSON object
        """
        self._config_path = config_path
        self._config_data: Dict[str, Any] = {}

        if self._config_path is None:
            logger.debug("ConfigManager initialized without a config path (defaults only).")
        else:
            self._load_config()
            logger.info(f"Configuration loaded successfully from: {self._config_path}")

    @property
    def config_path(self) -> Optional[str]:
        return self._config_path

    def _load_config(self):
        """
        Loads the configuration data from the JSON file.

        :raises: FileNotFoundError if the file doesn't exist
        :raises: ValueError if there are JSON parsing errors
        """
        if not os.path.exists(self._config_path):
            raise FileNotFoundError(f"Configuration file not found: {self._config_path}")

        try:
            with open(self._config_path, 'r', encoding='utf-8-sig') as f:
                data = json.load(f)
        except json.JSONDecodeError as e:
            raise ValueError(f"Invalid JSON in configuration file: {e}") from e
        except (IOError, OSError) as e:
            raise ValueError(f"Could not read configuration file: {e}") from e

        if not isinstance(data, dict):
            raise ValueError("Configuration file content is not a valid JSON object.")
        self._config_data = data

    def get(self, key_path: str, default: Any = None) -> Any:
        """
        Retrieves a configuration value using a dot-separated key path.

        :param key_path: The dot-separated path to the configuration key
        :type key_path: str
        :param default: The default value to return if the key is not found
        :type default: Any
        :return: The configuration value or the default value
        :rtype: Any
        """
        value: Any = self._config_data
        for key in key_path.split('.'):
            if isinstance(value, dict) and key in value:
                value = value[key]
            else:
                return default
        return value

    def to_app_config(self) -> AppConfig:
        """
        Builds an :class:`AppConfig` from the loaded data.

        Unknown keys are ignored. Values of the wrong type, and non-positive
        intervals or sizes, are logged and replaced by the default.

        :return: The resulting settings object
        :rtype: AppConfig
        """
        defaults = AppConfig()
        overrides: Dict[str, Any] = {}

        for json_key, (attr_name, accepted_types) in CONFIG_KEYS.items():
            value = self.get(json_key)
            if value is None:
                continue
            # bool is an int subclass; only accept it where a bool is expected
            if isinstance(value, bool) and bool not in accepted_types:
                valid = False
            else:
                valid = isinstance(value, accepted_types)
            if valid and attr_name in _POSITIVE_NUMBER_FIELDS and value <= 0:
                valid = False
            if not valid:
                logger.warning(f"Invalid value for '{json_key}' in configuration: {value!r}. "
                               f"Using default {getattr(defaults, attr_name)!r}.")
                continue
            overrides[attr_name] = float(value) if float in accepted_types else value

        unknown_keys = sorted(set(self._config_data) - set(CONFIG_KEYS))
        if unknown_keys:
            logger.debug(f"Ignoring unknown configuration keys: {', '.join(unknown_keys)}")

        return replace(defaults, **overrides)


def candidate_config_paths(base_directory: str, explicit_path: Optional[str] = None) -> List[str]:
    """
    Lists the configuration files to try, in order.

    :param base_directory: Agent base directory
    :type base_directory: str
    :param explicit_path: Path given on the command line, tried first
    :type explicit_path: Optional[str]
    :return: Ordered list of candidate paths
    :rtype: List[str]
    """
    paths = [
        os.path.join(base_directory, PRIMARY_CONFIG_FILENAME),
        os.path.join(base_directory, FALLBACK_CONFIG_FILENAME),
    ]
    if explicit_path:
        paths.insert(0, explicit_path)
    return paths


def load_app_config(base_directory: str, explicit_path: Optional[str] = None) -> AppConfig:
    """
    Resolves and parses the configuration file, never failing.

    The first existing candidate file is used. A missing file or a file that
    cannot be parsed logs a warning and yields the defaults.

    :param base_directory: Agent base directory
    :type base_directory: str
    :param explicit_path: Optional explicit configuration file path
    :type explicit_path: Optional[str]
    :return: The loaded settings, or defaults
    :rtype: AppConfig
    """
    config_path = next((p for p in candidate_config_paths(base_directory, explicit_path) if os.path.exists(p)), None)
    if config_path is None:
        logger.warning(f"No {PRIMARY_CONFIG_FILENAME} found in {base_directory}, using default values.")
        return AppConfig()

    try:
        app_config = ConfigManager(config_path).to_app_config()
    except (FileNotFoundError, ValueError) as e:
        logger.warning(f"Failed to load {config_path}, using defaults: {e}")
        return AppConfig()

    logger.info(f"Using configuration: client={app_config.client}, region={app_config.region}, "
                f"environment={app_config.environment}, component={app_config.component}, "
                f"hyperV={app_config.hyper_v}")
    return app_config
