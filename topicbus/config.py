"""
Configuration management supporting both file-based and environment variable configurations.
"""
import os
import json
import logging
from typing import Any, Dict, Optional


class Config:
    """Configuration manager with defaults and environment variable support"""

    # Default configuration values
    DEFAULTS = {
        # Dispatch settings
        'broker': {
            'delivery_mode': 'inline',  # 'inline' or 'threaded'
            'max_workers': 4,           # threaded mode pool size
            'subscription_id_prefix': 'sub',
            'shutdown_timeout': 5,      # seconds
        },

        # Logging
        'logging': {
            'level': 'INFO',
            'format': '%(asctime)s - %(name)s - %(levelname)s - %(message)s',
            'file': None,  # None means console only
        }
    }

    ENV_MAPPINGS = {
        'TB_DELIVERY_MODE': 'broker.delivery_mode',
        'TB_MAX_WORKERS': 'broker.max_workers',
        'TB_SUBSCRIPTION_ID_PREFIX': 'broker.subscription_id_prefix',
        'TB_SHUTDOWN_TIMEOUT': 'broker.shutdown_timeout',
        'TB_LOG_LEVEL': 'logging.level',
        'TB_LOG_FILE': 'logging.file',
    }

    def __init__(self, config_file: Optional[str] = None, load_env: bool = True):
        self._config = self._deep_copy(self.DEFAULTS)

        # Load from file if provided
        if config_file and os.path.exists(config_file):
            self._load_from_file(config_file)

        # Override with environment variables
        if load_env:
            self._load_from_env()

    @classmethod
    def defaults(cls) -> 'Config':
        """Configuration built from DEFAULTS only, ignoring files and the environment"""
        return cls(load_env=False)

    def get(self, key_path: str, default: Any = None) -> Any:
        """
        Get configuration value using dot notation.
        Example: config.get('broker.delivery_mode') returns the delivery mode
        """
        keys = key_path.split('.')
        value = self._config

        try:
            for key in keys:
                value = value[key]
            return value
        except (KeyError, TypeError):
            return default

    def set(self, key_path: str, value: Any) -> None:
        """Set configuration value using dot notation"""
        keys = key_path.split('.')
        config = self._config

        for key in keys[:-1]:
            if key not in config:
                config[key] = {}
            config = config[key]

        config[keys[-1]] = value

    def _load_from_file(self, config_file: str) -> None:
        """Load configuration from JSON file"""
        try:
            with open(config_file, 'r') as f:
                file_config = json.load(f)
            self._merge_config(self._config, file_config)
        except (OSError, ValueError) as e:
            logging.warning(f"Failed to load config file {config_file}: {e}")

    def _load_from_env(self) -> None:
        """Load configuration from environment variables"""
        for env_var, config_key in self.ENV_MAPPINGS.items():
            env_value = os.getenv(env_var)
            if env_value is not None:
                self.set(config_key, self._convert_env_value(env_value))

    def _convert_env_value(self, value: str) -> Any:
        """Convert environment variable string to appropriate type"""
        try:
            return int(value)
        except ValueError:
            pass

        try:
            return float(value)
        except ValueError:
            pass

        if value.lower() in ('true', 'yes', 'on'):
            return True
        elif value.lower() in ('false', 'no', 'off'):
            return False

        return value

    def _merge_config(self, base: Dict, override: Dict) -> None:
        """Recursively merge configuration dictionaries"""
        for key, value in override.items():
            if key in base and isinstance(base[key], dict) and isinstance(value, dict):
                self._merge_config(base[key], value)
            else:
                base[key] = value

    def _deep_copy(self, obj: Any) -> Any:
        if isinstance(obj, dict):
            return {k: self._deep_copy(v) for k, v in obj.items()}
        elif isinstance(obj, list):
            return [self._deep_copy(item) for item in obj]
        else:
            return obj


# Global configuration instance
_config_instance: Optional[Config] = None

def get_config() -> Config:
    """Get global configuration instance"""
    global _config_instance
    if _config_instance is None:
        config_file = os.getenv('TB_CONFIG_FILE', 'config/topicbus.json')
        _config_instance = Config(config_file)
    return _config_instance

def initialize_config(config_file: Optional[str] = None) -> Config:
    """Initialize global configuration"""
    global _config_instance
    _config_instance = Config(config_file)
    return _config_instance

def configure_logging(config: Optional[Config] = None) -> None:
    """Apply the logging section of the configuration to the root logger"""
    config = config or get_config()

    level_name = str(config.get('logging.level', 'INFO')).upper()
    level = getattr(logging, level_name, None)
    if not isinstance(level, int):
        logging.warning(f"Unknown log level {level_name}, using INFO")
        level = logging.INFO

    handlers = [logging.StreamHandler()]
    log_file = config.get('logging.file')
    if log_file:
        handlers.append(logging.FileHandler(log_file))

    logging.basicConfig(
        level=level,
        format=config.get('logging.format'),
        handlers=handlers,
        force=True
    )
