"""Configuration management for docpulse."""

import json
import os
from pathlib import Path
from typing import Any, Dict, Optional

DEFAULT_CONFIG = {
    # Emitter side
    "endpoint": "",
    "api_key": "",  # nosec B105 - per-account heartbeat key
    "tick_interval": 30,
    "min_send_interval": 60,
    "idle_threshold": 120,  # 2 minutes
    "handshake_timeout": 3.0,
    "verbose_logging": True,
    # Ingestion server side
    "database_path": "",
    "host": "127.0.0.1",
    "port": 8787,
    "server_min_interval": 60,
    "retention_days": 31,
    "rollup_interval": 3600,  # 1 hour
    "rollup_delete_raw": True,
}

INT_KEYS = [
    "tick_interval",
    "min_send_interval",
    "idle_threshold",
    "port",
    "server_min_interval",
    "retention_days",
    "rollup_interval",
]
FLOAT_KEYS = ["handshake_timeout"]
BOOL_KEYS = ["verbose_logging", "rollup_delete_raw"]


def get_default_base_dir() -> Path:
    """Get the per-user base directory holding config and data."""
    return Path.home() / ".docpulse"


class Config:
    """Configuration manager for docpulse."""

    def __init__(self, config_dir: Optional[str] = None):
        """Initialize configuration manager.

        Args:
            config_dir: Custom configuration directory path
        """
        if config_dir:
            self.config_dir = Path(config_dir)
        else:
            self.config_dir = get_default_base_dir() / "config"

        self.config_file = self.config_dir / "settings.json"
        self.config_dir.mkdir(parents=True, exist_ok=True)

        self._config = self._load_config()

    def _load_config(self) -> Dict[str, Any]:
        """Load configuration from file or create default."""
        if self.config_file.exists():
            try:
                with open(self.config_file, "r", encoding="utf-8") as f:
                    config = json.load(f)
                # Merge with defaults to ensure all keys exist
                merged_config = DEFAULT_CONFIG.copy()
                merged_config.update(config)
                return merged_config
            except (json.JSONDecodeError, IOError) as e:
                print(f"Warning: Could not load config file: {e}")
                print("Using default configuration.")

        return DEFAULT_CONFIG.copy()

    def save(self) -> None:
        """Save current configuration to file."""
        try:
            with open(self.config_file, "w", encoding="utf-8") as f:
                json.dump(self._config, f, indent=2, ensure_ascii=False)
        except IOError as e:
            print(f"Warning: Could not save config file: {e}")

    def get(self, key: str, default: Any = None) -> Any:
        """Get configuration value.

        Args:
            key: Configuration key
            default: Default value if key not found

        Returns:
            Configuration value
        """
        return self._config.get(key, default)

    def set(self, key: str, value: Any) -> None:
        """Set configuration value."""
        self._config[key] = value

    def update(self, config_dict: Dict[str, Any]) -> None:
        """Update multiple configuration values."""
        self._config.update(config_dict)

    def reset_to_defaults(self) -> None:
        """Reset configuration to default values."""
        self._config = DEFAULT_CONFIG.copy()

    def get_all(self) -> Dict[str, Any]:
        """Get all configuration values."""
        return self._config.copy()

    # Convenience properties for common settings
    @property
    def endpoint(self) -> str:
        """Get ingestion server base URL."""
        return self.get("endpoint", "")

    @endpoint.setter
    def endpoint(self, value: str) -> None:
        self.set("endpoint", value.rstrip("/"))

    @property
    def api_key(self) -> str:
        return self.get("api_key", "")

    @api_key.setter
    def api_key(self, value: str) -> None:
        self.set("api_key", value)

    @property
    def idle_threshold(self) -> int:
        """Get idle threshold in seconds."""
        return self.get("idle_threshold", 120)

    @idle_threshold.setter
    def idle_threshold(self, value: int) -> None:
        self.set("idle_threshold", value)

    @property
    def verbose_logging(self) -> bool:
        return self.get("verbose_logging", True)

    @verbose_logging.setter
    def verbose_logging(self, value: bool) -> None:
        self.set("verbose_logging", value)

    @property
    def retention_days(self) -> int:
        """Get the live window, in days, kept as raw heartbeats."""
        return self.get("retention_days", 31)

    @property
    def data_dir(self) -> Path:
        """Get data directory path."""
        data_dir = self.get("data_dir")
        if data_dir:
            return Path(data_dir)
        return get_default_base_dir() / "data"

    @property
    def database_path(self) -> Path:
        """Get SQLite database path, defaulting into the data directory."""
        database_path = self.get("database_path")
        if database_path:
            return Path(database_path)
        return self.data_dir / "docpulse.db"


def load_config_from_env() -> Dict[str, Any]:
    """Load configuration from environment variables.

    Returns:
        Configuration dictionary from environment
    """
    env_config: Dict[str, Any] = {}

    env_mappings = {
        "DOCPULSE_DATA_DIR": "data_dir",
        "DOCPULSE_ENDPOINT": "endpoint",
        "DOCPULSE_API_KEY": "api_key",  # nosec B105
        "DOCPULSE_TICK_INTERVAL": "tick_interval",
        "DOCPULSE_IDLE_THRESHOLD": "idle_threshold",
        "DOCPULSE_HANDSHAKE_TIMEOUT": "handshake_timeout",
        "DOCPULSE_VERBOSE": "verbose_logging",
        "DOCPULSE_DATABASE": "database_path",
        "DOCPULSE_HOST": "host",
        "DOCPULSE_PORT": "port",
        "DOCPULSE_SERVER_MIN_INTERVAL": "server_min_interval",
        "DOCPULSE_RETENTION_DAYS": "retention_days",
        "DOCPULSE_ROLLUP_INTERVAL": "rollup_interval",
        "DOCPULSE_ROLLUP_DELETE_RAW": "rollup_delete_raw",
    }

    for env_var, config_key in env_mappings.items():
        value = os.getenv(env_var)
        if value is None:
            continue

        if config_key in INT_KEYS:
            try:
                env_config[config_key] = int(value)
            except ValueError:
                print(f"Warning: Invalid integer value for {env_var}: {value}")
        elif config_key in FLOAT_KEYS:
            try:
                env_config[config_key] = float(value)
            except ValueError:
                print(f"Warning: Invalid number for {env_var}: {value}")
        elif config_key in BOOL_KEYS:
            env_config[config_key] = value.lower() in ("true", "1", "yes", "on")
        else:
            env_config[config_key] = value

    return env_config


def ensure_data_dir(data_dir: Path) -> None:
    """Ensure data directory exists."""
    data_dir.mkdir(parents=True, exist_ok=True)


# Global config instance
_global_config: Optional[Config] = None


def get_config() -> Config:
    """Get global configuration instance.

    Returns:
        Global Config instance
    """
    global _global_config
    if _global_config is None:
        _global_config = Config()
        # Apply environment variable overrides
        env_config = load_config_from_env()
        if env_config:
            _global_config.update(env_config)
    return _global_config


def reload_config() -> Config:
    """Reload configuration from file."""
    global _global_config
    _global_config = None
    return get_config()
