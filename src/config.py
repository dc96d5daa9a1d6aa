import os
import yaml
from typing import Dict, Any


class Config:
    def __init__(self, config_path: str = None):
        self.config_path = config_path or os.getenv("CONFIG_PATH", "config/config.yaml")
        self.config = self._load_config()

    def _load_config(self) -> Dict[str, Any]:
        if os.path.exists(self.config_path):
            with open(self.config_path, "r") as f:
                return yaml.safe_load(f) or {}
        return {}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Config":
        """Build a config without touching the filesystem."""
        config = cls.__new__(cls)
        config.config_path = None
        config.config = data or {}
        return config

    def get(self, key: str, default: Any = None) -> Any:
        keys = key.split(".")
        value = self.config
        for k in keys:
            if isinstance(value, dict):
                value = value.get(k)
                if value is None:
                    return default
            else:
                return default
        return value if value is not None else default

    def get_database(self) -> Dict[str, Any]:
        return self.config.get("database", {})

    def get_rotation(self) -> Dict[str, Any]:
        return self.config.get("rotation", {})

    def get_settlement(self) -> Dict[str, Any]:
        return self.config.get("settlement", {})

    def get_timeline(self) -> Dict[str, Any]:
        return self.config.get("timeline", {})

    def get_scheduler(self) -> Dict[str, Any]:
        return self.config.get("scheduler", {})
