import json
import logging
from dataclasses import dataclass, fields
from pathlib import Path
from typing import Any

logger = logging.getLogger(__name__)

DEFAULT_SETTINGS_PATH = Path.home() / ".config" / "mdlive" / "settings.json"


@dataclass
class ServerSettings:
    host: str = "localhost"
    port: int = 8765
    log_level: str = "INFO"
    open_browser: bool = True
    follow_active: bool = False  # re-target the preview to whichever document changed last
    open_preview_on_open: bool = False


class ConfigManager:
    def __init__(self, config_path: str = str(DEFAULT_SETTINGS_PATH)):
        self.config_path = Path(config_path)
        self.config = self._load_config()

    def _load_config(self) -> ServerSettings:
        """Load settings from file, falling back to defaults"""
        if not self.config_path.exists():
            return ServerSettings()
        try:
            with open(self.config_path) as f:
                config_dict = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            logger.warning(f"Using default settings, could not read {self.config_path}: {e}")
            return ServerSettings()

        if not isinstance(config_dict, dict):
            logger.warning(f"Using default settings, {self.config_path} does not hold a JSON object")
            return ServerSettings()

        known = {field.name for field in fields(ServerSettings)}
        unknown = set(config_dict) - known
        if unknown:
            logger.warning(f"Ignoring unknown settings: {', '.join(sorted(unknown))}")
        return ServerSettings(**{k: v for k, v in config_dict.items() if k in known})

    def save_config(self):
        """Save current settings to file"""
        config_dict = {
            field.name: getattr(self.config, field.name)
            for field in fields(self.config)
        }
        self.config_path.parent.mkdir(parents=True, exist_ok=True)
        with open(self.config_path, 'w') as f:
            json.dump(config_dict, f, indent=2)

    def override(self, **values: Any):
        """Apply command line overrides; only save_config persists them"""
        for key, value in values.items():
            if value is None:
                continue
            if not hasattr(self.config, key):
                raise KeyError(f"Unknown configuration key: {key}")
            setattr(self.config, key, value)
