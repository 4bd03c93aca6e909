import os
import logging
from pathlib import Path

import yaml

from drivefs.config.sync_config import MAX_RETRIES, UPLOAD_WORKERS

logger = logging.getLogger(__name__)

CONFIG_DIR = Path(os.path.expanduser("~/.config/drivefs"))
CONFIG_FILE = CONFIG_DIR / "config.yaml"

DEFAULT_CONFIG = {
    "client_id": None,
    "redirect_uri": "https://login.microsoftonline.com/common/oauth2/nativeclient",
    "mount_point": str(Path.home() / "OneDrive"),
    "api_root": "https://graph.microsoft.com/v1.0",
    "cache_ttl": 0,
    "upload_retries": MAX_RETRIES,
    "upload_workers": UPLOAD_WORKERS,
    "request_timeout": 60,
    "log_level": "INFO",
}

class ConfigManager:
    _instance = None

    def __new__(cls, config_file=None):
        if cls._instance is None:
            cls._instance = super(ConfigManager, cls).__new__(cls)
            cls._instance._path = Path(config_file) if config_file else CONFIG_FILE
            cls._instance._load()
        return cls._instance

    @classmethod
    def reset(cls):
        """Drops the cached instance so the next construction re-reads the file."""
        cls._instance = None

    def _load(self):
        self._config = DEFAULT_CONFIG.copy()
        if self._path.exists():
            try:
                with open(self._path, 'r') as f:
                    data = yaml.safe_load(f) or {}
                    self._config.update(data)
            except (OSError, yaml.YAMLError) as e:
                logger.error(f"Failed to load config {self._path}: {e}")

    def save(self):
        self._path.parent.mkdir(parents=True, exist_ok=True)
        try:
            with open(self._path, 'w') as f:
                yaml.safe_dump(self._config, f, default_flow_style=False)
        except OSError as e:
            logger.error(f"Failed to save config: {e}")

    def get(self, key):
        return self._config.get(key)

    def set(self, key, value):
        self._config[key] = value
        self.save()

    @property
    def client_id(self): return self.get("client_id")

    @property
    def mount_point(self): return os.path.expanduser(self.get("mount_point"))

    @property
    def api_root(self): return self.get("api_root")

    @property
    def cache_ttl(self): return self.get("cache_ttl") or 0

    @property
    def upload_retries(self): return int(self.get("upload_retries"))

    @property
    def upload_workers(self): return int(self.get("upload_workers"))

    @property
    def request_timeout(self): return self.get("request_timeout")

    @property
    def log_level(self): return str(self.get("log_level")).upper()
