"""
Screen Monitor Configuration
----------------------------
Two layers:

- Config: node settings loaded from environment variables or a .env file.
  Read once at startup.
- MonitorConfig: runtime tunables (thresholds, rates, storage limits, remote
  servers) persisted as JSON and replaceable at any time through the
  ConfigRepository. The pipeline pulls a fresh copy on every pass.
"""
import json
import logging
import os
import threading
from dataclasses import asdict, dataclass, field, replace
from pathlib import Path
from typing import Callable, List, Optional

from dotenv import load_dotenv

from .errors import ConfigError

load_dotenv()

logger = logging.getLogger(__name__)


@dataclass
class Config:
    """Node configuration."""

    # =========================
    # Identity
    # =========================
    DEVICE_ID: str = field(default_factory=lambda: os.getenv("DEVICE_ID", "monitor-001"))

    # =========================
    # Storage
    # =========================
    DATA_DIR: str = field(default_factory=lambda: os.getenv("DATA_DIR", "data"))
    CONFIG_PATH: str = field(default_factory=lambda: os.getenv("CONFIG_PATH", "data/config.json"))

    # =========================
    # Logging
    # =========================
    LOG_DIR: str = field(default_factory=lambda: os.getenv("LOG_DIR", "logs"))
    LOG_LEVEL: str = field(default_factory=lambda: os.getenv("LOG_LEVEL", "INFO"))
    LOG_BACKUP_DAYS: int = field(default_factory=lambda: int(os.getenv("LOG_BACKUP_DAYS", "7")))

    # =========================
    # Remote store (WebDAV), used when the JSON config lists no servers
    # =========================
    WEBDAV_URL: Optional[str] = field(default_factory=lambda: os.getenv("WEBDAV_URL"))
    WEBDAV_USERNAME: str = field(default_factory=lambda: os.getenv("WEBDAV_USERNAME", ""))
    WEBDAV_PASSWORD: str = field(default_factory=lambda: os.getenv("WEBDAV_PASSWORD", ""))
    SYNC_ENABLED: bool = field(default_factory=lambda: os.getenv("SYNC_ENABLED", "true").lower() == "true")

    # =========================
    # Schedules
    # =========================
    CONFIG_SYNC_INTERVAL_SECONDS: int = field(default_factory=lambda: int(os.getenv("CONFIG_SYNC_INTERVAL_SECONDS", "300")))
    SYNC_INTERVAL_SECONDS: int = field(default_factory=lambda: int(os.getenv("SYNC_INTERVAL_SECONDS", "3600")))
    UPLOAD_INTERVAL_SECONDS: int = field(default_factory=lambda: int(os.getenv("UPLOAD_INTERVAL_SECONDS", "300")))
    CLEANUP_INTERVAL_SECONDS: int = field(default_factory=lambda: int(os.getenv("CLEANUP_INTERVAL_SECONDS", "21600")))
    PERIODIC_SAVE_SECONDS: float = field(default_factory=lambda: float(os.getenv("PERIODIC_SAVE_SECONDS", "1800")))


@dataclass
class WebDavServer:
    """One remote WebDAV endpoint."""
    url: str
    username: str = ""
    password: str = ""
    monitorDir: str = "Monitor"
    remoteUploadDir: str = "Monitor/upload"
    templateDir: str = "Templates"

    @classmethod
    def from_dict(cls, data: dict) -> "WebDavServer":
        known = {k: v for k, v in data.items() if k in cls.__dataclass_fields__}
        if not known.get("url"):
            raise ConfigError("WebDAV server entry without url")
        return cls(**known)


@dataclass
class MonitorConfig:
    """
    Runtime tunables. Field names match the keys of the JSON document so a
    config pulled from the remote store can be applied unchanged.
    """
    matchThreshold: float = 0.92
    matchCooldownMs: int = 3000
    detectPerSecond: float = 1
    maxStorageSizeMB: int = 1024
    screenshotDir: str = "ScreenCaptures"
    templateDir: str = "Templates"
    rootDir: str = "ScreenMonitor"
    webdavServers: List[WebDavServer] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: dict) -> "MonitorConfig":
        if not isinstance(data, dict):
            raise ConfigError(f"Config document must be an object, got {type(data).__name__}")
        known = {k: v for k, v in data.items() if k in cls.__dataclass_fields__}
        servers = known.pop("webdavServers", None) or []
        try:
            config = cls(**known)
            config.matchThreshold = float(config.matchThreshold)
            config.matchCooldownMs = int(config.matchCooldownMs)
            config.detectPerSecond = float(config.detectPerSecond)
            config.maxStorageSizeMB = int(config.maxStorageSizeMB)
        except (TypeError, ValueError) as e:
            raise ConfigError(f"Invalid config value: {e}") from e
        config.webdavServers = [WebDavServer.from_dict(s) for s in servers]
        return config

    def to_dict(self) -> dict:
        return asdict(self)


ConfigListener = Callable[[MonitorConfig, MonitorConfig], None]


class ConfigRepository:
    """
    Thread-safe holder of the current MonitorConfig.

    get_current() returns a copy so callers can never mutate shared state.
    Updates are persisted to disk and announced to listeners with the old and
    new configuration.
    """

    def __init__(self, path: Optional[str] = None):
        self.path = Path(path) if path else None
        self._lock = threading.Lock()
        self._current = MonitorConfig()
        self._listeners: List[ConfigListener] = []

    def load_local(self) -> MonitorConfig:
        """Load the persisted config, keeping defaults if the file is missing or broken."""
        if self.path is None or not self.path.exists():
            logger.info("No local config file, using defaults")
            return self.get_current()

        try:
            text = self.path.read_text(encoding="utf-8")
            loaded = MonitorConfig.from_dict(json.loads(text))
        except (OSError, ValueError, ConfigError) as e:
            logger.warning(f"Failed to load config from {self.path}: {e}")
            return self.get_current()

        with self._lock:
            self._current = loaded
        logger.info(f"Config loaded from {self.path}")
        return self.get_current()

    def get_current(self) -> MonitorConfig:
        with self._lock:
            return replace(self._current, webdavServers=list(self._current.webdavServers))

    def update(self, new_config: MonitorConfig, persist: bool = True):
        with self._lock:
            old = self._current
            self._current = new_config
            listeners = list(self._listeners)

        if persist:
            self.save_local()

        for listener in listeners:
            try:
                listener(old, new_config)
            except Exception as e:
                logger.error(f"Config listener failed: {e}", exc_info=True)

    def apply_json(self, text: str) -> MonitorConfig:
        """Parse a JSON document and make it the current config."""
        try:
            data = json.loads(text)
        except ValueError as e:
            raise ConfigError(f"Invalid config JSON: {e}") from e
        new_config = MonitorConfig.from_dict(data)
        self.update(new_config)
        return new_config

    def save_local(self) -> bool:
        if self.path is None:
            return False
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            tmp_path = self.path.with_suffix(".tmp")
            tmp_path.write_text(json.dumps(self.get_current().to_dict(), indent=2), encoding="utf-8")
            os.replace(tmp_path, self.path)
            return True
        except OSError as e:
            logger.error(f"Failed to save config to {self.path}: {e}")
            return False

    def add_listener(self, listener: ConfigListener):
        with self._lock:
            self._listeners.append(listener)

    def remove_listener(self, listener: ConfigListener):
        with self._lock:
            if listener in self._listeners:
                self._listeners.remove(listener)


# Global node config instance
config = Config()
