"""Storage module for captures, templates and the remote store."""

from pathlib import Path

from .capture_log import CaptureLog, CaptureEvent
from .screenshots import ScreenshotStore, StoredFile
from .template_files import TemplateDirectory
from .webdav import WebDavClient


def create_screenshot_store_from_config(node_config, monitor_config, capture_log=None) -> ScreenshotStore:
    """Factory function to create ScreenshotStore under the node's data directory."""
    return ScreenshotStore(
        root_dir=str(Path(node_config.DATA_DIR) / monitor_config.rootDir),
        screenshot_dir=monitor_config.screenshotDir,
        capture_log=capture_log,
    )


def create_template_directory_from_config(node_config, monitor_config) -> TemplateDirectory:
    return TemplateDirectory(str(Path(node_config.DATA_DIR) / monitor_config.rootDir / monitor_config.templateDir))


__all__ = [
    "CaptureLog",
    "CaptureEvent",
    "ScreenshotStore",
    "StoredFile",
    "TemplateDirectory",
    "WebDavClient",
    "create_screenshot_store_from_config",
    "create_template_directory_from_config",
]
