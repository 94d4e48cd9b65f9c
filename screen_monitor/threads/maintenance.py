"""
Maintenance Thread - upload of captured screenshots and local retention.

Two periodic jobs:
- Upload: push stored captures to the remote store, deleting each local
  file once its upload succeeded
- Cleanup: trim the screenshot store to maxStorageSizeMB (read fresh from
  the config on every run)

A job that is still running when its next turn comes up is skipped.
"""

import logging
import threading
import time
from typing import Optional

import requests

from ..config import ConfigRepository
from ..core.interfaces import RemoteStore
from ..storage.screenshots import ScreenshotStore


logger = logging.getLogger(__name__)

UPLOAD_BATCH_SIZE = 3
BYTES_PER_MB = 1024 * 1024


class MaintenanceThread(threading.Thread):
    """
    Background thread for storage housekeeping.

    Usage:
        maintenance = MaintenanceThread(store, config_repo)
        sync_thread.add_remote_listener(lambda client, server: maintenance.set_remote(client))
        maintenance.start()
    """

    def __init__(
        self,
        store: ScreenshotStore,
        config_repo: ConfigRepository,
        upload_interval_seconds: float = 300,
        cleanup_interval_seconds: float = 21600,
    ):
        super().__init__(name="MaintenanceThread", daemon=True)

        self.store = store
        self.config_repo = config_repo
        self.upload_interval = upload_interval_seconds
        self.cleanup_interval = cleanup_interval_seconds

        self._stop_event = threading.Event()
        self._remote_lock = threading.Lock()
        self._remote: Optional[RemoteStore] = None
        self._upload_in_progress = threading.Lock()
        self._cleanup_in_progress = threading.Lock()
        self._last_upload = 0.0
        self._last_cleanup = 0.0

        # Stats
        self.files_uploaded = 0
        self.upload_failures = 0
        self.files_cleaned = 0

    def set_remote(self, client: Optional[RemoteStore]):
        with self._remote_lock:
            self._remote = client

    def run(self):
        logger.info("Maintenance thread started")

        while not self._stop_event.is_set():
            now = time.time()

            if now - self._last_cleanup >= self.cleanup_interval:
                self.clean_storage()

            if now - self._last_upload >= self.upload_interval:
                self.upload_pending()

            self._stop_event.wait(timeout=5.0)

        logger.info("Maintenance thread stopped")

    def stop(self):
        self._stop_event.set()

    def clean_storage(self) -> int:
        """Enforce the storage limit. Returns files deleted, or -1 if a run was already active."""
        self._last_cleanup = time.time()
        if not self._cleanup_in_progress.acquire(blocking=False):
            logger.debug("Storage cleanup already running, skipping")
            return -1
        try:
            max_bytes = self.config_repo.get_current().maxStorageSizeMB * BYTES_PER_MB
            deleted = self.store.enforce_limit(max_bytes)
            self.files_cleaned += deleted
            return deleted
        except Exception as e:
            logger.error(f"Storage cleanup failed: {e}", exc_info=True)
            return 0
        finally:
            self._cleanup_in_progress.release()

    def upload_pending(self) -> int:
        """Upload stored captures. Returns files uploaded, or -1 if a run was already active."""
        self._last_upload = time.time()

        with self._remote_lock:
            remote = self._remote
        if remote is None:
            logger.debug("No remote store configured, skipping upload")
            return 0

        if not self._upload_in_progress.acquire(blocking=False):
            logger.debug("Upload already running, skipping")
            return -1

        uploaded = 0
        try:
            pending = self.store.list_screenshots()
            if not pending:
                return 0
            logger.info(f"Uploading {len(pending)} captures")

            for start in range(0, len(pending), UPLOAD_BATCH_SIZE):
                if self._stop_event.is_set():
                    break
                for stored in pending[start:start + UPLOAD_BATCH_SIZE]:
                    day_dir = stored.path.parent.name
                    if remote.upload_file(day_dir, stored.path.name, str(stored.path)):
                        uploaded += 1
                        if self.store.capture_log is not None:
                            self.store.capture_log.mark_uploaded(str(stored.path))
                        self.store.delete_file(stored.path)
                    else:
                        self.upload_failures += 1

            logger.info(f"Upload finished: {uploaded}/{len(pending)} captures")
        except requests.exceptions.RequestException as e:
            logger.warning(f"Upload interrupted (network): {e}")
        except Exception as e:
            logger.error(f"Upload failed: {e}", exc_info=True)
        finally:
            self.files_uploaded += uploaded
            self._upload_in_progress.release()

        return uploaded

    def get_stats(self) -> dict:
        return {
            "files_uploaded": self.files_uploaded,
            "upload_failures": self.upload_failures,
            "files_cleaned": self.files_cleaned,
            "remote_configured": self._remote is not None,
        }
