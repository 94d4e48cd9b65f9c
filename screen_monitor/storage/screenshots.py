"""
Screenshot Store - local, size-bounded storage for captured frames.

Layout:
    <root>/<screenshot_dir>/<YYYYMMDD>/<YYYYMMDD_HHMMSS>_<tag>.jpg

Retention deletes the oldest files first (by modification time) and prunes
day directories left empty.
"""

import logging
import os
import re
import shutil
import threading
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import List, Optional

from .capture_log import CaptureLog

logger = logging.getLogger(__name__)

IMAGE_EXTENSIONS = (".jpg", ".jpeg", ".png")
_UNSAFE_CHARS = re.compile(r"[^A-Za-z0-9._-]+")


@dataclass
class StoredFile:
    """A file in the screenshot store."""
    path: Path
    size: int
    mtime: float


def sanitize_tag(tag: str) -> str:
    """File-name-safe version of a tag, without its image extension."""
    stem, ext = os.path.splitext(tag)
    if ext.lower() in IMAGE_EXTENSIONS:
        tag = stem
    cleaned = _UNSAFE_CHARS.sub("_", tag).strip("._")
    return cleaned or "capture"


class ScreenshotStore:
    """
    Local match sink.

    Thread-safe: the frame worker writes while the maintenance thread lists,
    uploads and deletes.
    """

    def __init__(self, root_dir: str, screenshot_dir: str = "ScreenCaptures", capture_log: Optional[CaptureLog] = None):
        self.base_dir = Path(root_dir) / screenshot_dir
        self.capture_log = capture_log
        self._lock = threading.RLock()

        self.base_dir.mkdir(parents=True, exist_ok=True)
        logger.info(f"Screenshot store at {self.base_dir}")

    def path_for(self, tag: str, timestamp: datetime) -> Path:
        day = timestamp.strftime("%Y%m%d")
        stamp = timestamp.strftime("%Y%m%d_%H%M%S")
        return self.base_dir / day / f"{stamp}_{sanitize_tag(tag)}.jpg"

    def save_capture(self, data: bytes, tag: str, timestamp: datetime) -> Optional[str]:
        """Write an encoded JPEG. Returns the file path, or None on failure."""
        path = self.path_for(tag, timestamp)
        try:
            with self._lock:
                path.parent.mkdir(parents=True, exist_ok=True)
                path.write_bytes(data)
        except OSError as e:
            logger.error(f"Failed to write screenshot {path}: {e}")
            return None

        logger.info(f"Screenshot saved: {path} ({len(data)} bytes)")
        if self.capture_log is not None:
            self.capture_log.record(tag=tag, path=str(path), size=len(data), timestamp=timestamp)
        return str(path)

    def list_screenshots(self) -> List[StoredFile]:
        """All stored images, oldest first."""
        files = []
        with self._lock:
            if not self.base_dir.exists():
                return files
            for path in self.base_dir.rglob("*"):
                if not path.is_file() or path.suffix.lower() not in IMAGE_EXTENSIONS:
                    continue
                try:
                    stat = path.stat()
                except OSError:
                    continue
                files.append(StoredFile(path=path, size=stat.st_size, mtime=stat.st_mtime))
        files.sort(key=lambda f: (f.mtime, str(f.path)))
        return files

    def total_size(self) -> int:
        return sum(f.size for f in self.list_screenshots())

    def delete_file(self, path: Path) -> bool:
        with self._lock:
            try:
                Path(path).unlink()
            except FileNotFoundError:
                return False
            except OSError as e:
                logger.warning(f"Failed to delete {path}: {e}")
                return False
            self._prune_empty_dirs()
        return True

    def delete_oldest(self, bytes_to_free: int) -> int:
        """Delete oldest files until at least bytes_to_free bytes are gone. Returns files deleted."""
        if bytes_to_free <= 0:
            return 0

        freed = 0
        deleted = 0
        with self._lock:
            for stored in self.list_screenshots():
                if freed >= bytes_to_free:
                    break
                try:
                    stored.path.unlink()
                except OSError as e:
                    logger.warning(f"Failed to delete {stored.path}: {e}")
                    continue
                freed += stored.size
                deleted += 1
            self._prune_empty_dirs()

        logger.info(f"Retention: deleted {deleted} files, freed {freed} bytes")
        return deleted

    def enforce_limit(self, max_bytes: int) -> int:
        """Trim the store to max_bytes. Returns files deleted."""
        total = self.total_size()
        if total <= max_bytes:
            logger.debug(f"Storage within limit: {total}/{max_bytes} bytes")
            return 0
        logger.info(f"Storage over limit: {total}/{max_bytes} bytes")
        return self.delete_oldest(total - max_bytes)

    def relocate(self, root_dir: str, screenshot_dir: str) -> bool:
        """Move every stored file to a new base directory and switch to it."""
        new_base = Path(root_dir) / screenshot_dir
        with self._lock:
            if new_base.resolve() == self.base_dir.resolve():
                return True
            try:
                new_base.mkdir(parents=True, exist_ok=True)
                for stored in self.list_screenshots():
                    target = new_base / stored.path.relative_to(self.base_dir)
                    target.parent.mkdir(parents=True, exist_ok=True)
                    shutil.move(str(stored.path), str(target))
            except OSError as e:
                logger.error(f"Failed to relocate screenshots to {new_base}: {e}")
                return False
            old_base = self.base_dir
            self.base_dir = new_base
            self._prune_empty_dirs(old_base)
        logger.info(f"Screenshot store moved from {old_base} to {new_base}")
        return True

    def _prune_empty_dirs(self, base: Optional[Path] = None):
        base = base or self.base_dir
        if not base.exists():
            return
        # Deepest first so parents become empty before they are checked
        for directory in sorted((p for p in base.rglob("*") if p.is_dir()), key=lambda p: len(p.parts), reverse=True):
            if any(directory.iterdir()):
                continue
            try:
                directory.rmdir()
            except OSError as e:
                logger.debug(f"Could not remove empty directory {directory}: {e}")

    def get_stats(self) -> dict:
        files = self.list_screenshots()
        return {
            "base_dir": str(self.base_dir),
            "files": len(files),
            "total_bytes": sum(f.size for f in files),
        }
