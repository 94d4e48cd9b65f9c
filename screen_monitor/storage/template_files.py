"""
Template Directory - local folder of template images.

Files are yielded sorted by name; that order is the matching priority.
"""

import logging
import shutil
import threading
from pathlib import Path
from typing import Iterator, List, Tuple

logger = logging.getLogger(__name__)

TEMPLATE_EXTENSIONS = (".png", ".jpg", ".jpeg")


def is_template_file(name: str) -> bool:
    return name.lower().endswith(TEMPLATE_EXTENSIONS)


class TemplateDirectory:
    """Template source backed by a local directory."""

    def __init__(self, path: str):
        self.path = Path(path)
        self._lock = threading.Lock()
        self.path.mkdir(parents=True, exist_ok=True)

    def list_names(self) -> List[str]:
        with self._lock:
            if not self.path.exists():
                return []
            return sorted(p.name for p in self.path.iterdir() if p.is_file() and is_template_file(p.name))

    def iter_templates(self) -> Iterator[Tuple[str, bytes]]:
        for name in self.list_names():
            try:
                data = (self.path / name).read_bytes()
            except OSError as e:
                logger.warning(f"Cannot read template {name}: {e}")
                continue
            yield name, data

    def save(self, name: str, data: bytes) -> bool:
        """Store a template file, replacing any existing one with the same name."""
        safe_name = Path(name).name
        if not safe_name or not is_template_file(safe_name):
            logger.warning(f"Refusing to store template with name {name!r}")
            return False
        target = self.path / safe_name
        tmp = target.with_name(target.name + ".part")
        with self._lock:
            try:
                tmp.write_bytes(data)
                tmp.replace(target)
            except OSError as e:
                logger.error(f"Failed to store template {safe_name}: {e}")
                return False
        return True

    def relocate(self, new_path: str) -> bool:
        """Move all templates to a new directory and switch to it."""
        target_dir = Path(new_path)
        with self._lock:
            if target_dir.resolve() == self.path.resolve():
                return True
            try:
                target_dir.mkdir(parents=True, exist_ok=True)
                for p in list(self.path.iterdir()):
                    if p.is_file() and is_template_file(p.name):
                        shutil.move(str(p), str(target_dir / p.name))
            except OSError as e:
                logger.error(f"Failed to move templates to {target_dir}: {e}")
                return False
            old_path = self.path
            self.path = target_dir
        logger.info(f"Template directory moved from {old_path} to {target_dir}")
        return True
