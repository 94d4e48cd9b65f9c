"""
Collaborator contracts used by the pipeline core.

Every method the core calls is declared here, so components are wired with
whatever implementation is at hand (local disk, remote store, test fakes)
without type checks or casts.
"""

from datetime import datetime
from typing import TYPE_CHECKING, Iterable, List, Optional, Protocol, Tuple

if TYPE_CHECKING:
    from ..config import MonitorConfig


class MatchSink(Protocol):
    """Receives encoded frames worth keeping."""

    def save_capture(self, data: bytes, tag: str, timestamp: datetime) -> Optional[str]:
        """Store an encoded image. Returns its location, or None on failure."""
        ...


class TemplateSource(Protocol):
    """Yields (name, encoded image bytes) pairs in priority order."""

    def iter_templates(self) -> Iterable[Tuple[str, bytes]]:
        ...


class ConfigProvider(Protocol):
    def get_current(self) -> "MonitorConfig":
        ...


class RemoteStore(Protocol):
    """Minimal remote file store used for sync and upload."""

    def test_connection(self) -> bool:
        ...

    def list_directory(self, path: str) -> List[str]:
        ...

    def download_file(self, path: str, name: str, max_retry: int = 3) -> bytes:
        ...

    def upload_file(self, sub_path: str, name: str, local_path: str, max_retry: int = 3) -> bool:
        ...

    def close(self):
        ...
