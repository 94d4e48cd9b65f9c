"""
WebDAV Client - minimal remote store over requests.

Only what the monitor needs: list a directory, download a file, upload a
file under a per-device folder, delete, and a connectivity probe.

Remote layout:
    <url>/<monitorDir>/config.json              runtime config
    <url>/<templateDir>/*.png|jpg|jpeg          templates
    <url>/<remoteUploadDir>/<device_id>/<sub>/  uploaded captures
"""

import logging
import os
import time
import xml.etree.ElementTree as ET
from typing import List, Optional
from urllib.parse import quote, unquote, urlparse

import requests

logger = logging.getLogger(__name__)


DEFAULT_MAX_RETRY = 3
DEFAULT_RETRY_DELAY = 2.0
LARGE_FILE_THRESHOLD = 10 * 1024 * 1024   # Uploaded once, never retried
CONNECT_TIMEOUT = 5.0
READ_TIMEOUT = 10.0
WRITE_TIMEOUT = 30.0
IMAGE_EXTENSIONS = (".png", ".jpg", ".jpeg")

DAV_NS = "{DAV:}"
PROPFIND_BODY = (
    '<?xml version="1.0" encoding="utf-8"?>'
    '<d:propfind xmlns:d="DAV:"><d:prop><d:resourcetype/></d:prop></d:propfind>'
)


def join_path(*parts: str) -> str:
    """Join remote path segments into '/a/b/c' form."""
    segments = [p.strip("/") for p in parts if p and p.strip("/")]
    return "/" + "/".join(segments)


def parse_propfind(xml_text: str) -> List[tuple]:
    """
    Parse a PROPFIND multistatus body.

    Returns:
        List of (name, is_directory) for every entry, including the
        requested collection itself
    """
    root = ET.fromstring(xml_text)
    entries = []
    for response in root.iter(f"{DAV_NS}response"):
        href = response.findtext(f"{DAV_NS}href") or ""
        path = unquote(urlparse(href).path).rstrip("/")
        name = path.rsplit("/", 1)[-1]
        is_dir = response.find(f".//{DAV_NS}resourcetype/{DAV_NS}collection") is not None
        entries.append((name, is_dir))
    return entries


class WebDavClient:
    """
    WebDAV client bound to one server.

    Usage:
        client = WebDavClient.from_server(server, device_id="monitor-001")
        if client.test_connection():
            data = client.download_file("Monitor", "config.json")
        client.close()
    """

    def __init__(
        self,
        url: str,
        username: str = "",
        password: str = "",
        monitor_dir: str = "Monitor",
        remote_upload_dir: str = "Monitor/upload",
        template_dir: str = "Templates",
        device_id: str = "",
        retry_delay: float = DEFAULT_RETRY_DELAY,
    ):
        self.url = url.rstrip("/")
        self.monitor_dir = monitor_dir
        self.remote_upload_dir = remote_upload_dir
        self.template_dir = template_dir
        self.device_id = device_id
        self.retry_delay = retry_delay

        self._session = requests.Session()
        if username:
            self._session.auth = (username, password)

        logger.debug(f"WebDAV client created for {self.url} (upload dir {remote_upload_dir})")

    @classmethod
    def from_server(cls, server, device_id: str = "") -> "WebDavClient":
        """Build a client from a WebDavServer config entry."""
        return cls(
            url=server.url,
            username=server.username,
            password=server.password,
            monitor_dir=server.monitorDir,
            remote_upload_dir=server.remoteUploadDir,
            template_dir=server.templateDir,
            device_id=device_id,
        )

    def _full_url(self, path: str) -> str:
        return self.url + quote(path)

    def _propfind(self, path: str) -> requests.Response:
        response = self._session.request(
            "PROPFIND",
            self._full_url(path.rstrip("/") + "/"),
            data=PROPFIND_BODY,
            headers={"Depth": "1", "Content-Type": "application/xml"},
            timeout=(CONNECT_TIMEOUT, READ_TIMEOUT),
        )
        response.raise_for_status()
        return response

    def test_connection(self) -> bool:
        try:
            self._propfind("/")
            logger.debug(f"Connection test OK: {self.url}")
            return True
        except requests.exceptions.RequestException as e:
            logger.warning(f"Connection test failed for {self.url}: {e}")
            return False

    def list_directory(self, path: str) -> List[str]:
        """Image file names directly inside a remote directory."""
        try:
            response = self._propfind(join_path(path))
            entries = parse_propfind(response.text)
        except requests.exceptions.RequestException as e:
            logger.warning(f"List directory failed: {path} - {e}")
            return []
        except ET.ParseError as e:
            logger.warning(f"Invalid PROPFIND response for {path}: {e}")
            return []

        names = [
            name for name, is_dir in entries
            if name and not is_dir and name.lower().endswith(IMAGE_EXTENSIONS)
        ]
        logger.debug(f"Listed {len(names)} files in {path}")
        return names

    def download_file(self, path: str, name: str, max_retry: int = DEFAULT_MAX_RETRY) -> bytes:
        """Fetch a file. Returns b"" once every attempt has failed."""
        url = self._full_url(join_path(path, name))
        for attempt in range(1, max_retry + 1):
            try:
                response = self._session.get(url, timeout=(CONNECT_TIMEOUT, READ_TIMEOUT))
                response.raise_for_status()
                logger.debug(f"Downloaded {name} ({len(response.content)} bytes)")
                return response.content
            except requests.exceptions.RequestException as e:
                logger.warning(f"Download error: {name} (attempt {attempt}/{max_retry}) - {e}")
                if attempt < max_retry:
                    time.sleep(self.retry_delay)

        logger.error(f"Download failed after {max_retry} attempts: {name}")
        return b""

    def upload_dir(self, sub_path: str = "") -> str:
        """Remote directory for uploads of this device."""
        return join_path(self.remote_upload_dir, self.device_id, sub_path)

    def ensure_directory(self, path: str):
        """Create every collection along path (MKCOL). Existing ones are fine."""
        current = ""
        for segment in path.strip("/").split("/"):
            if not segment:
                continue
            current = f"{current}/{segment}"
            response = self._session.request(
                "MKCOL", self._full_url(current + "/"), timeout=(CONNECT_TIMEOUT, READ_TIMEOUT)
            )
            # 405: already exists
            if response.status_code not in (200, 201, 405):
                response.raise_for_status()

    def upload_file(self, sub_path: str, name: str, local_path: str, max_retry: int = DEFAULT_MAX_RETRY) -> bool:
        """Upload a local file under <remoteUploadDir>/<device_id>/<sub_path>/."""
        try:
            size = os.path.getsize(local_path)
        except OSError as e:
            logger.error(f"Cannot upload {local_path}: {e}")
            return False

        attempts = 1 if size > LARGE_FILE_THRESHOLD else max_retry
        remote_dir = self.upload_dir(sub_path)
        url = self._full_url(join_path(remote_dir, name))

        for attempt in range(1, attempts + 1):
            try:
                self.ensure_directory(remote_dir)
                start = time.time()
                with open(local_path, "rb") as f:
                    response = self._session.put(
                        url,
                        data=f,
                        headers={"Content-Type": "application/octet-stream"},
                        timeout=(CONNECT_TIMEOUT, WRITE_TIMEOUT),
                    )
                response.raise_for_status()
                logger.info(f"Uploaded {name} ({size / 1024:.0f}KB in {time.time() - start:.1f}s)")
                return True
            except requests.exceptions.RequestException as e:
                logger.warning(f"Upload error: {name} (attempt {attempt}/{attempts}) - {e}")
                if attempt < attempts:
                    time.sleep(self.retry_delay)
            except OSError as e:
                logger.error(f"Upload read error: {local_path} - {e}")
                return False

        logger.error(f"Upload failed after {attempts} attempts: {name}")
        return False

    def delete_file(self, path: str, name: str) -> bool:
        try:
            response = self._session.delete(
                self._full_url(join_path(path, name)), timeout=(CONNECT_TIMEOUT, READ_TIMEOUT)
            )
            response.raise_for_status()
            return True
        except requests.exceptions.RequestException as e:
            logger.warning(f"Delete failed: {name} - {e}")
            return False

    def close(self):
        self._session.close()
        logger.debug(f"WebDAV client closed: {self.url}")
