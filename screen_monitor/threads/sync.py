"""
Sync Thread - keeps runtime config and templates in step with the remote store.
Handles offline resilience: a failed sync is logged and retried on the next
interval; the pipeline keeps running on what it already has.
"""

import logging
import threading
import time
from typing import Callable, List, Optional, Tuple

import requests

from ..config import ConfigRepository, WebDavServer
from ..errors import ConfigError
from ..storage.template_files import TemplateDirectory
from ..storage.webdav import WebDavClient
from ..vision.templates import TemplateStore


logger = logging.getLogger(__name__)

CONFIG_FILE_NAME = "config.json"

RemoteListener = Callable[[WebDavClient, WebDavServer], None]


class SyncThread(threading.Thread):
    """
    Background thread for syncing with the remote store.

    Responsibilities:
    - Pick the fastest reachable WebDAV server
    - Pull <monitorDir>/config.json and apply it
    - Pull templates and reload the template store when any arrived
    - Hand the chosen client to listeners (upload maintenance)
    """

    def __init__(
        self,
        config_repo: ConfigRepository,
        template_dir: TemplateDirectory,
        template_store: TemplateStore,
        device_id: str = "",
        config_interval_seconds: float = 300,
        template_interval_seconds: float = 3600,
        fallback_servers: Optional[List[WebDavServer]] = None,
        client_factory: Callable[[WebDavServer, str], WebDavClient] = WebDavClient.from_server,
    ):
        super().__init__(name="SyncThread", daemon=True)

        self.config_repo = config_repo
        self.template_dir = template_dir
        self.template_store = template_store
        self.device_id = device_id
        self.config_interval = config_interval_seconds
        self.template_interval = template_interval_seconds
        self.fallback_servers = fallback_servers or []
        self.client_factory = client_factory

        self._stop_event = threading.Event()
        self._force_event = threading.Event()
        self._lock = threading.Lock()
        self._client: Optional[WebDavClient] = None
        self._server: Optional[WebDavServer] = None
        self._listeners: List[RemoteListener] = []
        self._last_config_sync = 0.0
        self._last_template_sync = 0.0

        # Stats
        self.last_sync_success = False
        self.last_sync_time: Optional[float] = None
        self.sync_error: Optional[str] = None
        self.templates_synced = 0

    def add_remote_listener(self, listener: RemoteListener):
        self._listeners.append(listener)

    def set_template_dir(self, template_dir: TemplateDirectory):
        self.template_dir = template_dir

    @property
    def client(self) -> Optional[WebDavClient]:
        with self._lock:
            return self._client

    def run(self):
        """Main sync loop."""
        logger.info("Sync thread started")

        # Initial sync on startup
        self.sync_all()

        while not self._stop_event.is_set():
            now = time.time()

            if self._force_event.is_set():
                self._force_event.clear()
                self.sync_all()
            else:
                if now - self._last_config_sync >= self.config_interval:
                    self.sync_config()
                if now - self._last_template_sync >= self.template_interval:
                    self.sync_templates()

            self._stop_event.wait(timeout=5.0)

        logger.info("Sync thread stopped")

    def stop(self):
        """Signal thread to stop."""
        self._stop_event.set()

    def force_sync(self):
        """Run a full sync on the next loop iteration."""
        self._force_event.set()

    def close(self):
        with self._lock:
            client, self._client = self._client, None
        if client is not None:
            client.close()

    def sync_all(self):
        if self.sync_config():
            self.sync_templates()

    # =========================
    # Server selection
    # =========================

    def _servers(self) -> List[WebDavServer]:
        servers = self.config_repo.get_current().webdavServers
        return [s for s in (servers or self.fallback_servers) if s.url]

    def select_fastest_server(self) -> Optional[Tuple[WebDavServer, WebDavClient]]:
        """Probe every configured server; keep the client of the fastest one."""
        results = []
        for server in self._servers():
            client = self.client_factory(server, self.device_id)
            start = time.perf_counter()
            connected = client.test_connection()
            elapsed_ms = (time.perf_counter() - start) * 1000
            if connected:
                logger.debug(f"Server {server.url} responded in {elapsed_ms:.0f}ms")
                results.append((elapsed_ms, server, client))
            else:
                client.close()

        if not results:
            return None

        results.sort(key=lambda r: r[0])
        elapsed_ms, server, client = results[0]
        for _, _, other in results[1:]:
            other.close()

        logger.info(f"Fastest server: {server.url} ({elapsed_ms:.0f}ms)")
        return server, client

    def _set_client(self, server: WebDavServer, client: WebDavClient):
        with self._lock:
            old, self._client = self._client, client
            self._server = server
        if old is not None and old is not client:
            old.close()
        for listener in self._listeners:
            try:
                listener(client, server)
            except Exception as e:
                logger.error(f"Remote listener failed: {e}", exc_info=True)

    # =========================
    # Sync steps
    # =========================

    def sync_config(self) -> bool:
        """Pull config.json from the fastest server. Returns True if a server was reached."""
        self._last_config_sync = time.time()

        if not self._servers():
            logger.debug("No WebDAV servers configured, skipping config sync")
            self.sync_error = "no servers configured"
            return False

        try:
            selected = self.select_fastest_server()
            if selected is None:
                logger.warning("All WebDAV servers failed to connect")
                self._record(False, "all servers unreachable")
                return False

            server, client = selected
            self._set_client(server, client)

            data = client.download_file(server.monitorDir, CONFIG_FILE_NAME)
            if data:
                self.config_repo.apply_json(data.decode("utf-8"))
                logger.info(f"Config synced from {server.url}")
            else:
                logger.warning(f"Config file not found on {server.url}")

            self._record(True)
            return True

        except requests.exceptions.RequestException as e:
            logger.warning(f"Config sync failed (network): {e}")
            self._record(False, str(e))
        except (ConfigError, UnicodeDecodeError) as e:
            logger.error(f"Remote config rejected: {e}")
            self._record(False, str(e))
        except Exception as e:
            logger.error(f"Config sync error: {e}", exc_info=True)
            self._record(False, str(e))
        return False

    def sync_templates(self) -> int:
        """Download remote templates. Returns how many were stored."""
        self._last_template_sync = time.time()

        with self._lock:
            client, server = self._client, self._server
        if client is None or server is None:
            logger.debug("No remote client yet, skipping template sync")
            return 0

        try:
            remote_files = client.list_directory(server.templateDir)
            if not remote_files:
                logger.warning("No remote templates found")
                return 0

            synced = 0
            for name in remote_files:
                data = client.download_file(server.templateDir, name)
                if data and self.template_dir.save(name, data):
                    synced += 1

            logger.info(f"Template sync completed: {synced}/{len(remote_files)} synced")
            self.templates_synced += synced

            if synced > 0:
                count, names = self.template_store.reload()
                logger.info(f"Template store reloaded: {count} templates {names}")
            return synced

        except requests.exceptions.RequestException as e:
            logger.warning(f"Template sync failed (network): {e}")
        except Exception as e:
            logger.error(f"Template sync error: {e}", exc_info=True)
        return 0

    def _record(self, success: bool, error: Optional[str] = None):
        self.last_sync_success = success
        self.last_sync_time = time.time()
        self.sync_error = error

    def get_status(self) -> dict:
        with self._lock:
            server_url = self._server.url if self._server else None
        return {
            "server": server_url,
            "last_sync_success": self.last_sync_success,
            "last_sync_time": self.last_sync_time,
            "sync_error": self.sync_error,
            "templates_synced": self.templates_synced,
        }
