import json

from screen_monitor.config import MonitorConfig, WebDavServer
from screen_monitor.storage.template_files import TemplateDirectory
from screen_monitor.threads.sync import SyncThread
from screen_monitor.vision.templates import TemplateStore

from conftest import noise, png_bytes


class FakeClient:
    def __init__(self, server, reachable=True, files=None):
        self.server = server
        self.reachable = reachable
        self.files = files or {}
        self.closed = False

    def test_connection(self):
        return self.reachable

    def download_file(self, path, name, max_retry=3):
        return self.files.get(f"{path}/{name}", b"")

    def list_directory(self, path):
        prefix = f"{path}/"
        return [key[len(prefix):] for key in self.files if key.startswith(prefix)]

    def close(self):
        self.closed = True


class FakeRemote:
    """client_factory that hands out FakeClients per server url."""

    def __init__(self, reachable, files):
        self.reachable = reachable
        self.files = files
        self.clients = []

    def __call__(self, server, device_id):
        client = FakeClient(server, self.reachable.get(server.url, False), self.files.get(server.url))
        self.clients.append(client)
        return client


def make_sync(config_repo, tmp_path, remote, servers):
    config_repo.update(MonitorConfig(webdavServers=servers), persist=False)
    directory = TemplateDirectory(str(tmp_path / "Templates"))
    store = TemplateStore(source=directory)
    sync = SyncThread(
        config_repo=config_repo,
        template_dir=directory,
        template_store=store,
        device_id="desk-1",
        client_factory=remote,
    )
    return sync, directory, store


def test_sync_applies_remote_config_from_reachable_server(config_repo, tmp_path):
    servers = [WebDavServer(url="http://down"), WebDavServer(url="http://up")]
    remote_config = {"matchThreshold": 0.8, "webdavServers": [{"url": "http://up"}]}
    remote = FakeRemote(
        reachable={"http://up": True},
        files={"http://up": {"Monitor/config.json": json.dumps(remote_config).encode()}},
    )
    sync, _, _ = make_sync(config_repo, tmp_path, remote, servers)

    assert sync.sync_config()

    assert config_repo.get_current().matchThreshold == 0.8
    assert sync.get_status()["server"] == "http://up"
    down = [c for c in remote.clients if c.server.url == "http://down"]
    assert all(c.closed for c in down)


def test_unreachable_servers_keep_current_config(config_repo, tmp_path):
    remote = FakeRemote(reachable={}, files={})
    sync, _, _ = make_sync(config_repo, tmp_path, remote, [WebDavServer(url="http://down")])

    assert not sync.sync_config()
    assert sync.get_status()["sync_error"] == "all servers unreachable"
    assert config_repo.get_current().matchThreshold == 0.92


def test_rejected_remote_config_keeps_client(config_repo, tmp_path):
    remote = FakeRemote(
        reachable={"http://up": True},
        files={"http://up": {"Monitor/config.json": b"{broken"}},
    )
    sync, _, _ = make_sync(config_repo, tmp_path, remote, [WebDavServer(url="http://up")])

    assert not sync.sync_config()
    assert sync.client is not None
    assert not sync.client.closed


def test_template_sync_stores_files_and_reloads(config_repo, tmp_path):
    remote = FakeRemote(
        reachable={"http://up": True},
        files={"http://up": {
            "Templates/a.png": png_bytes(noise(40, 40, seed=1)),
            "Templates/b.png": png_bytes(noise(40, 40, seed=2)),
        }},
    )
    sync, directory, store = make_sync(config_repo, tmp_path, remote, [WebDavServer(url="http://up")])
    handed_out = []
    sync.add_remote_listener(lambda client, server: handed_out.append(server.url))

    sync.sync_all()

    assert directory.list_names() == ["a.png", "b.png"]
    assert store.get_snapshot().names == ("a.png", "b.png")
    assert handed_out == ["http://up"]
    assert sync.get_status()["templates_synced"] == 2


def test_no_servers_is_a_quiet_noop(config_repo, tmp_path):
    remote = FakeRemote(reachable={}, files={})
    sync, _, _ = make_sync(config_repo, tmp_path, remote, [])

    assert not sync.sync_config()
    assert sync.sync_templates() == 0
    assert remote.clients == []
