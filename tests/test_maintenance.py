import os
from datetime import datetime

from screen_monitor.config import MonitorConfig
from screen_monitor.storage.capture_log import CaptureLog
from screen_monitor.storage.screenshots import ScreenshotStore
from screen_monitor.threads.maintenance import MaintenanceThread


class FakeRemote:
    def __init__(self, failing=()):
        self.failing = set(failing)
        self.uploads = []

    def upload_file(self, sub_path, name, local_path):
        if name in self.failing:
            return False
        self.uploads.append((sub_path, name))
        return True


def make_store(tmp_path):
    log = CaptureLog(db_path=str(tmp_path / "captures.db"))
    return ScreenshotStore(str(tmp_path / "root"), capture_log=log)


def test_upload_deletes_local_copies(tmp_path, config_repo):
    store = make_store(tmp_path)
    first = store.save_capture(b"a" * 10, "a.png", datetime(2024, 1, 1, 8, 0, 0))
    second = store.save_capture(b"b" * 10, "b.png", datetime(2024, 1, 2, 8, 0, 0))
    remote = FakeRemote()
    maintenance = MaintenanceThread(store, config_repo)
    maintenance.set_remote(remote)

    assert maintenance.upload_pending() == 2

    assert sorted(remote.uploads) == [
        ("20240101", "20240101_080000_a.jpg"),
        ("20240102", "20240102_080000_b.jpg"),
    ]
    assert not os.path.exists(first)
    assert not os.path.exists(second)
    assert store.capture_log.get_stats()["pending_upload"] == 0


def test_failed_upload_keeps_file(tmp_path, config_repo):
    store = make_store(tmp_path)
    kept = store.save_capture(b"a" * 10, "a.png", datetime(2024, 1, 1, 8, 0, 0))
    maintenance = MaintenanceThread(store, config_repo)
    maintenance.set_remote(FakeRemote(failing={"20240101_080000_a.jpg"}))

    assert maintenance.upload_pending() == 0
    assert os.path.exists(kept)
    assert maintenance.get_stats()["upload_failures"] == 1


def test_upload_without_remote_is_skipped(tmp_path, config_repo):
    store = make_store(tmp_path)
    store.save_capture(b"a", "a.png", datetime(2024, 1, 1, 8, 0, 0))
    maintenance = MaintenanceThread(store, config_repo)

    assert maintenance.upload_pending() == 0
    assert len(store.list_screenshots()) == 1


def test_cleanup_reads_limit_from_current_config(tmp_path, config_repo):
    store = make_store(tmp_path)
    store.save_capture(b"a" * 10, "a.png", datetime(2024, 1, 1, 8, 0, 0))
    store.save_capture(b"b" * 10, "b.png", datetime(2024, 1, 2, 8, 0, 0))
    maintenance = MaintenanceThread(store, config_repo)

    assert maintenance.clean_storage() == 0

    config_repo.update(MonitorConfig(maxStorageSizeMB=0), persist=False)
    assert maintenance.clean_storage() == 2
    assert store.list_screenshots() == []
    assert maintenance.get_stats()["files_cleaned"] == 2


def test_overlapping_cleanup_is_skipped(tmp_path, config_repo):
    maintenance = MaintenanceThread(make_store(tmp_path), config_repo)
    maintenance._cleanup_in_progress.acquire()
    try:
        assert maintenance.clean_storage() == -1
    finally:
        maintenance._cleanup_in_progress.release()
