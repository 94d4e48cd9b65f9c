"""Background threads: frame worker, remote sync and storage maintenance."""

from .frame_worker import FrameWorker
from .sync import SyncThread
from .maintenance import MaintenanceThread


def create_sync_thread_from_config(config, config_repo, template_dir, template_store, fallback_servers=None) -> SyncThread:
    """Factory function to create SyncThread from config object."""
    return SyncThread(
        config_repo=config_repo,
        template_dir=template_dir,
        template_store=template_store,
        device_id=config.DEVICE_ID,
        config_interval_seconds=config.CONFIG_SYNC_INTERVAL_SECONDS,
        template_interval_seconds=config.SYNC_INTERVAL_SECONDS,
        fallback_servers=fallback_servers,
    )


def create_maintenance_thread_from_config(config, store, config_repo) -> MaintenanceThread:
    """Factory function to create MaintenanceThread from config object."""
    return MaintenanceThread(
        store=store,
        config_repo=config_repo,
        upload_interval_seconds=config.UPLOAD_INTERVAL_SECONDS,
        cleanup_interval_seconds=config.CLEANUP_INTERVAL_SECONDS,
    )


__all__ = [
    "FrameWorker",
    "SyncThread",
    "MaintenanceThread",
    "create_sync_thread_from_config",
    "create_maintenance_thread_from_config",
]
