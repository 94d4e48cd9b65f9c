"""
Screen Monitor Main Orchestrator
--------------------------------
Central coordinator for all screen-monitor components.

Architecture:
- Single Python process
- Frames are pushed in by the capture source through on_frame_available()
- 3 worker threads: FrameWorker (matching), Sync (remote config/templates),
  Maintenance (upload, retention)

Flow:
1. Capture source → on_frame_available() → buffer copy
2. Ingest gate: busy / rate / duplicate checks (producer thread)
3. Frame worker: downscale → grayscale → quality gate → periodic save
4. Cooldown check → scale-space template match → screenshot store
5. Maintenance uploads captures and keeps local storage bounded
6. Sync keeps config and templates up to date

Key Principles:
- The producer is never blocked by matching; frames arriving while a frame
  is being processed are dropped
- Config is read fresh for every frame, so remote updates apply immediately
- Template reloads never stall matching
"""

import logging
import logging.handlers
import os
import signal
import sys
import threading
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

import cv2
import numpy as np
from PIL import Image

from .config import Config, ConfigRepository, MonitorConfig, WebDavServer, config
from .core.ingest_gate import FrameIngestGate, accept_interval
from .core.models import IngestOutcome
from .storage import (
    CaptureLog,
    ScreenshotStore,
    TemplateDirectory,
    create_screenshot_store_from_config,
    create_template_directory_from_config,
)
from .threads import (
    MaintenanceThread,
    SyncThread,
    create_maintenance_thread_from_config,
    create_sync_thread_from_config,
)
from .vision import ScaleSpaceMatcher, TemplateStore

logger = logging.getLogger("ScreenMonitor")

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"


def setup_logging(node_config: Config) -> bool:
    """Console plus daily-rotated file logging."""
    try:
        os.makedirs(node_config.LOG_DIR, exist_ok=True)
        file_handler = logging.handlers.TimedRotatingFileHandler(
            os.path.join(node_config.LOG_DIR, "screen_monitor.log"),
            when="midnight",
            backupCount=node_config.LOG_BACKUP_DAYS,
            encoding="utf-8",
        )
    except OSError as e:
        logging.basicConfig(level=logging.INFO, format=LOG_FORMAT)
        logger.error(f"File logging unavailable: {e}")
        return False

    logging.basicConfig(
        level=getattr(logging, node_config.LOG_LEVEL.upper(), logging.INFO),
        format=LOG_FORMAT,
        handlers=[
            logging.StreamHandler(),
            file_handler,
        ],
    )
    return True


def check_opencv() -> bool:
    """Verify the OpenCV build can run the operations the pipeline needs."""
    try:
        probe = np.zeros((40, 40, 4), dtype=np.uint8)
        probe[10:30, 10:30] = 255
        gray = cv2.cvtColor(probe, cv2.COLOR_RGBA2GRAY)
        cv2.matchTemplate(gray, gray[5:35, 5:35], cv2.TM_CCOEFF_NORMED)
    except cv2.error as e:
        logger.error(f"OpenCV check failed: {e}")
        return False
    logger.info(f"OpenCV {cv2.__version__} ready")
    return True


class MonitorNode:
    """
    Main screen-monitor application.

    Owns every component; nothing is global. Wiring happens in start(), and
    stop() tears everything down in reverse order.
    """

    def __init__(self, node_config: Config = config, threaded: bool = True, background_threads: bool = True):
        self.node_config = node_config
        self.threaded = threaded
        self.background_threads = background_threads

        # Core state
        self._running = False
        self._stopped = False
        self._shutdown_event = threading.Event()
        self._lifecycle_lock = threading.Lock()

        # Data directory
        self.data_dir = Path(node_config.DATA_DIR)
        self.data_dir.mkdir(parents=True, exist_ok=True)

        # Components (initialized in start())
        self.config_repo: Optional[ConfigRepository] = None
        self.capture_log: Optional[CaptureLog] = None
        self.screenshot_store: Optional[ScreenshotStore] = None
        self.template_dir: Optional[TemplateDirectory] = None
        self.template_store: Optional[TemplateStore] = None
        self.matcher: Optional[ScaleSpaceMatcher] = None
        self.gate: Optional[FrameIngestGate] = None
        self.sync_thread: Optional[SyncThread] = None
        self.maintenance_thread: Optional[MaintenanceThread] = None

        self.stats = {"start_time": None, "frames_offered": 0}

    @property
    def is_running(self) -> bool:
        return self._running

    def _init_config(self) -> bool:
        try:
            self.config_repo = ConfigRepository(self.node_config.CONFIG_PATH)
            current = self.config_repo.load_local()
            self.config_repo.add_listener(self._on_config_changed)
            logger.info(
                f"Config: threshold={current.matchThreshold} cooldown={current.matchCooldownMs}ms "
                f"rate={current.detectPerSecond}/s storage={current.maxStorageSizeMB}MB"
            )
            return True
        except Exception as e:
            logger.error(f"Failed to initialize config: {e}")
            return False

    def _init_storage(self) -> bool:
        try:
            current = self.config_repo.get_current()
            self.capture_log = CaptureLog(db_path=str(self.data_dir / "captures.db"))
            self.screenshot_store = create_screenshot_store_from_config(self.node_config, current, self.capture_log)
            self.template_dir = create_template_directory_from_config(self.node_config, current)
            logger.info(f"Storage initialized: {self.screenshot_store.get_stats()['files']} captures on disk")
            return True
        except Exception as e:
            logger.error(f"Failed to initialize storage: {e}")
            return False

    def _init_vision(self) -> bool:
        try:
            logger.info("Initializing vision pipeline...")
            self.template_store = TemplateStore(source=self.template_dir)
            count, names = self.template_store.reload()
            self.matcher = ScaleSpaceMatcher(self.template_store)

            logger.info(f"Vision pipeline initialized: {count} templates {names}")
            return True
        except Exception as e:
            logger.error(f"Failed to initialize vision: {e}")
            return False

    def _init_pipeline(self) -> bool:
        try:
            self.gate = FrameIngestGate(
                matcher=self.matcher,
                sink=self.screenshot_store,
                config_provider=self.config_repo,
                periodic_save_seconds=self.node_config.PERIODIC_SAVE_SECONDS,
                threaded=self.threaded,
            )
            return True
        except Exception as e:
            logger.error(f"Failed to initialize pipeline: {e}")
            return False

    def _init_threads(self) -> bool:
        try:
            self.maintenance_thread = create_maintenance_thread_from_config(
                self.node_config, self.screenshot_store, self.config_repo
            )

            if self.node_config.SYNC_ENABLED:
                fallback = []
                if self.node_config.WEBDAV_URL:
                    fallback.append(WebDavServer(
                        url=self.node_config.WEBDAV_URL,
                        username=self.node_config.WEBDAV_USERNAME,
                        password=self.node_config.WEBDAV_PASSWORD,
                    ))
                self.sync_thread = create_sync_thread_from_config(
                    self.node_config, self.config_repo, self.template_dir, self.template_store, fallback
                )
                self.sync_thread.add_remote_listener(
                    lambda client, server: self.maintenance_thread.set_remote(client)
                )
            else:
                logger.info("Remote sync disabled")
            return True
        except Exception as e:
            logger.error(f"Failed to initialize threads: {e}")
            return False

    def start(self) -> bool:
        """
        Start the monitor. A stopped node can be started again; every
        component is rebuilt from scratch.

        Returns:
            True if started successfully
        """
        with self._lifecycle_lock:
            if self._running:
                logger.warning("Screen Monitor already running")
                return True
            self._stopped = False
            self._shutdown_event.clear()
            self.stats = {"start_time": None, "frames_offered": 0}

        logger.info("=" * 50)
        logger.info(f"Screen Monitor starting: {self.node_config.DEVICE_ID}")
        logger.info("=" * 50)

        if not self._init_config():
            return False

        if not self._init_storage():
            return False

        if not self._init_vision():
            return False

        if not self._init_pipeline():
            return False

        if not self._init_threads():
            return False

        self.gate.start()

        if self.background_threads:
            self.maintenance_thread.start()
            if self.sync_thread:
                self.sync_thread.start()

        self.stats["start_time"] = time.time()
        self._running = True

        logger.info("Screen Monitor started successfully")
        return True

    def stop(self):
        """Stop the monitor gracefully. Safe to call more than once."""
        with self._lifecycle_lock:
            if self._stopped:
                return
            self._stopped = True

        logger.info("Screen Monitor shutting down...")
        self._running = False
        self._shutdown_event.set()

        if self.sync_thread:
            self.sync_thread.stop()
            if self.sync_thread.is_alive():
                self.sync_thread.join(timeout=5.0)
            self.sync_thread.close()

        if self.maintenance_thread:
            self.maintenance_thread.stop()
            if self.maintenance_thread.is_alive():
                self.maintenance_thread.join(timeout=5.0)

        if self.gate:
            self.gate.shutdown()

        if self.template_store:
            self.template_store.release()

        logger.info("Screen Monitor stopped")
        self._print_stats()

    def reset(self):
        """Clear pipeline timers and counters; templates and config stay."""
        if self.gate:
            self.gate.reset()

    # =========================
    # Frame input
    # =========================

    def on_frame_available(self, buffer, width: int, height: int, scale: int = 1) -> IngestOutcome:
        """
        Entry point for the capture source.

        The buffer is copied before this returns, so the caller may reuse it
        immediately.
        """
        if not self._running or self.gate is None:
            return IngestOutcome.DROPPED_STOPPED
        self.stats["frames_offered"] += 1
        return self.gate.submit(buffer, width, height, scale)

    def replay_image(self, path: str) -> IngestOutcome:
        """Feed an image file through the pipeline as if it were a capture."""
        with Image.open(path) as img:
            rgba = np.asarray(img.convert("RGBA"))
        height, width = rgba.shape[:2]
        return self.on_frame_available(rgba.tobytes(), width, height)

    def request_forced_save(self):
        if self.gate:
            self.gate.request_forced_save()

    def reload_templates(self):
        if self.template_store:
            return self.template_store.reload()
        return 0, []

    # =========================
    # Config changes
    # =========================

    def _on_config_changed(self, old: MonitorConfig, new: MonitorConfig):
        if self.screenshot_store and (old.rootDir, old.screenshotDir) != (new.rootDir, new.screenshotDir):
            root = str(self.data_dir / new.rootDir)
            if self.screenshot_store.relocate(root, new.screenshotDir):
                logger.info(f"Screenshots now stored under {self.screenshot_store.base_dir}")

        if self.template_dir and (old.rootDir, old.templateDir) != (new.rootDir, new.templateDir):
            target = str(self.data_dir / new.rootDir / new.templateDir)
            if self.template_dir.relocate(target) and self.template_store:
                self.template_store.reload()

    # =========================
    # Status
    # =========================

    def get_stats(self) -> dict:
        stats = dict(self.stats)
        if self.gate:
            stats["pipeline"] = self.gate.get_stats()
        if self.template_store:
            stats["templates"] = self.template_store.get_stats()
        if self.screenshot_store:
            stats["storage"] = self.screenshot_store.get_stats()
        if self.maintenance_thread:
            stats["maintenance"] = self.maintenance_thread.get_stats()
        if self.sync_thread:
            stats["sync"] = self.sync_thread.get_status()
        return stats

    def _print_stats(self):
        if not self.stats["start_time"]:
            return
        runtime = time.time() - self.stats["start_time"]
        logger.info("=" * 50)
        logger.info("Session Statistics:")
        logger.info(f"  Runtime: {runtime:.1f}s")
        logger.info(f"  Frames offered: {self.stats['frames_offered']}")
        if self.gate:
            s = self.gate.state.snapshot()
            logger.info(f"  Accepted: {s['accepted']}")
            logger.info(f"  Dropped: busy={s['dropped_busy']} rate={s['dropped_rate_limited']} "
                        f"duplicate={s['dropped_duplicate']} invalid={s['dropped_invalid']}")
            logger.info(f"  Matches: {s['matches']} (weak: {s['weak_matches']})")
        if self.capture_log:
            logger.info(f"  Capture log: {self.capture_log.get_stats()}")
        logger.info("=" * 50)

    def run(self):
        """Keep the process alive until stop() is called."""
        logger.info("Waiting for frames...")
        last_report = time.time()
        while not self._shutdown_event.wait(timeout=1.0):
            if time.time() - last_report >= 60:
                last_report = time.time()
                pipeline = self.gate.get_stats() if self.gate else {}
                logger.info(
                    f"Status: accepted={pipeline.get('accepted', 0)} "
                    f"matches={pipeline.get('matches', 0)} "
                    f"templates={self.template_store.count if self.template_store else 0}"
                )
        logger.info("Main loop ended")


@dataclass
class BootstrapResult:
    """Outcome of bootstrap(): a running node, or the reason there is none."""
    success: bool
    node: Optional[MonitorNode] = None
    error: Optional[str] = None


def bootstrap(
    node_config: Optional[Config] = None,
    configure_logging: bool = True,
    threaded: bool = True,
    background_threads: bool = True,
) -> BootstrapResult:
    """
    Bring the monitor up step by step: logging, OpenCV check, wiring.
    """
    node_config = node_config or config

    if configure_logging and not setup_logging(node_config):
        logger.warning("Continuing with console logging only")

    if not check_opencv():
        return BootstrapResult(success=False, error="OpenCV unavailable")

    node = MonitorNode(node_config, threaded=threaded, background_threads=background_threads)
    if not node.start():
        node.stop()
        return BootstrapResult(success=False, error="component initialization failed")

    return BootstrapResult(success=True, node=node)


def main():
    """Entry point. Image paths given on the command line are replayed as frames."""
    result = bootstrap()
    if not result.success:
        logger.error(f"Failed to start Screen Monitor: {result.error}")
        sys.exit(1)
    node = result.node

    # Setup signal handlers for graceful shutdown
    def signal_handler(sig, frame):
        logger.info(f"Received signal {sig}")
        node.stop()
        sys.exit(0)

    signal.signal(signal.SIGINT, signal_handler)
    signal.signal(signal.SIGTERM, signal_handler)

    try:
        for path in sys.argv[1:]:
            outcome = node.replay_image(path)
            logger.info(f"Replayed {path}: {outcome.value}")
            node.gate.wait_idle(timeout=30)
            # Let the rate limiter admit the next frame
            time.sleep(accept_interval(node.config_repo.get_current().detectPerSecond))
        node.run()
    except KeyboardInterrupt:
        logger.info("Keyboard interrupt received")
    except Exception as e:
        logger.error(f"Unexpected error: {e}")
    finally:
        node.stop()


if __name__ == "__main__":
    main()
