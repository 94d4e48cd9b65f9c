"""
Frame Worker Thread - runs the heavy pipeline off the producer thread.

Architecture:
    Producer (capture callback)
        └──→ FrameIngestGate.accept()  (cheap checks, buffer copy)
                └──→ job queue (size 1) → FrameWorker → pipeline pass

Key Design:
- Exactly one pass in flight; the gate's busy flag guarantees the queue never
  holds more than one job, so a full queue is reported back as busy
- A failing job is logged and the worker keeps running
"""

import logging
import queue
import threading
from typing import Any, Callable, Optional

logger = logging.getLogger(__name__)


class FrameWorker(threading.Thread):
    """
    Single-consumer worker for accepted frames.

    Usage:
        worker = FrameWorker(handler=run_pipeline_pass)
        worker.start()
        worker.submit(frame)
        worker.stop()
    """

    def __init__(self, handler: Callable[[Any], Any], name: str = "FrameWorker"):
        super().__init__(name=name, daemon=True)
        self.handler = handler
        self._jobs: queue.Queue = queue.Queue(maxsize=1)
        self._stop_event = threading.Event()

        # Stats
        self.jobs_done = 0
        self.jobs_failed = 0
        self.is_running = False

    def submit(self, job: Any) -> bool:
        """Queue a job without blocking. Returns False if a job is already pending."""
        if self._stop_event.is_set():
            return False
        try:
            self._jobs.put_nowait(job)
            return True
        except queue.Full:
            return False

    def run(self):
        logger.info("Frame worker started")
        self.is_running = True

        while not self._stop_event.is_set():
            try:
                job = self._jobs.get(timeout=0.5)
            except queue.Empty:
                continue

            if job is None:
                break

            try:
                self.handler(job)
                self.jobs_done += 1
            except Exception as e:
                self.jobs_failed += 1
                logger.error(f"Frame job failed: {e}", exc_info=True)

        self.is_running = False
        logger.info("Frame worker stopped")

    def stop(self, timeout: Optional[float] = 2.0):
        """Signal the worker to stop and wait for the current job to finish."""
        self._stop_event.set()
        try:
            self._jobs.put_nowait(None)
        except queue.Full:
            pass
        if self.is_alive() and threading.current_thread() is not self:
            self.join(timeout=timeout)

    def get_stats(self) -> dict:
        return {
            "running": self.is_running,
            "jobs_done": self.jobs_done,
            "jobs_failed": self.jobs_failed,
            "pending": self._jobs.qsize(),
        }
