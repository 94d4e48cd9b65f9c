"""
Pipeline State - timers and counters behind the ingest gate.

Replaces ad-hoc fields with one object the gate owns. Admission fields
(last_accept_time, last_signature) are touched by the producer thread, match
fields (last_match_time, last_periodic_save) by the worker; every access goes
through the lock.
"""

import threading
from dataclasses import dataclass
from typing import Optional


@dataclass
class GateCounters:
    """Frame counters reported by get_stats()."""
    received: int = 0
    accepted: int = 0
    dropped_busy: int = 0
    dropped_rate_limited: int = 0
    dropped_duplicate: int = 0
    dropped_invalid: int = 0
    dropped_stopped: int = 0
    quality_rejected: int = 0
    processed: int = 0
    matches: int = 0
    weak_matches: int = 0
    cooldown_skips: int = 0
    saves: int = 0
    save_failures: int = 0
    errors: int = 0


class PipelineState:
    """
    Mutable timing state of the frame pipeline.

    All timestamps are in seconds on the gate's clock. None means "never".
    """

    def __init__(self):
        self._lock = threading.Lock()
        self.last_accept_time: Optional[float] = None
        self.last_signature: Optional[int] = None
        self.last_match_time: Optional[float] = None
        self.last_periodic_save: Optional[float] = None
        self.forced_save_requested = False
        self.counters = GateCounters()

    @property
    def lock(self) -> threading.Lock:
        return self._lock

    def incr(self, name: str, amount: int = 1):
        with self._lock:
            setattr(self.counters, name, getattr(self.counters, name) + amount)

    def in_cooldown(self, now: float, cooldown_seconds: float) -> bool:
        with self._lock:
            if self.last_match_time is None:
                return False
            return now - self.last_match_time < cooldown_seconds

    def record_match(self, now: float):
        with self._lock:
            self.last_match_time = now

    def periodic_save_due(self, now: float, interval_seconds: float) -> bool:
        """True if a periodic save is due; marks it taken."""
        with self._lock:
            if self.last_periodic_save is not None and now - self.last_periodic_save < interval_seconds:
                return False
            self.last_periodic_save = now
            return True

    def take_forced_save(self) -> bool:
        with self._lock:
            requested = self.forced_save_requested
            self.forced_save_requested = False
            return requested

    def request_forced_save(self):
        with self._lock:
            self.forced_save_requested = True

    def reset(self):
        with self._lock:
            self.last_accept_time = None
            self.last_signature = None
            self.last_match_time = None
            self.last_periodic_save = None
            self.forced_save_requested = False
            self.counters = GateCounters()

    def snapshot(self) -> dict:
        with self._lock:
            stats = dict(vars(self.counters))
            stats["last_accept_time"] = self.last_accept_time
            stats["last_match_time"] = self.last_match_time
            stats["last_periodic_save"] = self.last_periodic_save
            return stats
