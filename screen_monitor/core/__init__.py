"""Core module: shared data types, collaborator contracts and pipeline state.

The ingest gate lives in core.ingest_gate and is imported from there.
"""

from .models import (
    Frame,
    Template,
    TemplateSnapshot,
    MatchResult,
    Thresholds,
    IngestOutcome,
    PipelineReport,
    MonitorError,
    FrameError,
    ConfigError,
)
from .interfaces import MatchSink, TemplateSource, ConfigProvider, RemoteStore
from .pipeline_state import PipelineState
from .rwlock import ReadWriteLock


__all__ = [
    "Frame",
    "Template",
    "TemplateSnapshot",
    "MatchResult",
    "Thresholds",
    "IngestOutcome",
    "PipelineReport",
    "MonitorError",
    "FrameError",
    "ConfigError",
    "MatchSink",
    "TemplateSource",
    "ConfigProvider",
    "RemoteStore",
    "PipelineState",
    "ReadWriteLock",
]
