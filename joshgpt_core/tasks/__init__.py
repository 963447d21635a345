"""Turn-level utilities (configuration snapshot, trace recorder)."""

from .config import ChatRunnerConfig
from .trace import TraceRecorder

__all__ = ["ChatRunnerConfig", "TraceRecorder"]
