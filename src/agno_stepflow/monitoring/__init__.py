"""Monitoring module for workflow execution tracking.

This module provides:
- The ordered per-execution event stream
- Stream writers for custom events and piped agent streams
- Cross-execution monitoring and metrics
"""

from .events import EventFactory, EventStatus, EventType, StreamEvent
from .monitor import WorkflowMonitor
from .stream import NoOpStreamWriter, StreamController, StreamWriter

__all__ = [
    # Events
    "EventType",
    "EventStatus",
    "StreamEvent",
    "EventFactory",
    # Stream
    "StreamController",
    "StreamWriter",
    "NoOpStreamWriter",
    # Monitor
    "WorkflowMonitor",
]
