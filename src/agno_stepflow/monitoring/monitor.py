"""Workflow monitoring service.

This module provides real-time monitoring of workflow executions:
- Event tracking across every execution a workflow runs
- Per-execution metrics
- Handlers per event type
"""

import asyncio
from collections import OrderedDict, defaultdict
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional

import logging
logger = logging.getLogger(__name__)

from ..config import EngineConfig
from .events import EventType, StreamEvent

EventHandler = Callable[[StreamEvent], None]


class WorkflowMonitor:
    """Monitors workflow executions and collects metrics.

    Controllers hand events over synchronously through :meth:`observe`; a
    background task processes them so slow handlers never hold up a step.
    """

    def __init__(self, queue_timeout: Optional[float] = None, history_limit: Optional[int] = None):
        """Initialize the workflow monitor.

        Args:
            queue_timeout: Seconds the processor waits for an event before
                re-checking whether it should stop
            history_limit: Finished executions kept for metrics lookups;
                the oldest are dropped first
        """
        self.queue_timeout = queue_timeout or EngineConfig.MONITOR_QUEUE_TIMEOUT
        self.history_limit = history_limit or EngineConfig.MONITOR_HISTORY_LIMIT
        self._event_handlers: Dict[str, List[EventHandler]] = defaultdict(list)
        self._active_executions: Dict[str, Dict[str, Any]] = {}
        self._finished_executions: Dict[str, Dict[str, Any]] = OrderedDict()
        self._event_queue: Optional[asyncio.Queue] = None
        self._running = False
        self._processor_task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._running

    async def start(self) -> None:
        """Start the monitoring service."""
        if self._running:
            return

        self._event_queue = asyncio.Queue()
        self._running = True
        self._processor_task = asyncio.create_task(self._process_events())
        logger.info("Workflow monitor started")

    async def stop(self) -> None:
        """Stop the monitoring service after draining queued events."""
        if not self._running:
            return
        self._running = False

        if self._processor_task:
            await self._event_queue.put(None)  # Sentinel to stop processor
            await self._processor_task
            self._processor_task = None

        logger.info("Workflow monitor stopped")

    def register_handler(self, event_type: str, handler: EventHandler) -> None:
        """Register an event handler.

        Args:
            event_type: Lifecycle ``EventType`` value or any custom event type
            handler: Handler function
        """
        key = event_type.value if isinstance(event_type, EventType) else event_type
        self._event_handlers[key].append(handler)

    def observe(self, event: StreamEvent) -> None:
        """Queue an event for processing; handled inline when not started."""
        if self._running and self._event_queue is not None:
            self._event_queue.put_nowait(event)
        else:
            self._handle_event(event)

    async def flush(self) -> None:
        """Wait until every queued event has been handled."""
        if self._running and self._event_queue is not None:
            await self._event_queue.join()

    def get_active_executions(self) -> List[Dict[str, Any]]:
        """Get information about executions that have not finished.

        Suspended executions count as active.

        Returns:
            List of active execution information
        """
        active = []
        now = datetime.now(timezone.utc)

        for execution_id, info in self._active_executions.items():
            active.append({
                "execution_id": execution_id,
                "workflow_id": info["workflow_id"],
                "status": info["status"],
                "duration_seconds": (now - info["start_time"]).total_seconds(),
                "metrics": dict(info["metrics"]),
            })

        return active

    def get_execution_metrics(self, execution_id: str) -> Optional[Dict[str, Any]]:
        """Get metrics for a specific execution.

        Args:
            execution_id: Execution ID

        Returns:
            Execution metrics or None if not found
        """
        info = self._active_executions.get(execution_id) or self._finished_executions.get(execution_id)
        if info:
            return dict(info["metrics"])
        return None

    async def _process_events(self) -> None:
        """Process events from the queue."""
        while True:
            try:
                # Get event with timeout to allow checking _running
                event = await asyncio.wait_for(
                    self._event_queue.get(),
                    timeout=self.queue_timeout,
                )
            except asyncio.TimeoutError:
                if not self._running:
                    break
                continue

            try:
                if event is None:  # Sentinel value
                    break
                self._handle_event(event)
            except Exception as e:
                logger.error(f"Error processing event: {e}", exc_info=True)
            finally:
                self._event_queue.task_done()

    def _track(self, event: StreamEvent) -> Optional[Dict[str, Any]]:
        execution_id = event.execution_id
        if event.type in (EventType.WORKFLOW_START.value, EventType.WORKFLOW_RESUMED.value):
            info = self._active_executions.get(execution_id)
            if info is None:
                info = self._finished_executions.pop(execution_id, None) or {
                    "workflow_id": event.from_,
                    "start_time": event.timestamp,
                    "metrics": {
                        "steps_started": 0,
                        "steps_completed": 0,
                        "step_errors": 0,
                        "suspensions": 0,
                        "resumes": 0,
                        "custom_events": 0,
                    },
                }
                self._active_executions[execution_id] = info
            info["status"] = "running"
        return self._active_executions.get(execution_id)

    def _handle_event(self, event: StreamEvent) -> None:
        """Handle an execution event.

        Args:
            event: Event to handle
        """
        info = self._track(event)

        if info is not None:
            metrics = info["metrics"]
            if event.type == EventType.STEP_START.value:
                metrics["steps_started"] += 1
            elif event.type == EventType.STEP_COMPLETE.value:
                metrics["steps_completed"] += 1
            elif event.type == EventType.STEP_ERROR.value:
                metrics["step_errors"] += 1
            elif event.type == EventType.WORKFLOW_SUSPENDED.value:
                metrics["suspensions"] += 1
                info["status"] = "suspended"
            elif event.type == EventType.WORKFLOW_RESUMED.value:
                metrics["resumes"] += 1
            elif event.is_terminal:
                self._finish(event, info)
            elif event.type not in _LIFECYCLE_TYPES:
                metrics["custom_events"] += 1

        # Call registered handlers
        for handler in self._event_handlers.get(event.type, []):
            try:
                handler(event)
            except Exception as e:
                logger.error(f"Error in event handler: {e}", exc_info=True)

    def _finish(self, event: StreamEvent, info: Dict[str, Any]) -> None:
        success = event.type == EventType.WORKFLOW_COMPLETE.value
        info["status"] = "completed" if success else "error"
        info["end_time"] = event.timestamp
        info["duration_seconds"] = (info["end_time"] - info["start_time"]).total_seconds()

        # Log summary
        logger.info(
            f"Execution {event.execution_id} {'completed' if success else 'failed'} "
            f"in {info['duration_seconds']:.2f}s - "
            f"Metrics: {info['metrics']}"
        )

        self._finished_executions[event.execution_id] = self._active_executions.pop(event.execution_id)
        while len(self._finished_executions) > self.history_limit:
            self._finished_executions.popitem(last=False)


_LIFECYCLE_TYPES = frozenset(event_type.value for event_type in EventType)
