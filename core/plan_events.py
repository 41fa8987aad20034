"""
Plan telemetry events.

The execution controller and the pattern store report re-plans, backtracks,
pattern transfers and priority adjustments here. Each event is written as a
structured log line and handed to any registered listeners; an external
observability layer subscribes to consume them.
"""

import threading
import time
from collections import deque
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Deque, Dict, List, Optional

from utils.logging import get_logger

logger = get_logger(__name__)

DEFAULT_HISTORY_LIMIT = 200


class PlanEventType(Enum):
    REPLAN = "replan"
    REPLAN_SUPPRESSED = "replan-suppressed"
    BACKTRACK = "backtrack"
    PATTERN_TRANSFERRED = "pattern-transferred"
    STEP_ADJUSTED = "step-adjusted"
    EXECUTION_FINISHED = "execution-finished"


@dataclass(frozen=True)
class PlanEvent:
    """A structured telemetry event."""
    event_type: PlanEventType
    job_id: Optional[str] = None
    domain: Optional[str] = None
    details: Dict[str, Any] = field(default_factory=dict)
    recorded_at: float = field(default_factory=time.time)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "event_type": self.event_type.value,
            "job_id": self.job_id,
            "domain": self.domain,
            "details": dict(self.details),
            "recorded_at": self.recorded_at,
        }


PlanEventListener = Callable[[PlanEvent], None]


class PlanEventEmitter:
    """Fans plan events out to listeners and keeps a bounded recent history."""

    def __init__(self, history_limit: int = DEFAULT_HISTORY_LIMIT):
        self._listeners: List[PlanEventListener] = []
        self._history: Deque[PlanEvent] = deque(maxlen=history_limit)
        self._lock = threading.Lock()

    def subscribe(self, listener: PlanEventListener) -> Callable[[], None]:
        """Register a listener; returns a callable that unsubscribes it."""
        with self._lock:
            self._listeners.append(listener)

        def unsubscribe() -> None:
            with self._lock:
                if listener in self._listeners:
                    self._listeners.remove(listener)

        return unsubscribe

    def emit(self, event_type: PlanEventType, job_id: Optional[str] = None,
             domain: Optional[str] = None, **details: Any) -> PlanEvent:
        event = PlanEvent(event_type=event_type, job_id=job_id, domain=domain, details=details)
        with self._lock:
            self._history.append(event)
            listeners = list(self._listeners)

        logger.info("plan_event", event_type=event_type.value, job_id=job_id, domain=domain, **details)

        for listener in listeners:
            try:
                listener(event)
            except Exception as e:
                # A broken subscriber must not disturb planning
                logger.warning("Plan event listener failed", event_type=event_type.value, error=str(e))
        return event

    def recent(self, event_type: Optional[PlanEventType] = None,
               job_id: Optional[str] = None) -> List[PlanEvent]:
        with self._lock:
            events = list(self._history)
        return [
            e for e in events
            if (event_type is None or e.event_type == event_type)
            and (job_id is None or e.job_id == job_id)
        ]
