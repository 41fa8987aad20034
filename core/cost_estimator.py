"""
Cost estimation for crawl actions.

The planner consumes a cost bucket per action type. ``StaticCostEstimator``
serves a fixed table; ``TelemetryCostEstimator`` calibrates itself from the
durations the execution controller observes.
"""

import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import Dict, Mapping, Optional

from models.plan import ActionType
from utils.logging import get_logger

logger = get_logger(__name__)

FAST_THRESHOLD_MS = 100.0
SLOW_THRESHOLD_MS = 500.0


class CostBucket(Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"

    @classmethod
    def from_duration_ms(cls, duration_ms: float) -> "CostBucket":
        if duration_ms < FAST_THRESHOLD_MS:
            return cls.LOW
        if duration_ms > SLOW_THRESHOLD_MS:
            return cls.HIGH
        return cls.MEDIUM


@dataclass(frozen=True)
class CostEstimate:
    bucket: CostBucket
    estimated_ms: Optional[float] = None
    sample_count: int = 0


class CostEstimator(ABC):
    """Supplies a predicted cost bucket for an action type."""

    @abstractmethod
    def estimate_cost(self, action_type: ActionType) -> Optional[CostEstimate]:
        """Return the estimate for ``action_type`` or None when unknown."""
        pass

    def observe(self, action_type: ActionType, duration_ms: float) -> None:
        """Feed back an observed duration. Estimators that do not learn ignore it."""
        return None


class StaticCostEstimator(CostEstimator):
    """Fixed duration table, useful for tests and cold starts."""

    def __init__(self, durations_ms: Optional[Mapping[ActionType, float]] = None):
        self._durations = dict(durations_ms or {})

    def estimate_cost(self, action_type: ActionType) -> Optional[CostEstimate]:
        duration = self._durations.get(action_type)
        if duration is None:
            return None
        return CostEstimate(bucket=CostBucket.from_duration_ms(duration), estimated_ms=duration)


class TelemetryCostEstimator(CostEstimator):
    """Running mean of observed durations per action type."""

    def __init__(self, min_samples: int = 3, seed_ms: Optional[Mapping[ActionType, float]] = None):
        self.min_samples = min_samples
        self._lock = threading.Lock()
        self._totals: Dict[ActionType, float] = {}
        self._counts: Dict[ActionType, int] = {}
        for action_type, duration in (seed_ms or {}).items():
            self._totals[action_type] = duration * min_samples
            self._counts[action_type] = min_samples

    def observe(self, action_type: ActionType, duration_ms: float) -> None:
        if duration_ms is None or duration_ms < 0:
            return
        with self._lock:
            self._totals[action_type] = self._totals.get(action_type, 0.0) + duration_ms
            self._counts[action_type] = self._counts.get(action_type, 0) + 1

    def estimate_cost(self, action_type: ActionType) -> Optional[CostEstimate]:
        with self._lock:
            count = self._counts.get(action_type, 0)
            if count < self.min_samples:
                return None
            mean = self._totals[action_type] / count
        return CostEstimate(bucket=CostBucket.from_duration_ms(mean), estimated_ms=mean, sample_count=count)

    def get_stats(self) -> Dict[str, Dict[str, float]]:
        with self._lock:
            return {
                action_type.value: {
                    'samples': self._counts[action_type],
                    'mean_ms': self._totals[action_type] / self._counts[action_type],
                }
                for action_type in self._counts if self._counts[action_type]
            }
