"""
Priority Scorer

Combines the base heuristic score of a candidate action with an optional
cost adjustment. The scorer holds no state beyond its settings, so the same
inputs always give the same priority.
"""

from dataclasses import dataclass
from typing import Iterable, List, Optional, Tuple

from config import ScorerSettings
from core.cost_estimator import CostBucket, CostEstimate
from models.plan import Action, ActionType, Candidate, StepSource
from utils.logging import get_logger

logger = get_logger(__name__)

COST_ADJUSTMENTS = {
    CostBucket.LOW: 15.0,
    CostBucket.MEDIUM: 0.0,
    CostBucket.HIGH: -10.0,
}

# Discovery methods reported by the crawler, folded onto the bonus keys
DISCOVERY_METHOD_KEYS = {
    'intelligent-seed': 'adaptive-seed',
    'adaptive-seed': 'adaptive-seed',
    'hub-seed': 'adaptive-seed',
    'sitemap': 'sitemap',
    'sitemap-url': 'sitemap',
    'validated-hub': 'hub-validated',
    'hub-validated': 'hub-validated',
    'pattern-match': 'hub-validated',
    'link-discovery': 'link',
    'link': 'link',
}


@dataclass(frozen=True)
class PriorityBreakdown:
    """How a priority was put together."""
    priority: float
    base_priority: float
    cost_adjustment: float
    bonus_applied: bool
    source: StepSource
    cost_bucket: Optional[CostBucket] = None


class PriorityScorer:
    """Pure priority function over candidate actions."""

    def __init__(self, settings: Optional[ScorerSettings] = None, cost_aware: bool = True):
        self.settings = settings or ScorerSettings()
        self.cost_aware = cost_aware

        missing = [t.value for t in ActionType if t.value not in self.settings.type_weights]
        if missing:
            raise ValueError(f"No type weight configured for action types: {', '.join(missing)}")

    @property
    def cost_weight(self) -> float:
        return self.settings.cost_weight if self.cost_aware else 0.0

    def discovery_bonus(self, discovery_method: Optional[str]) -> float:
        if not discovery_method:
            return 0.0
        key = DISCOVERY_METHOD_KEYS.get(discovery_method.lower())
        if key is None:
            return 0.0
        return self.settings.discovery_bonuses.get(key, 0.0)

    def base_score(self, candidate: Candidate) -> float:
        """Type weight plus discovery, gap, knowledge-reuse and yield terms."""
        s = self.settings
        action = candidate.action

        score = s.type_weights[action.type.value]
        score += self.discovery_bonus(candidate.discovery_method)
        score += candidate.gap_score * s.gap_weight
        if candidate.fills_gap:
            score += s.gap_bonus
        if candidate.is_pattern_learned:
            score += candidate.prior * s.knowledge_bonus

        requests = max(1, action.estimated_requests)
        score += (action.estimated_articles / requests) * s.yield_weight
        return score

    def compute(self, action: "Action | Candidate", base_heuristics: Optional[Candidate] = None,
                cost_estimate: Optional[CostEstimate] = None) -> PriorityBreakdown:
        """
        Score one action.

        Args:
            action: The action, or a candidate carrying its own heuristics
            base_heuristics: Heuristic inputs when ``action`` is a bare Action
            cost_estimate: Estimate from the cost estimator; None counts as medium

        Returns:
            PriorityBreakdown with the clamped final priority
        """
        candidate = base_heuristics or Candidate.wrap(action)
        base = self.base_score(candidate)

        bucket = cost_estimate.bucket if cost_estimate is not None else CostBucket.MEDIUM
        adjustment = COST_ADJUSTMENTS[bucket] * self.cost_weight

        priority = min(self.settings.max_priority, max(self.settings.min_priority, base + adjustment))
        return PriorityBreakdown(
            priority=priority,
            base_priority=base,
            cost_adjustment=adjustment,
            bonus_applied=adjustment != 0,
            source=candidate.source,
            cost_bucket=cost_estimate.bucket if cost_estimate is not None else None,
        )

    def score(self, action: "Action | Candidate", base_heuristics: Optional[Candidate] = None,
              cost_estimate: Optional[CostEstimate] = None) -> float:
        return self.compute(action, base_heuristics, cost_estimate).priority

    def score_batch(
        self, items: Iterable[Tuple["Action | Candidate", Optional[CostEstimate]]]
    ) -> List[PriorityBreakdown]:
        return [self.compute(item, cost_estimate=estimate) for item, estimate in items]
