"""
Plan data model for the crawl planner.

Actions, candidates and plans are immutable values: the planner builds a
fresh Plan on every call, and the execution controller derives new Plan
values when it needs to insert, replace or splice steps.
"""

from dataclasses import dataclass, replace
from enum import Enum
from typing import Any, Dict, FrozenSet, Iterable, List, Optional, Tuple
from urllib.parse import urlparse

SIGNATURE_SEPARATOR = "→"


class ActionType(Enum):
    """Closed set of crawl actions the planner can schedule."""
    EXPLORE_HUB = "explore-hub"       # Fetch a hub/section page and its listings
    HISTORY = "history"               # Replay an archive or history path
    ADAPTIVE_SEED = "adaptive-seed"   # Seed from a just-discovered article
    SITEMAP = "sitemap"               # Read a sitemap document
    REFRESH = "refresh"               # Re-fetch a known page for new links

    @classmethod
    def parse(cls, value: "str | ActionType") -> "ActionType":
        if isinstance(value, cls):
            return value
        return cls(value)


class StepSource(Enum):
    """Provenance of a plan step."""
    SEARCH = "search-generated"
    PATTERN_LEARNED = "pattern-learned"
    ADAPTIVE = "adaptive"             # Synthesized by the controller during execution


class Complexity(Enum):
    SIMPLE = "simple"
    MEDIUM = "medium"
    COMPLEX = "complex"


def make_signature(action_types: Iterable["ActionType | str"]) -> str:
    """Join action types into a pattern signature."""
    return SIGNATURE_SEPARATOR.join(ActionType.parse(t).value for t in action_types)


def parse_signature(signature: str) -> Tuple[ActionType, ...]:
    """Split a pattern signature back into action types."""
    if not signature:
        return ()
    return tuple(ActionType(part) for part in signature.split(SIGNATURE_SEPARATOR))


@dataclass(frozen=True)
class Action:
    """A candidate unit of crawl work."""
    type: ActionType
    target: str
    estimated_articles: float = 50.0
    estimated_requests: int = 1

    def path_prefix(self) -> str:
        """First two path segments of the target, e.g. '/news/world/'."""
        parsed = urlparse(self.target)
        path = parsed.path if parsed.scheme else self.target.split("?", 1)[0]
        parts = [p for p in path.split("/") if p]
        if not parts:
            return "/"
        return "/" + "/".join(parts[:2]) + "/"

    def is_similar(self, other: "Action") -> bool:
        """Same action type and same path prefix."""
        return self.type == other.type and self.path_prefix() == other.path_prefix()


@dataclass(frozen=True)
class Candidate:
    """An action together with the inputs of its base heuristic score."""
    action: Action
    source: StepSource = StepSource.SEARCH
    prior: float = 1.0
    discovery_method: Optional[str] = None
    gap_score: float = 0.0
    fills_gap: bool = False
    pattern_signature: Optional[str] = None

    @classmethod
    def wrap(cls, item: "Candidate | Action") -> "Candidate":
        if isinstance(item, Candidate):
            return item
        return cls(action=item)

    @property
    def is_pattern_learned(self) -> bool:
        return self.source == StepSource.PATTERN_LEARNED


@dataclass(frozen=True)
class Goal:
    """Coverage goal for a planning invocation."""
    articles_target: int
    hubs_target: Optional[int] = None
    max_requests: Optional[int] = None


@dataclass(frozen=True)
class CrawlState:
    """Observed (or projected) progress of a crawl."""
    hubs_discovered: int = 0
    articles_collected: float = 0.0
    requests_made: int = 0
    momentum: float = 0.0
    explored_targets: FrozenSet[str] = frozenset()

    def meets(self, goal: Goal) -> bool:
        if self.articles_collected >= goal.articles_target:
            return True
        return goal.hubs_target is not None and self.hubs_discovered >= goal.hubs_target


@dataclass(frozen=True)
class PlanStep:
    """A scheduled action with its predicted payoff and ranking."""
    action: Action
    expected_value: float
    priority: float
    source: StepSource = StepSource.SEARCH
    cost: float = 1.0
    probability: float = 1.0
    adjustment_reason: Optional[str] = None

    def adjusted(self, delta: float, reason: str) -> "PlanStep":
        return replace(self, priority=self.priority + delta, adjustment_reason=reason)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": self.action.type.value,
            "target": self.action.target,
            "expected_value": self.expected_value,
            "priority": self.priority,
            "source": self.source.value,
            "cost": self.cost,
            "probability": self.probability,
        }


@dataclass(frozen=True)
class Plan:
    """Ordered sequence of plan steps for one domain and goal."""
    steps: Tuple[PlanStep, ...]
    goal: Goal
    domain: str
    total_value: float = 0.0
    total_cost: float = 0.0
    probability: float = 1.0
    lookahead: int = 0
    branching_factor: int = 0
    nodes_explored: int = 0

    @classmethod
    def empty(cls, goal: Goal, domain: str, **kwargs: Any) -> "Plan":
        return cls(steps=(), goal=goal, domain=domain, **kwargs)

    @property
    def is_empty(self) -> bool:
        return not self.steps

    def __len__(self) -> int:
        return len(self.steps)

    def splice(self, position: int, new_steps: Iterable[PlanStep]) -> "Plan":
        """Keep steps before ``position`` and replace the tail with ``new_steps``."""
        steps = self.steps[:position] + tuple(new_steps)
        return replace(self, steps=steps, total_value=sum(s.expected_value for s in steps),
                       total_cost=sum(s.cost for s in steps))

    def insert_after(self, position: int, new_steps: Iterable[PlanStep]) -> "Plan":
        """Insert ``new_steps`` so the first lands at index ``position``."""
        inserted = tuple(new_steps)
        steps = self.steps[:position] + inserted + self.steps[position:]
        return replace(self, steps=steps,
                       total_value=self.total_value + sum(s.expected_value for s in inserted),
                       total_cost=self.total_cost + sum(s.cost for s in inserted))

    def replace_step(self, index: int, step: PlanStep) -> "Plan":
        steps = self.steps[:index] + (step,) + self.steps[index + 1:]
        return replace(self, steps=steps)

    def targets(self) -> List[str]:
        return [s.action.target for s in self.steps]


@dataclass(frozen=True)
class PlanningContext:
    """Planner inputs beyond state and goal."""
    domain: str
    candidates: Tuple[Candidate, ...] = ()
    section_hints: Tuple[str, ...] = ()

    @classmethod
    def build(cls, domain: str, candidates: Iterable["Candidate | Action"] = (),
              section_hints: Iterable[str] = ()) -> "PlanningContext":
        return cls(domain=domain,
                   candidates=tuple(Candidate.wrap(c) for c in candidates),
                   section_hints=tuple(section_hints))


@dataclass(frozen=True)
class FetchResult:
    """Outcome reported by the fetch collaborator for one action."""
    actual_value: float = 0.0
    duration_ms: Optional[float] = None
    error: Optional[str] = None
    hubs_found: int = 0

    @property
    def failed(self) -> bool:
        return self.error is not None

    @classmethod
    def failure(cls, error: str, duration_ms: Optional[float] = None) -> "FetchResult":
        return cls(actual_value=0.0, duration_ms=duration_ms, error=error)


@dataclass(frozen=True)
class DomainProfile:
    """Structural summary of a domain derived from crawl history."""
    page_count: int = 0
    hub_type_count: int = 1
    avg_links_per_page: float = 50.0
    complexity: Complexity = Complexity.SIMPLE
    hub_categories: Tuple[str, ...] = ()
    is_default: bool = True


@dataclass(frozen=True)
class Pattern:
    """Learned success statistics for an action-type signature."""
    domain: str
    signature: str
    confidence: float = 0.0
    sample_size: int = 0
    success_count: int = 0
    failure_count: int = 0
    avg_value: float = 0.0
    shared: bool = False
    source_domain: Optional[str] = None

    @property
    def success_rate(self) -> float:
        if self.sample_size <= 0:
            return 0.0
        return self.success_count / self.sample_size

    @property
    def action_types(self) -> Tuple[ActionType, ...]:
        return parse_signature(self.signature)

    @property
    def repeated_type(self) -> Optional[ActionType]:
        """The single action type this pattern repeats, if it repeats one."""
        types = self.action_types
        if types and all(t == types[0] for t in types):
            return types[0]
        return None


@dataclass(frozen=True)
class StepResult:
    """One evaluated step of a plan execution."""
    step_idx: int
    actual_value: float
    expected_value: float
    timestamp: float
    action_type: ActionType
    ratio: float
    error: Optional[str] = None

    @property
    def failed(self) -> bool:
        return self.error is not None


@dataclass(frozen=True)
class CostObservation:
    """Predicted versus observed duration of one dispatched action."""
    action_type: ActionType
    expected_cost: Optional[float]
    actual_cost: float

    @property
    def error_ratio(self) -> Optional[float]:
        if not self.expected_cost:
            return None
        return abs(self.actual_cost - self.expected_cost) / self.expected_cost
