"""
Hierarchical Planner

Bounded-lookahead branch-and-bound search over candidate crawl actions.

The search tree lives in an arena: each node stores the index of its parent
and of the candidate it schedules, so a path is recovered by walking parent
indices and the whole tree is dropped with the list once planning ends.
Planning is synchronous and deterministic for fixed inputs; the node budget
bounds its running time.
"""

import threading
from dataclasses import dataclass, replace
from typing import Any, Dict, List, Optional, Sequence, Set, Tuple

from config import PlannerConfig, load_planner_config
from core.cost_estimator import CostEstimate, CostEstimator
from intelligence.domain_profiler import DomainProfiler
from intelligence.pattern_store import PatternStore
from intelligence.priority_scorer import PriorityScorer
from models.plan import (
    Action, ActionType, Candidate, CrawlState, DomainProfile, Goal, Plan,
    PlanningContext, PlanStep, StepSource
)
from utils.logging import get_logger

logger = get_logger(__name__)

ROOT = -1


def lookahead_for(goal: Goal) -> int:
    """Search depth grows with the size of the goal."""
    if goal.articles_target < 1000:
        return 3
    if goal.articles_target < 10000:
        return 5
    return 7


def branching_for(profile: DomainProfile) -> int:
    """Search width grows with the number of hub types on the domain."""
    if profile.hub_type_count < 5:
        return 5
    if profile.hub_type_count < 15:
        return 10
    return 15


@dataclass(frozen=True)
class ScoredCandidate:
    index: int
    candidate: Candidate
    priority: float
    value: float
    requests: int

    @property
    def is_pattern(self) -> bool:
        return self.candidate.is_pattern_learned


@dataclass
class SearchNode:
    parent: int
    scored_index: int
    depth: int
    value: float
    requests: int
    hubs: int
    pattern_steps: int


@dataclass(frozen=True)
class SimulatedStep:
    """Predicted effect of one action in a simulated sequence."""
    step: int
    action: Action
    predicted_state: CrawlState
    expected_value: float
    cost: float
    confidence: float


@dataclass(frozen=True)
class SequenceSimulation:
    steps: Tuple[SimulatedStep, ...]
    final_state: CrawlState
    total_value: float
    total_cost: float
    feasible: bool


class HierarchicalPlanner:
    """Turns crawl state, a goal and candidate actions into a Plan."""

    def __init__(self, profiler: DomainProfiler, pattern_store: Optional[PatternStore] = None,
                 cost_estimator: Optional[CostEstimator] = None,
                 scorer: Optional[PriorityScorer] = None,
                 config: Optional[PlannerConfig] = None):
        self.config = config or load_planner_config()
        self.profiler = profiler
        self.pattern_store = pattern_store
        self.cost_estimator = cost_estimator
        self.scorer = scorer or PriorityScorer(
            self.config.scorer, cost_aware=self.config.features.cost_aware_priority
        )

        self._stats_lock = threading.Lock()
        self._stats = {'plans_generated': 0, 'empty_plans': 0, 'nodes_explored': 0, 'simulations': 0}

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def generate_plan(self, current_state: CrawlState, goal: Goal, context: PlanningContext) -> Plan:
        domain = context.domain
        profile = self.profiler.profile(domain)

        lookahead = lookahead_for(goal)
        if self.config.features.adaptive_branching:
            branching = branching_for(profile)
        else:
            branching = self.config.search.default_branching

        candidates = self._gather_candidates(current_state, context, profile)
        if not candidates:
            logger.info("No candidates to plan with", domain=domain)
            self._count(plans_generated=1, empty_plans=1)
            return Plan.empty(goal, domain, lookahead=lookahead, branching_factor=branching)

        scored = self._score(candidates, current_state)
        path, nodes_explored = self._search(scored, current_state, goal, lookahead, branching)

        plan = self._build_plan(path, goal, domain, lookahead, branching, nodes_explored)
        logger.info(
            "Generated plan",
            domain=domain,
            steps=len(plan),
            total_value=plan.total_value,
            lookahead=lookahead,
            branching=branching,
            candidates=len(scored),
            nodes_explored=nodes_explored,
        )
        self._count(plans_generated=1, empty_plans=1 if plan.is_empty else 0, nodes_explored=nodes_explored)

        if self.pattern_store is not None and not plan.is_empty:
            self.pattern_store.record_plan(plan)
            self.pattern_store.record_plan_characteristics(domain, len(plan), branching)
        return plan

    def simulate_sequence(self, actions: Sequence["Action | Candidate"],
                          initial_state: Optional[CrawlState] = None) -> SequenceSimulation:
        """
        Preview the outcome of running ``actions`` in order.

        Each step predicts ``estimated_articles × (1 + momentum)`` articles for
        ``estimated_requests`` requests and carries momentum forward as
        ``0.9 × momentum + 0.1 × signal``. The simulation stops after the first
        step whose confidence falls below the configured minimum. A sequence is
        feasible when its total value exceeds ``feasibility_ratio`` times its
        total cost.

        Args:
            actions: Actions or candidates; a candidate's prior is its confidence
            initial_state: Starting state, empty when omitted

        Returns:
            SequenceSimulation with per-step predictions and totals
        """
        settings = self.config.search
        state = initial_state or CrawlState()
        predictions = []
        total_value = 0.0
        total_cost = 0.0

        for number, item in enumerate(actions, start=1):
            if isinstance(item, Candidate):
                action, confidence = item.action, item.prior
            else:
                action, confidence = item, settings.default_confidence

            value, cost, state = self._predict_outcome(action, state)
            predictions.append(SimulatedStep(
                step=number,
                action=action,
                predicted_state=state,
                expected_value=value,
                cost=cost,
                confidence=confidence,
            ))
            total_value += value
            total_cost += cost

            if confidence < settings.min_simulation_confidence:
                logger.debug("Low confidence, stopping simulation", step=number, confidence=confidence)
                break

        self._count(simulations=1)
        return SequenceSimulation(
            steps=tuple(predictions),
            final_state=state,
            total_value=total_value,
            total_cost=total_cost,
            feasible=total_value > total_cost * settings.feasibility_ratio,
        )

    def get_stats(self) -> Dict[str, Any]:
        """Planning counters and the current search limits."""
        with self._stats_lock:
            stats: Dict[str, Any] = dict(self._stats)
        stats.update(
            max_lookahead=lookahead_for(Goal(articles_target=10000)),
            max_branching=(branching_for(DomainProfile(hub_type_count=15))
                           if self.config.features.adaptive_branching
                           else self.config.search.default_branching),
            max_nodes=self.config.search.max_nodes,
        )
        return stats

    def _count(self, **increments: int) -> None:
        with self._stats_lock:
            for key, amount in increments.items():
                self._stats[key] += amount

    @staticmethod
    def _predict_outcome(action: Action, state: CrawlState) -> Tuple[float, float, CrawlState]:
        base_value = action.estimated_articles
        cost = float(max(1, action.estimated_requests))
        value = max(0.0, base_value * (1.0 + state.momentum))
        signal = value / base_value - 1.0 if base_value > 0 else 0.0

        next_state = replace(
            state,
            hubs_discovered=state.hubs_discovered + (1 if action.type == ActionType.EXPLORE_HUB else 0),
            articles_collected=state.articles_collected + value,
            requests_made=state.requests_made + int(cost),
            momentum=0.9 * state.momentum + 0.1 * signal,
            explored_targets=state.explored_targets | {action.target},
        )
        return value, cost, next_state

    # ------------------------------------------------------------------
    # Candidates
    # ------------------------------------------------------------------

    def _gather_candidates(self, state: CrawlState, context: PlanningContext,
                           profile: DomainProfile) -> List[Candidate]:
        explored = state.explored_targets
        seen: Set[str] = set()
        candidates = []
        for candidate in context.candidates:
            target = candidate.action.target
            if target in explored or target in seen:
                continue
            seen.add(target)
            candidates.append(candidate)

        if self.config.features.pattern_discovery and self.pattern_store is not None:
            for candidate in self._pattern_candidates(context, profile, explored | seen):
                seen.add(candidate.action.target)
                candidates.append(candidate)
        return candidates

    def _pattern_candidates(self, context: PlanningContext, profile: DomainProfile,
                            taken: Set[str]) -> List[Candidate]:
        """Extra candidates for unexplored sections, driven by repeated-type patterns."""
        patterns = self.pattern_store.query_good_patterns(context.domain)
        sections = sorted(set(profile.hub_categories) | set(context.section_hints))
        if not patterns or not sections:
            return []

        taken = set(taken)
        synthesized = []
        for pattern in patterns:
            action_type = pattern.repeated_type
            if action_type is None:
                continue
            for section in sections:
                target = section_target(context.domain, section)
                if target in taken:
                    continue
                taken.add(target)
                synthesized.append(Candidate(
                    action=Action(
                        type=action_type,
                        target=target,
                        estimated_articles=pattern.avg_value,
                        estimated_requests=1,
                    ),
                    source=StepSource.PATTERN_LEARNED,
                    prior=pattern.confidence,
                    discovery_method='pattern-match',
                    pattern_signature=pattern.signature,
                ))

        if synthesized:
            logger.debug("Synthesized pattern candidates", domain=context.domain, count=len(synthesized))
        return synthesized

    def _score(self, candidates: Sequence[Candidate], state: CrawlState) -> List[ScoredCandidate]:
        use_costs = self.config.features.cost_aware_priority and self.cost_estimator is not None
        estimates: Dict[ActionType, Optional[CostEstimate]] = {}
        multiplier = max(0.0, 1.0 + state.momentum)

        scored = []
        for index, candidate in enumerate(candidates):
            action = candidate.action
            estimate = None
            if use_costs:
                if action.type not in estimates:
                    estimates[action.type] = self.cost_estimator.estimate_cost(action.type)
                estimate = estimates[action.type]
            scored.append(ScoredCandidate(
                index=index,
                candidate=candidate,
                priority=self.scorer.score(candidate, cost_estimate=estimate),
                value=max(0.0, action.estimated_articles * multiplier),
                requests=max(1, action.estimated_requests),
            ))
        return scored

    # ------------------------------------------------------------------
    # Search
    # ------------------------------------------------------------------

    def _search(self, scored: List[ScoredCandidate], state: CrawlState, goal: Goal,
                lookahead: int, branching: int) -> Tuple[List[ScoredCandidate], int]:
        max_nodes = self.config.search.max_nodes
        order = sorted(scored, key=lambda s: (-s.priority, not s.is_pattern, s.index))

        arena: List[SearchNode] = []
        best_node = ROOT
        best_key: Optional[tuple] = None

        def path_indices(node_idx: int) -> List[int]:
            indices = []
            while node_idx != ROOT:
                node = arena[node_idx]
                indices.append(node.scored_index)
                node_idx = node.parent
            indices.reverse()
            return indices

        def leaf_key(node_idx: int) -> tuple:
            if node_idx == ROOT:
                return (0.0, 0, 0, ())
            node = arena[node_idx]
            priorities = tuple(scored[i].priority for i in path_indices(node_idx))
            return (node.value, -node.depth, node.pattern_steps, priorities)

        def goal_met(node: Optional[SearchNode]) -> bool:
            value = node.value if node else 0.0
            hubs = node.hubs if node else 0
            projected = CrawlState(
                hubs_discovered=state.hubs_discovered + hubs,
                articles_collected=state.articles_collected + value,
            )
            return projected.meets(goal)

        def expandable(node_idx: int) -> List[ScoredCandidate]:
            node = arena[node_idx] if node_idx != ROOT else None
            used = set(path_indices(node_idx))
            spent = node.requests if node else 0
            children = []
            for s in order:
                if s.index in used:
                    continue
                if goal.max_requests is not None and spent + s.requests > goal.max_requests:
                    continue
                children.append(s)
                if len(children) >= branching:
                    break
            return children

        def optimistic_bound(node_idx: int, used: Set[int], remaining: int) -> float:
            base = arena[node_idx].value if node_idx != ROOT else 0.0
            if remaining <= 0:
                return base
            extra = [s.value for s in order if s.index not in used]
            extra.sort(reverse=True)
            return base + sum(extra[:remaining])

        def consider_leaf(node_idx: int) -> None:
            nonlocal best_key, best_node
            if node_idx == ROOT:
                return
            key = leaf_key(node_idx)
            if best_key is None or key > best_key:
                best_key, best_node = key, node_idx

        # Explicit DFS stack of arena indices; ROOT is expanded first
        stack = [ROOT]
        while stack:
            node_idx = stack.pop()
            node = arena[node_idx] if node_idx != ROOT else None
            depth = node.depth if node else 0

            children = [] if goal_met(node) or depth >= lookahead else expandable(node_idx)
            if not children or len(arena) >= max_nodes:
                consider_leaf(node_idx)
                continue

            if best_key is not None:
                used = set(path_indices(node_idx))
                bound = optimistic_bound(node_idx, used, lookahead - depth)
                if bound < best_key[0] or (bound == best_key[0] and depth + 1 > -best_key[1]):
                    continue

            children = children[:max_nodes - len(arena)]
            child_ids = []
            for s in children:
                arena.append(SearchNode(
                    parent=node_idx,
                    scored_index=s.index,
                    depth=depth + 1,
                    value=(node.value if node else 0.0) + s.value,
                    requests=(node.requests if node else 0) + s.requests,
                    hubs=(node.hubs if node else 0) + (1 if s.candidate.action.type == ActionType.EXPLORE_HUB else 0),
                    pattern_steps=(node.pattern_steps if node else 0) + (1 if s.is_pattern else 0),
                ))
                child_ids.append(len(arena) - 1)

            # Highest priority child is explored first
            stack.extend(reversed(child_ids))

        if best_node == ROOT:
            return [], len(arena)
        return [scored[i] for i in path_indices(best_node)], len(arena)

    def _build_plan(self, path: List[ScoredCandidate], goal: Goal, domain: str,
                    lookahead: int, branching: int, nodes_explored: int) -> Plan:
        min_probability = self.config.search.min_probability
        steps = []
        probability = 1.0
        for s in path:
            step_probability = min(1.0, max(min_probability, s.candidate.prior))
            probability *= step_probability
            steps.append(PlanStep(
                action=s.candidate.action,
                expected_value=s.value,
                priority=s.priority,
                source=s.candidate.source,
                cost=float(s.requests),
                probability=step_probability,
            ))

        return Plan(
            steps=tuple(steps),
            goal=goal,
            domain=domain,
            total_value=sum(step.expected_value for step in steps),
            total_cost=sum(step.cost for step in steps),
            probability=probability if steps else 1.0,
            lookahead=lookahead,
            branching_factor=branching,
            nodes_explored=nodes_explored,
        )


def section_target(domain: str, section: str) -> str:
    """URL for a hub section given as a name, a path or a full URL."""
    if section.startswith(('http://', 'https://')):
        return section
    path = section.strip('/')
    return f"https://{domain}/{path}/" if path else f"https://{domain}/"
