"""
Models package for the crawl planner.
"""

from models.planning_models import (
    Base, PlanningPattern, DomainHeuristic, HierarchicalPlanRecord, CrawledPage
)
from models.plan import (
    ActionType, StepSource, Complexity, Action, Candidate, Goal, CrawlState,
    PlanStep, Plan, PlanningContext, FetchResult, DomainProfile, Pattern,
    StepResult, CostObservation, make_signature, parse_signature
)

__all__ = [
    'Base',
    'PlanningPattern',
    'DomainHeuristic',
    'HierarchicalPlanRecord',
    'CrawledPage',
    'ActionType',
    'StepSource',
    'Complexity',
    'Action',
    'Candidate',
    'Goal',
    'CrawlState',
    'PlanStep',
    'Plan',
    'PlanningContext',
    'FetchResult',
    'DomainProfile',
    'Pattern',
    'StepResult',
    'CostObservation',
    'make_signature',
    'parse_signature'
]
