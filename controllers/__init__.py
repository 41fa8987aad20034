"""
Controllers Module for the crawl planner

This package contains the controller that drives generated plans for crawl
jobs and feeds their outcomes back into pattern learning.
"""

from controllers.plan_execution_controller import (
    PlanExecutionController, PlanExecution, ExecutionStatus, PerformanceClass,
    StepEvaluation, ExecutionSummary, Fetcher, CancellationToken,
    PlanningError, NoActionableCandidatesError, UnknownJobError, DuplicateJobError
)

# Export modules
__all__ = [
    'PlanExecutionController',
    'PlanExecution',
    'ExecutionStatus',
    'PerformanceClass',
    'StepEvaluation',
    'ExecutionSummary',
    'Fetcher',
    'CancellationToken',
    'PlanningError',
    'NoActionableCandidatesError',
    'UnknownJobError',
    'DuplicateJobError'
]
