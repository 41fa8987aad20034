"""
Plan Execution Controller

Drives a Plan for a crawl job one step at a time. After each step it compares
realized against predicted value, adjusts the priority of similar pending
steps, synthesizes extra steps after excellent results, backtracks after very
poor ones and decides whether the remainder of the plan should be re-planned.
When a job finishes or is stopped its step results are reduced into pattern
outcomes for the Pattern Store.

Each PlanExecution is owned by exactly one job; the only state shared
between jobs is the Pattern Store.
"""

import asyncio
import threading
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Set, Tuple
from urllib.parse import parse_qsl, urlencode, urlparse, urlunparse

from config import PlannerConfig, load_planner_config
from core.cost_estimator import CostEstimator
from core.plan_events import PlanEventEmitter, PlanEventType
from intelligence.hierarchical_planner import HierarchicalPlanner
from intelligence.pattern_store import PatternStore
from models.plan import (
    Action, CostObservation, CrawlState, FetchResult, Goal, Plan, PlanningContext,
    PlanStep, StepResult, StepSource, make_signature
)
from utils.logging import bind_job_id, get_logger

logger = get_logger(__name__)

MIN_MOMENTUM = -0.5
MAX_MOMENTUM = 1.0


class PlanningError(Exception):
    """Base class for planner and controller errors."""
    pass


class NoActionableCandidatesError(PlanningError):
    """Raised when a job cannot be given any plan at all."""

    def __init__(self, message: str = "no actionable candidates"):
        super().__init__(message)


class UnknownJobError(PlanningError):
    """Raised for a job id with no live execution."""
    pass


class DuplicateJobError(PlanningError):
    """Raised when a job id already has a live execution."""
    pass


class ExecutionStatus(Enum):
    PLANNING = "planning"
    EXECUTING = "executing"
    STEP_EVALUATING = "step-evaluating"
    ADJUSTING = "adjusting"
    REPLAN_CHECK = "replan-check"
    COMPLETED = "completed"
    ABORTED = "aborted"

    @property
    def is_terminal(self) -> bool:
        return self in (ExecutionStatus.COMPLETED, ExecutionStatus.ABORTED)


class PerformanceClass(Enum):
    EXCELLENT = "excellent"
    GOOD = "good"
    ACCEPTABLE = "acceptable"
    POOR = "poor"


class Fetcher(ABC):
    """Fetch collaborator that performs the network work for an action."""

    @abstractmethod
    async def execute(self, action: Action) -> FetchResult:
        pass


class CancellationToken:
    """Stop signal checked before each dispatch."""

    def __init__(self):
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def is_cancelled(self) -> bool:
        return self._event.is_set()


@dataclass
class PlanExecution:
    """Mutable state of one running job."""
    job_id: str
    plan: Plan
    goal: Goal
    context: PlanningContext
    current_step: int = 0
    step_results: List[StepResult] = field(default_factory=list)
    cost_observations: List[CostObservation] = field(default_factory=list)
    backtracks: int = 0
    replan_count: int = 0
    last_replan_at: Optional[float] = None
    requests_processed: int = 0
    suppressed_replans: int = 0
    articles_collected: float = 0.0
    hubs_discovered: int = 0
    explored_targets: Set[str] = field(default_factory=set)
    status: ExecutionStatus = ExecutionStatus.PLANNING
    started_at: float = field(default_factory=time.time)
    cancellation: CancellationToken = field(default_factory=CancellationToken)
    running: bool = False
    finalized: bool = False
    # Serializes step evaluation and finalization of this job across threads
    lock: Any = field(default_factory=threading.RLock, repr=False, compare=False)

    @property
    def domain(self) -> str:
        return self.plan.domain

    @property
    def is_finished(self) -> bool:
        return self.status.is_terminal

    def observed_state(self, momentum: float = 0.0) -> CrawlState:
        return CrawlState(
            hubs_discovered=self.hubs_discovered,
            articles_collected=self.articles_collected,
            requests_made=self.requests_processed,
            momentum=momentum,
            explored_targets=frozenset(self.explored_targets),
        )

    def goal_met(self) -> bool:
        return self.observed_state().meets(self.goal)

    def plan_exhausted(self) -> bool:
        return self.current_step >= len(self.plan)


@dataclass(frozen=True)
class StepEvaluation:
    """What the controller concluded from one step result."""
    step_idx: int
    ratio: float
    performance: PerformanceClass
    actual_value: float
    expected_value: float
    adjusted_steps: int = 0
    synthesized_steps: int = 0
    backtracked: bool = False
    replanned: bool = False
    replan_suppressed: bool = False
    replan_reasons: Tuple[str, ...] = ()
    next_step: int = 0
    # Set when this step finished a job that no loop is driving
    summary: Optional["ExecutionSummary"] = None


@dataclass(frozen=True)
class PatternOutcome:
    signature: str
    success: bool
    value: float
    occurrences: int


@dataclass(frozen=True)
class ExecutionSummary:
    job_id: str
    domain: str
    status: ExecutionStatus
    steps_executed: int
    articles_collected: float
    hubs_discovered: int
    backtracks: int
    replan_count: int
    suppressed_replans: int
    outcomes_recorded: int = 0
    patterns_transferred: int = 0


def classify_ratio(ratio: float, excellent: float = 1.5, good: float = 0.8,
                   acceptable: float = 0.5) -> PerformanceClass:
    if ratio > excellent:
        return PerformanceClass.EXCELLENT
    if ratio >= good:
        return PerformanceClass.GOOD
    if ratio >= acceptable:
        return PerformanceClass.ACCEPTABLE
    return PerformanceClass.POOR


def reduce_step_results(results: List[StepResult], success_ratio: float = 0.7) -> List[PatternOutcome]:
    """
    Reduce executed steps to one outcome per action-type signature.

    Signatures come from sliding windows of two and three consecutive steps;
    a single executed step yields its own one-type signature. A signature
    succeeds when most of its occurrences had every step at or above
    ``success_ratio`` without errors. Its value is the mean realized value of
    the steps covered.
    """
    if not results:
        return []

    if len(results) == 1:
        windows = [results]
    else:
        windows = [
            results[start:start + size]
            for size in (2, 3)
            for start in range(len(results) - size + 1)
        ]

    grouped: Dict[str, List[List[StepResult]]] = {}
    for window in windows:
        signature = make_signature(r.action_type for r in window)
        grouped.setdefault(signature, []).append(window)

    outcomes = []
    for signature, occurrences in grouped.items():
        successes = sum(
            1 for window in occurrences
            if all(r.ratio >= success_ratio and not r.failed for r in window)
        )
        values = [r.actual_value for window in occurrences for r in window]
        outcomes.append(PatternOutcome(
            signature=signature,
            success=successes * 2 > len(occurrences),
            value=sum(values) / len(values),
            occurrences=len(occurrences),
        ))
    return outcomes


def pagination_variants(target: str, count: int) -> List[str]:
    """Next ``count`` page URLs after ``target`` using a ``page`` query parameter."""
    parsed = urlparse(target)
    params = parse_qsl(parsed.query, keep_blank_values=True)
    current = 1
    for key, value in params:
        if key == 'page' and value.isdigit():
            current = int(value)
    others = [(k, v) for k, v in params if k != 'page']

    variants = []
    for page in range(current + 1, current + 1 + count):
        query = urlencode(others + [('page', str(page))])
        variants.append(urlunparse(parsed._replace(query=query)))
    return variants


class PlanExecutionController:
    """Per-job state machine for plan execution, adjustment and re-planning."""

    def __init__(self, planner: HierarchicalPlanner, pattern_store: Optional[PatternStore] = None,
                 fetcher: Optional[Fetcher] = None, cost_estimator: Optional[CostEstimator] = None,
                 events: Optional[PlanEventEmitter] = None, config: Optional[PlannerConfig] = None,
                 clock: Callable[[], float] = time.time):
        self.config = config or load_planner_config()
        self.planner = planner
        self.pattern_store = pattern_store
        self.fetcher = fetcher
        self.cost_estimator = cost_estimator
        self.events = events or PlanEventEmitter()
        self.clock = clock

        self._executions: Dict[str, PlanExecution] = {}
        self._lock = threading.Lock()

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def plan_job(self, job_id: str, goal: Goal, context: PlanningContext,
                 current_state: Optional[CrawlState] = None) -> PlanExecution:
        """Generate the first plan for a job and start its execution."""
        with self._lock:
            if job_id in self._executions:
                raise DuplicateJobError(f"Job {job_id} already has a running execution")

        plan = self.planner.generate_plan(current_state or CrawlState(), goal, context)
        if plan.is_empty:
            logger.warning("Planner produced no steps", job_id=job_id, domain=context.domain)
            raise NoActionableCandidatesError()
        return self.start_execution(plan, job_id, goal=goal, context=context, current_state=current_state)

    def start_execution(self, plan: Plan, job_id: str, goal: Optional[Goal] = None,
                        context: Optional[PlanningContext] = None,
                        current_state: Optional[CrawlState] = None) -> PlanExecution:
        execution = PlanExecution(
            job_id=job_id,
            plan=plan,
            goal=goal or plan.goal,
            context=context or PlanningContext(domain=plan.domain),
            started_at=self.clock(),
        )
        if current_state is not None:
            execution.articles_collected = current_state.articles_collected
            execution.hubs_discovered = current_state.hubs_discovered
            execution.explored_targets = set(current_state.explored_targets)

        with self._lock:
            if job_id in self._executions:
                raise DuplicateJobError(f"Job {job_id} already has a running execution")
            self._executions[job_id] = execution
        execution.status = ExecutionStatus.EXECUTING

        logger.info("Plan execution started", job_id=job_id, domain=plan.domain, steps=len(plan))
        return execution

    def get_execution(self, job_id: str) -> PlanExecution:
        with self._lock:
            execution = self._executions.get(job_id)
        if execution is None:
            raise UnknownJobError(f"No running execution for job {job_id}")
        return execution

    def active_jobs(self) -> List[str]:
        with self._lock:
            return list(self._executions)

    def stop(self, job_id: str) -> Optional[ExecutionSummary]:
        """
        Signal a job to stop.

        A job driven by ``run`` aborts before its next dispatch. A job with no
        running loop is aborted here and its summary returned.
        """
        execution = self.get_execution(job_id)
        execution.cancellation.cancel()
        logger.info("Stop requested", job_id=job_id, running=execution.running)
        if not execution.running:
            return self._finalize(execution, ExecutionStatus.ABORTED)
        return None

    # ------------------------------------------------------------------
    # Async driving loop
    # ------------------------------------------------------------------

    async def execute_job(self, job_id: str, goal: Goal, context: PlanningContext,
                          current_state: Optional[CrawlState] = None) -> ExecutionSummary:
        """Plan a job and drive it to completion."""
        await asyncio.to_thread(self.plan_job, job_id, goal, context, current_state)
        return await self.run(job_id)

    async def run(self, job_id: str) -> ExecutionSummary:
        execution = self.get_execution(job_id)
        if self.fetcher is None:
            raise PlanningError("A fetcher is required to run plan executions")
        if execution.running:
            raise PlanningError(f"Job {job_id} is already being driven")

        timeout = self.config.replan.fetch_timeout_seconds
        execution.running = True
        with bind_job_id(job_id):
            try:
                while True:
                    if execution.cancellation.is_cancelled:
                        return await asyncio.to_thread(self._finalize, execution, ExecutionStatus.ABORTED)
                    if execution.goal_met() or execution.plan_exhausted():
                        return await asyncio.to_thread(self._finalize, execution, ExecutionStatus.COMPLETED)

                    step_idx = execution.current_step
                    step = execution.plan.steps[step_idx]
                    result = await self._dispatch(step, timeout)
                    # Step evaluation may re-plan, which queries and writes the store
                    await asyncio.to_thread(self.record_step, job_id, step_idx, result)
            except asyncio.CancelledError:
                logger.warning("Plan execution cancelled", job_id=job_id)
                self._finalize(execution, ExecutionStatus.ABORTED, missing_ok=True)
                raise
            finally:
                execution.running = False

    async def _dispatch(self, step: PlanStep, timeout: float) -> FetchResult:
        started = time.monotonic()
        try:
            return await asyncio.wait_for(self.fetcher.execute(step.action), timeout=timeout)
        except asyncio.TimeoutError:
            logger.warning("Fetch timed out", target=step.action.target, timeout=timeout)
            return FetchResult.failure("timeout", duration_ms=(time.monotonic() - started) * 1000)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.warning("Fetch failed", target=step.action.target, error=str(e))
            return FetchResult.failure(str(e), duration_ms=(time.monotonic() - started) * 1000)

    # ------------------------------------------------------------------
    # Step evaluation
    # ------------------------------------------------------------------

    def record_step(self, job_id: str, step_idx: int, result: FetchResult) -> StepEvaluation:
        """
        Evaluate one executed step and apply adjustments, backtracking and re-planning.

        A job that no ``run`` loop is driving is finalized as completed by the
        step that meets its goal or exhausts its plan; the summary is returned
        on the evaluation.
        """
        execution = self.get_execution(job_id)
        with execution.lock:
            if execution.finalized:
                raise UnknownJobError(f"No running execution for job {job_id}")
            evaluation = self._evaluate_step(execution, step_idx, result)

            if not execution.running and (execution.goal_met() or execution.plan_exhausted()):
                summary = self._finalize(execution, ExecutionStatus.COMPLETED, missing_ok=True)
                evaluation = replace(evaluation, summary=summary)
        return evaluation

    def _evaluate_step(self, execution: PlanExecution, step_idx: int, result: FetchResult) -> StepEvaluation:
        job_id = execution.job_id
        if not 0 <= step_idx < len(execution.plan):
            raise IndexError(f"Step {step_idx} is outside the plan for job {job_id}")

        thresholds = self.config.replan
        features = self.config.features
        step = execution.plan.steps[step_idx]

        execution.status = ExecutionStatus.STEP_EVALUATING
        actual = 0.0 if result.failed else max(0.0, result.actual_value)
        expected = step.expected_value
        ratio = 1.0 if expected <= 0 else actual / expected
        performance = classify_ratio(ratio, thresholds.excellent_ratio, thresholds.good_ratio,
                                     thresholds.acceptable_ratio)

        execution.step_results.append(StepResult(
            step_idx=step_idx,
            actual_value=actual,
            expected_value=expected,
            timestamp=self.clock(),
            action_type=step.action.type,
            ratio=ratio,
            error=result.error,
        ))
        execution.requests_processed += 1
        execution.articles_collected += actual
        execution.hubs_discovered += result.hubs_found
        execution.explored_targets.add(step.action.target)
        execution.current_step = step_idx + 1
        self._record_cost_observation(execution, step, result)

        adjusted = synthesized = 0
        backtracked = False
        if features.realtime_adjustment and performance in (PerformanceClass.EXCELLENT, PerformanceClass.POOR):
            execution.status = ExecutionStatus.ADJUSTING
            if performance == PerformanceClass.EXCELLENT:
                adjusted = self._adjust_similar_steps(execution, step_idx, thresholds.boost, "excellent-performance")
                synthesized = self._synthesize_steps(execution, step_idx)
            else:
                adjusted = self._adjust_similar_steps(execution, step_idx, thresholds.penalty, "poor-performance")

        if performance == PerformanceClass.POOR and actual < expected * thresholds.backtrack_ratio:
            backtracked = self._backtrack(execution, step_idx)

        replanned = suppressed = False
        reasons: Tuple[str, ...] = ()
        if features.dynamic_replanning:
            execution.status = ExecutionStatus.REPLAN_CHECK
            replanned, suppressed, reasons = self._check_replan(execution)

        execution.status = ExecutionStatus.EXECUTING
        logger.debug(
            "Step evaluated",
            job_id=job_id,
            step_idx=step_idx,
            ratio=round(ratio, 3),
            performance=performance.value,
            next_step=execution.current_step,
        )
        return StepEvaluation(
            step_idx=step_idx,
            ratio=ratio,
            performance=performance,
            actual_value=actual,
            expected_value=expected,
            adjusted_steps=adjusted,
            synthesized_steps=synthesized,
            backtracked=backtracked,
            replanned=replanned,
            replan_suppressed=suppressed,
            replan_reasons=reasons,
            next_step=execution.current_step,
        )

    def _adjust_similar_steps(self, execution: PlanExecution, step_idx: int, delta: float, reason: str) -> int:
        reference = execution.plan.steps[step_idx].action
        plan = execution.plan
        adjusted = 0
        for i in range(step_idx + 1, len(plan)):
            if plan.steps[i].action.is_similar(reference):
                plan = plan.replace_step(i, plan.steps[i].adjusted(delta, reason))
                adjusted += 1
        execution.plan = plan

        if adjusted:
            logger.info("Adjusted similar steps", job_id=execution.job_id, reason=reason,
                        count=adjusted, delta=delta, reference_step=step_idx)
            self.events.emit(PlanEventType.STEP_ADJUSTED, job_id=execution.job_id, domain=execution.domain,
                             reason=reason, count=adjusted, delta=delta, reference_step=step_idx)
        return adjusted

    def _synthesize_steps(self, execution: PlanExecution, step_idx: int) -> int:
        """Insert up to the configured number of similar steps right after ``step_idx``."""
        limit = self.config.replan.max_synthesized_steps
        if limit <= 0:
            return 0

        step = execution.plan.steps[step_idx]
        taken = set(execution.plan.targets()) | execution.explored_targets
        actions: List[Action] = []

        for candidate in execution.context.candidates:
            action = candidate.action
            if len(actions) >= limit:
                break
            if action.type == step.action.type and action.target not in taken:
                taken.add(action.target)
                actions.append(action)

        if len(actions) < limit:
            for target in pagination_variants(step.action.target, limit * 2):
                if len(actions) >= limit:
                    break
                if target not in taken:
                    taken.add(target)
                    actions.append(Action(
                        type=step.action.type,
                        target=target,
                        estimated_articles=step.action.estimated_articles,
                        estimated_requests=step.action.estimated_requests,
                    ))

        if not actions:
            return 0

        ratio = step.expected_value / step.action.estimated_articles if step.action.estimated_articles else 1.0
        new_steps = [
            PlanStep(
                action=action,
                expected_value=action.estimated_articles * ratio,
                priority=step.priority + self.config.replan.boost,
                source=StepSource.ADAPTIVE,
                cost=float(max(1, action.estimated_requests)),
                probability=step.probability,
                adjustment_reason="synthesized-after-excellent",
            )
            for action in actions
        ]
        execution.plan = execution.plan.insert_after(step_idx + 1, new_steps)
        logger.info("Synthesized similar steps", job_id=execution.job_id, count=len(new_steps),
                    targets=[a.target for a in actions])
        return len(new_steps)

    def _backtrack(self, execution: PlanExecution, step_idx: int) -> bool:
        thresholds = self.config.replan
        if execution.backtracks >= thresholds.max_backtracks:
            logger.warning("Backtrack cap reached", job_id=execution.job_id, backtracks=execution.backtracks)
            return False

        target = max(0, step_idx + 1 - thresholds.backtrack_steps)
        execution.current_step = target
        execution.backtracks += 1
        logger.info("Backtracking", job_id=execution.job_id, from_step=step_idx, to_step=target,
                    backtracks=execution.backtracks)
        self.events.emit(PlanEventType.BACKTRACK, job_id=execution.job_id, domain=execution.domain,
                         from_step=step_idx, to_step=target, backtracks=execution.backtracks)
        return True

    def _record_cost_observation(self, execution: PlanExecution, step: PlanStep, result: FetchResult) -> None:
        if result.duration_ms is None:
            return

        action_type = step.action.type
        expected_ms = None
        if self.cost_estimator is not None:
            estimate = self.cost_estimator.estimate_cost(action_type)
            expected_ms = estimate.estimated_ms if estimate is not None else None
            self.cost_estimator.observe(action_type, result.duration_ms)

        observation = CostObservation(action_type=action_type, expected_cost=expected_ms,
                                      actual_cost=result.duration_ms)
        execution.cost_observations.append(observation)

        error = observation.error_ratio
        if error is not None and error > self.config.replan.cost_error_warning:
            logger.warning("Cost estimate off", job_id=execution.job_id, action_type=action_type.value,
                           expected_ms=expected_ms, actual_ms=result.duration_ms, error_ratio=round(error, 3))

    # ------------------------------------------------------------------
    # Re-planning
    # ------------------------------------------------------------------

    def _rolling_ratio(self, execution: PlanExecution) -> Optional[float]:
        thresholds = self.config.replan
        window = execution.step_results[-thresholds.rolling_window:]
        if len(window) < thresholds.min_window_samples:
            return None
        return sum(r.ratio for r in window) / len(window)

    def _replan_reasons(self, execution: PlanExecution) -> List[str]:
        thresholds = self.config.replan
        reasons = []
        if thresholds.periodic_interval > 0 and execution.requests_processed % thresholds.periodic_interval == 0:
            reasons.append("periodic")
        average = self._rolling_ratio(execution)
        if average is not None and abs(average - 1.0) > thresholds.deviation:
            reasons.append("performance")
        if execution.backtracks > thresholds.backtrack_limit:
            reasons.append("thrashing")
        return reasons

    def _check_replan(self, execution: PlanExecution) -> Tuple[bool, bool, Tuple[str, ...]]:
        reasons = tuple(self._replan_reasons(execution))
        if not reasons:
            return False, False, ()

        now = self.clock()
        cooldown = self.config.replan.cooldown_seconds
        if execution.last_replan_at is not None and now - execution.last_replan_at < cooldown:
            execution.suppressed_replans += 1
            remaining = cooldown - (now - execution.last_replan_at)
            logger.info("Re-plan suppressed by cooldown", job_id=execution.job_id, reasons=list(reasons),
                        cooldown_remaining=round(remaining, 2))
            self.events.emit(PlanEventType.REPLAN_SUPPRESSED, job_id=execution.job_id, domain=execution.domain,
                             reasons=list(reasons), cooldown_remaining=remaining)
            return False, True, reasons

        return self._replan(execution, reasons, now), False, reasons

    def _replan(self, execution: PlanExecution, reasons: Tuple[str, ...], now: float) -> bool:
        average = self._rolling_ratio(execution)
        momentum = 0.0 if average is None else min(MAX_MOMENTUM, max(MIN_MOMENTUM, average - 1.0))
        state = execution.observed_state(momentum)

        try:
            new_plan = self.planner.generate_plan(state, execution.goal, execution.context)
        except Exception as e:
            logger.error("Re-planning failed, keeping current plan", job_id=execution.job_id, error=str(e))
            execution.last_replan_at = now
            return False

        if new_plan.is_empty:
            logger.info("Re-plan produced no steps, keeping current plan", job_id=execution.job_id,
                        reasons=list(reasons))
            execution.last_replan_at = now
            return False

        cursor = execution.current_step
        discarded = len(execution.plan) - cursor
        execution.plan = execution.plan.splice(cursor, new_plan.steps)
        execution.replan_count += 1
        execution.last_replan_at = now

        logger.info("Re-planned", job_id=execution.job_id, reasons=list(reasons), new_steps=len(new_plan),
                    discarded_steps=discarded, replan_count=execution.replan_count)
        self.events.emit(PlanEventType.REPLAN, job_id=execution.job_id, domain=execution.domain,
                         reasons=list(reasons), steps=len(new_plan), discarded_steps=discarded,
                         replan_count=execution.replan_count)
        return True

    # ------------------------------------------------------------------
    # Completion
    # ------------------------------------------------------------------

    def _finalize(self, execution: PlanExecution, status: ExecutionStatus,
                  missing_ok: bool = False) -> Optional[ExecutionSummary]:
        """
        Reduce step results into the Pattern Store and release the execution.

        Only the first caller finalizes. Later callers get None when
        ``missing_ok`` is set and UnknownJobError otherwise.
        """
        with self._lock:
            claimed = not execution.finalized and self._executions.get(execution.job_id) is execution
            if claimed:
                execution.finalized = True
                del self._executions[execution.job_id]
        if not claimed:
            if missing_ok:
                return None
            raise UnknownJobError(f"Execution for job {execution.job_id} was already released")

        with execution.lock:
            return self._complete(execution, status)

    def _complete(self, execution: PlanExecution, status: ExecutionStatus) -> ExecutionSummary:
        execution.status = status

        outcomes = reduce_step_results(execution.step_results, self.config.patterns.success_ratio)
        recorded = 0
        transferred = 0
        if self.pattern_store is not None:
            for outcome in outcomes:
                if self.pattern_store.record_outcome(execution.domain, outcome.signature,
                                                     outcome.success, outcome.value):
                    recorded += 1
            if status == ExecutionStatus.COMPLETED and self.config.features.cross_domain_sharing:
                transferred = len(self.pattern_store.transfer_patterns(execution.domain))

        summary = ExecutionSummary(
            job_id=execution.job_id,
            domain=execution.domain,
            status=status,
            steps_executed=len(execution.step_results),
            articles_collected=execution.articles_collected,
            hubs_discovered=execution.hubs_discovered,
            backtracks=execution.backtracks,
            replan_count=execution.replan_count,
            suppressed_replans=execution.suppressed_replans,
            outcomes_recorded=recorded,
            patterns_transferred=transferred,
        )
        logger.info("Plan execution finished", job_id=execution.job_id, status=status.value,
                    steps_executed=summary.steps_executed, articles=summary.articles_collected,
                    outcomes_recorded=recorded, patterns_transferred=transferred)
        self.events.emit(PlanEventType.EXECUTION_FINISHED, job_id=execution.job_id, domain=execution.domain,
                         status=status.value, steps_executed=summary.steps_executed,
                         replan_count=summary.replan_count, backtracks=summary.backtracks)
        return summary

    # ------------------------------------------------------------------
    # Progress
    # ------------------------------------------------------------------

    def get_progress(self, job_id: str) -> Dict[str, Any]:
        execution = self.get_execution(job_id)
        total = len(execution.plan)
        results = execution.step_results
        average = sum(r.ratio for r in results) / len(results) if results else None
        return {
            'job_id': job_id,
            'domain': execution.domain,
            'status': execution.status.value,
            'current_step': execution.current_step,
            'total_steps': total,
            'percent_complete': round(100.0 * min(execution.current_step, total) / total, 1) if total else 100.0,
            'articles_collected': execution.articles_collected,
            'hubs_discovered': execution.hubs_discovered,
            'requests_processed': execution.requests_processed,
            'backtracks': execution.backtracks,
            'replan_count': execution.replan_count,
            'suppressed_replans': execution.suppressed_replans,
            'avg_performance': average,
            'next_action': execution.plan.steps[execution.current_step].to_dict()
            if execution.current_step < total else None,
        }
