"""
Pattern Store

Persists learned action-type patterns per domain together with the planning
descriptors used to find similar domains. Every write is a single
``INSERT ... ON CONFLICT DO UPDATE`` statement, so concurrent jobs never lose
increments. Shared (cross-domain) rows are only ever written where no locally
learned row exists.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, List, Optional

from sqlalchemy import Float, and_, case, cast, func, select, true
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.exc import SQLAlchemyError

from config import PatternSettings
from core.plan_events import PlanEventEmitter, PlanEventType
from core.service_interface import BaseService
from models.plan import Pattern, Plan
from models.planning_models import DomainHeuristic, HierarchicalPlanRecord, PlanningPattern
from utils.database_manager import DatabaseManager
from utils.logging import get_logger
from utils.retry_utils import retry_on_database_lock

logger = get_logger(__name__)

DIALECT_INSERTS = {
    'sqlite': sqlite_insert,
    'postgresql': pg_insert,
}


@dataclass(frozen=True)
class PatternTransfer:
    """A pattern copied from one domain to another."""
    source_domain: str
    target_domain: str
    signature: str
    confidence: float


def _to_pattern(row: PlanningPattern) -> Pattern:
    return Pattern(
        domain=row.domain,
        signature=row.signature,
        confidence=row.confidence or 0.0,
        sample_size=row.sample_size or 0,
        success_count=row.success_count or 0,
        failure_count=row.failure_count or 0,
        avg_value=row.avg_value or 0.0,
        shared=bool(row.shared),
        source_domain=row.source_domain,
    )


class PatternStore(BaseService):
    """Learned patterns and domain similarity, backed by SQLAlchemy."""

    def __init__(self, db_manager: DatabaseManager, settings: Optional[PatternSettings] = None,
                 events: Optional[PlanEventEmitter] = None):
        self.db_manager = db_manager
        self.settings = settings or PatternSettings()
        self.events = events
        self._initialized = False

        dialect = db_manager.dialect_name
        if dialect not in DIALECT_INSERTS:
            raise ValueError(f"Pattern store needs ON CONFLICT support; unsupported dialect: {dialect}")
        self._insert = DIALECT_INSERTS[dialect]

    @property
    def name(self) -> str:
        return "pattern_store"

    def initialize(self, config: Optional[Dict[str, Any]] = None) -> None:
        if self._initialized:
            return
        self.db_manager.create_tables()
        self._initialized = True
        logger.info("Pattern store initialized", dialect=self.db_manager.dialect_name)

    def shutdown(self) -> None:
        self._initialized = False

    def health_metrics(self) -> Dict[str, Any]:
        with self.db_manager.get_session() as session:
            total = session.scalar(select(func.count(PlanningPattern.id)))
            shared = session.scalar(
                select(func.count(PlanningPattern.id)).where(PlanningPattern.shared == true())
            )
            domains = session.scalar(select(func.count(DomainHeuristic.id)))
        return {'patterns': total or 0, 'shared_patterns': shared or 0, 'profiled_domains': domains or 0}

    # ------------------------------------------------------------------
    # Outcomes
    # ------------------------------------------------------------------

    def record_outcome(self, domain: str, signature: str, success: bool, value: float) -> bool:
        """
        Fold one observed outcome of ``signature`` into the domain's pattern.

        Returns:
            True when the write was committed
        """
        if not domain or not signature:
            logger.warning("Ignoring outcome without domain or signature", domain=domain, signature=signature)
            return False
        try:
            self._upsert_outcome(domain, signature, bool(success), float(value))
            return True
        except SQLAlchemyError as e:
            logger.error("Failed to record pattern outcome", domain=domain, signature=signature, error=str(e))
            return False

    @retry_on_database_lock()
    def _upsert_outcome(self, domain: str, signature: str, success: bool, value: float) -> None:
        t = PlanningPattern.__table__
        full = self.settings.confidence_full_sample
        hit = 1 if success else 0
        now = datetime.utcnow()

        # A shared row starts over once local evidence arrives
        is_shared = t.c.shared == true()
        prior_sample = case((is_shared, 0), else_=t.c.sample_size)
        prior_success = case((is_shared, 0), else_=t.c.success_count)
        prior_failure = case((is_shared, 0), else_=t.c.failure_count)
        prior_avg = case((is_shared, 0.0), else_=t.c.avg_value)

        new_sample = prior_sample + 1
        new_success = prior_success + hit
        sample_factor = case((new_sample >= full, 1.0), else_=cast(new_sample, Float) / full)

        stmt = self._insert(t).values(
            domain=domain,
            signature=signature,
            confidence=float(hit) * min(1.0, 1 / full),
            sample_size=1,
            success_count=hit,
            failure_count=1 - hit,
            avg_value=value,
            shared=False,
            source_domain=None,
            created_at=now,
            updated_at=now,
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=[t.c.domain, t.c.signature],
            set_={
                'sample_size': new_sample,
                'success_count': new_success,
                'failure_count': prior_failure + (1 - hit),
                'avg_value': (prior_avg * prior_sample + value) / cast(new_sample, Float),
                'confidence': cast(new_success, Float) / new_sample * sample_factor,
                'shared': False,
                'source_domain': None,
                'updated_at': now,
            },
        )
        with self.db_manager.get_session() as session:
            session.execute(stmt)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def query_good_patterns(self, domain: str, min_success_rate: Optional[float] = None,
                            min_avg_value: Optional[float] = None,
                            min_confidence: float = 0.0) -> List[Pattern]:
        """Patterns with enough samples, a high success rate and a high average value."""
        s = self.settings
        min_success_rate = s.min_success_rate if min_success_rate is None else min_success_rate
        min_avg_value = s.min_avg_value if min_avg_value is None else min_avg_value

        t = PlanningPattern
        stmt = (
            select(t)
            .where(
                t.domain == domain,
                t.sample_size >= s.min_sample_size,
                cast(t.success_count, Float) / func.nullif(t.sample_size, 0) >= min_success_rate,
                t.avg_value >= min_avg_value,
                t.confidence >= min_confidence,
            )
            .order_by(t.confidence.desc(), t.avg_value.desc(), t.signature)
        )
        try:
            with self.db_manager.get_session() as session:
                return [_to_pattern(row) for row in session.scalars(stmt)]
        except SQLAlchemyError as e:
            logger.error("Failed to query patterns", domain=domain, error=str(e))
            return []

    def get_pattern(self, domain: str, signature: str) -> Optional[Pattern]:
        stmt = select(PlanningPattern).where(
            PlanningPattern.domain == domain, PlanningPattern.signature == signature
        )
        try:
            with self.db_manager.get_session() as session:
                row = session.scalars(stmt).first()
                return _to_pattern(row) if row is not None else None
        except SQLAlchemyError as e:
            logger.error("Failed to load pattern", domain=domain, signature=signature, error=str(e))
            return None

    def list_patterns(self, domain: str) -> List[Pattern]:
        stmt = (
            select(PlanningPattern)
            .where(PlanningPattern.domain == domain)
            .order_by(PlanningPattern.confidence.desc(), PlanningPattern.signature)
        )
        try:
            with self.db_manager.get_session() as session:
                return [_to_pattern(row) for row in session.scalars(stmt)]
        except SQLAlchemyError as e:
            logger.error("Failed to list patterns", domain=domain, error=str(e))
            return []

    # ------------------------------------------------------------------
    # Domain similarity
    # ------------------------------------------------------------------

    def record_plan(self, plan: Plan) -> bool:
        """Keep an audit row for a generated plan."""
        try:
            with self.db_manager.get_session() as session:
                session.add(HierarchicalPlanRecord(
                    domain=plan.domain,
                    plan_steps=[step.to_dict() for step in plan.steps],
                    estimated_value=plan.total_value,
                    total_cost=plan.total_cost,
                    probability=plan.probability,
                    lookahead=plan.lookahead,
                    branching_factor=plan.branching_factor,
                ))
            return True
        except SQLAlchemyError as e:
            logger.error("Failed to record plan", domain=plan.domain, error=str(e))
            return False

    def recent_plans(self, domain: str, limit: int = 10) -> List[Dict[str, Any]]:
        stmt = (
            select(HierarchicalPlanRecord)
            .where(HierarchicalPlanRecord.domain == domain)
            .order_by(HierarchicalPlanRecord.created_at.desc(), HierarchicalPlanRecord.id.desc())
            .limit(limit)
        )
        try:
            with self.db_manager.get_session() as session:
                return [
                    {
                        'steps': row.plan_steps or [],
                        'estimated_value': row.estimated_value,
                        'total_cost': row.total_cost,
                        'probability': row.probability,
                        'lookahead': row.lookahead,
                        'branching_factor': row.branching_factor,
                    }
                    for row in session.scalars(stmt)
                ]
        except SQLAlchemyError as e:
            logger.error("Failed to load recent plans", domain=domain, error=str(e))
            return []

    def record_plan_characteristics(self, domain: str, lookahead: int, branching_factor: int) -> bool:
        """Fold one generated plan's shape into the domain's running averages."""
        try:
            self._upsert_characteristics(domain, float(lookahead), float(branching_factor))
            return True
        except SQLAlchemyError as e:
            logger.error("Failed to record plan characteristics", domain=domain, error=str(e))
            return False

    @retry_on_database_lock()
    def _upsert_characteristics(self, domain: str, lookahead: float, branching_factor: float) -> None:
        t = DomainHeuristic.__table__
        count = t.c.plan_count
        now = datetime.utcnow()

        stmt = self._insert(t).values(
            domain=domain,
            avg_lookahead=lookahead,
            branching_factor=branching_factor,
            plan_count=1,
            updated_at=now,
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=[t.c.domain],
            set_={
                'avg_lookahead': (t.c.avg_lookahead * count + lookahead) / cast(count + 1, Float),
                'branching_factor': (t.c.branching_factor * count + branching_factor) / cast(count + 1, Float),
                'plan_count': count + 1,
                'updated_at': now,
            },
        )
        with self.db_manager.get_session() as session:
            session.execute(stmt)

    def find_similar_domains(self, domain: str, max_results: Optional[int] = None) -> List[str]:
        """Domains whose plan shape falls within the tolerance bands, closest first."""
        s = self.settings
        max_results = s.max_similar_domains if max_results is None else max_results
        if max_results <= 0:
            return []

        try:
            with self.db_manager.get_session() as session:
                own = session.scalars(
                    select(DomainHeuristic).where(DomainHeuristic.domain == domain)
                ).first()
                if own is None:
                    return []
                lookahead, branching = own.avg_lookahead, own.branching_factor

                rows = session.execute(
                    select(DomainHeuristic.domain, DomainHeuristic.avg_lookahead, DomainHeuristic.branching_factor)
                    .where(
                        DomainHeuristic.domain != domain,
                        and_(
                            func.abs(DomainHeuristic.avg_lookahead - lookahead) <= s.lookahead_tolerance,
                            func.abs(DomainHeuristic.branching_factor - branching) <= s.branching_tolerance,
                        ),
                    )
                ).all()
        except SQLAlchemyError as e:
            logger.error("Failed to find similar domains", domain=domain, error=str(e))
            return []

        def distance(row) -> float:
            return (abs(row.avg_lookahead - lookahead) / s.lookahead_tolerance
                    + abs(row.branching_factor - branching) / s.branching_tolerance)

        ranked = sorted(rows, key=lambda row: (distance(row), row.domain))
        return [row.domain for row in ranked[:max_results]]

    # ------------------------------------------------------------------
    # Cross-domain sharing
    # ------------------------------------------------------------------

    def share_pattern(self, target_domain: str, pattern: Pattern,
                      transfer_decay: Optional[float] = None) -> bool:
        """
        Offer ``pattern`` to ``target_domain`` as a shared pattern.

        The shared row carries the source confidence scaled by the transfer
        decay. A locally learned row with the same signature is left alone.

        Returns:
            True when a shared row was inserted or refreshed
        """
        decay = self.settings.transfer_decay if transfer_decay is None else transfer_decay
        if not 0.0 < decay <= 1.0:
            logger.warning("Rejected pattern share with invalid decay", decay=decay,
                           target_domain=target_domain, signature=pattern.signature)
            return False
        if target_domain == pattern.domain:
            logger.warning("Rejected pattern share onto its own domain", domain=target_domain,
                           signature=pattern.signature)
            return False
        if pattern.sample_size < 1:
            logger.warning("Rejected pattern share without samples", target_domain=target_domain,
                           signature=pattern.signature, source_domain=pattern.domain)
            return False

        confidence = pattern.confidence * decay
        try:
            written = self._upsert_shared(target_domain, pattern, confidence)
        except SQLAlchemyError as e:
            logger.error("Failed to share pattern", target_domain=target_domain,
                         signature=pattern.signature, error=str(e))
            return False

        if not written:
            logger.warning(
                "Rejected shared pattern write over locally learned pattern",
                target_domain=target_domain,
                signature=pattern.signature,
                source_domain=pattern.domain,
            )
            return False

        if self.events is not None:
            self.events.emit(
                PlanEventType.PATTERN_TRANSFERRED,
                domain=target_domain,
                source_domain=pattern.domain,
                signature=pattern.signature,
                confidence=confidence,
            )
        return True

    @retry_on_database_lock()
    def _upsert_shared(self, target_domain: str, pattern: Pattern, confidence: float) -> bool:
        t = PlanningPattern.__table__
        now = datetime.utcnow()

        stmt = self._insert(t).values(
            domain=target_domain,
            signature=pattern.signature,
            confidence=confidence,
            sample_size=pattern.sample_size,
            success_count=pattern.success_count,
            failure_count=pattern.failure_count,
            avg_value=pattern.avg_value,
            shared=True,
            source_domain=pattern.domain,
            created_at=now,
            updated_at=now,
        )
        excluded = stmt.excluded
        stmt = stmt.on_conflict_do_update(
            index_elements=[t.c.domain, t.c.signature],
            set_={
                'confidence': excluded.confidence,
                'sample_size': excluded.sample_size,
                'success_count': excluded.success_count,
                'failure_count': excluded.failure_count,
                'avg_value': excluded.avg_value,
                'source_domain': excluded.source_domain,
                'updated_at': now,
            },
            where=t.c.shared == true(),
        )
        with self.db_manager.get_session() as session:
            result = session.execute(stmt)
            return result.rowcount > 0

    def transfer_patterns(self, source_domain: str, transfer_decay: Optional[float] = None) -> List[PatternTransfer]:
        """Share every good local pattern of ``source_domain`` with its similar domains."""
        targets = self.find_similar_domains(source_domain)
        if not targets:
            return []

        patterns = [p for p in self.query_good_patterns(source_domain) if not p.shared]
        decay = self.settings.transfer_decay if transfer_decay is None else transfer_decay

        transfers = []
        for target in targets:
            for pattern in patterns:
                if self.share_pattern(target, pattern, transfer_decay=decay):
                    transfers.append(PatternTransfer(
                        source_domain=source_domain,
                        target_domain=target,
                        signature=pattern.signature,
                        confidence=pattern.confidence * decay,
                    ))

        logger.info("Transferred patterns", source_domain=source_domain,
                    targets=len(targets), transfers=len(transfers))
        return transfers
