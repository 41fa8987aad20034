"""
Domain Profiler

Summarizes a domain's crawl history into the structural profile the planner
sizes its search with. The profile is recomputed on every planning call and
falls back to a conservative default whenever history is missing.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Optional, Tuple

from sqlalchemy import distinct, func, select
from sqlalchemy.exc import SQLAlchemyError

from models.plan import Complexity, DomainProfile
from models.planning_models import CrawledPage
from utils.database_manager import DatabaseManager
from utils.logging import get_logger

logger = get_logger(__name__)

SIMPLE_HUB_LIMIT = 5
MEDIUM_HUB_LIMIT = 15

DEFAULT_PROFILE = DomainProfile()


@dataclass(frozen=True)
class HistoryAggregates:
    page_count: int
    hub_categories: Tuple[str, ...]
    avg_links_per_page: Optional[float]


class HistoricalRecordStore:
    """Read access to the crawled_pages history table."""

    def __init__(self, db_manager: DatabaseManager):
        self.db_manager = db_manager

    def aggregates(self, domain: str) -> HistoryAggregates:
        """Distinct page count, hub categories and average outbound links for a domain."""
        with self.db_manager.get_session() as session:
            page_count, avg_links = session.execute(
                select(func.count(distinct(CrawledPage.url)), func.avg(CrawledPage.outbound_links))
                .where(CrawledPage.domain == domain)
            ).one()
            categories = session.scalars(
                select(distinct(CrawledPage.hub_category))
                .where(CrawledPage.domain == domain, CrawledPage.hub_category.isnot(None))
                .order_by(CrawledPage.hub_category)
            ).all()

        return HistoryAggregates(
            page_count=page_count or 0,
            hub_categories=tuple(categories),
            avg_links_per_page=float(avg_links) if avg_links is not None else None,
        )

    def record_page(self, domain: str, url: str, hub_category: Optional[str] = None,
                    outbound_links: int = 0, fetched_at: Optional[datetime] = None) -> None:
        """Append a history record (seeding and maintenance tooling)."""
        with self.db_manager.get_session() as session:
            session.add(CrawledPage(
                domain=domain,
                url=url,
                hub_category=hub_category,
                outbound_links=outbound_links,
                fetched_at=fetched_at or datetime.utcnow(),
            ))


def classify_complexity(hub_type_count: int) -> Complexity:
    if hub_type_count < SIMPLE_HUB_LIMIT:
        return Complexity.SIMPLE
    if hub_type_count < MEDIUM_HUB_LIMIT:
        return Complexity.MEDIUM
    return Complexity.COMPLEX


class DomainProfiler:
    """Derives a DomainProfile from historical crawl records."""

    def __init__(self, history: Optional[HistoricalRecordStore]):
        self.history = history

    def profile(self, domain: str) -> DomainProfile:
        if not domain or self.history is None:
            return DEFAULT_PROFILE

        try:
            stats = self.history.aggregates(domain)
        except SQLAlchemyError as e:
            logger.warning("Domain history unavailable, using default profile", domain=domain, error=str(e))
            return DEFAULT_PROFILE

        if stats.page_count == 0:
            return DEFAULT_PROFILE

        hub_type_count = len(stats.hub_categories)
        avg_links = stats.avg_links_per_page
        return DomainProfile(
            page_count=stats.page_count,
            hub_type_count=hub_type_count,
            avg_links_per_page=avg_links if avg_links is not None else DEFAULT_PROFILE.avg_links_per_page,
            complexity=classify_complexity(hub_type_count),
            hub_categories=stats.hub_categories,
            is_default=False,
        )
