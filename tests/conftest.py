"""
Shared fixtures for the crawl planner tests.

Every test gets its own SQLite database under tmp_path, so pattern store and
history state never leak between tests.
"""
import pytest

from config import PlannerConfig
from core.cost_estimator import StaticCostEstimator
from core.plan_events import PlanEventEmitter
from intelligence.domain_profiler import DomainProfiler, HistoricalRecordStore
from intelligence.hierarchical_planner import HierarchicalPlanner
from intelligence.pattern_store import PatternStore
from models.plan import Action, ActionType, FetchResult
from utils.database_manager import DatabaseManager
from controllers.plan_execution_controller import Fetcher


class FakeFetcher(Fetcher):
    """Returns scripted results per target and records every dispatch."""

    def __init__(self, results=None, default=None):
        self.results = dict(results or {})
        self.default = default or FetchResult(actual_value=100.0, duration_ms=50.0)
        self.calls = []

    async def execute(self, action: Action) -> FetchResult:
        self.calls.append(action.target)
        result = self.results.get(action.target, self.default)
        if isinstance(result, Exception):
            raise result
        if callable(result):
            return result(action)
        return result


class FixedClock:
    """Manually advanced clock."""

    def __init__(self, start: float = 1_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


def hub_action(domain: str, section: str, articles: float = 100.0, requests: int = 1) -> Action:
    return Action(
        type=ActionType.EXPLORE_HUB,
        target=f"https://{domain}/{section}/",
        estimated_articles=articles,
        estimated_requests=requests,
    )


@pytest.fixture
def db_manager(tmp_path):
    """A fresh file-backed SQLite database."""
    manager = DatabaseManager(f"sqlite:///{tmp_path / 'planner.db'}")
    yield manager
    manager.dispose()


@pytest.fixture
def planner_config():
    return PlannerConfig()


@pytest.fixture
def events():
    return PlanEventEmitter()


@pytest.fixture
def pattern_store(db_manager, planner_config, events):
    store = PatternStore(db_manager, planner_config.patterns, events=events)
    store.initialize()
    return store


@pytest.fixture
def history(db_manager):
    return HistoricalRecordStore(db_manager)


@pytest.fixture
def seed_history(history):
    """Seed crawl history: seed_history(domain, categories, pages_per_category)."""
    def _seed(domain, categories, pages_per_category=2, outbound_links=40):
        for category in categories:
            for i in range(pages_per_category):
                history.record_page(
                    domain,
                    f"https://{domain}/{category}/page-{i}",
                    hub_category=category,
                    outbound_links=outbound_links,
                )
    return _seed


@pytest.fixture
def profiler(history):
    return DomainProfiler(history)


@pytest.fixture
def cost_estimator():
    return StaticCostEstimator({
        ActionType.EXPLORE_HUB: 250.0,
        ActionType.SITEMAP: 50.0,
        ActionType.HISTORY: 800.0,
    })


@pytest.fixture
def planner(profiler, pattern_store, planner_config):
    return HierarchicalPlanner(profiler, pattern_store=pattern_store, config=planner_config)


@pytest.fixture
def clock():
    return FixedClock()


@pytest.fixture
def fake_fetcher():
    return FakeFetcher()


@pytest.fixture
def make_fetcher():
    return FakeFetcher


@pytest.fixture
def make_hub_action():
    return hub_action
