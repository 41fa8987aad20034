"""
Configuration settings for the crawl planner.

Module-level values cover the process-wide settings (environment, logging,
database). Planner tuning lives in ``PlannerConfig`` and is rebuilt from the
environment by ``load_planner_config()`` so operators can change thresholds
and feature toggles without a rebuild.
"""

import os
from dataclasses import dataclass, field
from typing import Dict
from dotenv import load_dotenv

# Load environment variables from .env file
load_dotenv()

def get_env_bool(key: str, default: bool = False) -> bool:
    """Convert environment variable to boolean."""
    value = os.getenv(key, str(default)).lower()
    return value in ('true', '1', 'yes', 'on')

def get_env_int(key: str, default: int) -> int:
    """Convert environment variable to integer."""
    try:
        return int(os.getenv(key, str(default)))
    except ValueError:
        return default

def get_env_float(key: str, default: float) -> float:
    """Convert environment variable to float."""
    try:
        return float(os.getenv(key, str(default)))
    except ValueError:
        return default

# Environment Configuration
ENVIRONMENT = os.getenv("ENVIRONMENT", "development")
DEBUG = get_env_bool("DEBUG", ENVIRONMENT == "development")

# Logging
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
LOG_FORMAT = os.getenv("LOG_FORMAT", "console")

# Database (pattern store, domain heuristics, crawl history)
DATABASE_URL = os.getenv("PLANNER_DATABASE_URL", "sqlite:///crawl_planner.db")
DATABASE_CONFIG = {
    'echo': get_env_bool("DATABASE_ECHO", False),
    'pool_size': get_env_int("DATABASE_POOL_SIZE", 5),
    'max_overflow': get_env_int("DATABASE_MAX_OVERFLOW", 10),
    'pool_timeout': get_env_int("DATABASE_POOL_TIMEOUT", 30),
    'pool_recycle': get_env_int("DATABASE_POOL_RECYCLE", 3600),
    'sqlite_busy_timeout': get_env_float("DATABASE_SQLITE_BUSY_TIMEOUT", 15.0),
}
DATABASE_WRITE_RETRIES = get_env_int("DATABASE_WRITE_RETRIES", 3)


@dataclass
class FeatureFlags:
    """Independently switchable planner features."""
    cost_aware_priority: bool = True
    pattern_discovery: bool = True
    adaptive_branching: bool = True
    realtime_adjustment: bool = True
    dynamic_replanning: bool = True
    cross_domain_sharing: bool = True


@dataclass
class ReplanThresholds:
    """Thresholds for step evaluation, backtracking and re-planning."""
    deviation: float = 0.4
    backtrack_limit: int = 5
    cooldown_seconds: float = 60.0
    periodic_interval: int = 100
    rolling_window: int = 10
    min_window_samples: int = 3
    excellent_ratio: float = 1.5
    good_ratio: float = 0.8
    acceptable_ratio: float = 0.5
    backtrack_ratio: float = 0.3
    backtrack_steps: int = 2
    max_backtracks: int = 20
    boost: float = 20.0
    penalty: float = -15.0
    max_synthesized_steps: int = 2
    cost_error_warning: float = 0.5
    fetch_timeout_seconds: float = 30.0


@dataclass
class SearchSettings:
    """Branch-and-bound search sizing."""
    default_branching: int = 10
    max_nodes: int = 5000
    min_probability: float = 0.1
    # Sequence simulation
    default_confidence: float = 0.7
    min_simulation_confidence: float = 0.3
    feasibility_ratio: float = 1.5


@dataclass
class ScorerSettings:
    """Weights and bonuses used by the priority scorer."""
    type_weights: Dict[str, float] = field(default_factory=lambda: {
        'explore-hub': 40.0,
        'history': 30.0,
        'adaptive-seed': 25.0,
        'sitemap': 35.0,
        'refresh': 10.0,
    })
    discovery_bonuses: Dict[str, float] = field(default_factory=lambda: {
        'adaptive-seed': 8.0,
        'sitemap': 6.0,
        'hub-validated': 10.0,
        'link': 0.0,
    })
    gap_weight: float = 1.0
    gap_bonus: float = 12.0
    knowledge_bonus: float = 10.0
    yield_weight: float = 1.0
    cost_weight: float = 1.0
    min_priority: float = 0.0
    max_priority: float = 1000.0


@dataclass
class PatternSettings:
    """Pattern store thresholds and cross-domain transfer tuning."""
    transfer_decay: float = 0.7
    min_success_rate: float = 0.7
    min_avg_value: float = 50.0
    min_sample_size: int = 3
    confidence_full_sample: int = 10
    success_ratio: float = 0.7
    lookahead_tolerance: float = 1.0
    branching_tolerance: float = 3.0
    max_similar_domains: int = 5


@dataclass
class PlannerConfig:
    """Complete planner configuration."""
    features: FeatureFlags = field(default_factory=FeatureFlags)
    replan: ReplanThresholds = field(default_factory=ReplanThresholds)
    search: SearchSettings = field(default_factory=SearchSettings)
    scorer: ScorerSettings = field(default_factory=ScorerSettings)
    patterns: PatternSettings = field(default_factory=PatternSettings)


def load_planner_config() -> PlannerConfig:
    """Build a PlannerConfig from the current environment."""
    features = FeatureFlags(
        cost_aware_priority=get_env_bool("FEATURE_COST_AWARE_PRIORITY", True),
        pattern_discovery=get_env_bool("FEATURE_PATTERN_DISCOVERY", True),
        adaptive_branching=get_env_bool("FEATURE_ADAPTIVE_BRANCHING", True),
        realtime_adjustment=get_env_bool("FEATURE_REALTIME_ADJUSTMENT", True),
        dynamic_replanning=get_env_bool("FEATURE_DYNAMIC_REPLANNING", True),
        cross_domain_sharing=get_env_bool("FEATURE_CROSS_DOMAIN_SHARING", True),
    )

    replan = ReplanThresholds(
        deviation=get_env_float("REPLAN_DEVIATION_THRESHOLD", 0.4),
        backtrack_limit=get_env_int("REPLAN_BACKTRACK_LIMIT", 5),
        cooldown_seconds=get_env_float("REPLAN_COOLDOWN_SECONDS", 60.0),
        periodic_interval=get_env_int("REPLAN_PERIODIC_INTERVAL", 100),
        rolling_window=get_env_int("REPLAN_ROLLING_WINDOW", 10),
        min_window_samples=get_env_int("REPLAN_MIN_WINDOW_SAMPLES", 3),
        backtrack_steps=get_env_int("BACKTRACK_STEPS", 2),
        max_backtracks=get_env_int("MAX_BACKTRACKS_PER_EXECUTION", 20),
        boost=get_env_float("ADJUSTMENT_BOOST", 20.0),
        penalty=get_env_float("ADJUSTMENT_PENALTY", -15.0),
        max_synthesized_steps=get_env_int("MAX_SYNTHESIZED_STEPS", 2),
        fetch_timeout_seconds=get_env_float("FETCH_TIMEOUT_SECONDS", 30.0),
    )

    search = SearchSettings(
        default_branching=get_env_int("PLANNER_DEFAULT_BRANCHING", 10),
        max_nodes=get_env_int("PLANNER_MAX_NODES", 5000),
        min_simulation_confidence=get_env_float("PLANNER_MIN_SIMULATION_CONFIDENCE", 0.3),
        feasibility_ratio=get_env_float("PLANNER_FEASIBILITY_RATIO", 1.5),
    )

    scorer = ScorerSettings(
        gap_weight=get_env_float("PRIORITY_GAP_WEIGHT", 1.0),
        gap_bonus=get_env_float("PRIORITY_GAP_BONUS", 12.0),
        knowledge_bonus=get_env_float("PRIORITY_KNOWLEDGE_BONUS", 10.0),
        yield_weight=get_env_float("PRIORITY_YIELD_WEIGHT", 1.0),
        cost_weight=get_env_float("PRIORITY_COST_WEIGHT", 1.0),
        min_priority=get_env_float("PRIORITY_MIN", 0.0),
        max_priority=get_env_float("PRIORITY_MAX", 1000.0),
    )

    patterns = PatternSettings(
        transfer_decay=get_env_float("PATTERN_TRANSFER_DECAY", 0.7),
        min_success_rate=get_env_float("PATTERN_MIN_SUCCESS_RATE", 0.7),
        min_avg_value=get_env_float("PATTERN_MIN_AVG_VALUE", 50.0),
        min_sample_size=get_env_int("PATTERN_MIN_SAMPLE_SIZE", 3),
        lookahead_tolerance=get_env_float("SIMILARITY_LOOKAHEAD_TOLERANCE", 1.0),
        branching_tolerance=get_env_float("SIMILARITY_BRANCHING_TOLERANCE", 3.0),
        max_similar_domains=get_env_int("SIMILARITY_MAX_RESULTS", 5),
    )

    return PlannerConfig(
        features=features,
        replan=replan,
        search=search,
        scorer=scorer,
        patterns=patterns,
    )
