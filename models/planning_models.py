"""
Database models for the crawl planner

This module defines the SQLAlchemy models for learned planning patterns,
per-domain planning descriptors, generated plans, and the historical crawl
records the domain profiler reads.
"""

from sqlalchemy import Column, Integer, String, DateTime, JSON, Boolean, Float, Index, UniqueConstraint
from sqlalchemy.orm import declarative_base
from datetime import datetime

Base = declarative_base()

class PlanningPattern(Base):
    """Learned success statistics for an action-type signature on a domain"""
    __tablename__ = 'planning_patterns'

    id = Column(Integer, primary_key=True)
    domain = Column(String(255), nullable=False, index=True)
    signature = Column(String(512), nullable=False)  # e.g. "explore-hub→history"

    # Evidence
    confidence = Column(Float, nullable=False, default=0.0)
    sample_size = Column(Integer, nullable=False, default=0)
    success_count = Column(Integer, nullable=False, default=0)
    failure_count = Column(Integer, nullable=False, default=0)
    avg_value = Column(Float, nullable=False, default=0.0)

    # Transfer provenance
    shared = Column(Boolean, nullable=False, default=False)
    source_domain = Column(String(255))

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    __table_args__ = (
        UniqueConstraint('domain', 'signature', name='uq_pattern_domain_signature'),
        Index('idx_pattern_domain_confidence', 'domain', 'confidence'),
    )

class DomainHeuristic(Base):
    """Per-domain planning descriptors used for similarity search"""
    __tablename__ = 'domain_heuristics'

    id = Column(Integer, primary_key=True)
    domain = Column(String(255), unique=True, nullable=False, index=True)
    avg_lookahead = Column(Float, nullable=False, default=0.0)
    branching_factor = Column(Float, nullable=False, default=0.0)
    plan_count = Column(Integer, nullable=False, default=0)

    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    __table_args__ = (
        Index('idx_heuristic_shape', 'avg_lookahead', 'branching_factor'),
    )

class HierarchicalPlanRecord(Base):
    """Audit trail of generated plans"""
    __tablename__ = 'hierarchical_plans'

    id = Column(Integer, primary_key=True)
    domain = Column(String(255), nullable=False, index=True)
    plan_steps = Column(JSON)  # Serialized step summaries
    estimated_value = Column(Float)
    total_cost = Column(Float)
    probability = Column(Float)
    lookahead = Column(Integer)
    branching_factor = Column(Integer)

    created_at = Column(DateTime, default=datetime.utcnow, index=True)

class CrawledPage(Base):
    """Historical crawl record, read by the domain profiler"""
    __tablename__ = 'crawled_pages'

    id = Column(Integer, primary_key=True)
    url = Column(String(2048), nullable=False)
    domain = Column(String(255), nullable=False, index=True)
    hub_category = Column(String(255))  # e.g. "world", "sport"; NULL for non-hub pages
    outbound_links = Column(Integer, default=0)

    fetched_at = Column(DateTime, default=datetime.utcnow)

    __table_args__ = (
        Index('idx_crawled_domain_category', 'domain', 'hub_category'),
    )
