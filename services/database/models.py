"""
Database Models for the Active-Learning Store

SQLAlchemy ORM models for scenarios, annotated texts, learning sessions and
the uncertainty queue.
"""

from datetime import datetime

from sqlalchemy import Column, Integer, String, Text, DateTime, Float, Boolean, ForeignKey, JSON, UniqueConstraint
from sqlalchemy.orm import declarative_base

from .records import (
    Scenario, AnnotatedText, UncertainEntry, LearningSession, QualityMetrics,
    entities_from_json
)

Base = declarative_base()

class ScenarioRow(Base):
    """Extraction scenario: a named set of entity-type labels"""
    __tablename__ = "scenarios"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String(200), nullable=False)
    description = Column(Text, nullable=False, default="")
    entity_types = Column(JSON, nullable=False, default=list)  # ordered labels
    is_built_in = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime, default=datetime.utcnow)

    def to_record(self) -> Scenario:
        return Scenario(
            id=self.id,
            name=self.name,
            description=self.description or "",
            entity_types=list(self.entity_types or []),
            is_built_in=bool(self.is_built_in),
            created_at=self.created_at,
        )

class AnnotatedTextRow(Base):
    """Labeled text sample, unique per (scenario, raw_text)"""
    __tablename__ = "annotated_texts"
    __table_args__ = (
        UniqueConstraint("scenario_id", "raw_text", name="uq_annotated_text_scenario_raw"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    scenario_id = Column(Integer, ForeignKey("scenarios.id"), nullable=False, index=True)
    raw_text = Column(Text, nullable=False)
    annotations = Column(JSON, nullable=False, default=list)
    source = Column(String(50), nullable=False, default="")  # manual_correction, import, seed
    confidence_score = Column(Float, nullable=False, default=0.0)
    is_verified = Column(Boolean, nullable=False, default=False, index=True)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    def to_record(self) -> AnnotatedText:
        return AnnotatedText(
            id=self.id,
            scenario_id=self.scenario_id,
            raw_text=self.raw_text,
            annotations=entities_from_json(self.annotations),
            source=self.source or "",
            confidence_score=float(self.confidence_score or 0.0),
            is_verified=bool(self.is_verified),
            created_at=self.created_at,
        )

class LearningSessionRow(Base):
    """Append-only audit log of training attempts that reached evaluation"""
    __tablename__ = "learning_sessions"

    id = Column(Integer, primary_key=True, autoincrement=True)
    # No foreign key: session history outlives a deleted scenario
    scenario_id = Column(Integer, nullable=False, index=True)
    sample_count_before = Column(Integer, nullable=False, default=0)
    sample_count_after = Column(Integer, nullable=False, default=0)
    metrics_before = Column(JSON, nullable=False, default=dict)
    metrics_after = Column(JSON, nullable=False, default=dict)
    duration_seconds = Column(Float, nullable=False, default=0.0)
    is_improved = Column(Boolean, nullable=False, default=False)
    reached_target = Column(Boolean, nullable=False, default=False)

    # Promotion tracking
    model_applied = Column(Boolean, nullable=False, default=False)
    applied_at = Column(DateTime)
    model_tag = Column(String(500), nullable=False, default="")

    # Split sizes
    train_count = Column(Integer, nullable=False, default=0)
    validation_count = Column(Integer, nullable=False, default=0)
    test_count = Column(Integer, nullable=False, default=0)

    message = Column(Text, nullable=False, default="")
    trained_at = Column(DateTime, default=datetime.utcnow, index=True)

    def to_record(self) -> LearningSession:
        return LearningSession(
            id=self.id,
            scenario_id=self.scenario_id,
            sample_count_before=self.sample_count_before,
            sample_count_after=self.sample_count_after,
            metrics_before=QualityMetrics.from_dict(self.metrics_before),
            metrics_after=QualityMetrics.from_dict(self.metrics_after),
            duration_seconds=self.duration_seconds,
            is_improved=bool(self.is_improved),
            reached_target=bool(self.reached_target),
            model_applied=bool(self.model_applied),
            applied_at=self.applied_at,
            model_tag=self.model_tag or "",
            train_count=self.train_count,
            validation_count=self.validation_count,
            test_count=self.test_count,
            message=self.message or "",
            trained_at=self.trained_at,
        )

class UncertainQueueRow(Base):
    """Uncertainty queue items awaiting human review"""
    __tablename__ = "uncertain_queue"
    __table_args__ = (
        UniqueConstraint("scenario_id", "raw_text", name="uq_uncertain_scenario_raw"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    scenario_id = Column(Integer, ForeignKey("scenarios.id"), nullable=False, index=True)
    raw_text = Column(Text, nullable=False)
    predictions = Column(JSON, nullable=False, default=list)
    min_confidence = Column(Float, nullable=False, default=1.0, index=True)

    # Status tracking
    is_reviewed = Column(Boolean, nullable=False, default=False, index=True)
    is_skipped = Column(Boolean, nullable=False, default=False)
    skip_reason = Column(String(500), nullable=False, default="")
    reviewed_at = Column(DateTime)

    created_at = Column(DateTime, default=datetime.utcnow)

    def to_record(self) -> UncertainEntry:
        return UncertainEntry(
            id=self.id,
            scenario_id=self.scenario_id,
            raw_text=self.raw_text,
            predictions=entities_from_json(self.predictions),
            min_confidence=float(self.min_confidence),
            is_reviewed=bool(self.is_reviewed),
            is_skipped=bool(self.is_skipped),
            skip_reason=self.skip_reason or "",
            reviewed_at=self.reviewed_at,
            created_at=self.created_at,
        )
