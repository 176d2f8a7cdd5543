"""
Annotation Store

Durable storage for scenarios, verified training samples, learning-session
history and the uncertainty review queue. Each public call runs in its own
short-lived SQLAlchemy session and returns detached dataclass records.
"""

import logging
from contextlib import contextmanager
from datetime import datetime
from typing import Callable, Iterator, List, Optional, TypeVar

from sqlalchemy import create_engine, func
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from utils.error_handling import StorageError, retry_with_backoff
from .models import Base, ScenarioRow, AnnotatedTextRow, LearningSessionRow, UncertainQueueRow
from .records import (
    Scenario, AnnotatedText, EntityAnnotation, LearningSession, UncertainEntry,
    entities_to_json
)

logger = logging.getLogger(__name__)

T = TypeVar("T")

class AnnotationStore:
    """SQLAlchemy-backed store shared by the orchestrator and operator tools"""

    def __init__(self, database_url: str, echo: bool = False):
        self.database_url = database_url

        engine_kwargs = {"echo": echo}
        if database_url.startswith("sqlite"):
            engine_kwargs["connect_args"] = {"check_same_thread": False}
            if database_url in ("sqlite://", "sqlite:///:memory:"):
                # In-memory SQLite lives on a single shared connection
                engine_kwargs["poolclass"] = StaticPool

        self.engine = create_engine(database_url, **engine_kwargs)
        self.SessionLocal = sessionmaker(
            autocommit=False, autoflush=False, expire_on_commit=False, bind=self.engine
        )
        Base.metadata.create_all(bind=self.engine)

        logger.info(f"Annotation store ready at {database_url}")

    @contextmanager
    def session_scope(self) -> Iterator[Session]:
        """Provide a transactional scope around a series of operations"""
        session = self.SessionLocal()
        try:
            yield session
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    @retry_with_backoff
    def _execute(self, work: Callable[[Session], T]) -> T:
        with self.session_scope() as session:
            return work(session)

    def _run(self, operation: str, work: Callable[[Session], T]) -> T:
        try:
            return self._execute(work)
        except SQLAlchemyError as e:
            logger.error(f"Storage operation {operation} failed: {e}")
            raise StorageError(f"{operation} failed: {e}", operation=operation) from e

    def close(self) -> None:
        self.engine.dispose()

    # ------------------------------------------------------------------
    # Scenarios
    # ------------------------------------------------------------------

    def add_scenario(self, name: str, entity_types: List[str], description: str = "",
                     is_built_in: bool = False) -> Scenario:
        def work(session: Session) -> Scenario:
            row = ScenarioRow(
                name=name,
                description=description,
                entity_types=list(entity_types),
                is_built_in=is_built_in,
                created_at=datetime.utcnow(),
            )
            session.add(row)
            session.flush()
            return row.to_record()

        scenario = self._run("add_scenario", work)
        logger.info(f"Created scenario {scenario.id} '{name}' with {len(entity_types)} entity types")
        return scenario

    def list_scenarios(self) -> List[Scenario]:
        def work(session: Session) -> List[Scenario]:
            rows = session.query(ScenarioRow).order_by(ScenarioRow.id).all()
            return [row.to_record() for row in rows]

        return self._run("list_scenarios", work)

    def get_scenario(self, scenario_id: int) -> Optional[Scenario]:
        def work(session: Session) -> Optional[Scenario]:
            row = session.get(ScenarioRow, scenario_id)
            return row.to_record() if row else None

        return self._run("get_scenario", work)

    def delete_scenario(self, scenario_id: int) -> bool:
        """Delete a user scenario with its samples and queue entries.

        Built-in scenarios are never deleted. Learning sessions are kept as
        history.
        """
        def work(session: Session) -> bool:
            row = session.get(ScenarioRow, scenario_id)
            if row is None or row.is_built_in:
                return False
            session.query(AnnotatedTextRow).filter(AnnotatedTextRow.scenario_id == scenario_id).delete()
            session.query(UncertainQueueRow).filter(UncertainQueueRow.scenario_id == scenario_id).delete()
            session.delete(row)
            return True

        deleted = self._run("delete_scenario", work)
        if deleted:
            logger.info(f"Deleted scenario {scenario_id}")
        return deleted

    # ------------------------------------------------------------------
    # Annotated texts
    # ------------------------------------------------------------------

    def add_annotated_text(self, scenario_id: int, raw_text: str, annotations: List[EntityAnnotation],
                           source: str = "", confidence_score: float = 0.0,
                           is_verified: bool = False) -> AnnotatedText:
        """Insert a sample, or update the existing one with the same raw text"""
        payload = entities_to_json(annotations)

        def work(session: Session) -> AnnotatedText:
            row = (
                session.query(AnnotatedTextRow)
                .filter(AnnotatedTextRow.scenario_id == scenario_id, AnnotatedTextRow.raw_text == raw_text)
                .first()
            )
            if row is None:
                row = AnnotatedTextRow(
                    scenario_id=scenario_id,
                    raw_text=raw_text,
                    created_at=datetime.utcnow(),
                )
                session.add(row)
            row.annotations = payload
            row.source = source
            row.confidence_score = confidence_score
            row.is_verified = is_verified
            row.updated_at = datetime.utcnow()
            session.flush()
            return row.to_record()

        try:
            return self._run("add_annotated_text", work)
        except StorageError as e:
            # A concurrent writer inserted the same text first; the retry updates it
            if isinstance(e.__cause__, IntegrityError):
                logger.debug(f"Annotated text insert raced for scenario {scenario_id}, updating instead")
                return self._run("add_annotated_text", work)
            raise

    def update_annotation(self, annotated_text_id: int, annotations: List[EntityAnnotation],
                          is_verified: Optional[bool] = None,
                          source: Optional[str] = None) -> Optional[AnnotatedText]:
        payload = entities_to_json(annotations)

        def work(session: Session) -> Optional[AnnotatedText]:
            row = session.get(AnnotatedTextRow, annotated_text_id)
            if row is None:
                return None
            row.annotations = payload
            if is_verified is not None:
                row.is_verified = is_verified
            if source is not None:
                row.source = source
            row.updated_at = datetime.utcnow()
            session.flush()
            return row.to_record()

        return self._run("update_annotation", work)

    def find_annotated_text(self, scenario_id: int, raw_text: str) -> Optional[AnnotatedText]:
        def work(session: Session) -> Optional[AnnotatedText]:
            row = (
                session.query(AnnotatedTextRow)
                .filter(AnnotatedTextRow.scenario_id == scenario_id, AnnotatedTextRow.raw_text == raw_text)
                .first()
            )
            return row.to_record() if row else None

        return self._run("find_annotated_text", work)

    def list_annotated_texts(self, scenario_id: int, verified_only: bool = False) -> List[AnnotatedText]:
        def work(session: Session) -> List[AnnotatedText]:
            query = session.query(AnnotatedTextRow).filter(AnnotatedTextRow.scenario_id == scenario_id)
            if verified_only:
                query = query.filter(AnnotatedTextRow.is_verified.is_(True))
            return [row.to_record() for row in query.order_by(AnnotatedTextRow.id).all()]

        return self._run("list_annotated_texts", work)

    def delete_annotated_text(self, annotated_text_id: int) -> bool:
        def work(session: Session) -> bool:
            row = session.get(AnnotatedTextRow, annotated_text_id)
            if row is None:
                return False
            session.delete(row)
            return True

        return self._run("delete_annotated_text", work)

    def count_annotated_texts(self, scenario_id: int) -> int:
        def work(session: Session) -> int:
            return (
                session.query(func.count(AnnotatedTextRow.id))
                .filter(AnnotatedTextRow.scenario_id == scenario_id)
                .scalar() or 0
            )

        return self._run("count_annotated_texts", work)

    def count_verified(self, scenario_id: int) -> int:
        def work(session: Session) -> int:
            return (
                session.query(func.count(AnnotatedTextRow.id))
                .filter(AnnotatedTextRow.scenario_id == scenario_id, AnnotatedTextRow.is_verified.is_(True))
                .scalar() or 0
            )

        return self._run("count_verified", work)

    # ------------------------------------------------------------------
    # Learning sessions
    # ------------------------------------------------------------------

    def save_learning_session(self, learning_session: LearningSession) -> LearningSession:
        def work(session: Session) -> LearningSession:
            row = LearningSessionRow(
                scenario_id=learning_session.scenario_id,
                sample_count_before=learning_session.sample_count_before,
                sample_count_after=learning_session.sample_count_after,
                metrics_before=learning_session.metrics_before.to_dict(),
                metrics_after=learning_session.metrics_after.to_dict(),
                duration_seconds=learning_session.duration_seconds,
                is_improved=learning_session.is_improved,
                reached_target=learning_session.reached_target,
                model_applied=learning_session.model_applied,
                applied_at=learning_session.applied_at,
                model_tag=learning_session.model_tag,
                train_count=learning_session.train_count,
                validation_count=learning_session.validation_count,
                test_count=learning_session.test_count,
                message=learning_session.message,
                trained_at=learning_session.trained_at or datetime.utcnow(),
            )
            session.add(row)
            session.flush()
            return row.to_record()

        return self._run("save_learning_session", work)

    def list_learning_sessions(self, scenario_id: int, limit: Optional[int] = None) -> List[LearningSession]:
        """Sessions for a scenario, newest first"""
        def work(session: Session) -> List[LearningSession]:
            query = (
                session.query(LearningSessionRow)
                .filter(LearningSessionRow.scenario_id == scenario_id)
                .order_by(LearningSessionRow.trained_at.desc(), LearningSessionRow.id.desc())
            )
            if limit is not None:
                query = query.limit(limit)
            return [row.to_record() for row in query.all()]

        return self._run("list_learning_sessions", work)

    def get_latest_applied_session(self, scenario_id: int) -> Optional[LearningSession]:
        def work(session: Session) -> Optional[LearningSession]:
            row = (
                session.query(LearningSessionRow)
                .filter(LearningSessionRow.scenario_id == scenario_id, LearningSessionRow.model_applied.is_(True))
                .order_by(LearningSessionRow.trained_at.desc(), LearningSessionRow.id.desc())
                .first()
            )
            return row.to_record() if row else None

        return self._run("get_latest_applied_session", work)

    # ------------------------------------------------------------------
    # Uncertainty queue
    # ------------------------------------------------------------------

    def add_uncertain_entry(self, entry: UncertainEntry) -> bool:
        """Insert a queue entry unless one exists for the same scenario and text.

        Returns True when a row was inserted.
        """
        def work(session: Session) -> bool:
            exists = (
                session.query(UncertainQueueRow.id)
                .filter(UncertainQueueRow.scenario_id == entry.scenario_id,
                        UncertainQueueRow.raw_text == entry.raw_text)
                .first()
            )
            if exists:
                return False
            session.add(UncertainQueueRow(
                scenario_id=entry.scenario_id,
                raw_text=entry.raw_text,
                predictions=entities_to_json(entry.predictions),
                min_confidence=entry.min_confidence,
                created_at=entry.created_at or datetime.utcnow(),
            ))
            return True

        try:
            return self._execute(work)
        except IntegrityError:
            logger.debug(f"Uncertain entry already queued for scenario {entry.scenario_id}")
            return False
        except SQLAlchemyError as e:
            logger.error(f"Storage operation add_uncertain_entry failed: {e}")
            raise StorageError(f"add_uncertain_entry failed: {e}", operation="add_uncertain_entry") from e

    def get_uncertain_entry(self, entry_id: int) -> Optional[UncertainEntry]:
        def work(session: Session) -> Optional[UncertainEntry]:
            row = session.get(UncertainQueueRow, entry_id)
            return row.to_record() if row else None

        return self._run("get_uncertain_entry", work)

    def list_pending_uncertain(self, scenario_id: int, top_n: int = 50) -> List[UncertainEntry]:
        """Unreviewed entries, least confident first"""
        def work(session: Session) -> List[UncertainEntry]:
            rows = (
                session.query(UncertainQueueRow)
                .filter(UncertainQueueRow.scenario_id == scenario_id, UncertainQueueRow.is_reviewed.is_(False))
                .order_by(UncertainQueueRow.min_confidence.asc(), UncertainQueueRow.id.asc())
                .limit(top_n)
                .all()
            )
            return [row.to_record() for row in rows]

        return self._run("list_pending_uncertain", work)

    def mark_uncertain_reviewed(self, entry_id: int, skipped: bool = False, reason: str = "") -> bool:
        def work(session: Session) -> bool:
            row = session.get(UncertainQueueRow, entry_id)
            if row is None:
                return False
            row.is_reviewed = True
            row.is_skipped = skipped
            row.skip_reason = reason or ""
            row.reviewed_at = datetime.utcnow()
            return True

        return self._run("mark_uncertain_reviewed", work)

    def count_pending_uncertain(self, scenario_id: int) -> int:
        def work(session: Session) -> int:
            return (
                session.query(func.count(UncertainQueueRow.id))
                .filter(UncertainQueueRow.scenario_id == scenario_id, UncertainQueueRow.is_reviewed.is_(False))
                .scalar() or 0
            )

        return self._run("count_pending_uncertain", work)

    def clear_uncertain_queue(self, scenario_id: int, reviewed_only: bool = False) -> int:
        """Delete queue entries for a scenario, returning how many were removed"""
        def work(session: Session) -> int:
            query = session.query(UncertainQueueRow).filter(UncertainQueueRow.scenario_id == scenario_id)
            if reviewed_only:
                query = query.filter(UncertainQueueRow.is_reviewed.is_(True))
            return query.delete(synchronize_session=False)

        removed = self._run("clear_uncertain_queue", work)
        logger.info(f"Cleared {removed} uncertain entries for scenario {scenario_id}")
        return removed
