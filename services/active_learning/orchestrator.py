"""
Active-Learning Orchestrator

Closed loop of prediction, uncertainty-driven review, human correction and
quality-gated incremental retraining for one scenario at a time.

    IDLE -> (PREDICT | ENQUEUE_FOR_REVIEW | SUBMIT_CORRECTION)
         -> TRAIN_REQUESTED -> SPLITTING -> TRAINING -> EVALUATING -> GATING
         -> {PROMOTED | REJECTED | FAILED | CANCELLED}

``train_incremental`` never raises: every outcome, including trainer crashes
and cancellation, comes back as a TrainingResult carrying its terminal state.
"""

import logging
import os
import time
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Callable, Iterable, List, Optional

from config.settings import Settings, get_settings
from services.database.annotation_store import AnnotationStore
from services.database.records import (
    AnnotatedText, EntityAnnotation, LearningSession, QualityMetrics, Scenario, UncertainEntry
)
from services.evaluation.quality_evaluator import QualityEvaluator
from services.models.capabilities import EntityModel, ProgressCallback, Trainer
from services.models.gazetteer import GazetteerModel, GazetteerTrainer
from services.models.live_model import LiveModel
from services.registry.model_registry import ModelRegistry
from services.training.parameters import TrainingParameters
from services.triage.uncertainty_sampler import UncertaintySampler
from utils.error_handling import (
    ErrorCategory, ModelError, StorageError, TrainingCancelled, categorize_error, describe_exception
)
from utils.logging_config import LogOperation
from .cancellation import CancellationToken
from .splitting import holdout_split

logger = logging.getLogger(__name__)

class TrainingState(Enum):
    """Lifecycle states; a TrainingResult ends in one of the last four"""
    IDLE = "idle"
    PREDICT = "predict"
    ENQUEUE_FOR_REVIEW = "enqueue_for_review"
    SUBMIT_CORRECTION = "submit_correction"
    TRAIN_REQUESTED = "train_requested"
    SPLITTING = "splitting"
    TRAINING = "training"
    EVALUATING = "evaluating"
    GATING = "gating"
    PROMOTED = "promoted"
    REJECTED = "rejected"
    FAILED = "failed"
    CANCELLED = "cancelled"

@dataclass
class PredictionResult:
    raw_text: str
    entities: List[EntityAnnotation] = field(default_factory=list)
    avg_confidence: float = 0.0
    model_loaded: bool = False

@dataclass
class TrainingResult:
    """Outcome of one incremental training attempt"""
    scenario_id: int
    state: TrainingState = TrainingState.TRAIN_REQUESTED
    success: bool = False
    is_improved: bool = False
    reached_target: bool = False
    model_applied: bool = False
    message: str = ""
    error_category: Optional[ErrorCategory] = None

    sample_count: int = 0
    train_count: int = 0
    validation_count: int = 0
    test_count: int = 0

    metrics_before: Optional[QualityMetrics] = None
    metrics_after: Optional[QualityMetrics] = None
    validation_metrics: Optional[QualityMetrics] = None

    model_tag: str = ""
    registry_version: Optional[str] = None
    session_id: Optional[int] = None
    started_at: datetime = field(default_factory=datetime.utcnow)
    duration_seconds: float = 0.0

def _predictor(model: EntityModel) -> Callable[[str], List[EntityAnnotation]]:
    def predict(text: str) -> List[EntityAnnotation]:
        if not model.is_loaded:
            return []
        return model.predict(text)
    return predict

class ActiveLearningOrchestrator:
    """Coordinates store, sampler, evaluator, trainer and registry"""

    def __init__(self, store: AnnotationStore, live_model: LiveModel, trainer: Trainer,
                 settings: Optional[Settings] = None, registry: Optional[ModelRegistry] = None,
                 evaluator: Optional[QualityEvaluator] = None):
        self.settings = settings or get_settings()
        self.store = store
        self.live_model = live_model
        self.trainer = trainer
        self.evaluator = evaluator or QualityEvaluator()

        self.models_dir = Path(self.settings.models_dir)
        self.models_dir.mkdir(parents=True, exist_ok=True)
        self.model_name = self.settings.active_model_name
        self.active_model_path = self.models_dir / f"{self.model_name}.zip"

        if registry is None and self.settings.publish_to_registry:
            registry = ModelRegistry(self.models_dir)
        self.registry = registry

        self.sampler = UncertaintySampler(
            live_model,
            paragraph_min_length=self.settings.paragraph_min_length,
            max_paragraphs=self.settings.max_paragraphs,
        )

    # ------------------------------------------------------------------
    # Prediction and review
    # ------------------------------------------------------------------

    def predict(self, text: str, scenario: Optional[Scenario] = None) -> PredictionResult:
        """Predict entities, keeping only types the scenario declares.

        A scenario without entity types (or no scenario) accepts every type.
        """
        if not text or not text.strip():
            return PredictionResult(raw_text=text or "", model_loaded=self.live_model.is_loaded)

        model = self.live_model.model
        entities = _predictor(model)(text)

        allowed = {t.lower() for t in scenario.entity_types} if scenario else set()
        if allowed:
            entities = [e for e in entities if e.entity_type.lower() in allowed]

        avg = sum(e.confidence for e in entities) / len(entities) if entities else 0.0
        return PredictionResult(raw_text=text, entities=entities, avg_confidence=avg,
                                model_loaded=model.is_loaded)

    def submit_correction(self, raw_text: str, entities: List[EntityAnnotation], scenario_id: int,
                          original_confidence: float = 0.0,
                          uncertain_entry_id: Optional[int] = None) -> int:
        """Store a human-verified annotation and close its queue entry.

        Returns the annotated text id. Resubmitting the same text updates the
        existing sample.
        """
        annotated = self.store.add_annotated_text(
            scenario_id=scenario_id,
            raw_text=raw_text,
            annotations=entities,
            source="manual_correction",
            confidence_score=original_confidence,
            is_verified=True,
        )

        if uncertain_entry_id is not None:
            self.store.mark_uncertain_reviewed(uncertain_entry_id, skipped=False)

        logger.info(f"Correction stored as sample {annotated.id} for scenario {scenario_id} "
                    f"({len(entities)} entities)")
        return annotated.id

    def enqueue_texts_for_review(self, texts: Iterable[str], scenario_id: int, top_n: Optional[int] = None) -> int:
        """Queue the least confident texts; returns how many were newly inserted"""
        top_n = self.settings.uncertain_top_n if top_n is None else top_n
        candidates = self.sampler.select_most_uncertain(texts, scenario_id, top_n=top_n)
        return self._enqueue(candidates, scenario_id)

    def enqueue_document(self, document: str, scenario_id: int, top_n: Optional[int] = None) -> int:
        """Split a long document into paragraphs and queue the least confident ones"""
        top_n = self.settings.uncertain_top_n if top_n is None else top_n
        candidates = self.sampler.select_from_document(document, scenario_id, top_n=top_n)
        return self._enqueue(candidates, scenario_id)

    def _enqueue(self, candidates: List[UncertainEntry], scenario_id: int) -> int:
        inserted = sum(1 for entry in candidates if self.store.add_uncertain_entry(entry))
        logger.info(f"Queued {inserted}/{len(candidates)} uncertain texts for scenario {scenario_id}")
        return inserted

    def get_uncertain_queue(self, scenario_id: int, top_n: int = 20) -> List[UncertainEntry]:
        return self.store.list_pending_uncertain(scenario_id, top_n)

    def mark_uncertain_skipped(self, entry_id: int, reason: str = "") -> bool:
        return self.store.mark_uncertain_reviewed(entry_id, skipped=True, reason=reason)

    # ------------------------------------------------------------------
    # Statistics
    # ------------------------------------------------------------------

    def get_pending_uncertain_count(self, scenario_id: int) -> int:
        return self.store.count_pending_uncertain(scenario_id)

    def get_annotated_count(self, scenario_id: int) -> int:
        return self.store.count_annotated_texts(scenario_id)

    def get_verified_count(self, scenario_id: int) -> int:
        return self.store.count_verified(scenario_id)

    def get_learning_sessions(self, scenario_id: int) -> List[LearningSession]:
        return self.store.list_learning_sessions(scenario_id)

    def get_latest_applied_session(self, scenario_id: int) -> Optional[LearningSession]:
        return self.store.get_latest_applied_session(scenario_id)

    def get_current_model_tag(self) -> str:
        """``<file name>@<last write time>`` of the active model, or '' if absent"""
        if not self.active_model_path.exists():
            return ""
        mtime = datetime.fromtimestamp(self.active_model_path.stat().st_mtime)
        return f"{self.active_model_path.name}@{mtime.isoformat(timespec='seconds')}"

    def evaluate_current_model(self, scenario_id: int) -> QualityMetrics:
        """Fold-wise quality of the live model over every verified sample"""
        samples = self.store.list_annotated_texts(scenario_id, verified_only=True)
        if not samples:
            return QualityMetrics()
        return self.evaluator.evaluate_kfold(
            samples, _predictor(self.live_model.model), k=self.settings.evaluation_folds, seed=42
        )

    # ------------------------------------------------------------------
    # Incremental training
    # ------------------------------------------------------------------

    def train_incremental(self, scenario_id: int, parameters: Optional[TrainingParameters] = None,
                          progress: Optional[ProgressCallback] = None,
                          cancellation: Optional[CancellationToken] = None) -> TrainingResult:
        parameters = parameters or TrainingParameters.standard()
        result = TrainingResult(scenario_id=scenario_id)
        temp_path = self.models_dir / f"_tmp_{self.model_name}_{uuid.uuid4().hex}.zip"
        started = time.monotonic()

        try:
            with LogOperation("train_incremental", logger_name=__name__, scenario_id=scenario_id,
                              extra_data={"seed": parameters.seed, "iterations": parameters.iterations},
                              cancelled_on=(TrainingCancelled,)) as operation:
                self._train(result, parameters, temp_path, progress, cancellation, started, operation)
        except TrainingCancelled as e:
            result.state = TrainingState.CANCELLED
            result.error_category = ErrorCategory.CANCELLED
            result.success = False
            result.message = f"Training cancelled: {e.message}"
            logger.info(f"Training for scenario {scenario_id} cancelled")
        except Exception as e:
            result.state = TrainingState.FAILED
            result.error_category = categorize_error(e)
            result.success = False
            result.message = f"Training failed: {describe_exception(e)}"
            logger.error(f"Training for scenario {scenario_id} failed: {describe_exception(e)}")
        finally:
            self._discard(temp_path)
            result.duration_seconds = time.monotonic() - started

        return result

    def _train(self, result: TrainingResult, parameters: TrainingParameters, temp_path: Path,
               progress: Optional[ProgressCallback], cancellation: Optional[CancellationToken],
               started: float, operation: LogOperation) -> None:
        def report(stage: str, detail: str, percent: float) -> None:
            operation.enter_stage(stage)
            if progress:
                progress(stage, detail, percent)

        def check_cancelled() -> None:
            if cancellation is not None:
                cancellation.raise_if_cancelled()

        scenario_id = result.scenario_id
        settings = self.settings

        # 1. Load
        result.state = TrainingState.TRAIN_REQUESTED
        report("loading", "Loading verified samples", 0.0)
        samples: List[AnnotatedText] = self.store.list_annotated_texts(scenario_id, verified_only=True)
        result.sample_count = len(samples)

        if len(samples) < settings.min_samples_for_training:
            result.state = TrainingState.FAILED
            result.error_category = ErrorCategory.INSUFFICIENT_SAMPLES
            result.message = (f"Insufficient samples: {len(samples)}/{settings.min_samples_for_training} "
                              f"verified, keep annotating")
            logger.info(result.message)
            return
        check_cancelled()

        # 2. Split
        result.state = TrainingState.SPLITTING
        report("splitting", f"Splitting {len(samples)} samples", 5.0)
        split = holdout_split(samples, test_fraction=parameters.test_fraction, seed=parameters.seed)
        result.train_count = len(split.train)
        result.validation_count = len(split.validation)
        result.test_count = len(split.test)

        if not split.is_usable:
            result.state = TrainingState.FAILED
            result.error_category = ErrorCategory.SPLIT_FAILED
            result.message = (f"Split failed: train={result.train_count}, validation={result.validation_count}, "
                              f"test={result.test_count}")
            logger.warning(result.message)
            return
        check_cancelled()

        # 3. Baseline on the held-out set
        result.state = TrainingState.TRAINING
        report("evaluating", "Scoring current model on the test set", 10.0)
        metrics_before = self.evaluator.evaluate(split.test, _predictor(self.live_model.model))
        result.metrics_before = metrics_before

        # 4. Train candidate
        training_set = split.train + split.validation
        report("training", f"Training on {len(training_set)} samples", 15.0)
        self.trainer.train(training_set, str(temp_path), progress, parameters, cancellation)
        check_cancelled()

        # 5. Evaluate candidate
        result.state = TrainingState.EVALUATING
        report("evaluating", "Scoring candidate model on the test set", 85.0)
        candidate = self.live_model.new_instance()
        candidate.load(str(temp_path))
        metrics_after = self.evaluator.evaluate(split.test, _predictor(candidate))
        result.metrics_after = metrics_after
        if split.validation:
            result.validation_metrics = self.evaluator.evaluate(split.validation, _predictor(candidate))
        check_cancelled()

        # 6. Gate
        result.state = TrainingState.GATING
        report("gating", "Comparing candidate against current model", 95.0)
        improved = metrics_after.f1 > metrics_before.f1 + settings.quality_gate_min_delta
        result.is_improved = improved
        result.reached_target = metrics_after.f1 >= settings.quality_gate_target_f1
        applied_at = None

        # 7. Promote or discard
        if improved:
            try:
                self._promote(temp_path, candidate, metrics_after, result, parameters)
                applied_at = datetime.utcnow()
                result.state = TrainingState.PROMOTED
                result.model_applied = True
                result.model_tag = self.get_current_model_tag()
                result.message = f"Model promoted: F1 {metrics_before.f1:.2%} -> {metrics_after.f1:.2%}"
            except ModelError as e:
                result.state = TrainingState.REJECTED
                result.error_category = ErrorCategory.MODEL
                result.message = f"Candidate rejected by registry: {e.message}"
                logger.warning(result.message)
        else:
            result.state = TrainingState.REJECTED
            result.message = (f"Candidate discarded, no improvement: F1 {metrics_after.f1:.2%} vs "
                              f"{metrics_before.f1:.2%} (min delta {settings.quality_gate_min_delta})")

        result.success = True
        if result.reached_target and result.model_applied:
            result.message += f"; target F1 {settings.quality_gate_target_f1:.2%} reached"

        # 8. Record the session; a storage failure keeps the terminal state
        try:
            previous = self.store.list_learning_sessions(scenario_id, limit=1)
            session = self.store.save_learning_session(LearningSession(
                id=None,
                scenario_id=scenario_id,
                sample_count_before=previous[0].sample_count_after if previous else 0,
                sample_count_after=len(samples),
                metrics_before=metrics_before,
                metrics_after=metrics_after,
                duration_seconds=time.monotonic() - started,
                is_improved=improved,
                reached_target=result.reached_target,
                model_applied=result.model_applied,
                applied_at=applied_at,
                model_tag=result.model_tag,
                train_count=result.train_count,
                validation_count=result.validation_count,
                test_count=result.test_count,
                message=result.message,
                trained_at=datetime.utcnow(),
            ))
            result.session_id = session.id
        except StorageError as e:
            result.error_category = ErrorCategory.STORAGE
            result.message += f"; learning session not recorded: {describe_exception(e)}"
            logger.error(f"Scenario {scenario_id}: learning session not recorded: {describe_exception(e)}")

        report("done", result.message, 100.0)
        logger.info(f"Scenario {scenario_id}: {result.state.value} - {result.message}")

    def _promote(self, temp_path: Path, candidate: EntityModel, metrics: QualityMetrics,
                 result: TrainingResult, parameters: TrainingParameters) -> None:
        """Install the candidate as the active model and swap it into service"""
        if self.registry is not None:
            info = self.registry.publish_version(
                self.model_name,
                temp_path,
                accuracy=metrics.f1,
                sample_count=result.sample_count,
                parameters=parameters.to_dict(),
                block_on_regression=self.settings.block_on_regression,
                regression_threshold=self.settings.regression_threshold,
            )
            result.registry_version = info.version
        else:
            os.replace(temp_path, self.active_model_path)

        self.live_model.swap(candidate, str(self.active_model_path))

    @staticmethod
    def _discard(path: Path) -> None:
        try:
            if path.exists():
                path.unlink()
        except OSError as e:
            logger.warning(f"Could not remove temporary model {path}: {e}")

def create_orchestrator(settings: Optional[Settings] = None,
                        store: Optional[AnnotationStore] = None,
                        trainer: Optional[Trainer] = None,
                        model_factory: Optional[Callable[[], EntityModel]] = None) -> ActiveLearningOrchestrator:
    """Factory function to create an orchestrator wired with the default backend"""
    settings = settings or get_settings()
    settings.ensure_directories()
    store = store or AnnotationStore(settings.database_url)
    model_factory = model_factory or GazetteerModel

    try:
        live_model = LiveModel(model_factory, str(settings.active_model_path))
    except ModelError as e:
        logger.warning(f"Starting without a model, active artifact unusable: {e.message}")
        live_model = LiveModel(model_factory)

    return ActiveLearningOrchestrator(
        store=store,
        live_model=live_model,
        trainer=trainer or GazetteerTrainer(),
        settings=settings,
    )
