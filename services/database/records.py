"""
Plain data records returned by the annotation store.

The store never hands out ORM rows; callers get these dataclasses, which are
detached from any session and safe to pass across threads.
"""

from dataclasses import dataclass, field, asdict
from datetime import datetime
from typing import Any, Dict, List, Optional


@dataclass
class EntityAnnotation:
    """A labeled span. ``end_index`` is an exclusive character offset."""
    start_index: int
    end_index: int
    entity_type: str
    text: str = ""
    confidence: float = 0.0
    is_manual: bool = False

    def to_json(self) -> Dict[str, Any]:
        return {
            "startIndex": self.start_index,
            "endIndex": self.end_index,
            "entityType": self.entity_type,
            "text": self.text,
            "confidence": self.confidence,
            "isManual": self.is_manual,
        }

    @classmethod
    def from_json(cls, data: Dict[str, Any]) -> "EntityAnnotation":
        def pick(camel: str, snake: str, default: Any) -> Any:
            if camel in data:
                return data[camel]
            return data.get(snake, default)

        return cls(
            start_index=int(pick("startIndex", "start_index", 0)),
            end_index=int(pick("endIndex", "end_index", 0)),
            entity_type=str(pick("entityType", "entity_type", "")),
            text=str(pick("text", "text", "")),
            confidence=float(pick("confidence", "confidence", 0.0)),
            is_manual=bool(pick("isManual", "is_manual", False)),
        )


def entities_to_json(entities: List[EntityAnnotation]) -> List[Dict[str, Any]]:
    return [e.to_json() for e in entities]


def entities_from_json(value: Optional[List[Dict[str, Any]]]) -> List[EntityAnnotation]:
    if not value:
        return []
    return [EntityAnnotation.from_json(item) for item in value]


@dataclass
class Scenario:
    id: Optional[int]
    name: str
    description: str = ""
    entity_types: List[str] = field(default_factory=list)
    is_built_in: bool = False
    created_at: Optional[datetime] = None


@dataclass
class AnnotatedText:
    id: Optional[int]
    scenario_id: int
    raw_text: str
    annotations: List[EntityAnnotation] = field(default_factory=list)
    source: str = ""
    confidence_score: float = 0.0
    is_verified: bool = False
    created_at: Optional[datetime] = None


@dataclass
class UncertainEntry:
    id: Optional[int]
    scenario_id: int
    raw_text: str
    predictions: List[EntityAnnotation] = field(default_factory=list)
    min_confidence: float = 1.0
    is_reviewed: bool = False
    is_skipped: bool = False
    skip_reason: str = ""
    reviewed_at: Optional[datetime] = None
    created_at: Optional[datetime] = None


@dataclass
class QualityMetrics:
    """Quality snapshot. ``f1`` is the micro F1; ``micro_f1`` mirrors it."""
    precision: float = 0.0
    recall: float = 0.0
    f1: float = 0.0
    micro_f1: float = 0.0
    macro_f1: float = 0.0
    sample_count: int = 0
    per_type_f1: Dict[str, float] = field(default_factory=dict)
    per_type_support: Dict[str, int] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "QualityMetrics":
        if not data:
            return cls()
        known = {k: data[k] for k in cls.__dataclass_fields__ if k in data}
        return cls(**known)


@dataclass
class LearningSession:
    id: Optional[int]
    scenario_id: int
    sample_count_before: int = 0
    sample_count_after: int = 0
    metrics_before: QualityMetrics = field(default_factory=QualityMetrics)
    metrics_after: QualityMetrics = field(default_factory=QualityMetrics)
    duration_seconds: float = 0.0
    is_improved: bool = False
    reached_target: bool = False
    model_applied: bool = False
    applied_at: Optional[datetime] = None
    model_tag: str = ""
    train_count: int = 0
    validation_count: int = 0
    test_count: int = 0
    message: str = ""
    trained_at: Optional[datetime] = None
