"""
Database package for the active-learning store
"""

from .models import (
    Base, ScenarioRow, AnnotatedTextRow, LearningSessionRow, UncertainQueueRow
)
from .records import (
    Scenario, AnnotatedText, EntityAnnotation, LearningSession, UncertainEntry, QualityMetrics
)
from .annotation_store import AnnotationStore
from .scenarios import ScenarioManager, BUILT_IN_SCENARIOS

__all__ = [
    'Base', 'ScenarioRow', 'AnnotatedTextRow', 'LearningSessionRow', 'UncertainQueueRow',
    'Scenario', 'AnnotatedText', 'EntityAnnotation', 'LearningSession', 'UncertainEntry',
    'QualityMetrics', 'AnnotationStore', 'ScenarioManager', 'BUILT_IN_SCENARIOS'
]
