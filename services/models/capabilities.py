"""
Capabilities the lifecycle engine requires from a model backend.

Any object with the right methods satisfies these protocols; the engine never
inspects how a model represents or learns entities.
"""

from typing import Callable, List, Optional, Protocol, runtime_checkable

from services.database.records import AnnotatedText, EntityAnnotation
from services.training.parameters import TrainingParameters

# progress(stage, detail, percent)
ProgressCallback = Callable[[str, str, float], None]

@runtime_checkable
class EntityModel(Protocol):
    """A loaded (or loadable) entity extractor"""

    @property
    def is_loaded(self) -> bool:
        ...

    def load(self, path: str) -> None:
        """Load an artifact; raises ModelError when the file is missing or unreadable"""
        ...

    def predict(self, text: str) -> List[EntityAnnotation]:
        ...

    def text_confidence(self, text: str) -> float:
        """Overall confidence for a text in [0, 1]; lower means more uncertain"""
        ...

@runtime_checkable
class Trainer(Protocol):
    """Produces a model artifact at ``output_path`` from labeled samples"""

    def train(self, samples: List[AnnotatedText], output_path: str,
              progress: Optional[ProgressCallback] = None,
              parameters: Optional[TrainingParameters] = None,
              cancellation=None) -> None:
        ...
