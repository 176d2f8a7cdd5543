"""
Live model handle

Holds the model instance that serves predictions. Replacement builds a new
instance off to the side and swaps the reference under a lock, so readers
either see the old model or the new one, never a half-loaded object.
"""

import logging
import threading
from pathlib import Path
from typing import Callable, List, Optional

from services.database.records import EntityAnnotation
from .capabilities import EntityModel

logger = logging.getLogger(__name__)

class LiveModel:
    """Double-buffered reference to the serving EntityModel"""

    def __init__(self, model_factory: Callable[[], EntityModel], model_path: Optional[str] = None):
        self.model_factory = model_factory
        self._lock = threading.Lock()
        self._model: EntityModel = model_factory()
        self._path: Optional[str] = None

        if model_path and Path(model_path).exists():
            self.reload(model_path)

    @property
    def model(self) -> EntityModel:
        """Snapshot of the current model; safe to use without holding the lock"""
        with self._lock:
            return self._model

    @property
    def path(self) -> Optional[str]:
        with self._lock:
            return self._path

    @property
    def is_loaded(self) -> bool:
        return self.model.is_loaded

    def new_instance(self) -> EntityModel:
        return self.model_factory()

    def reload(self, model_path: str) -> EntityModel:
        """Load a fresh instance from disk and swap it in.

        Errors from loading propagate and leave the current model in place.
        """
        fresh = self.model_factory()
        fresh.load(str(model_path))
        self.swap(fresh, str(model_path))
        return fresh

    def swap(self, model: EntityModel, model_path: Optional[str] = None) -> None:
        with self._lock:
            self._model = model
            self._path = model_path
        logger.info(f"Live model swapped in from {model_path}")

    def predict(self, text: str) -> List[EntityAnnotation]:
        model = self.model
        if not model.is_loaded:
            return []
        return model.predict(text)

    def text_confidence(self, text: str) -> float:
        model = self.model
        if not model.is_loaded:
            return 0.0
        return model.text_confidence(text)
