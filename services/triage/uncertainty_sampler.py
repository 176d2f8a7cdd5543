"""
Uncertainty Sampler

Least-confidence sampling: texts the model is least sure about are the ones
most worth a human label. Without a loaded model every text scores 0.0 and
the input order is kept.
"""

import logging
from typing import Iterable, List, Tuple

import numpy as np

from services.database.records import EntityAnnotation, UncertainEntry
from services.models.capabilities import EntityModel
from services.models.live_model import LiveModel

logger = logging.getLogger(__name__)

class UncertaintySampler:
    """Ranks candidate texts by ascending model confidence"""

    def __init__(self, model: EntityModel, paragraph_min_length: int = 5, max_paragraphs: int = 50):
        self.model = model
        self.paragraph_min_length = paragraph_min_length
        self.max_paragraphs = max_paragraphs

    def _score(self, text: str) -> Tuple[float, List[EntityAnnotation]]:
        # Confidence and predictions must come from the same model across a hot swap
        model = self.model.model if isinstance(self.model, LiveModel) else self.model
        if not model.is_loaded:
            return 0.0, []
        return float(model.text_confidence(text)), model.predict(text)

    def select_most_uncertain(self, texts: Iterable[str], scenario_id: int, top_n: int = 20) -> List[UncertainEntry]:
        """Return up to ``top_n`` unsaved queue candidates, least confident first.

        Blank texts are skipped and repeated texts keep their first occurrence.
        Ties keep input order.
        """
        seen = set()
        candidates: List[str] = []
        for text in texts:
            if not text or not text.strip() or text in seen:
                continue
            seen.add(text)
            candidates.append(text)

        if not candidates or top_n <= 0:
            return []

        scored = [self._score(text) for text in candidates]
        confidences = np.array([confidence for confidence, _ in scored], dtype=float)
        order = np.argsort(confidences, kind="stable")[:top_n]

        entries = [
            UncertainEntry(
                id=None,
                scenario_id=scenario_id,
                raw_text=candidates[i],
                predictions=scored[i][1],
                min_confidence=float(confidences[i]),
            )
            for i in order
        ]

        logger.debug(f"Selected {len(entries)} of {len(candidates)} texts for review")
        return entries

    def score_text(self, text: str) -> float:
        if not text or not text.strip():
            return 0.0
        return self._score(text)[0]

    def split_paragraphs(self, text: str, min_length: int = None, max_paragraphs: int = None) -> List[str]:
        """Non-empty trimmed lines of at least ``min_length`` characters"""
        min_length = self.paragraph_min_length if min_length is None else min_length
        max_paragraphs = self.max_paragraphs if max_paragraphs is None else max_paragraphs
        if not text or not text.strip():
            return []

        paragraphs = []
        for line in text.splitlines():
            line = line.strip()
            if len(line) < min_length:
                continue
            paragraphs.append(line)
            if len(paragraphs) >= max_paragraphs:
                break
        return paragraphs

    def score_by_paragraph(self, text: str) -> List[Tuple[str, float]]:
        return [(paragraph, self.score_text(paragraph)) for paragraph in self.split_paragraphs(text)]

    def select_from_document(self, document: str, scenario_id: int, top_n: int = 20) -> List[UncertainEntry]:
        """Split a long document into paragraphs, then select among them"""
        return self.select_most_uncertain(self.split_paragraphs(document), scenario_id, top_n)
