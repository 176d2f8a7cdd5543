"""
Gazetteer Entity Model

Reference backend for the lifecycle engine. Training collects every labeled
surface form from verified samples; prediction finds those surface forms in
new text with word-boundary pattern matching, longest form first.

Confidence of a surface form is the share of its occurrences carrying the
winning label, damped by how often it was seen, so rare forms score as
uncertain.

Artifact layout (zip):
    gazetteer.json  {surface_lower: {"label", "confidence", "support", "text"}}
    meta.json       {"trained_at", "sample_count", "entry_count", "parameters"}
"""

import json
import logging
import re
import zipfile
from collections import defaultdict
from datetime import datetime
from pathlib import Path
from typing import Dict, List, Optional, Any

from services.database.records import AnnotatedText, EntityAnnotation
from services.training.parameters import TrainingParameters
from utils.error_handling import ModelError

logger = logging.getLogger(__name__)

GAZETTEER_ENTRY = "gazetteer.json"
META_ENTRY = "meta.json"

class GazetteerModel:
    """Surface-form matcher implementing the EntityModel capability"""

    def __init__(self):
        self.entries: Dict[str, Dict[str, Any]] = {}
        self.meta: Dict[str, Any] = {}
        self.path: Optional[str] = None
        self._pattern: Optional[re.Pattern] = None
        self._loaded = False

    @property
    def is_loaded(self) -> bool:
        return self._loaded

    @property
    def entity_types(self) -> List[str]:
        return sorted({entry["label"] for entry in self.entries.values()})

    def load(self, path: str) -> None:
        model_path = Path(path)
        if not model_path.exists():
            raise ModelError(f"Model file not found: {model_path}", model_path=str(model_path))

        try:
            with zipfile.ZipFile(model_path, "r") as archive:
                entries = json.loads(archive.read(GAZETTEER_ENTRY).decode("utf-8"))
                meta = json.loads(archive.read(META_ENTRY).decode("utf-8")) if META_ENTRY in archive.namelist() else {}
        except (zipfile.BadZipFile, KeyError, ValueError) as e:
            raise ModelError(f"Unreadable model file {model_path}: {e}", model_path=str(model_path)) from e

        self.entries = entries
        self.meta = meta
        self.path = str(model_path)
        self._pattern = self._compile(entries)
        self._loaded = True

        logger.info(f"Loaded gazetteer model from {model_path} ({len(entries)} entries)")

    @staticmethod
    def _compile(entries: Dict[str, Dict[str, Any]]) -> Optional[re.Pattern]:
        if not entries:
            return None
        forms = sorted(entries.keys(), key=lambda s: (-len(s), s))
        alternation = "|".join(re.escape(form) for form in forms)
        return re.compile(rf"(?<!\w)(?:{alternation})(?!\w)", re.IGNORECASE)

    def predict(self, text: str) -> List[EntityAnnotation]:
        if not self._loaded or self._pattern is None or not text:
            return []

        entities = []
        for match in self._pattern.finditer(text):
            entry = self.entries.get(match.group().lower())
            if entry is None:
                continue
            entities.append(EntityAnnotation(
                start_index=match.start(),
                end_index=match.end(),
                entity_type=entry["label"],
                text=match.group(),
                confidence=float(entry["confidence"]),
                is_manual=False,
            ))
        return entities

    def text_confidence(self, text: str) -> float:
        """Lowest entity confidence in the text; 0.0 when nothing is recognized"""
        predictions = self.predict(text)
        if not predictions:
            return 0.0
        return min(entity.confidence for entity in predictions)

class GazetteerTrainer:
    """Builds a GazetteerModel artifact, implementing the Trainer capability"""

    def train(self, samples: List[AnnotatedText], output_path: str,
              progress=None, parameters: Optional[TrainingParameters] = None,
              cancellation=None) -> None:
        parameters = parameters or TrainingParameters()
        label_counts: Dict[str, Dict[str, int]] = defaultdict(lambda: defaultdict(int))
        display: Dict[str, str] = {}

        total = len(samples)
        for index, sample in enumerate(samples):
            if cancellation is not None:
                cancellation.raise_if_cancelled()

            for annotation in sample.annotations:
                surface = sample.raw_text[annotation.start_index:annotation.end_index].strip()
                if not surface:
                    surface = annotation.text.strip()
                if not surface:
                    continue
                key = surface.lower()
                display.setdefault(key, surface)
                label_counts[key][annotation.entity_type] += 1

            if progress and total:
                progress("training", f"Collected sample {index + 1}/{total}", 100.0 * (index + 1) / total)

        entries = {}
        for key, counts in label_counts.items():
            support = sum(counts.values())
            if support < parameters.min_occurrences:
                continue
            # Ties resolve to the alphabetically first label
            label, hits = max(sorted(counts.items()), key=lambda item: item[1])
            agreement = hits / support
            entries[key] = {
                "label": label,
                "confidence": round(agreement * support / (support + 1), 4),
                "support": support,
                "text": display[key],
            }

        meta = {
            "trained_at": datetime.utcnow().isoformat(),
            "sample_count": total,
            "entry_count": len(entries),
            "parameters": parameters.to_dict(),
        }

        output = Path(output_path)
        output.parent.mkdir(parents=True, exist_ok=True)
        with zipfile.ZipFile(output, "w", compression=zipfile.ZIP_DEFLATED) as archive:
            archive.writestr(GAZETTEER_ENTRY, json.dumps(entries, ensure_ascii=False, indent=2))
            archive.writestr(META_ENTRY, json.dumps(meta, ensure_ascii=False, indent=2))

        logger.info(f"Trained gazetteer with {len(entries)} entries from {total} samples -> {output}")
