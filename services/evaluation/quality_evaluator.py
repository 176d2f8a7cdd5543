"""
Quality Evaluator

Exact-span precision, recall and F1 for entity predictions against verified
gold annotations. A prediction counts only when its type (case-insensitive),
start and end all match a gold span; each predicted span can match once.
"""

import logging
from collections import defaultdict
from typing import Callable, Dict, Iterable, List, Optional

import numpy as np

from services.database.records import AnnotatedText, EntityAnnotation, QualityMetrics

logger = logging.getLogger(__name__)

Predictor = Callable[[str], List[EntityAnnotation]]

class _Counts:
    """Per-type true/false positive and false negative tallies"""

    def __init__(self):
        self.tp: Dict[str, int] = defaultdict(int)
        self.fp: Dict[str, int] = defaultdict(int)
        self.fn: Dict[str, int] = defaultdict(int)
        self.labels: Dict[str, str] = {}  # lowercase key -> first-seen spelling

    def key(self, entity_type: str) -> str:
        lowered = entity_type.lower()
        self.labels.setdefault(lowered, entity_type)
        return lowered

    def accumulate(self, gold: List[EntityAnnotation], predicted: List[EntityAnnotation]) -> None:
        gold_by_type: Dict[str, List[EntityAnnotation]] = defaultdict(list)
        pred_by_type: Dict[str, List[EntityAnnotation]] = defaultdict(list)
        for entity in gold:
            gold_by_type[self.key(entity.entity_type)].append(entity)
        for entity in predicted:
            pred_by_type[self.key(entity.entity_type)].append(entity)

        for type_key in set(gold_by_type) | set(pred_by_type):
            gold_list = gold_by_type.get(type_key, [])
            pred_list = pred_by_type.get(type_key, [])
            used = set()
            matched = 0

            for g in gold_list:
                for i, p in enumerate(pred_list):
                    if i in used:
                        continue
                    if g.start_index == p.start_index and g.end_index == p.end_index:
                        used.add(i)
                        matched += 1
                        break

            self.tp[type_key] += matched
            self.fp[type_key] += len(pred_list) - matched
            self.fn[type_key] += len(gold_list) - matched

    def to_metrics(self, sample_count: int) -> QualityMetrics:
        total_tp = sum(self.tp.values())
        total_fp = sum(self.fp.values())
        total_fn = sum(self.fn.values())

        precision = _ratio(total_tp, total_tp + total_fp)
        recall = _ratio(total_tp, total_tp + total_fn)
        f1 = _f1(precision, recall)

        per_type_f1 = {}
        per_type_support = {}
        raw_f1 = []
        for type_key in sorted(self.tp):
            tp, fp, fn = self.tp[type_key], self.fp[type_key], self.fn[type_key]
            label = self.labels[type_key]
            type_f1 = _f1(_ratio(tp, tp + fp), _ratio(tp, tp + fn))
            raw_f1.append(type_f1)
            per_type_f1[label] = round(type_f1, 4)
            per_type_support[label] = tp + fn

        macro_f1 = float(np.mean(raw_f1)) if raw_f1 else 0.0

        return QualityMetrics(
            precision=round(precision, 4),
            recall=round(recall, 4),
            f1=round(f1, 4),
            micro_f1=round(f1, 4),
            macro_f1=round(macro_f1, 4),
            sample_count=sample_count,
            per_type_f1=per_type_f1,
            per_type_support=per_type_support,
        )

def _ratio(numerator: int, denominator: int) -> float:
    return numerator / denominator if denominator > 0 else 0.0

def _f1(precision: float, recall: float) -> float:
    return 2 * precision * recall / (precision + recall) if (precision + recall) > 0 else 0.0

class QualityEvaluator:
    """Computes QualityMetrics for a predictor over labeled samples"""

    def evaluate(self, samples: Iterable[AnnotatedText], predict: Predictor) -> QualityMetrics:
        """Evaluate every sample once and pool the counts"""
        samples = list(samples)
        counts = _Counts()

        for sample in samples:
            counts.accumulate(sample.annotations, predict(sample.raw_text))

        metrics = counts.to_metrics(len(samples))
        logger.debug(
            f"Evaluated {len(samples)} samples: P={metrics.precision} R={metrics.recall} F1={metrics.f1}"
        )
        return metrics

    def evaluate_kfold(self, samples: Iterable[AnnotatedText], predict: Predictor,
                       k: int = 5, seed: Optional[int] = None) -> QualityMetrics:
        """Fold-wise evaluation over a seeded shuffle.

        Falls back to a single pass over the full set when there are fewer
        than ``2 * k`` samples. Leftover samples go to the first folds, so
        every sample is scored exactly once.
        """
        samples = list(samples)
        if not samples:
            return QualityMetrics()
        if k < 2 or len(samples) < 2 * k:
            return self.evaluate(samples, predict)

        rng = np.random.default_rng(seed)
        order = rng.permutation(len(samples))
        folds = np.array_split(order, k)

        counts = _Counts()
        for fold_index, fold in enumerate(folds):
            for idx in fold:
                sample = samples[int(idx)]
                counts.accumulate(sample.annotations, predict(sample.raw_text))
            logger.debug(f"Fold {fold_index + 1}/{k}: {len(fold)} samples")

        return counts.to_metrics(len(samples))

__all__ = ['QualityEvaluator', 'QualityMetrics', 'Predictor']
