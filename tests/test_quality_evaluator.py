"""
Tests for exact-span quality evaluation
"""

import pytest

from services.database.records import AnnotatedText, EntityAnnotation
from services.evaluation.quality_evaluator import QualityEvaluator

def span(start, end, entity_type):
    return EntityAnnotation(start_index=start, end_index=end, entity_type=entity_type)

def sample(text, gold):
    return AnnotatedText(id=None, scenario_id=1, raw_text=text, annotations=gold, is_verified=True)

class TestQualityEvaluator:
    """Test precision, recall and F1 computation"""

    @pytest.fixture
    def evaluator(self):
        return QualityEvaluator()

    def test_perfect_match(self, evaluator):
        """Test identical spans give P=R=F1=1"""
        samples = [sample("abc", [span(0, 3, "X")])]

        metrics = evaluator.evaluate(samples, lambda text: [span(0, 3, "X")])

        assert metrics.precision == 1.0
        assert metrics.recall == 1.0
        assert metrics.f1 == 1.0
        assert metrics.micro_f1 == 1.0
        assert metrics.sample_count == 1

    def test_no_predictions(self, evaluator):
        """Test empty predictions give zeros without dividing by zero"""
        samples = [sample("abc", [span(0, 3, "X")])]

        metrics = evaluator.evaluate(samples, lambda text: [])

        assert (metrics.precision, metrics.recall, metrics.f1) == (0.0, 0.0, 0.0)
        assert metrics.per_type_support == {"X": 1}

    def test_empty_sample_set(self, evaluator):
        metrics = evaluator.evaluate([], lambda text: [])

        assert metrics.f1 == 0.0
        assert metrics.macro_f1 == 0.0
        assert metrics.sample_count == 0

    def test_boundary_mismatch_counts_as_error(self, evaluator):
        samples = [sample("abcdef", [span(0, 3, "X")])]

        metrics = evaluator.evaluate(samples, lambda text: [span(0, 4, "X")])

        assert metrics.precision == 0.0
        assert metrics.recall == 0.0

    def test_type_compared_case_insensitively(self, evaluator):
        samples = [sample("abc", [span(0, 3, "Value")])]

        metrics = evaluator.evaluate(samples, lambda text: [span(0, 3, "value")])

        assert metrics.f1 == 1.0
        assert list(metrics.per_type_f1) == ["Value"]

    def test_each_prediction_matches_once(self, evaluator):
        """Test a duplicated gold span cannot reuse one prediction"""
        samples = [sample("abc", [span(0, 3, "X"), span(0, 3, "X")])]

        metrics = evaluator.evaluate(samples, lambda text: [span(0, 3, "X")])

        assert metrics.precision == 1.0
        assert metrics.recall == 0.5
        assert metrics.f1 == pytest.approx(0.6667)

    def test_micro_and_macro_differ(self, evaluator):
        """Test macro F1 averages per-type F1 without weighting"""
        gold = [span(0, 1, "A"), span(2, 3, "A"), span(4, 5, "A"), span(6, 7, "B")]
        predicted = [span(0, 1, "A"), span(2, 3, "A"), span(4, 5, "A"), span(8, 9, "B")]
        samples = [sample("a a a b b", gold)]

        metrics = evaluator.evaluate(samples, lambda text: predicted)

        assert metrics.per_type_f1 == {"A": 1.0, "B": 0.0}
        assert metrics.per_type_support == {"A": 3, "B": 1}
        assert metrics.macro_f1 == 0.5
        assert metrics.micro_f1 == 0.75

    def test_macro_averages_unrounded_type_scores(self, evaluator):
        """Test per-type F1 of 2/3, 1/6, 1/6 gives macro 1/3, not the mean of rounded values"""
        gold = [span(0, 1, "A")]
        gold += [span(i, i + 1, "B") for i in range(11)]
        gold += [span(i, i + 1, "C") for i in range(11)]
        predicted = [span(0, 1, "A"), span(1, 2, "A"), span(0, 1, "B"), span(0, 1, "C")]
        samples = [sample("x" * 20, gold)]

        metrics = evaluator.evaluate(samples, lambda text: predicted)

        assert metrics.per_type_f1 == {"A": 0.6667, "B": 0.1667, "C": 0.1667}
        assert metrics.macro_f1 == 0.3333

    def test_metrics_rounded_to_four_decimals(self, evaluator):
        gold = [span(0, 1, "A"), span(2, 3, "A"), span(4, 5, "A")]
        samples = [sample("a a a", gold)]

        metrics = evaluator.evaluate(samples, lambda text: [span(0, 1, "A")])

        assert metrics.recall == 0.3333
        assert metrics.f1 == 0.5

class TestKFoldEvaluation:
    """Test fold-wise evaluation"""

    def _samples(self, n):
        return [sample(f"text {i}", [span(0, 4, "X")]) for i in range(n)]

    def test_small_set_falls_back_to_full_evaluation(self):
        evaluator = QualityEvaluator()
        calls = []

        def predict(text):
            calls.append(text)
            return [span(0, 4, "X")]

        metrics = evaluator.evaluate_kfold(self._samples(9), predict, k=5, seed=1)

        assert metrics.sample_count == 9
        assert len(calls) == 9

    def test_every_sample_evaluated_exactly_once(self):
        """Test the fold remainder is not dropped"""
        evaluator = QualityEvaluator()
        calls = []

        def predict(text):
            calls.append(text)
            return []

        evaluator.evaluate_kfold(self._samples(23), predict, k=5, seed=7)

        assert sorted(calls) == sorted(f"text {i}" for i in range(23))

    def test_pooled_counts_match_full_evaluation(self):
        evaluator = QualityEvaluator()
        samples = self._samples(12)

        def predict(text):
            return [span(0, 4, "X")] if text.endswith(("0", "2", "4", "6", "8")) else []

        assert evaluator.evaluate_kfold(samples, predict, k=5, seed=3) == evaluator.evaluate(samples, predict)

    def test_empty_input(self):
        metrics = QualityEvaluator().evaluate_kfold([], lambda text: [], k=5)

        assert metrics.sample_count == 0
