"""
Tests for least-confidence sampling
"""

import pytest

from services.database.records import EntityAnnotation
from services.models.live_model import LiveModel
from services.triage.uncertainty_sampler import UncertaintySampler

class StubModel:
    def __init__(self, confidences, loaded=True):
        self.confidences = confidences
        self.loaded = loaded

    @property
    def is_loaded(self):
        return self.loaded

    def predict(self, text):
        return []

    def text_confidence(self, text):
        return self.confidences.get(text, 1.0)

class TestSelectMostUncertain:
    """Test candidate ranking"""

    def test_orders_by_ascending_confidence(self):
        sampler = UncertaintySampler(StubModel({"a": 0.9, "b": 0.1, "c": 0.5}))

        entries = sampler.select_most_uncertain(["a", "b", "c"], scenario_id=7, top_n=2)

        assert [e.raw_text for e in entries] == ["b", "c"]
        assert [e.min_confidence for e in entries] == [0.1, 0.5]
        assert all(e.scenario_id == 7 and e.id is None for e in entries)

    def test_ties_keep_input_order(self):
        sampler = UncertaintySampler(StubModel({"x": 0.3, "y": 0.3, "z": 0.3}))

        entries = sampler.select_most_uncertain(["z", "x", "y"], scenario_id=1, top_n=3)

        assert [e.raw_text for e in entries] == ["z", "x", "y"]

    def test_blank_texts_skipped(self):
        sampler = UncertaintySampler(StubModel({}))

        entries = sampler.select_most_uncertain(["", "   ", "real"], scenario_id=1, top_n=10)

        assert [e.raw_text for e in entries] == ["real"]

    def test_duplicates_collapse_to_first(self):
        sampler = UncertaintySampler(StubModel({"dup": 0.2, "other": 0.4}))

        entries = sampler.select_most_uncertain(["dup", "other", "dup"], scenario_id=1, top_n=10)

        assert [e.raw_text for e in entries] == ["dup", "other"]

    def test_without_model_everything_scores_zero(self):
        sampler = UncertaintySampler(StubModel({"a": 0.9}, loaded=False))

        entries = sampler.select_most_uncertain(["a", "b"], scenario_id=1, top_n=5)

        assert [e.min_confidence for e in entries] == [0.0, 0.0]
        assert [e.raw_text for e in entries] == ["a", "b"]
        assert all(e.predictions == [] for e in entries)

    def test_zero_top_n(self):
        sampler = UncertaintySampler(StubModel({}))

        assert sampler.select_most_uncertain(["a"], scenario_id=1, top_n=0) == []

class TestParagraphScoring:
    """Test document chunking helpers"""

    def test_split_paragraphs_filters_short_lines(self):
        sampler = UncertaintySampler(StubModel({}))
        document = "Header\n\nok\n  A longer paragraph line  \r\nTail line here"

        assert sampler.split_paragraphs(document) == ["Header", "A longer paragraph line", "Tail line here"]

    def test_split_paragraphs_caps_count(self):
        sampler = UncertaintySampler(StubModel({}))
        document = "\n".join(f"paragraph {i}" for i in range(10))

        assert len(sampler.split_paragraphs(document, max_paragraphs=3)) == 3

    def test_score_by_paragraph(self):
        sampler = UncertaintySampler(StubModel({"first line": 0.2, "second line": 0.8}))

        scores = sampler.score_by_paragraph("first line\nsecond line")

        assert scores == [("first line", 0.2), ("second line", 0.8)]

    def test_score_text_blank(self):
        assert UncertaintySampler(StubModel({})).score_text("  ") == 0.0

    def test_select_from_document(self):
        sampler = UncertaintySampler(StubModel({"sure paragraph": 0.9, "unsure paragraph": 0.1}))

        entries = sampler.select_from_document("sure paragraph\nunsure paragraph", scenario_id=3, top_n=1)

        assert [e.raw_text for e in entries] == ["unsure paragraph"]

    @pytest.mark.parametrize("text", ["", "   \n  "])
    def test_empty_document(self, text):
        assert UncertaintySampler(StubModel({})).split_paragraphs(text) == []

class TestLiveModelScoring:
    """Test scoring against a hot-swapped live model"""

    def test_confidence_and_predictions_from_same_model(self):
        class MarkedModel(StubModel):
            def __init__(self, label, on_confidence=None):
                super().__init__({}, loaded=True)
                self.label = label
                self.on_confidence = on_confidence

            def predict(self, text):
                return [EntityAnnotation(start_index=0, end_index=1, entity_type=self.label)]

            def text_confidence(self, text):
                if self.on_confidence:
                    self.on_confidence()
                return 0.3

        live = LiveModel(lambda: StubModel({}, loaded=False))
        replacement = MarkedModel("New")
        live.swap(MarkedModel("Old", on_confidence=lambda: live.swap(replacement, "new.zip")), "old.zip")

        entries = UncertaintySampler(live).select_most_uncertain(["text"], scenario_id=1, top_n=1)

        assert [e.entity_type for e in entries[0].predictions] == ["Old"]
        assert live.model is replacement
