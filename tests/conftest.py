"""
Pytest configuration and shared fixtures
"""

import json
import os
import sys
import tempfile
from pathlib import Path
from typing import Dict, List, Optional, Tuple
import pytest

# Add project root to path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

# Set test environment
os.environ["NERLOOP_ENVIRONMENT"] = "testing"

from services.database.records import EntityAnnotation

class ScriptedModel:
    """EntityModel double whose artifact is a JSON map of text -> predictions"""

    def __init__(self):
        self.predictions: Dict[str, List[EntityAnnotation]] = {}
        self.confidences: Dict[str, float] = {}
        self.loaded_from: Optional[str] = None

    @property
    def is_loaded(self) -> bool:
        return self.loaded_from is not None

    def load(self, path: str) -> None:
        from utils.error_handling import ModelError

        if not Path(path).exists():
            raise ModelError(f"Model file not found: {path}", model_path=path)
        data = json.loads(Path(path).read_text(encoding="utf-8"))
        self.predictions = {
            text: [EntityAnnotation.from_json(e) for e in entities]
            for text, entities in data.get("predictions", {}).items()
        }
        self.confidences = data.get("confidences", {})
        self.loaded_from = path

    def predict(self, text: str) -> List[EntityAnnotation]:
        return list(self.predictions.get(text, []))

    def text_confidence(self, text: str) -> float:
        return float(self.confidences.get(text, 0.5))

class ScriptedTrainer:
    """Trainer double writing a ScriptedModel artifact.

    ``predictions`` is what the produced model will answer; ``error`` is
    raised instead of writing; ``on_train`` runs just before writing.
    """

    def __init__(self, predictions: Optional[Dict[str, List[EntityAnnotation]]] = None,
                 confidences: Optional[Dict[str, float]] = None,
                 error: Optional[BaseException] = None, on_train=None):
        self.predictions = predictions or {}
        self.confidences = confidences or {}
        self.error = error
        self.on_train = on_train
        self.calls = []

    def train(self, samples, output_path, progress=None, parameters=None, cancellation=None):
        self.calls.append({"samples": list(samples), "output_path": output_path, "parameters": parameters})
        if self.error is not None:
            raise self.error
        if self.on_train is not None:
            self.on_train()
        write_scripted_model(output_path, self.predictions, self.confidences)

def write_scripted_model(path, predictions: Dict[str, List[EntityAnnotation]],
                         confidences: Optional[Dict[str, float]] = None) -> Path:
    payload = {
        "predictions": {text: [e.to_json() for e in entities] for text, entities in predictions.items()},
        "confidences": confidences or {},
    }
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(payload), encoding="utf-8")
    return path

def make_entities(text: str, spans: List[Tuple[str, str]]) -> List[EntityAnnotation]:
    """Build annotations from (surface, type) pairs, locating each surface in text"""
    entities = []
    cursor = 0
    for surface, entity_type in spans:
        start = text.index(surface, cursor)
        end = start + len(surface)
        entities.append(EntityAnnotation(start_index=start, end_index=end, entity_type=entity_type,
                                         text=surface, confidence=1.0, is_manual=True))
        cursor = end
    return entities

def channel_samples(count: int) -> List[Tuple[str, List[EntityAnnotation]]]:
    """Distinct labeled texts with a Value and a Unit each"""
    samples = []
    for i in range(count):
        text = f"Channel {i} supply is {i + 10} V nominal"
        samples.append((text, make_entities(text, [(str(i + 10), "Value"), ("V", "Unit")])))
    return samples

@pytest.fixture
def temp_dir():
    """Create temporary directory for test files"""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)

@pytest.fixture
def settings(temp_dir):
    """Isolated settings pointing at the temporary directory"""
    from config.settings import Settings

    test_settings = Settings(
        environment="testing",
        data_dir=temp_dir / "data",
        models_dir=temp_dir / "data" / "models",
        database_url_override=f"sqlite:///{temp_dir / 'test.db'}",
        min_samples_for_training=3,
        publish_to_registry=True,
    )
    test_settings.ensure_directories()
    return test_settings

@pytest.fixture
def store(settings):
    """Annotation store on a fresh SQLite file"""
    from services.database.annotation_store import AnnotationStore

    annotation_store = AnnotationStore(settings.database_url)
    yield annotation_store
    annotation_store.close()

@pytest.fixture
def scenario(store):
    return store.add_scenario("Voltage Specs", ["Value", "Unit"], description="test scenario")

@pytest.fixture
def verified_samples(store, scenario):
    """Factory storing ``count`` verified samples and returning them"""
    def create(count: int):
        stored = []
        for text, entities in channel_samples(count):
            stored.append(store.add_annotated_text(
                scenario.id, text, entities, source="manual_correction", is_verified=True
            ))
        return stored
    return create

@pytest.fixture
def make_orchestrator(store, settings):
    """Factory building an orchestrator around ScriptedModel and a given trainer"""
    from services.active_learning.orchestrator import ActiveLearningOrchestrator
    from services.models.live_model import LiveModel

    def create(trainer=None, settings_overrides: Optional[Dict] = None, registry=None):
        effective = settings.model_copy(update=settings_overrides or {})
        return ActiveLearningOrchestrator(
            store=store,
            live_model=LiveModel(ScriptedModel),
            trainer=trainer or ScriptedTrainer(),
            settings=effective,
            registry=registry,
        )
    return create

@pytest.fixture
def scripted_trainer():
    return ScriptedTrainer

@pytest.fixture
def entities_for():
    return make_entities

@pytest.fixture
def write_model():
    return write_scripted_model

@pytest.fixture
def labeled_pairs():
    return channel_samples
