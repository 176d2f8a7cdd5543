"""
Training parameters passed opaquely to a Trainer
"""

from dataclasses import dataclass, asdict, fields
from enum import Enum
from typing import Any, Dict, Optional

class TrainingPreset(Enum):
    FAST = "fast"
    STANDARD = "standard"
    FINE = "fine"

@dataclass
class TrainingParameters:
    """Knobs shared by every trainer; backends ignore what they don't use"""
    seed: int = 42
    test_fraction: float = 0.2
    cross_validation_folds: int = 0  # 0 = single holdout split
    enable_augmentation: bool = False
    iterations: int = 100
    leaves: int = 31
    learning_rate: float = 0.1
    min_occurrences: int = 1  # surface-form support required by count-based trainers

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "TrainingParameters":
        if not data:
            return cls()
        names = {f.name for f in fields(cls)}
        return cls(**{k: v for k, v in data.items() if k in names})

    @classmethod
    def fast(cls) -> "TrainingParameters":
        return cls(iterations=50, learning_rate=0.15, cross_validation_folds=0)

    @classmethod
    def standard(cls) -> "TrainingParameters":
        return cls(iterations=200, learning_rate=0.1, cross_validation_folds=5)

    @classmethod
    def fine(cls) -> "TrainingParameters":
        return cls(iterations=500, leaves=50, learning_rate=0.05,
                   cross_validation_folds=5, enable_augmentation=True)

    @classmethod
    def for_preset(cls, preset: str) -> "TrainingParameters":
        factories = {
            TrainingPreset.FAST: cls.fast,
            TrainingPreset.STANDARD: cls.standard,
            TrainingPreset.FINE: cls.fine,
        }
        return factories[TrainingPreset(preset.lower())]()
