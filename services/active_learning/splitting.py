"""
Seeded holdout split of verified samples into train, validation and test
"""

from dataclasses import dataclass, field
from typing import List, Sequence, TypeVar

import numpy as np

T = TypeVar("T")

MIN_TEST_FRACTION = 0.1
MAX_TEST_FRACTION = 0.4
VALIDATION_FRACTION = 0.1
MIN_REMAINDER_FOR_VALIDATION = 10

@dataclass
class HoldoutSplit:
    train: List = field(default_factory=list)
    validation: List = field(default_factory=list)
    test: List = field(default_factory=list)

    @property
    def is_usable(self) -> bool:
        """Training needs something to learn from and something to score on"""
        return bool(self.train or self.validation) and bool(self.test)

def holdout_split(samples: Sequence[T], test_fraction: float = 0.2, seed: int = 42) -> HoldoutSplit:
    """Shuffle with ``seed`` and cut off a test set.

    The test fraction is clamped to [0.1, 0.4]; the test set holds at least
    one sample and never the whole set. About 10% of the remainder becomes a
    validation set once the remainder reaches 10 samples.
    """
    n = len(samples)
    if n == 0:
        return HoldoutSplit()

    fraction = min(max(test_fraction, MIN_TEST_FRACTION), MAX_TEST_FRACTION)
    test_count = min(max(int(round(n * fraction)), 1), n - 1)

    rng = np.random.default_rng(seed)
    order = [int(i) for i in rng.permutation(n)]
    shuffled = [samples[i] for i in order]

    test = shuffled[:test_count]
    remainder = shuffled[test_count:]

    validation_count = 0
    if len(remainder) >= MIN_REMAINDER_FOR_VALIDATION:
        validation_count = int(round(len(remainder) * VALIDATION_FRACTION))

    validation = remainder[:validation_count]
    train = remainder[validation_count:]
    return HoldoutSplit(train=train, validation=validation, test=test)
