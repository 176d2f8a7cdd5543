"""
Tests for the seeded holdout split
"""

import pytest

from services.active_learning.splitting import holdout_split

class TestHoldoutSplit:
    """Test split sizes and determinism"""

    def test_partition_covers_all_samples(self):
        samples = list(range(50))

        split = holdout_split(samples, test_fraction=0.2, seed=42)

        assert sorted(split.train + split.validation + split.test) == samples
        assert len(split.test) == 10
        assert len(split.validation) == 4
        assert len(split.train) == 36

    def test_same_seed_same_split(self):
        samples = list(range(30))

        assert holdout_split(samples, seed=5).test == holdout_split(samples, seed=5).test

    def test_different_seed_changes_split(self):
        samples = list(range(30))

        assert holdout_split(samples, seed=1).test != holdout_split(samples, seed=2).test

    @pytest.mark.parametrize("fraction,expected", [(0.01, 2), (0.9, 8), (0.25, 5)])
    def test_test_fraction_clamped(self, fraction, expected):
        split = holdout_split(list(range(20)), test_fraction=fraction, seed=0)

        assert len(split.test) == expected

    def test_tiny_set_keeps_one_test_sample(self):
        split = holdout_split([1, 2, 3], test_fraction=0.1, seed=0)

        assert len(split.test) == 1
        assert len(split.train) == 2
        assert split.validation == []
        assert split.is_usable

    def test_never_puts_everything_in_test(self):
        split = holdout_split([1, 2], test_fraction=0.4, seed=0)

        assert len(split.test) == 1
        assert len(split.train) == 1

    def test_single_sample_is_unusable(self):
        split = holdout_split(["only"], seed=0)

        assert split.test == []
        assert not split.is_usable

    def test_no_validation_below_ten_remaining(self):
        split = holdout_split(list(range(11)), test_fraction=0.2, seed=0)

        assert len(split.test) == 2
        assert split.validation == []

    def test_empty_input(self):
        split = holdout_split([], seed=0)

        assert not split.is_usable
