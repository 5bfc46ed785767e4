"""
Tests for the Matching Module

These tests verify that:
1. DescriptorMatcher compares model descriptors by Euclidean distance
2. HeuristicMatcher compares heuristic fingerprints by RMS distance
3. The decision is strict: distance == threshold is a no-match
4. Fingerprints of different strategies are never compared
5. match_identity() dispatches on the strategy tag and honours thresholds

Usage:
    pytest tests/test_matching.py -v
"""

import numpy as np
import pytest

from faceverify.errors import ErrorKind, StrategyMismatchError
from faceverify.fingerprint import Fingerprint
from faceverify.matching import (
    DescriptorMatcher,
    HeuristicMatcher,
    VerificationResult,
    get_matcher,
    match_identity,
)
from faceverify.strategy import Strategy


# ============================================================
# Test Fixtures
# ============================================================

@pytest.fixture
def default_config():
    """Default matching configuration."""
    return {
        "heuristic_threshold": 0.5,
        "model_threshold": 0.6,
    }


def model_fp(values) -> Fingerprint:
    return Fingerprint(vector=np.asarray(values, dtype=np.float32), strategy=Strategy.MODEL)


def heuristic_fp(values) -> Fingerprint:
    return Fingerprint(vector=np.asarray(values, dtype=np.float32), strategy=Strategy.HEURISTIC)


@pytest.fixture
def random_descriptors():
    """Pairs of random unit-norm 128-d descriptors."""
    rng = np.random.default_rng(7)
    pairs = []
    for _ in range(10):
        a = rng.normal(size=128)
        b = rng.normal(size=128)
        pairs.append((model_fp(a / np.linalg.norm(a)), model_fp(b / np.linalg.norm(b))))
    return pairs


# ============================================================
# DescriptorMatcher Tests
# ============================================================

class TestDescriptorMatcher:
    """Tests for the Euclidean descriptor matcher."""

    def test_identical_descriptors_match(self):
        fp = model_fp([0.1, 0.2, 0.3])
        result = DescriptorMatcher().compare(fp, fp)
        assert isinstance(result, VerificationResult)
        assert result.matched
        assert result.distance == 0.0
        assert result.strategy is Strategy.MODEL

    def test_euclidean_distance(self):
        result = DescriptorMatcher().compare(model_fp([0.0, 0.0]), model_fp([3.0, 4.0]))
        assert result.distance == pytest.approx(5.0)
        assert not result.matched

    def test_symmetry(self, random_descriptors):
        matcher = DescriptorMatcher()
        for a, b in random_descriptors:
            ab = matcher.compare(a, b)
            ba = matcher.compare(b, a)
            assert ab.distance == ba.distance
            assert ab.matched == ba.matched

    def test_distance_equal_to_threshold_is_no_match(self):
        result = DescriptorMatcher(threshold=0.5).compare(model_fp([0.0, 0.0]), model_fp([0.5, 0.0]))
        assert result.distance == 0.5
        assert not result.matched

    def test_threshold_override(self):
        a, b = model_fp([0.0]), model_fp([0.5])
        matcher = DescriptorMatcher()
        assert matcher.compare(a, b).matched
        assert not matcher.compare(a, b, threshold=0.4).matched

    def test_dimension_mismatch_raises(self):
        with pytest.raises(ValueError):
            DescriptorMatcher().compare(model_fp([0.0, 1.0]), model_fp([0.0, 1.0, 2.0]))

    def test_wrong_strategy_for_matcher(self):
        fp = heuristic_fp([0.0, 1.0])
        with pytest.raises(StrategyMismatchError):
            DescriptorMatcher().compare(fp, fp)

    def test_result_to_dict(self):
        result = DescriptorMatcher().compare(model_fp([0.0]), model_fp([0.3]))
        data = result.to_dict()
        assert data["strategy"] == "model"
        assert data["details"]["method"] == "euclidean"


# ============================================================
# HeuristicMatcher Tests
# ============================================================

class TestHeuristicMatcher:
    """Tests for the RMS heuristic matcher."""

    def test_rms_distance(self):
        result = HeuristicMatcher().compare(heuristic_fp([0, 0, 0, 0]), heuristic_fp([1, 1, 1, 1]))
        assert result.distance == pytest.approx(1.0)
        assert not result.matched

    def test_distance_equal_to_threshold_is_no_match(self):
        result = HeuristicMatcher(threshold=1.0).compare(
            heuristic_fp([0, 0, 0, 0]), heuristic_fp([1, 1, 1, 1])
        )
        assert result.distance == 1.0
        assert not result.matched

    def test_close_fingerprints_match(self):
        result = HeuristicMatcher().compare(heuristic_fp([0.5, -0.5]), heuristic_fp([0.6, -0.4]))
        assert result.matched
        assert result.details["method"] == "normalized_euclidean"

    def test_symmetry(self):
        rng = np.random.default_rng(3)
        matcher = HeuristicMatcher()
        for _ in range(10):
            a = heuristic_fp(rng.normal(size=32))
            b = heuristic_fp(rng.normal(size=32))
            assert matcher.compare(a, b).distance == matcher.compare(b, a).distance


# ============================================================
# match_identity Tests
# ============================================================

class TestMatchIdentity:
    """Tests for the strategy-dispatching entry point."""

    def test_same_face_model_strategy_matches(self):
        """Two model fingerprints 0.3 apart with threshold 0.6 match."""
        enrolled = model_fp([0.0] * 128)
        candidate = model_fp([0.3] + [0.0] * 127)
        result = match_identity(enrolled, candidate, threshold=0.6)
        assert result.matched
        assert result.distance == pytest.approx(0.3, abs=1e-6)
        assert result.threshold == 0.6

    def test_mixed_strategies_raise(self):
        with pytest.raises(StrategyMismatchError) as exc_info:
            match_identity(heuristic_fp([0.0] * 32), model_fp([0.0] * 32))
        assert exc_info.value.kind is ErrorKind.STRATEGY_MISMATCH
        assert exc_info.value.enrolled_strategy is Strategy.HEURISTIC
        assert exc_info.value.candidate_strategy is Strategy.MODEL

    def test_dispatches_on_strategy(self, default_config):
        result = match_identity(heuristic_fp([0.0, 0.0]), heuristic_fp([0.1, 0.1]), config=default_config)
        assert result.strategy is Strategy.HEURISTIC
        assert result.threshold == 0.5

    def test_thresholds_from_config(self):
        config = {"heuristic_threshold": 0.05, "model_threshold": 0.1}
        result = match_identity(model_fp([0.0]), model_fp([0.3]), config=config)
        assert result.threshold == 0.1
        assert not result.matched

    def test_get_matcher(self, default_config):
        assert isinstance(get_matcher("heuristic", default_config), HeuristicMatcher)
        assert isinstance(get_matcher(Strategy.MODEL, default_config), DescriptorMatcher)

    def test_get_matcher_without_threshold_uses_default(self):
        assert get_matcher("model", {}).threshold == 0.6
