"""
Matching Module for Face Verification

This package compares a live fingerprint against an enrolled one.

Components:
    - interfaces: VerificationResult and the abstract Matcher
    - heuristic_matcher: RMS distance over block-statistics fingerprints
    - descriptor_matcher: Euclidean distance over model descriptors

Usage:
    from faceverify.matching import match_identity

    result = match_identity(enrolled, candidate, threshold=0.6)
    if result.matched:
        print(f"Verified (distance={result.distance:.3f})")
"""

from typing import Any, Dict, Optional

from faceverify.config import get_optional_section
from faceverify.errors import StrategyMismatchError
from faceverify.fingerprint import Fingerprint
from faceverify.matching.descriptor_matcher import DescriptorMatcher
from faceverify.matching.heuristic_matcher import HeuristicMatcher
from faceverify.matching.interfaces import Matcher, VerificationResult
from faceverify.strategy import Strategy

_MATCHERS = {
    Strategy.HEURISTIC: (HeuristicMatcher, "heuristic_threshold"),
    Strategy.MODEL: (DescriptorMatcher, "model_threshold"),
}


def get_matcher(strategy, config: Optional[Dict[str, Any]] = None) -> Matcher:
    """
    Create the matcher for a strategy with its configured threshold.

    Args:
        strategy: Strategy or its string value.
        config: Matching configuration ("heuristic_threshold",
                "model_threshold"). If None, read from config.yaml when
                available.

    Returns:
        Matcher instance.
    """
    strategy = Strategy.parse(strategy)
    if config is None:
        config = get_optional_section("matching")

    matcher_cls, threshold_key = _MATCHERS[strategy]
    return matcher_cls(threshold=config.get(threshold_key))


def match_identity(
    enrolled: Fingerprint,
    candidate: Fingerprint,
    threshold: Optional[float] = None,
    config: Optional[Dict[str, Any]] = None,
) -> VerificationResult:
    """
    Compare a candidate fingerprint with an enrolled one.

    The matcher is chosen from the fingerprints' strategy tag.

    Args:
        enrolled: Enrolled fingerprint (from the caller's store).
        candidate: Fingerprint from the live capture.
        threshold: Optional threshold override.
        config: Optional matching configuration.

    Returns:
        VerificationResult.

    Raises:
        StrategyMismatchError: If the strategies differ.
    """
    if enrolled.strategy is not candidate.strategy:
        raise StrategyMismatchError(enrolled.strategy, candidate.strategy)

    matcher = get_matcher(enrolled.strategy, config)
    return matcher.compare(enrolled, candidate, threshold)


__all__ = [
    "VerificationResult",
    "Matcher",
    "HeuristicMatcher",
    "DescriptorMatcher",
    "get_matcher",
    "match_identity",
]
