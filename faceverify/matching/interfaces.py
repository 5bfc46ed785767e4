"""
Matching Interfaces Module

This module defines the result type and the abstract matcher used to decide
whether a candidate fingerprint belongs to an enrolled identity.

Every matcher works on a distance where smaller means more similar:

    matched = distance < threshold

The comparison is strict, so a distance exactly equal to the threshold is a
no-match. The threshold is configuration, never a constant inside the
distance computation.

Usage:
    from faceverify.matching.interfaces import VerificationResult, Matcher

    class MyMatcher(Matcher):
        strategy = Strategy.HEURISTIC
        default_threshold = 0.5

        def distance(self, enrolled, candidate):
            return float(np.abs(enrolled - candidate).max())
"""

import logging
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

import numpy as np

from faceverify.errors import StrategyMismatchError
from faceverify.fingerprint import Fingerprint
from faceverify.strategy import Strategy

logger = logging.getLogger(__name__)


@dataclass
class VerificationResult:
    """
    Result of one matcher invocation.

    Attributes:
        matched: True if distance < threshold.
        distance: Distance between the two fingerprints (smaller = closer).
        threshold: Threshold the decision was made with.
        strategy: Strategy of both fingerprints.
        timestamp: Unix timestamp of the comparison.
        details: Matcher-specific details, useful for debugging.
    """

    matched: bool
    distance: float
    threshold: float
    strategy: Strategy
    timestamp: float = field(default_factory=time.time)
    details: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "matched": self.matched,
            "distance": self.distance,
            "threshold": self.threshold,
            "strategy": self.strategy.value,
            "timestamp": self.timestamp,
            "details": dict(self.details),
        }


class Matcher(ABC):
    """
    Abstract base class for fingerprint matchers.

    Subclasses implement distance(); compare() enforces the preconditions
    (same strategy, same vector length) and applies the threshold.
    """

    strategy: Strategy
    default_threshold: float
    method: str = "distance"

    def __init__(self, threshold: Optional[float] = None):
        """
        Initialize the matcher.

        Args:
            threshold: Decision threshold. If None, the class default is used.
        """
        self.threshold = self.default_threshold if threshold is None else float(threshold)

    @abstractmethod
    def distance(self, enrolled: np.ndarray, candidate: np.ndarray) -> float:
        """
        Distance between two vectors of equal length.

        Must be symmetric: distance(a, b) == distance(b, a).
        """
        pass

    def compare(
        self,
        enrolled: Fingerprint,
        candidate: Fingerprint,
        threshold: Optional[float] = None,
    ) -> VerificationResult:
        """
        Decide whether a candidate fingerprint matches an enrolled one.

        Args:
            enrolled: Fingerprint from the enrolled identity.
            candidate: Fingerprint from the live capture.
            threshold: Optional override of the configured threshold.

        Returns:
            VerificationResult.

        Raises:
            StrategyMismatchError: If the fingerprints come from different
                strategies, or from a strategy this matcher doesn't handle.
            ValueError: If the vectors have different lengths.
        """
        if enrolled.strategy is not candidate.strategy:
            logger.error(
                f"Strategy mismatch: enrolled={enrolled.strategy.value}, "
                f"candidate={candidate.strategy.value}"
            )
            raise StrategyMismatchError(enrolled.strategy, candidate.strategy)

        if enrolled.strategy is not self.strategy:
            raise StrategyMismatchError(self.strategy, enrolled.strategy)

        if enrolled.dimension != candidate.dimension:
            raise ValueError(
                f"Fingerprint dimension mismatch: enrolled={enrolled.dimension}, "
                f"candidate={candidate.dimension}"
            )

        threshold = self.threshold if threshold is None else float(threshold)
        distance = float(self.distance(enrolled.vector, candidate.vector))
        matched = distance < threshold

        logger.debug(
            f"{self.strategy.value} match: distance={distance:.4f}, "
            f"threshold={threshold:.4f}, matched={matched}"
        )

        return VerificationResult(
            matched=matched,
            distance=distance,
            threshold=threshold,
            strategy=self.strategy,
            details={
                "method": self.method,
                "dimension": enrolled.dimension,
            },
        )
