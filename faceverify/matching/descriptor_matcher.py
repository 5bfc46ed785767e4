"""
Descriptor Matcher: Compare face model descriptors via Euclidean distance.

Descriptors from a face recognition network live in a metric space where
same-identity pairs sit close together. The decision is the classic
face-api style rule: Euclidean distance below 0.6 means the same person.
"""

import logging

import numpy as np

from faceverify.matching.interfaces import Matcher
from faceverify.strategy import Strategy

logger = logging.getLogger(__name__)


class DescriptorMatcher(Matcher):
    """
    Compare model descriptors by Euclidean distance.

    Args:
        threshold: Distance threshold (default 0.6). Lower distance = more similar.
    """

    strategy = Strategy.MODEL
    default_threshold = 0.6
    method = "euclidean"

    def distance(self, enrolled: np.ndarray, candidate: np.ndarray) -> float:
        diff = np.asarray(enrolled, dtype=np.float64) - np.asarray(candidate, dtype=np.float64)
        return float(np.sqrt(np.sum(diff * diff)))
