"""
Heuristic Matcher: Compare block-statistics fingerprints.

Heuristic fingerprints are standardised block statistics, so their entries
are on a comparable scale (roughly unit variance). The distance is the RMS
difference per entry, i.e. the Euclidean distance divided by sqrt(n). This
keeps the threshold independent of the grid size used at extraction.
"""

import numpy as np

from faceverify.matching.interfaces import Matcher
from faceverify.strategy import Strategy


class HeuristicMatcher(Matcher):
    """
    Compare heuristic fingerprints by normalized (RMS) distance.

    Args:
        threshold: Distance threshold (default 0.5). Lower distance = more similar.
    """

    strategy = Strategy.HEURISTIC
    default_threshold = 0.5
    method = "normalized_euclidean"

    def distance(self, enrolled: np.ndarray, candidate: np.ndarray) -> float:
        diff = np.asarray(enrolled, dtype=np.float64) - np.asarray(candidate, dtype=np.float64)
        return float(np.sqrt(np.mean(diff * diff)))
