"""Strategy tags shared by detectors, extractors and matchers."""

from enum import Enum


class Strategy(Enum):
    """
    Algorithm family used to detect, fingerprint and match a face.

    HEURISTIC: dependency-free pixel statistics.
    MODEL: external face model (detector + descriptor network).
    """

    HEURISTIC = "heuristic"
    MODEL = "model"

    @classmethod
    def parse(cls, value) -> "Strategy":
        """Accept a Strategy or its string value (case-insensitive)."""
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            raise ValueError(
                f"Unknown strategy: {value!r}. "
                f"Expected one of {[s.value for s in cls]}"
            ) from None
