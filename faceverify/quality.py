"""
Image Quality Module

This module scores how suitable a face region is for capture. The score is
deliberately simple so it can run on every sampling tick:

- Each pixel is converted to luma as (R + G + B) / 3.
- Brightness is the mean luma, contrast is the population standard
  deviation of luma.
- Brightness sub-score: 50 inside the (50, 200) band, otherwise
  max(0, 50 - |brightness - 125|).
- Contrast sub-score: min(50, contrast).
- Quality score: sum of both, rounded and clamped to [0, 100].

Brightness is also classified into too-dark / acceptable / too-bright for
lighting feedback.

Usage:
    from faceverify.quality import QualityAnalyzer

    analyzer = QualityAnalyzer(config)
    report = analyzer.analyze(region.pixels)
    if report.brightness_level is BrightnessLevel.TOO_DARK:
        print("Add more light")
"""

from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Optional

import numpy as np


class BrightnessLevel(Enum):
    """Classification of the mean luma of a region."""

    TOO_DARK = "too_dark"
    ACCEPTABLE = "acceptable"
    TOO_BRIGHT = "too_bright"


@dataclass
class QualityReport:
    """
    Quality metrics of one region, computed from a single frame.

    Attributes:
        score: Composite quality score (0-100).
        brightness: Mean luma rounded to an integer (0-255).
        brightness_level: Classification of the brightness.
        contrast: Population standard deviation of luma.
        brightness_score: Brightness sub-score (0-50).
        contrast_score: Contrast sub-score (0-50).
    """

    score: int
    brightness: int
    brightness_level: BrightnessLevel
    contrast: float
    brightness_score: float
    contrast_score: float


def to_luma(region: Optional[np.ndarray]) -> np.ndarray:
    """
    Convert an image region to a 2D float64 luma array.

    Accepts (H, W) luma, (H, W, 3) BGR/RGB or (H, W, 4) RGBA arrays.
    The alpha channel is ignored. Luma is the plain channel mean, so the
    channel order does not matter.

    Args:
        region: Image array, or None.

    Returns:
        (H, W) float64 array. Empty (0, 0) array for a None/empty input.
    """
    if region is None:
        return np.zeros((0, 0), dtype=np.float64)

    pixels = np.asarray(region)
    if pixels.size == 0:
        return np.zeros((0, 0), dtype=np.float64)

    if pixels.ndim == 2:
        return pixels.astype(np.float64)

    if pixels.ndim == 3:
        channels = pixels[:, :, :3].astype(np.float64)
        return channels.sum(axis=2) / 3.0

    raise ValueError(f"Expected a 2D or 3D image array, got shape {pixels.shape}")


class QualityAnalyzer:
    """
    Computes brightness, contrast and a bounded quality score for a region.

    All values are recomputed from the pixels passed in; nothing is cached
    between calls.
    """

    def __init__(self, config: Optional[Dict[str, Any]] = None):
        """
        Initialize the analyzer.

        Args:
            config: Configuration dictionary containing:
                - dark_threshold: Mean luma below this is too dark (default: 70)
                - bright_threshold: Mean luma above this is too bright (default: 200)
                - band_low / band_high: Open interval earning the full
                  brightness sub-score (default: 50 / 200)
                - band_center: Reference luma for the falloff (default: 125)
        """
        if config is None:
            config = {}

        self.dark_threshold = config.get("dark_threshold", 70)
        self.bright_threshold = config.get("bright_threshold", 200)
        self.band_low = config.get("band_low", 50)
        self.band_high = config.get("band_high", 200)
        self.band_center = config.get("band_center", 125)

    def brightness(self, region: Optional[np.ndarray]) -> int:
        """Mean luma of the region, rounded (0 for an empty region)."""
        luma = to_luma(region)
        if luma.size == 0:
            return 0
        return int(round(float(luma.mean())))

    def contrast(self, region: Optional[np.ndarray]) -> float:
        """Population standard deviation of luma (0.0 for an empty region)."""
        luma = to_luma(region)
        if luma.size == 0:
            return 0.0
        return float(luma.std())

    def score(self, region: Optional[np.ndarray]) -> int:
        """Composite quality score in [0, 100]."""
        return self.analyze(region).score

    def classify_brightness(self, level: float) -> BrightnessLevel:
        """Classify a mean luma value."""
        if level < self.dark_threshold:
            return BrightnessLevel.TOO_DARK
        if level > self.bright_threshold:
            return BrightnessLevel.TOO_BRIGHT
        return BrightnessLevel.ACCEPTABLE

    def brightness_subscore(self, mean_luma: float) -> float:
        """Brightness part of the quality score (0-50)."""
        if self.band_low < mean_luma < self.band_high:
            return 50.0
        return max(0.0, 50.0 - abs(mean_luma - self.band_center))

    def analyze(self, region: Optional[np.ndarray]) -> QualityReport:
        """
        Compute all quality metrics of a region in one pass.

        Args:
            region: Image region (see to_luma for accepted shapes).

        Returns:
            QualityReport. A degenerate (empty) region yields score 0 and
            brightness 0.
        """
        luma = to_luma(region)

        if luma.size == 0:
            return QualityReport(
                score=0,
                brightness=0,
                brightness_level=self.classify_brightness(0),
                contrast=0.0,
                brightness_score=0.0,
                contrast_score=0.0,
            )

        mean_luma = float(luma.mean())
        contrast = float(luma.std())

        brightness_score = self.brightness_subscore(mean_luma)
        contrast_score = min(50.0, contrast)

        score = int(round(brightness_score + contrast_score))
        score = max(0, min(100, score))

        brightness = int(round(mean_luma))

        return QualityReport(
            score=score,
            brightness=brightness,
            brightness_level=self.classify_brightness(brightness),
            contrast=contrast,
            brightness_score=brightness_score,
            contrast_score=contrast_score,
        )


if __name__ == "__main__":
    print("Testing QualityAnalyzer...")

    analyzer = QualityAnalyzer()

    black = np.zeros((120, 160, 3), dtype=np.uint8)
    white = np.full((120, 160, 3), 255, dtype=np.uint8)
    striped = np.zeros((120, 160), dtype=np.uint8)
    striped[:, ::2] = 100
    striped[:, 1::2] = 150

    for name, region in [("black", black), ("white", white), ("striped", striped)]:
        report = analyzer.analyze(region)
        print(
            f"{name}: score={report.score}, brightness={report.brightness} "
            f"({report.brightness_level.value}), contrast={report.contrast:.1f}"
        )
