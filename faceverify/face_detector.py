"""
Face Region Detection Module

This module locates a plausible face region in a frame. Two interchangeable
strategies implement the same FaceRegionDetector interface:

- HeuristicFaceDetector: samples the centred guide rectangle (where the user
  is told to place their face) and runs a cheap pattern test over its luma
  statistics. No model, no resources, runs on every tick.
- ModelFaceDetector: delegates to an external ModelBackend that also reports
  how many faces are visible. Anything other than exactly one face is
  rejected, because zero or several faces break the identity guarantee.

Usage:
    from faceverify.face_detector import HeuristicFaceDetector

    detector = HeuristicFaceDetector(config)
    region = detector.detect(frame)
    if region is not None and region.is_face:
        quality = analyzer.score(region.pixels)
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Dict, Optional, Tuple

import numpy as np

from faceverify.quality import to_luma
from faceverify.strategy import Strategy

logger = logging.getLogger(__name__)


@dataclass
class FaceRegion:
    """
    A rectangular sub-view of a frame that may contain a face.

    Attributes:
        bbox: Region corners (x1, y1, x2, y2) in frame pixels.
              (x1, y1) is the top-left corner, (x2, y2) is exclusive.
        pixels: The region's pixels (a view into the frame it came from).
        is_face: True if the region passed the detector's face test.
        face_count: Number of faces the detector saw in the whole frame.
                    The heuristic detector reports 1 or 0.
        confidence: Detector confidence (0.0 to 1.0).
    """

    bbox: Tuple[int, int, int, int]
    pixels: np.ndarray
    is_face: bool
    face_count: int = 1
    confidence: float = 1.0

    @property
    def width(self) -> int:
        return self.bbox[2] - self.bbox[0]

    @property
    def height(self) -> int:
        return self.bbox[3] - self.bbox[1]

    @property
    def is_single_face(self) -> bool:
        """True if this region is a valid face and the only one in view."""
        return self.is_face and self.face_count == 1


@dataclass
class FacePatternStats:
    """
    Luma statistics used by the heuristic face test.

    Attributes:
        mean: Mean luma.
        std: Population standard deviation of luma.
        edge_ratio: Fraction of neighbouring pixel pairs (horizontal and
                    vertical) whose luma differs by more than the edge threshold.
        asymmetry: Mean absolute difference between the region and its
                   left/right mirror image, divided by std. 0 = symmetric.
    """

    mean: float
    std: float
    edge_ratio: float
    asymmetry: float


def face_pattern_stats(luma: np.ndarray, edge_threshold: float = 20.0) -> FacePatternStats:
    """
    Compute the statistics the heuristic face test is based on.

    Args:
        luma: 2D luma array (see faceverify.quality.to_luma).
        edge_threshold: Luma difference that counts as an edge.

    Returns:
        FacePatternStats. An empty or single-pixel region yields all zeros.
    """
    if luma.size == 0 or luma.shape[0] < 2 or luma.shape[1] < 2:
        return FacePatternStats(mean=0.0, std=0.0, edge_ratio=0.0, asymmetry=0.0)

    mean = float(luma.mean())
    std = float(luma.std())

    grad_x = np.abs(np.diff(luma, axis=1))
    grad_y = np.abs(np.diff(luma, axis=0))
    n_edges = int((grad_x > edge_threshold).sum() + (grad_y > edge_threshold).sum())
    edge_ratio = n_edges / float(grad_x.size + grad_y.size)

    # A frontal face is roughly mirror symmetric; noise and scenery are not
    mirrored = luma[:, ::-1]
    asymmetry = float(np.abs(luma - mirrored).mean()) / (std + 1e-6)

    return FacePatternStats(
        mean=mean,
        std=std,
        edge_ratio=edge_ratio,
        asymmetry=asymmetry,
    )


def looks_like_face(luma: np.ndarray, config: Optional[Dict[str, Any]] = None) -> bool:
    """
    Heuristic "is this a face" test over a luma region.

    The region must be neither blank nor washed out, must have enough
    contrast, must contain some structure but not noise-level edge density,
    and must be close to left/right symmetric.

    Args:
        luma: 2D luma array of the candidate region.
        config: Optional thresholds (see HeuristicFaceDetector).

    Returns:
        True if the region looks like a face.
    """
    if config is None:
        config = {}

    stats = face_pattern_stats(luma, config.get("edge_threshold", 20))

    if luma.size == 0:
        return False

    checks = {
        "mean": config.get("min_mean", 40) <= stats.mean <= config.get("max_mean", 220),
        "contrast": stats.std >= config.get("min_std", 15.0),
        "edges": config.get("min_edge_ratio", 0.002)
        <= stats.edge_ratio
        <= config.get("max_edge_ratio", 0.35),
        "symmetry": stats.asymmetry <= config.get("max_asymmetry", 0.6),
    }

    passed = all(checks.values())
    if not passed:
        failed = [name for name, ok in checks.items() if not ok]
        logger.debug(
            f"Face pattern rejected ({', '.join(failed)}): mean={stats.mean:.1f}, "
            f"std={stats.std:.1f}, edges={stats.edge_ratio:.4f}, "
            f"asymmetry={stats.asymmetry:.2f}"
        )
    return passed


def crop_region(
    frame: np.ndarray,
    bbox: Tuple[int, int, int, int],
    padding: float = 0.0,
) -> Tuple[Tuple[int, int, int, int], np.ndarray]:
    """
    Crop a bounding box from a frame with optional padding.

    Args:
        frame: Source frame.
        bbox: (x1, y1, x2, y2) in pixels.
        padding: Padding ratio added on each side (0.2 = 20% of box size).

    Returns:
        Tuple of (clamped bbox, cropped view).
    """
    h, w = frame.shape[:2]
    x1, y1, x2, y2 = bbox

    pad_x = int((x2 - x1) * padding)
    pad_y = int((y2 - y1) * padding)

    crop_x1 = max(0, int(x1) - pad_x)
    crop_y1 = max(0, int(y1) - pad_y)
    crop_x2 = min(w, int(x2) + pad_x)
    crop_y2 = min(h, int(y2) + pad_y)

    clamped = (crop_x1, crop_y1, crop_x2, crop_y2)
    return clamped, frame[crop_y1:crop_y2, crop_x1:crop_x2]


class FaceRegionDetector(ABC):
    """
    Abstract base class for face region detectors.

    Implementations return a FaceRegion (possibly with is_face=False) or
    None when no candidate region exists at all.
    """

    strategy: Strategy

    @abstractmethod
    def detect(self, frame: np.ndarray) -> Optional[FaceRegion]:
        """
        Locate a plausible face region in a frame.

        Args:
            frame: Image as numpy array, (H, W), (H, W, 3) or (H, W, 4).

        Returns:
            FaceRegion, or None if there is nothing to examine.
        """
        pass

    def load(self) -> None:
        """Acquire any resources needed before the first detect() call."""

    def close(self) -> None:
        """Release resources acquired in load()."""


class HeuristicFaceDetector(FaceRegionDetector):
    """
    Dependency-free face detector based on luma statistics of the guide box.

    The guide box is the centred rectangle the UI asks the user to fill with
    their face, so the detector does not search: it only decides whether the
    guide box currently contains something face-like.
    """

    strategy = Strategy.HEURISTIC

    def __init__(self, config: Optional[Dict[str, Any]] = None):
        """
        Initialize the detector.

        Args:
            config: Configuration dictionary containing:
                - region_width_ratio: Guide box width / frame width (default: 0.5)
                - region_height_ratio: Guide box height / frame height (default: 0.6)
                - min_mean / max_mean: Accepted mean luma range (default: 40 / 220)
                - min_std: Minimum luma standard deviation (default: 15.0)
                - edge_threshold: Luma step counted as an edge (default: 20)
                - min_edge_ratio / max_edge_ratio: Accepted edge density
                  (default: 0.002 / 0.35)
                - max_asymmetry: Maximum normalised mirror difference (default: 0.6)
        """
        if config is None:
            config = {}

        self.config = config
        self.region_width_ratio = config.get("region_width_ratio", 0.5)
        self.region_height_ratio = config.get("region_height_ratio", 0.6)

    def guide_box(self, frame_shape: Tuple[int, ...]) -> Tuple[int, int, int, int]:
        """Compute the centred guide rectangle for a frame shape."""
        h, w = frame_shape[:2]
        box_w = max(1, int(w * self.region_width_ratio))
        box_h = max(1, int(h * self.region_height_ratio))
        x1 = (w - box_w) // 2
        y1 = (h - box_h) // 2
        return (x1, y1, x1 + box_w, y1 + box_h)

    def detect(self, frame: np.ndarray) -> Optional[FaceRegion]:
        if frame is None or frame.size == 0:
            return None

        bbox = self.guide_box(frame.shape)
        x1, y1, x2, y2 = bbox
        pixels = frame[y1:y2, x1:x2]

        is_face = looks_like_face(to_luma(pixels), self.config)

        return FaceRegion(
            bbox=bbox,
            pixels=pixels,
            is_face=is_face,
            face_count=1 if is_face else 0,
            confidence=1.0 if is_face else 0.0,
        )


class ModelFaceDetector(FaceRegionDetector):
    """
    Face detector that delegates to an external ModelBackend.

    The backend is loaded once in load(); the capture orchestrator runs
    load() off the event loop before the first tick.
    """

    strategy = Strategy.MODEL

    def __init__(self, backend, config: Optional[Dict[str, Any]] = None):
        """
        Initialize the detector.

        Args:
            backend: ModelBackend providing detect_faces() and acquire()/release().
            config: Configuration dictionary containing:
                - face_padding: Padding ratio around the detected box (default: 0.2)
        """
        if config is None:
            config = {}

        self.backend = backend
        self.face_padding = config.get("face_padding", 0.2)

    def load(self) -> None:
        self.backend.acquire()

    def close(self) -> None:
        # Other sessions or the API may still hold the backend
        self.backend.release()

    def detect(self, frame: np.ndarray) -> Optional[FaceRegion]:
        if frame is None or frame.size == 0:
            return None

        count, boxes = self.backend.detect_faces(frame)

        if count == 0 or not boxes:
            return None

        # Report the largest face so the UI can still point at something
        largest = max(boxes, key=lambda b: (b[2] - b[0]) * (b[3] - b[1]))
        bbox, pixels = crop_region(frame, largest, self.face_padding)

        if count != 1:
            logger.debug(f"Rejecting frame with {count} faces")

        return FaceRegion(
            bbox=bbox,
            pixels=pixels,
            is_face=count == 1,
            face_count=count,
            confidence=1.0 if count == 1 else 0.0,
        )
