"""
Fingerprint Extraction Module

A fingerprint is the compact, comparable identity representation derived
from a validated face region. Two interchangeable strategies produce one:

- HeuristicFingerprintExtractor: block-wise brightness/contrast statistics
  of the region's luma, standardised against the whole region so that a
  global lighting change moves the vector as little as possible.
- ModelFingerprintExtractor: a descriptor vector from an external face
  recognition model (ArcFace via the ModelBackend).

Both extractors re-check the region before committing. Extraction either
returns a complete Fingerprint or raises NoValidFaceError; nothing partial
is ever produced.

Usage:
    from faceverify.fingerprint import HeuristicFingerprintExtractor

    extractor = HeuristicFingerprintExtractor(config)
    fingerprint = extractor.extract(region)
    print(fingerprint.strategy, fingerprint.dimension)
"""

import logging
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

import numpy as np

from faceverify.config import get_optional_section
from faceverify.errors import (
    MultipleFacesDetectedError,
    NoFaceDetectedError,
    NoValidFaceError,
)
from faceverify.face_detector import (
    FaceRegion,
    FaceRegionDetector,
    HeuristicFaceDetector,
    ModelFaceDetector,
    looks_like_face,
)
from faceverify.quality import to_luma
from faceverify.strategy import Strategy

logger = logging.getLogger(__name__)


@dataclass(frozen=True, eq=False)
class Fingerprint:
    """
    Immutable, strategy-tagged identity vector.

    Attributes:
        vector: 1D float32 array. Read-only; a private copy of the input.
        strategy: Strategy that produced the vector. Fingerprints are only
                  comparable with fingerprints of the same strategy.
        created_at: Unix timestamp of extraction.
        metadata: Extractor details (e.g. grid size, model name).
    """

    vector: np.ndarray
    strategy: Strategy
    created_at: float = field(default_factory=time.time)
    metadata: Dict[str, Any] = field(default_factory=dict)

    def __post_init__(self):
        vector = np.array(self.vector, dtype=np.float32).ravel()
        if vector.size == 0:
            raise ValueError("Fingerprint vector must not be empty")
        if not np.all(np.isfinite(vector)):
            raise ValueError("Fingerprint vector contains non-finite values")
        vector.setflags(write=False)

        object.__setattr__(self, "vector", vector)
        object.__setattr__(self, "strategy", Strategy.parse(self.strategy))

    @property
    def dimension(self) -> int:
        """Length of the vector."""
        return int(self.vector.shape[0])

    def to_dict(self) -> Dict[str, Any]:
        """Serialize to plain Python types (JSON friendly)."""
        return {
            "strategy": self.strategy.value,
            "vector": self.vector.tolist(),
            "created_at": self.created_at,
            "metadata": dict(self.metadata),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Fingerprint":
        """Rebuild a fingerprint serialized with to_dict()."""
        return cls(
            vector=np.asarray(data["vector"], dtype=np.float32),
            strategy=Strategy.parse(data["strategy"]),
            created_at=data.get("created_at", time.time()),
            metadata=data.get("metadata", {}),
        )


def block_statistics(luma: np.ndarray, grid_size: int = 4) -> np.ndarray:
    """
    Block-wise luma statistics of a region.

    The region is split into grid_size x grid_size blocks. For every block
    the mean (standardised by the global mean and std) and the std (divided
    by the global std) are collected, row-major.

    Args:
        luma: 2D luma array, at least grid_size pixels on each side.
        grid_size: Number of blocks per side.

    Returns:
        float32 array of length 2 * grid_size * grid_size.
    """
    h, w = luma.shape
    global_mean = float(luma.mean())
    global_std = float(luma.std()) + 1e-6

    row_edges = np.linspace(0, h, grid_size + 1).astype(int)
    col_edges = np.linspace(0, w, grid_size + 1).astype(int)

    means: List[float] = []
    stds: List[float] = []
    for r in range(grid_size):
        for c in range(grid_size):
            block = luma[row_edges[r]:row_edges[r + 1], col_edges[c]:col_edges[c + 1]]
            means.append((float(block.mean()) - global_mean) / global_std)
            stds.append(float(block.std()) / global_std)

    return np.array(means + stds, dtype=np.float32)


class FingerprintExtractor(ABC):
    """Abstract base class for fingerprint extractors."""

    strategy: Strategy

    @abstractmethod
    def extract(self, region: Optional[FaceRegion]) -> Fingerprint:
        """
        Derive a fingerprint from a validated face region.

        Args:
            region: FaceRegion returned by the matching detector.

        Returns:
            A complete Fingerprint tagged with this extractor's strategy.

        Raises:
            NoValidFaceError: If the region fails the face re-check.
        """
        pass


class HeuristicFingerprintExtractor(FingerprintExtractor):
    """
    Statistical fingerprint from block-wise brightness and contrast.

    Deterministic: the same pixels always give the same vector.
    """

    strategy = Strategy.HEURISTIC

    def __init__(
        self,
        config: Optional[Dict[str, Any]] = None,
        detector_config: Optional[Dict[str, Any]] = None,
    ):
        """
        Initialize the extractor.

        Args:
            config: Configuration dictionary containing:
                - grid_size: Blocks per side (default: 4)
                - min_region_size: Minimum region side in pixels (default: 16)
            detector_config: Heuristic detector thresholds used for the
                             face re-check (defaults if omitted).
        """
        if config is None:
            config = {}

        self.grid_size = config.get("grid_size", 4)
        self.min_region_size = max(config.get("min_region_size", 16), self.grid_size)
        self.detector_config = detector_config or {}

    @property
    def dimension(self) -> int:
        return 2 * self.grid_size * self.grid_size

    def extract(self, region: Optional[FaceRegion]) -> Fingerprint:
        if region is None or region.pixels is None or region.pixels.size == 0:
            raise NoValidFaceError("No face region to extract from")

        luma = to_luma(region.pixels)

        if min(luma.shape) < self.min_region_size:
            raise NoValidFaceError(
                f"Face region too small: {luma.shape[1]}x{luma.shape[0]} "
                f"(minimum {self.min_region_size}px)"
            )

        if not looks_like_face(luma, self.detector_config):
            raise NoValidFaceError("Region failed the face re-check")

        vector = block_statistics(luma, self.grid_size)

        return Fingerprint(
            vector=vector,
            strategy=self.strategy,
            metadata={
                "grid_size": self.grid_size,
                "region_size": [int(luma.shape[1]), int(luma.shape[0])],
            },
        )


class ModelFingerprintExtractor(FingerprintExtractor):
    """
    Descriptor fingerprint from an external face recognition model.

    Requires the upstream detector to have reported exactly one face.
    """

    strategy = Strategy.MODEL

    def __init__(self, backend):
        """
        Initialize the extractor.

        Args:
            backend: ModelBackend providing describe().
        """
        self.backend = backend

    def extract(self, region: Optional[FaceRegion]) -> Fingerprint:
        if region is None or region.pixels is None or region.pixels.size == 0:
            raise NoValidFaceError("No face region to extract from")

        if region.face_count != 1:
            raise NoValidFaceError(
                f"Descriptor requires exactly one face, detector reported {region.face_count}"
            )

        if not region.is_face:
            raise NoValidFaceError("Region failed the face re-check")

        descriptor = self.backend.describe(region.pixels)
        if descriptor is None:
            raise NoValidFaceError("Face model could not describe the region")

        vector = np.asarray(descriptor, dtype=np.float32).ravel()
        if vector.size == 0 or not np.all(np.isfinite(vector)):
            raise NoValidFaceError("Face model returned an invalid descriptor")

        return Fingerprint(
            vector=vector,
            strategy=self.strategy,
            metadata={
                "model": getattr(self.backend, "name", type(self.backend).__name__),
                "dimension": int(vector.size),
            },
        )


def create_strategy_components(
    strategy,
    config: Optional[Dict[str, Any]] = None,
    backend=None,
) -> Tuple[FaceRegionDetector, FingerprintExtractor]:
    """
    Build a matching detector/extractor pair for a strategy.

    Args:
        strategy: Strategy or its string value.
        config: Full configuration dict (with "heuristic_detector",
                "fingerprint" and "model" sections). If None, sections are
                read from config.yaml when available.
        backend: ModelBackend for the model strategy. If None, the shared
                 backend from get_model_backend() is used.

    Returns:
        Tuple of (detector, extractor).
    """
    strategy = Strategy.parse(strategy)

    def section(name: str) -> Dict[str, Any]:
        if config is None:
            return get_optional_section(name)
        return config.get(name, {}) or {}

    if strategy is Strategy.HEURISTIC:
        detector_config = section("heuristic_detector")
        detector = HeuristicFaceDetector(detector_config)
        extractor = HeuristicFingerprintExtractor(section("fingerprint"), detector_config)
        return detector, extractor

    model_config = section("model")
    if backend is None:
        from faceverify.model_backend import get_model_backend

        backend = get_model_backend(model_config)

    return ModelFaceDetector(backend, model_config), ModelFingerprintExtractor(backend)


def extract_from_image(
    frame: np.ndarray,
    detector: FaceRegionDetector,
    extractor: FingerprintExtractor,
) -> Fingerprint:
    """
    Run detection and extraction once on a still image.

    Used to enroll from an existing photo instead of a live session. The
    detector must already be loaded.

    Raises:
        NoFaceDetectedError: No face in the image.
        MultipleFacesDetectedError: More than one face in the image.
        NoValidFaceError: The face failed the extraction re-check.
    """
    region = detector.detect(frame)

    if region is None:
        raise NoFaceDetectedError("No face found in image")
    if region.face_count > 1:
        raise MultipleFacesDetectedError(region.face_count)
    if not region.is_face:
        raise NoFaceDetectedError("No face found in image")

    fingerprint = extractor.extract(region)
    logger.info(
        f"Extracted {fingerprint.strategy.value} fingerprint from image "
        f"(dim={fingerprint.dimension})"
    )
    return fingerprint
