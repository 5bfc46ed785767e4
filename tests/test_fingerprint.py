"""
Unit Tests for Fingerprint Extraction

This module tests:
- Fingerprint immutability, validation and serialization
- Block statistics of the heuristic extractor
- HeuristicFingerprintExtractor on synthetic faces
- ModelFingerprintExtractor with a mocked backend
- Strategy component factory and still-image extraction

Usage:
    pytest tests/test_fingerprint.py -v
"""

from unittest.mock import MagicMock

import numpy as np
import pytest

from faceverify.errors import (
    ExtractionFailedError,
    MultipleFacesDetectedError,
    NoFaceDetectedError,
    NoValidFaceError,
)
from faceverify.face_detector import FaceRegion, HeuristicFaceDetector, ModelFaceDetector
from faceverify.fingerprint import (
    Fingerprint,
    HeuristicFingerprintExtractor,
    ModelFingerprintExtractor,
    block_statistics,
    create_strategy_components,
    extract_from_image,
)
from faceverify.strategy import Strategy

from conftest import make_face_frame


# ============================================================
# Test Fingerprint Dataclass
# ============================================================

class TestFingerprint:
    """Tests for the Fingerprint dataclass."""

    def test_vector_is_read_only_copy(self):
        source = np.array([1.0, 2.0, 3.0])
        fp = Fingerprint(vector=source, strategy=Strategy.MODEL)
        source[0] = 99.0
        assert fp.vector[0] == 1.0
        assert fp.vector.dtype == np.float32
        with pytest.raises(ValueError):
            fp.vector[0] = 5.0

    def test_fields_are_frozen(self):
        fp = Fingerprint(vector=[1.0], strategy="heuristic")
        with pytest.raises(AttributeError):
            fp.strategy = Strategy.MODEL

    def test_strategy_string_is_parsed(self):
        fp = Fingerprint(vector=[1.0, 2.0], strategy="MODEL")
        assert fp.strategy is Strategy.MODEL
        assert fp.dimension == 2

    def test_empty_vector_rejected(self):
        with pytest.raises(ValueError):
            Fingerprint(vector=[], strategy=Strategy.MODEL)

    def test_non_finite_vector_rejected(self):
        with pytest.raises(ValueError):
            Fingerprint(vector=[1.0, np.nan], strategy=Strategy.MODEL)

    def test_unknown_strategy_rejected(self):
        with pytest.raises(ValueError):
            Fingerprint(vector=[1.0], strategy="pixels")

    def test_dict_round_trip(self):
        fp = Fingerprint(vector=[0.5, -0.25], strategy=Strategy.HEURISTIC, metadata={"grid_size": 4})
        restored = Fingerprint.from_dict(fp.to_dict())
        assert restored.strategy is Strategy.HEURISTIC
        np.testing.assert_array_equal(restored.vector, fp.vector)
        assert restored.metadata == {"grid_size": 4}


# ============================================================
# Test Heuristic Extractor
# ============================================================

class TestHeuristicExtractor:
    """Tests for block statistics and HeuristicFingerprintExtractor."""

    @pytest.fixture
    def face_region(self):
        return HeuristicFaceDetector().detect(make_face_frame())

    def test_block_statistics_shape(self):
        luma = np.arange(64 * 64, dtype=np.float64).reshape(64, 64)
        vector = block_statistics(luma, grid_size=4)
        assert vector.shape == (32,)

    def test_block_means_are_standardised(self):
        """Means are centred on the global mean, so their average is ~0."""
        luma = np.random.default_rng(1).normal(120, 30, size=(64, 64))
        vector = block_statistics(luma, grid_size=4)
        assert abs(float(vector[:16].mean())) < 1e-5

    def test_extract_synthetic_face(self, face_region):
        fp = HeuristicFingerprintExtractor().extract(face_region)
        assert fp.strategy is Strategy.HEURISTIC
        assert fp.dimension == 32
        assert fp.metadata["grid_size"] == 4

    def test_extraction_is_deterministic(self, face_region):
        extractor = HeuristicFingerprintExtractor()
        first = extractor.extract(face_region)
        second = extractor.extract(face_region)
        np.testing.assert_array_equal(first.vector, second.vector)

    def test_global_brightness_shift_is_absorbed(self):
        """Standardisation makes a uniform lighting offset irrelevant."""
        detector = HeuristicFaceDetector()
        extractor = HeuristicFingerprintExtractor()
        normal = extractor.extract(detector.detect(make_face_frame()))
        brighter = extractor.extract(detector.detect(make_face_frame() + 20))
        np.testing.assert_allclose(normal.vector, brighter.vector, atol=1e-4)

    def test_custom_grid_size(self, face_region):
        fp = HeuristicFingerprintExtractor({"grid_size": 3}).extract(face_region)
        assert fp.dimension == 18

    def test_none_region_rejected(self):
        with pytest.raises(NoValidFaceError):
            HeuristicFingerprintExtractor().extract(None)

    def test_non_face_region_rejected(self):
        region = FaceRegion(bbox=(0, 0, 64, 64), pixels=np.full((64, 64), 128.0), is_face=True)
        with pytest.raises(NoValidFaceError):
            HeuristicFingerprintExtractor().extract(region)

    def test_tiny_region_rejected(self):
        region = FaceRegion(bbox=(0, 0, 8, 8), pixels=np.zeros((8, 8)), is_face=True)
        with pytest.raises(NoValidFaceError):
            HeuristicFingerprintExtractor().extract(region)

    def test_no_valid_face_is_extraction_failure(self):
        assert issubclass(NoValidFaceError, ExtractionFailedError)


# ============================================================
# Test Model Extractor (mocked backend)
# ============================================================

class TestModelExtractor:
    """Tests for ModelFingerprintExtractor."""

    @pytest.fixture
    def backend(self):
        backend = MagicMock()
        backend.name = "mock-arcface"
        backend.describe.return_value = np.full(512, 0.04, dtype=np.float32)
        return backend

    @pytest.fixture
    def region(self):
        return FaceRegion(bbox=(0, 0, 10, 10), pixels=np.zeros((10, 10, 3)), is_face=True)

    def test_extracts_descriptor(self, backend, region):
        fp = ModelFingerprintExtractor(backend).extract(region)
        assert fp.strategy is Strategy.MODEL
        assert fp.dimension == 512
        assert fp.metadata["model"] == "mock-arcface"

    def test_multiple_faces_rejected(self, backend):
        region = FaceRegion(bbox=(0, 0, 10, 10), pixels=np.zeros((10, 10, 3)), is_face=False, face_count=2)
        with pytest.raises(NoValidFaceError):
            ModelFingerprintExtractor(backend).extract(region)
        backend.describe.assert_not_called()

    def test_no_descriptor_rejected(self, backend, region):
        backend.describe.return_value = None
        with pytest.raises(NoValidFaceError):
            ModelFingerprintExtractor(backend).extract(region)

    def test_non_finite_descriptor_rejected(self, backend, region):
        backend.describe.return_value = np.array([np.inf, 1.0])
        with pytest.raises(NoValidFaceError):
            ModelFingerprintExtractor(backend).extract(region)


# ============================================================
# Test Component Factory and Still Images
# ============================================================

class TestStrategyComponents:
    """Tests for create_strategy_components() and extract_from_image()."""

    def test_heuristic_components(self):
        detector, extractor = create_strategy_components("heuristic", config={})
        assert isinstance(detector, HeuristicFaceDetector)
        assert isinstance(extractor, HeuristicFingerprintExtractor)

    def test_model_components_share_backend(self):
        backend = MagicMock()
        detector, extractor = create_strategy_components(Strategy.MODEL, config={}, backend=backend)
        assert isinstance(detector, ModelFaceDetector)
        assert isinstance(extractor, ModelFingerprintExtractor)
        assert detector.backend is backend
        assert extractor.backend is backend

    def test_extract_from_image(self):
        detector, extractor = create_strategy_components("heuristic", config={})
        fp = extract_from_image(make_face_frame(), detector, extractor)
        assert fp.strategy is Strategy.HEURISTIC

    def test_extract_from_blank_image(self, blank_frame):
        detector, extractor = create_strategy_components("heuristic", config={})
        with pytest.raises(NoFaceDetectedError):
            extract_from_image(blank_frame, detector, extractor)

    def test_extract_from_crowded_image(self, face_frame):
        backend = MagicMock()
        backend.detect_faces.return_value = (3, [(0, 0, 10, 10)] * 3)
        detector, extractor = create_strategy_components("model", config={}, backend=backend)
        with pytest.raises(MultipleFacesDetectedError) as exc_info:
            extract_from_image(face_frame, detector, extractor)
        assert exc_info.value.face_count == 3
