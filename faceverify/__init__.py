"""
Face Verification Core for the Attendance Portal

This package captures a face from a live camera feed, turns it into a
compact fingerprint and compares it with an enrolled fingerprint.

Main components:
    - config: Configuration loading and management
    - quality: Brightness/contrast quality score of a face region
    - face_detector: Heuristic and model-based face region detectors
    - fingerprint: Strategy-tagged fingerprints and their extractors
    - capture_orchestrator: Live capture state machine (countdown, capture)
    - matching: Fingerprint matchers and match_identity()
    - model_backend: MediaPipe + ArcFace wrapper for the model strategy

Usage:
    from faceverify import SessionConfig, WebcamFrameSource, start_session, match_identity

    handle = start_session(SessionConfig(), WebcamFrameSource(), on_captured=print)
    result = match_identity(enrolled, candidate)
"""

from faceverify.config import (
    get_config,
    get_section,
    get_capture_config,
    get_quality_config,
    get_matching_config,
    get_model_config,
)

from faceverify.errors import (
    ErrorKind,
    FaceVerificationError,
    NoFrameSourceError,
    ModelLoadFailure,
    BackendFailure,
    NoFaceDetectedError,
    MultipleFacesDetectedError,
    ExtractionFailedError,
    NoValidFaceError,
    StrategyMismatchError,
)

from faceverify.strategy import Strategy

from faceverify.quality import QualityAnalyzer, QualityReport, BrightnessLevel

from faceverify.face_detector import (
    FaceRegion,
    FaceRegionDetector,
    HeuristicFaceDetector,
    ModelFaceDetector,
)

from faceverify.fingerprint import (
    Fingerprint,
    FingerprintExtractor,
    HeuristicFingerprintExtractor,
    ModelFingerprintExtractor,
    create_strategy_components,
    extract_from_image,
)

from faceverify.frame_source import FrameSource, WebcamFrameSource, SequenceFrameSource

from faceverify.session_config import SessionConfig

from faceverify.capture_orchestrator import (
    CaptureState,
    CaptureSession,
    CaptureFeedback,
    CaptureOrchestrator,
    SessionHandle,
    start_session,
    cancel,
)

from faceverify.matching import VerificationResult, get_matcher, match_identity

from faceverify.store import EnrolledFingerprintStore, InMemoryFingerprintStore

__all__ = [
    # Configuration
    "get_config",
    "get_section",
    "get_capture_config",
    "get_quality_config",
    "get_matching_config",
    "get_model_config",
    # Errors
    "ErrorKind",
    "FaceVerificationError",
    "NoFrameSourceError",
    "ModelLoadFailure",
    "BackendFailure",
    "NoFaceDetectedError",
    "MultipleFacesDetectedError",
    "ExtractionFailedError",
    "NoValidFaceError",
    "StrategyMismatchError",
    # Quality / detection / fingerprints
    "Strategy",
    "QualityAnalyzer",
    "QualityReport",
    "BrightnessLevel",
    "FaceRegion",
    "FaceRegionDetector",
    "HeuristicFaceDetector",
    "ModelFaceDetector",
    "Fingerprint",
    "FingerprintExtractor",
    "HeuristicFingerprintExtractor",
    "ModelFingerprintExtractor",
    "create_strategy_components",
    "extract_from_image",
    # Capture
    "FrameSource",
    "WebcamFrameSource",
    "SequenceFrameSource",
    "SessionConfig",
    "CaptureState",
    "CaptureSession",
    "CaptureFeedback",
    "CaptureOrchestrator",
    "SessionHandle",
    "start_session",
    "cancel",
    # Matching
    "VerificationResult",
    "get_matcher",
    "match_identity",
    "EnrolledFingerprintStore",
    "InMemoryFingerprintStore",
]
