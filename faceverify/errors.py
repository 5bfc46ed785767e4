"""
Error Taxonomy for Face Verification

Every failure the capture-and-match engine can report is one of the
ErrorKind values below. Each exception carries its kind and whether it is
fatal for the capture session:

- Fatal errors (NO_FRAME_SOURCE, MODEL_LOAD_FAILURE, BACKEND_FAILURE) move
  the session to FAILED; the caller must start a new session.
- Recoverable errors (NO_FACE_DETECTED, MULTIPLE_FACES_DETECTED,
  POOR_QUALITY, EXTRACTION_FAILED) only update feedback or are reported
  through on_error while the session keeps sampling.
- STRATEGY_MISMATCH is a configuration error raised by the matcher.

Usage:
    from faceverify.errors import ErrorKind, StrategyMismatchError

    try:
        result = match_identity(enrolled, candidate)
    except StrategyMismatchError as e:
        print(e.kind, e)
"""

from enum import Enum


class ErrorKind(Enum):
    """Kinds of errors surfaced by the verification engine."""

    NO_FRAME_SOURCE = "no_frame_source"
    MODEL_LOAD_FAILURE = "model_load_failure"
    BACKEND_FAILURE = "backend_failure"
    NO_FACE_DETECTED = "no_face_detected"
    MULTIPLE_FACES_DETECTED = "multiple_faces_detected"
    POOR_QUALITY = "poor_quality"
    EXTRACTION_FAILED = "extraction_failed"
    STRATEGY_MISMATCH = "strategy_mismatch"


class FaceVerificationError(Exception):
    """
    Base class for all verification engine errors.

    Attributes:
        kind: The ErrorKind of this error.
        fatal: True if the error terminates a capture session.
    """

    kind: ErrorKind = ErrorKind.BACKEND_FAILURE
    fatal: bool = True

    def __init__(self, message: str = ""):
        super().__init__(message or self.kind.value)
        self.message = message or self.kind.value

    def __repr__(self) -> str:
        return f"{type(self).__name__}(kind={self.kind.value}, message={self.message!r})"


# ============================================================
# Fatal errors
# ============================================================


class NoFrameSourceError(FaceVerificationError):
    """The camera could not be opened or stopped delivering frames."""

    kind = ErrorKind.NO_FRAME_SOURCE
    fatal = True


class ModelLoadFailure(FaceVerificationError):
    """The external face model could not be loaded."""

    kind = ErrorKind.MODEL_LOAD_FAILURE
    fatal = True


class BackendFailure(FaceVerificationError):
    """A detector or model call failed while a session was running."""

    kind = ErrorKind.BACKEND_FAILURE
    fatal = True


# ============================================================
# Recoverable errors
# ============================================================


class NoFaceDetectedError(FaceVerificationError):
    """No plausible face is currently in view."""

    kind = ErrorKind.NO_FACE_DETECTED
    fatal = False


class MultipleFacesDetectedError(FaceVerificationError):
    """More than one face is in view; capture is blocked until resolved."""

    kind = ErrorKind.MULTIPLE_FACES_DETECTED
    fatal = False

    def __init__(self, face_count: int, message: str = ""):
        super().__init__(message or f"{face_count} faces detected, exactly 1 required")
        self.face_count = face_count


class ExtractionFailedError(FaceVerificationError):
    """A fingerprint could not be derived from the captured frame."""

    kind = ErrorKind.EXTRACTION_FAILED
    fatal = False


class NoValidFaceError(ExtractionFailedError):
    """The region failed the face re-check performed before extraction."""


# ============================================================
# Configuration errors
# ============================================================


class StrategyMismatchError(FaceVerificationError):
    """Two fingerprints produced by different strategies were compared."""

    kind = ErrorKind.STRATEGY_MISMATCH
    fatal = False

    def __init__(self, enrolled_strategy, candidate_strategy):
        super().__init__(
            f"Cannot compare fingerprints from different strategies: "
            f"enrolled={getattr(enrolled_strategy, 'value', enrolled_strategy)}, "
            f"candidate={getattr(candidate_strategy, 'value', candidate_strategy)}"
        )
        self.enrolled_strategy = enrolled_strategy
        self.candidate_strategy = candidate_strategy
