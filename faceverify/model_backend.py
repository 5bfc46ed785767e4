"""
External Face Model Backend

This module wraps the external models used by the model strategy:

- Face detection / counting: MediaPipe Face Landmarker (Tasks API), run with
  num_faces > 1 so that a second face in view can be reported.
- Face descriptor: ArcFace embeddings from insightface (buffalo_l) or, as a
  fallback, facenet-pytorch (InceptionResnetV1, VGGFace2).

Models are loaded once by load(). Loading is idempotent and thread safe, so
concurrent callers share one load. Capture sessions and the API share the
same backend through acquire() / release(); the models are closed only when
the last holder releases them. Any loading problem is reported as
ModelLoadFailure; a failing detect/describe call becomes BackendFailure.

Note: MediaPipe 0.10.x uses the new Tasks API (mp.tasks.vision.FaceLandmarker)
instead of the legacy Solutions API (mp.solutions.face_mesh).

Usage:
    from faceverify.model_backend import get_model_backend

    backend = get_model_backend(config)
    backend.acquire()
    count, boxes = backend.detect_faces(frame)
    descriptor = backend.describe(face_crop)
    backend.release()
"""

import asyncio
import logging
import threading
import urllib.request
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional, Tuple

import cv2
import numpy as np

# MediaPipe Tasks API imports
import mediapipe as mp
from mediapipe.tasks import python as mp_tasks
from mediapipe.tasks.python import vision

from faceverify.errors import BackendFailure, FaceVerificationError, ModelLoadFailure

logger = logging.getLogger(__name__)

# Descriptor backend availability flags
_INSIGHTFACE_AVAILABLE = False
_FACENET_AVAILABLE = False

try:
    from insightface.app import FaceAnalysis
    _INSIGHTFACE_AVAILABLE = True
except ImportError:
    pass

try:
    from facenet_pytorch import MTCNN, InceptionResnetV1
    import torch
    _FACENET_AVAILABLE = True
except ImportError:
    pass


# URL for the face landmarker model
MODEL_URL = "https://storage.googleapis.com/mediapipe-models/face_landmarker/face_landmarker/float16/1/face_landmarker.task"
MODEL_FILENAME = "face_landmarker.task"

BBox = Tuple[int, int, int, int]


def get_model_path() -> str:
    """
    Get the path to the MediaPipe face landmarker model file.
    Downloads the model if it doesn't exist locally.

    Returns:
        Path to the model file.
    """
    from faceverify.config import get_project_root

    model_dir = get_project_root() / "storage" / "models"
    model_dir.mkdir(parents=True, exist_ok=True)

    model_path = model_dir / MODEL_FILENAME

    if not model_path.exists():
        logger.info(f"Downloading MediaPipe face landmarker model from {MODEL_URL}")
        urllib.request.urlretrieve(MODEL_URL, str(model_path))
        logger.info(f"Saved model to {model_path}")

    return str(model_path)


def to_bgr(frame: np.ndarray) -> np.ndarray:
    """Convert a luma, BGR or RGBA frame to 3-channel BGR uint8."""
    if frame.ndim == 2:
        frame = cv2.cvtColor(frame, cv2.COLOR_GRAY2BGR)
    elif frame.shape[2] == 4:
        frame = cv2.cvtColor(frame, cv2.COLOR_RGBA2BGR)
    if frame.dtype != np.uint8:
        frame = np.clip(frame, 0, 255).astype(np.uint8)
    return frame


class ModelBackend(ABC):
    """
    Abstract external face model.

    Implementations must be safe to load() more than once and to call from
    a worker thread.
    """

    name: str = "model"

    def __init__(self):
        self._holders = 0
        self._holders_lock = threading.Lock()

    @property
    @abstractmethod
    def is_loaded(self) -> bool:
        pass

    @abstractmethod
    def load(self) -> None:
        """Load the models. Raises ModelLoadFailure on failure."""
        pass

    @abstractmethod
    def detect_faces(self, frame: np.ndarray) -> Tuple[int, List[BBox]]:
        """
        Detect all faces in a frame.

        Returns:
            Tuple of (face count, list of (x1, y1, x2, y2) boxes).
        """
        pass

    @abstractmethod
    def describe(self, face_image: np.ndarray) -> Optional[np.ndarray]:
        """
        Compute an identity descriptor for a face crop.

        Returns:
            1D float array, or None if the model finds no face in the crop.
        """
        pass

    def close(self) -> None:
        """Release the models."""

    # ============================================================
    # Shared ownership
    # ============================================================

    def acquire(self) -> None:
        """
        Load the models (if needed) and register one more holder.

        Capture sessions and the API share one backend; each holder pairs
        acquire() with release().
        """
        with self._holders_lock:
            self.load()
            self._holders += 1
            logger.debug(f"{self.name}: acquired ({self._holders} holders)")

    def release(self) -> None:
        """Drop one holder. The models are closed when the last one leaves."""
        with self._holders_lock:
            if self._holders == 0:
                logger.warning(f"{self.name}: release() without a matching acquire()")
                return
            self._holders -= 1
            logger.debug(f"{self.name}: released ({self._holders} holders)")
            if self._holders == 0:
                self.close()

    @property
    def holders(self) -> int:
        return self._holders

    async def acquire_async(self) -> None:
        """acquire() in a worker thread."""
        await asyncio.to_thread(self.acquire)


class MediaPipeArcFaceBackend(ModelBackend):
    """
    MediaPipe face landmarker for detection plus ArcFace for descriptors.

    Args:
        config: Dictionary with optional keys:
            - max_faces: Faces MediaPipe looks for (default 4, must be > 1 to
              detect crowding)
            - min_detection_confidence: MediaPipe confidence (default 0.5)
            - embedder: insightface model bundle name (default "buffalo_l")
            - backend: "insightface", "facenet" or "auto" (default)
            - device: "cuda" or "cpu" (default "cpu")
    """

    name = "mediapipe+arcface"

    def __init__(self, config: Optional[Dict[str, Any]] = None):
        super().__init__()
        if config is None:
            config = {}

        self.max_faces = max(2, config.get("max_faces", 4))
        self.min_detection_confidence = config.get("min_detection_confidence", 0.5)
        self.embedder_name = config.get("embedder", "buffalo_l")
        self.device = config.get("device", "cpu")
        self.requested_backend = config.get("backend", "auto")

        self._lock = threading.Lock()
        self._landmarker = None
        self._embedder = None
        self._detector = None  # MTCNN for the facenet backend
        self._embedder_backend: Optional[str] = None

    @property
    def is_loaded(self) -> bool:
        return self._landmarker is not None and self._embedder is not None

    def load(self) -> None:
        with self._lock:
            if self.is_loaded:
                return

            try:
                self._landmarker = self._create_landmarker()
                self._load_embedder()
            except FaceVerificationError:
                self._release()
                raise
            except Exception as e:
                self._release()
                raise ModelLoadFailure(f"Failed to load face models: {e}") from e

            logger.info(
                f"Face models loaded (detector=mediapipe, "
                f"descriptor={self._embedder_backend}:{self.embedder_name})"
            )

    def _create_landmarker(self):
        """Create the MediaPipe face landmarker in IMAGE mode."""
        base_options = mp_tasks.BaseOptions(model_asset_path=get_model_path())

        options = vision.FaceLandmarkerOptions(
            base_options=base_options,
            running_mode=vision.RunningMode.IMAGE,
            num_faces=self.max_faces,
            min_face_detection_confidence=self.min_detection_confidence,
            min_face_presence_confidence=self.min_detection_confidence,
            output_face_blendshapes=False,
            output_facial_transformation_matrixes=False,
        )

        return vision.FaceLandmarker.create_from_options(options)

    def _load_embedder(self) -> None:
        """Load the descriptor model (insightface preferred)."""
        backend = self.requested_backend
        if backend == "auto":
            if _INSIGHTFACE_AVAILABLE:
                backend = "insightface"
            elif _FACENET_AVAILABLE:
                backend = "facenet"
            else:
                raise ModelLoadFailure(
                    "No face descriptor backend available. "
                    "Install insightface: pip install insightface onnxruntime\n"
                    "Or facenet-pytorch: pip install facenet-pytorch"
                )

        if backend == "insightface":
            if not _INSIGHTFACE_AVAILABLE:
                raise ModelLoadFailure("insightface not installed. Run: pip install insightface onnxruntime")

            if self.device == "cuda":
                providers = ["CUDAExecutionProvider", "CPUExecutionProvider"]
            else:
                providers = ["CPUExecutionProvider"]

            model = FaceAnalysis(name=self.embedder_name, providers=providers)
            model.prepare(ctx_id=0 if self.device == "cuda" else -1, det_size=(640, 640))
            self._embedder = model

        elif backend == "facenet":
            if not _FACENET_AVAILABLE:
                raise ModelLoadFailure("facenet-pytorch not installed. Run: pip install facenet-pytorch")

            device = torch.device(self.device if torch.cuda.is_available() else "cpu")
            self._detector = MTCNN(image_size=160, margin=20, device=device, select_largest=True)
            self._embedder = InceptionResnetV1(pretrained="vggface2").eval().to(device)

        else:
            raise ModelLoadFailure(f"Unknown descriptor backend: {backend}")

        self._embedder_backend = backend

    def detect_faces(self, frame: np.ndarray) -> Tuple[int, List[BBox]]:
        if not self.is_loaded:
            self.load()

        bgr = to_bgr(frame)
        h, w = bgr.shape[:2]

        # MediaPipe expects RGB, but OpenCV uses BGR
        rgb = cv2.cvtColor(bgr, cv2.COLOR_BGR2RGB)
        mp_image = mp.Image(image_format=mp.ImageFormat.SRGB, data=rgb)

        try:
            results = self._landmarker.detect(mp_image)
        except Exception as e:
            raise BackendFailure(f"Face detection failed: {e}") from e

        boxes = []
        for face_landmarks in results.face_landmarks or []:
            xs = np.array([lm.x for lm in face_landmarks]) * w
            ys = np.array([lm.y for lm in face_landmarks]) * h
            boxes.append((
                max(0, int(xs.min())),
                max(0, int(ys.min())),
                min(w, int(xs.max())),
                min(h, int(ys.max())),
            ))

        return len(boxes), boxes

    def describe(self, face_image: np.ndarray) -> Optional[np.ndarray]:
        if not self.is_loaded:
            self.load()

        bgr = to_bgr(face_image)

        try:
            if self._embedder_backend == "insightface":
                return self._describe_insightface(bgr)
            return self._describe_facenet(bgr)
        except FaceVerificationError:
            raise
        except Exception as e:
            raise BackendFailure(f"Face descriptor failed: {e}") from e

    def _describe_insightface(self, face_image: np.ndarray) -> Optional[np.ndarray]:
        """Descriptor from insightface; pads tight crops so SCRFD can find the face."""
        faces = self._embedder.get(face_image)

        if not faces:
            logger.debug("insightface detected no face, retrying with padded input")
            faces = self._embedder.get(self._pad_image(face_image, ratio=0.5))

        if not faces:
            return None

        best_face = max(faces, key=lambda f: f.det_score)
        return best_face.normed_embedding.astype(np.float32)

    def _describe_facenet(self, face_image: np.ndarray) -> Optional[np.ndarray]:
        """Descriptor from facenet-pytorch."""
        rgb = cv2.cvtColor(face_image, cv2.COLOR_BGR2RGB)

        face_tensor = self._detector(rgb)
        if face_tensor is None:
            return None

        if face_tensor.dim() == 3:
            face_tensor = face_tensor.unsqueeze(0)

        device = next(self._embedder.parameters()).device
        with torch.no_grad():
            embedding = self._embedder(face_tensor.to(device)).cpu().numpy().flatten()

        norm = np.linalg.norm(embedding)
        if norm > 1e-8:
            embedding = embedding / norm

        return embedding.astype(np.float32)

    @staticmethod
    def _pad_image(image: np.ndarray, ratio: float = 0.2) -> np.ndarray:
        """Add mean-colour padding around the image to help detection on tight crops."""
        h, w = image.shape[:2]
        pad_h = int(h * ratio)
        pad_w = int(w * ratio)

        mean_color = image.mean(axis=(0, 1)).astype(np.uint8)
        padded = np.full((h + 2 * pad_h, w + 2 * pad_w, 3), mean_color, dtype=np.uint8)
        padded[pad_h:pad_h + h, pad_w:pad_w + w] = image
        return padded

    def _release(self) -> None:
        if self._landmarker is not None:
            self._landmarker.close()
        self._landmarker = None
        self._embedder = None
        self._detector = None
        self._embedder_backend = None

    def close(self) -> None:
        with self._lock:
            if self._landmarker is not None or self._embedder is not None:
                logger.info("Releasing face models")
            self._release()


# Store the singleton instance (module-level variable)
_backend_instance: Optional[MediaPipeArcFaceBackend] = None
_backend_lock = threading.Lock()


def get_model_backend(config: Optional[Dict[str, Any]] = None) -> MediaPipeArcFaceBackend:
    """
    Get the shared model backend.

    The backend is created on first use; load() is still up to the caller
    (the capture orchestrator loads it when a model session starts).

    Args:
        config: Model configuration. If None, loads the "model" section of
                config.yaml when available.
    """
    global _backend_instance

    with _backend_lock:
        if _backend_instance is None:
            if config is None:
                from faceverify.config import get_optional_section

                config = get_optional_section("model")
            _backend_instance = MediaPipeArcFaceBackend(config)

    return _backend_instance
