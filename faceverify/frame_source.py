"""
Frame sources for the capture orchestrator.

A FrameSource hands out the current camera frame on demand. The
orchestrator opens it when a session starts and closes it on any terminal
transition.

- WebcamFrameSource: OpenCV camera capture (BGR frames).
- SequenceFrameSource: replays a fixed list of frames (demos, replays, tests).
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Iterable, List, Optional

import cv2
import numpy as np

from faceverify.errors import NoFrameSourceError

logger = logging.getLogger(__name__)


class FrameSource(ABC):
    """
    Pull-based supplier of frames.

    current_frame() must return promptly; callers bound it with a timeout.
    """

    def open(self) -> None:
        """Acquire the underlying device. Raises NoFrameSourceError on failure."""

    @abstractmethod
    def current_frame(self) -> np.ndarray:
        """
        Return the most recent frame.

        Raises:
            NoFrameSourceError: If no frame can be delivered.
        """
        pass

    def close(self) -> None:
        """Release the underlying device."""

    def __enter__(self):
        self.open()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False


@dataclass
class CaptureConfig:
    """Configuration for webcam capture."""
    width: int = 640
    height: int = 480
    fps: int = 30
    device_id: int = 0


class WebcamFrameSource(FrameSource):
    """
    Camera frames via cv2.VideoCapture.

    Frames are BGR numpy arrays of shape (H, W, 3).
    """

    def __init__(self, config: Optional[CaptureConfig] = None):
        self.config = config or CaptureConfig()
        self._cap: Optional[cv2.VideoCapture] = None

    def open(self) -> None:
        if self._cap is not None:
            self.close()

        cap = cv2.VideoCapture(self.config.device_id)
        if not cap.isOpened():
            cap.release()
            raise NoFrameSourceError(f"Failed to open camera {self.config.device_id}")

        cap.set(cv2.CAP_PROP_FRAME_WIDTH, self.config.width)
        cap.set(cv2.CAP_PROP_FRAME_HEIGHT, self.config.height)
        cap.set(cv2.CAP_PROP_FPS, self.config.fps)

        self._cap = cap
        logger.info(
            f"Opened camera {self.config.device_id} at "
            f"{self.config.width}x{self.config.height}"
        )

    def current_frame(self) -> np.ndarray:
        if self._cap is None:
            raise NoFrameSourceError("Camera is not open")

        ret, frame = self._cap.read()
        if not ret or frame is None:
            raise NoFrameSourceError(f"Camera {self.config.device_id} returned no frame")

        return frame

    def close(self) -> None:
        if self._cap is not None:
            self._cap.release()
            self._cap = None
            logger.info("Camera closed")

    @property
    def is_open(self) -> bool:
        return self._cap is not None and self._cap.isOpened()


class SequenceFrameSource(FrameSource):
    """
    Replays a fixed sequence of frames.

    Args:
        frames: Frames to hand out in order.
        loop: If True, start over after the last frame; otherwise keep
              returning the last frame.
    """

    def __init__(self, frames: Iterable[np.ndarray], loop: bool = False):
        self._frames: List[np.ndarray] = list(frames)
        self.loop = loop
        self._index = 0
        self.is_open = False

    def open(self) -> None:
        if not self._frames:
            raise NoFrameSourceError("Frame sequence is empty")
        self.is_open = True

    def current_frame(self) -> np.ndarray:
        if not self.is_open:
            raise NoFrameSourceError("Frame sequence is not open")

        frame = self._frames[self._index]
        if self._index < len(self._frames) - 1:
            self._index += 1
        elif self.loop:
            self._index = 0
        # Each tick gets its own copy of the frame
        return frame.copy()

    def close(self) -> None:
        self.is_open = False

    @classmethod
    def from_video(cls, path: str, max_frames: int = 300) -> "SequenceFrameSource":
        """Load up to max_frames frames from a video file."""
        cap = cv2.VideoCapture(str(path))
        frames = []
        try:
            while len(frames) < max_frames:
                ret, frame = cap.read()
                if not ret:
                    break
                frames.append(frame)
        finally:
            cap.release()

        if not frames:
            raise NoFrameSourceError(f"No frames could be read from {path}")
        return cls(frames)
