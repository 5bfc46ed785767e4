"""
Shared fixtures: synthetic frames and scripted collaborators.

The synthetic face is a bright ellipse with two dark eyes and a mouth on a
dark background, drawn symmetric about the vertical centre line so that it
passes the heuristic face test. Its guide-box region scores 100.
"""

import sys
import threading
import time
from pathlib import Path

import numpy as np
import pytest

# Add project root to path
PROJECT_ROOT = Path(__file__).parent.parent
sys.path.insert(0, str(PROJECT_ROOT))

from faceverify.face_detector import FaceRegion, FaceRegionDetector
from faceverify.fingerprint import Fingerprint, FingerprintExtractor
from faceverify.frame_source import SequenceFrameSource
from faceverify.strategy import Strategy


def make_face_frame(height: int = 480, width: int = 640, background: int = 60,
                    skin: int = 170) -> np.ndarray:
    """Draw a mirror-symmetric cartoon face centred in a BGR frame."""
    ys, xs = np.mgrid[0:height, 0:width].astype(np.float64)
    cx = (width - 1) / 2.0
    cy = height / 2.0

    frame = np.full((height, width), background, dtype=np.float64)

    # Face oval
    face = ((xs - cx) / (width * 0.172)) ** 2 + ((ys - cy) / (height * 0.292)) ** 2 <= 1.0
    frame[face] = skin

    # Eyes
    eye_y = cy - height * 0.083
    for eye_x in (cx - width * 0.0625, cx + width * 0.0625):
        eye = (xs - eye_x) ** 2 + (ys - eye_y) ** 2 <= (height * 0.025) ** 2
        frame[eye] = 40

    # Mouth
    mouth = (np.abs(xs - cx) < width * 0.047) & (ys >= cy + height * 0.104) & (ys < cy + height * 0.125)
    frame[mouth] = 70

    gray = frame.astype(np.uint8)
    return np.stack([gray, gray, gray], axis=-1)


def make_patch(mean: float, std: float, size: int = 64) -> np.ndarray:
    """Luma patch with the given mean and population std (top half dark, bottom half bright)."""
    patch = np.full((size, size), mean - std, dtype=np.float64)
    patch[size // 2:, :] = mean + std
    return patch


def make_region(quality_patch: np.ndarray = None, face_count: int = 1) -> FaceRegion:
    """FaceRegion around a patch. face_count != 1 gives a rejected region."""
    if quality_patch is None:
        quality_patch = make_patch(125, 60)
    return FaceRegion(
        bbox=(0, 0, quality_patch.shape[1], quality_patch.shape[0]),
        pixels=quality_patch,
        is_face=face_count == 1,
        face_count=face_count,
    )


class ScriptedDetector(FaceRegionDetector):
    """
    Detector that returns a scripted region per call.

    `script` is a list of FaceRegion / None / Exception; the last entry
    repeats once the script is exhausted.
    """

    strategy = Strategy.HEURISTIC

    def __init__(self, script=None, load_error: Exception = None):
        self.script = list(script or [None])
        self.load_error = load_error
        self.calls = 0
        self.load_count = 0
        self.close_count = 0

    def set_script(self, script) -> None:
        self.script = list(script)
        self.calls = 0

    def detect(self, frame):
        index = min(self.calls, len(self.script) - 1)
        self.calls += 1
        item = self.script[index]
        if isinstance(item, Exception):
            raise item
        return item

    def load(self) -> None:
        self.load_count += 1
        if self.load_error is not None:
            raise self.load_error

    def close(self) -> None:
        self.close_count += 1


class ScriptedExtractor(FingerprintExtractor):
    """Extractor that returns a fixed fingerprint or raises scripted errors first."""

    strategy = Strategy.HEURISTIC

    def __init__(self, errors=None):
        self.errors = list(errors or [])
        self.calls = 0

    def extract(self, region):
        self.calls += 1
        if self.errors:
            raise self.errors.pop(0)
        return Fingerprint(vector=np.arange(32, dtype=np.float32), strategy=Strategy.HEURISTIC)


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, start: float = 100.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def face_frame():
    return make_face_frame()


@pytest.fixture
def blank_frame():
    return np.full((480, 640, 3), 128, dtype=np.uint8)


@pytest.fixture
def clock():
    return FakeClock()


class CountingFrameSource(SequenceFrameSource):
    """SequenceFrameSource that counts open() and close() calls."""

    def __init__(self, frames, loop: bool = False):
        super().__init__(frames, loop=loop)
        self.open_count = 0
        self.close_count = 0

    def open(self) -> None:
        super().open()
        self.open_count += 1

    def close(self) -> None:
        if self.is_open:
            self.close_count += 1
        super().close()


class SlowFrameSource(CountingFrameSource):
    """
    Frame source whose current_frame() blocks for `delay` seconds.

    `overlaps` records every close() that happened while a frame was being
    read in another thread.
    """

    def __init__(self, frames, delay: float = 0.3):
        super().__init__(frames, loop=True)
        self.delay = delay
        self.reading = threading.Event()
        self.reads = 0
        self.overlaps = 0

    def current_frame(self):
        self.reading.set()
        try:
            time.sleep(self.delay)
            frame = super().current_frame()
            self.reads += 1
            return frame
        finally:
            self.reading.clear()

    def close(self) -> None:
        if self.reading.is_set():
            self.overlaps += 1
        super().close()

