"""
Capture Orchestrator: the live capture state machine.

A capture session samples the camera, tells the user how the face looks,
runs an auto-capture countdown once the quality is good enough and finally
extracts one fingerprint.

State machine:
    IDLE -> SAMPLING -> COUNTDOWN -> CAPTURING -> CAPTURED
    any non-terminal state -> CANCELLED | FAILED

Every input is an event in one priority queue and is handled one at a time
by the session owner, so the session never needs a lock:

    CANCEL          highest priority, processed before pending ticks
    EXTRACTION_DONE result of the fingerprint extraction
    MANUAL_CAPTURE  user pressed the capture button
    COUNTDOWN_TICK  one step of the countdown (carries a generation)
    SAMPLE_TICK     one sampled frame, already run through the detector

Countdown ticks and extraction results carry a generation number. Once the
countdown is cleared or restarted, older ticks are stale and dropped.

Two drivers share the same queue:
    - Synchronous: tick(), countdown_tick(), request_capture(), cancel().
      Each call posts an event and drains the queue. Used by tests and host
      loops that own their own timing.
    - Asynchronous: await run(). A sampling task grabs and detects frames
      in a worker thread (bounded by frame_timeout_s), a timer task drives
      the countdown and extraction runs in a worker thread. All of them
      post back into the queue.

Usage:
    from faceverify.capture_orchestrator import start_session

    handle = start_session(
        SessionConfig(strategy="heuristic"),
        WebcamFrameSource(),
        on_feedback=lambda fb: print(fb.status, fb.quality),
        on_captured=lambda fp: print("captured", fp.dimension),
        on_error=lambda err: print("error", err.kind),
        autostart=False,
    )
    asyncio.run(handle.run())
"""

import asyncio
import heapq
import itertools
import logging
import threading
import time
import uuid
from contextlib import contextmanager
from dataclasses import dataclass, field
from enum import Enum, IntEnum
from typing import Any, Callable, Dict, List, Optional, Union

from faceverify.errors import (
    BackendFailure,
    ErrorKind,
    ExtractionFailedError,
    FaceVerificationError,
    MultipleFacesDetectedError,
    NoFaceDetectedError,
    NoFrameSourceError,
    NoValidFaceError,
)
from faceverify.face_detector import FaceRegion, FaceRegionDetector
from faceverify.fingerprint import Fingerprint, FingerprintExtractor, create_strategy_components
from faceverify.frame_source import FrameSource
from faceverify.quality import BrightnessLevel, QualityAnalyzer, QualityReport
from faceverify.session_config import SessionConfig

logger = logging.getLogger(__name__)


class CaptureState(Enum):
    """Lifecycle state of a capture session."""

    IDLE = "idle"
    SAMPLING = "sampling"
    COUNTDOWN = "countdown"
    CAPTURING = "capturing"
    CAPTURED = "captured"
    CANCELLED = "cancelled"
    FAILED = "failed"


TERMINAL_STATES = frozenset({CaptureState.CAPTURED, CaptureState.CANCELLED, CaptureState.FAILED})


class EventType(IntEnum):
    """Queue events; lower value = higher priority."""

    CANCEL = 0
    EXTRACTION_DONE = 1
    MANUAL_CAPTURE = 2
    COUNTDOWN_TICK = 3
    SAMPLE_TICK = 4


@dataclass
class Observation:
    """Detector and quality output for one sampled frame."""
    region: Optional[FaceRegion] = None
    report: Optional[QualityReport] = None
    error: Optional[FaceVerificationError] = None


@dataclass
class ExtractionOutcome:
    """Result of one extraction attempt."""
    fingerprint: Optional[Fingerprint] = None
    error: Optional[FaceVerificationError] = None


@dataclass
class Event:
    type: EventType
    payload: Any = None
    generation: int = 0


@dataclass
class CaptureSession:
    """
    Mutable state of one capture session, owned by the orchestrator.

    Attributes:
        session_id: Unique id, used in log messages.
        state: Current CaptureState.
        ticks_since_start: Sampling ticks handled so far.
        face_detected: Exactly one plausible face on the last tick.
        face_count: Faces reported on the last tick.
        current_quality: Quality score 0-100 of the last tick.
        brightness: Mean luma 0-255 of the last tick.
        countdown_remaining: Remaining countdown ticks, None when idle.
        countdown_generation: Bumped whenever a countdown starts or is cleared.
        last_feedback_timestamp: Clock value of the last lighting notice.
        lighting_feedback: Last lighting notice (None = lighting is fine).
        started_at: Clock value at session start.
    """

    session_id: str = field(default_factory=lambda: uuid.uuid4().hex)
    state: CaptureState = CaptureState.IDLE
    ticks_since_start: int = 0
    face_detected: bool = False
    face_count: int = 0
    current_quality: int = 0
    brightness: int = 0
    countdown_remaining: Optional[int] = None
    countdown_generation: int = 0
    last_feedback_timestamp: Optional[float] = None
    lighting_feedback: Optional[BrightnessLevel] = None
    started_at: float = 0.0


@dataclass
class CaptureFeedback:
    """
    Snapshot sent to on_feedback, at most once per tick.

    Attributes:
        face_detected: Exactly one plausible face in view.
        face_count: Number of faces reported by the detector.
        quality: Quality score 0-100 (0 without a face).
        brightness: Mean luma 0-255 (0 without a face).
        brightness_level: Classification of brightness, None without a face.
        lighting_warning: Current rate-limited lighting notice.
        lighting_notice: True only on the tick the lighting notice was refreshed.
        countdown_remaining: Remaining countdown ticks, None when not counting.
        issue: Recoverable problem on this tick, if any.
        state: Session state after the tick.
        tick: Sampling tick counter.
        status: Short UI status key (countdown, no_face, multiple_faces,
                poor_quality, fair_quality, good).
    """

    face_detected: bool
    face_count: int
    quality: int
    brightness: int
    brightness_level: Optional[BrightnessLevel]
    lighting_warning: Optional[BrightnessLevel]
    lighting_notice: bool
    countdown_remaining: Optional[int]
    issue: Optional[ErrorKind]
    state: CaptureState
    tick: int
    status: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "face_detected": self.face_detected,
            "face_count": self.face_count,
            "quality": self.quality,
            "brightness": self.brightness,
            "brightness_level": self.brightness_level.value if self.brightness_level else None,
            "lighting_warning": self.lighting_warning.value if self.lighting_warning else None,
            "lighting_notice": self.lighting_notice,
            "countdown_remaining": self.countdown_remaining,
            "issue": self.issue.value if self.issue else None,
            "state": self.state.value,
            "tick": self.tick,
            "status": self.status,
        }


FeedbackCallback = Callable[[CaptureFeedback], None]
CapturedCallback = Callable[[Fingerprint], None]
ErrorCallback = Callable[[FaceVerificationError], None]


class CaptureOrchestrator:
    """
    Owner of one capture session.

    Args:
        config: SessionConfig for this session.
        frame_source: Source of camera frames.
        detector: Face region detector matching config.strategy.
        extractor: Fingerprint extractor matching config.strategy.
        analyzer: Quality analyzer (default QualityAnalyzer()).
        on_feedback: Called with a CaptureFeedback, at most once per tick.
        on_captured: Called once with the fingerprint on success.
        on_error: Called with recoverable extraction errors and with the
                  fatal error that ends the session.
        clock: Monotonic clock in seconds (injectable for tests).
    """

    def __init__(
        self,
        config: SessionConfig,
        frame_source: FrameSource,
        detector: FaceRegionDetector,
        extractor: FingerprintExtractor,
        analyzer: Optional[QualityAnalyzer] = None,
        on_feedback: Optional[FeedbackCallback] = None,
        on_captured: Optional[CapturedCallback] = None,
        on_error: Optional[ErrorCallback] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        if detector.strategy is not config.strategy or extractor.strategy is not config.strategy:
            raise ValueError(
                f"Detector ({detector.strategy.value}) and extractor ({extractor.strategy.value}) "
                f"must both use the session strategy ({config.strategy.value})"
            )

        self.config = config
        self.frame_source = frame_source
        self.detector = detector
        self.extractor = extractor
        self.analyzer = analyzer or QualityAnalyzer()
        self.on_feedback = on_feedback
        self.on_captured = on_captured
        self.on_error = on_error
        self.clock = clock

        self.session: Optional[CaptureSession] = None
        self.fingerprint: Optional[Fingerprint] = None
        self.error: Optional[FaceVerificationError] = None

        self._queue: List[tuple] = []
        self._seq = itertools.count()
        self._draining = False
        self._extraction_generation = 0
        self._source_open = False
        self._detector_loaded = False

        # Worker threads using the frame source or detector. Release waits
        # for the last one to leave.
        self._resource_lock = threading.Lock()
        self._busy = 0
        self._release_pending = False
        self._released = threading.Event()

        # Set only while run() is active
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._loop_thread: Optional[int] = None
        self._wakeup: Optional[asyncio.Event] = None
        self._tasks = set()
        self._countdown_task: Optional[asyncio.Task] = None

    # ============================================================
    # Properties
    # ============================================================

    @property
    def state(self) -> CaptureState:
        if self.session is None:
            return CaptureState.IDLE
        return self.session.state

    @property
    def is_terminal(self) -> bool:
        return self.state in TERMINAL_STATES

    @property
    def is_running(self) -> bool:
        return self.session is not None and not self.is_terminal

    # ============================================================
    # Lifecycle
    # ============================================================

    def start(self) -> CaptureState:
        """
        Acquire the frame source and detector, then begin sampling.

        A failure to acquire them is fatal: the session moves to FAILED and
        on_error is called. Nothing is raised.

        Returns:
            The state after starting (SAMPLING or FAILED).
        """
        self._open_session()
        self._resources_acquired(self._acquire_resources())
        return self.state

    def _open_session(self) -> None:
        if self.session is not None:
            raise RuntimeError("Capture session already started")

        self.session = CaptureSession(started_at=self.clock())
        logger.info(
            f"Session {self.session.session_id[:8]} starting "
            f"(strategy={self.config.strategy.value}, auto_capture={self.config.auto_capture})"
        )

    def _acquire_resources(self) -> Optional[FaceVerificationError]:
        """Open the frame source and load the detector. Returns the failure, if any."""
        try:
            with self._resource_use(require_open=False):
                self.frame_source.open()
                self._source_open = True
                self.detector.load()
                self._detector_loaded = True
        except FaceVerificationError as e:
            return e
        except Exception as e:
            error = BackendFailure(f"Failed to start capture: {e}")
            error.__cause__ = e
            return error
        return None

    def _resources_acquired(self, error: Optional[FaceVerificationError]) -> None:
        if error is not None:
            self._fail(error)
            return

        if self.is_terminal:
            # Cancelled while the resources were being acquired
            self._release_resources()
            return

        self._transition(CaptureState.SAMPLING)

    @contextmanager
    def _resource_use(self, require_open: bool = True):
        """Hold the frame source and detector for one worker call."""
        with self._resource_lock:
            if self._release_pending or (require_open and not self._source_open):
                raise NoFrameSourceError("Frame source was released")
            self._busy += 1
        try:
            yield
        finally:
            with self._resource_lock:
                self._busy -= 1
                close_now = self._busy == 0 and self._release_pending
            if close_now:
                logger.debug("Last worker finished, releasing deferred resources")
                try:
                    self._close_resources()
                except Exception:
                    logger.exception("Failed to release capture resources")

    def _release_resources(self) -> None:
        """Close the frame source and detector, or defer until in-flight workers finish."""
        with self._resource_lock:
            self._release_pending = True
            if self._busy > 0:
                logger.debug(f"Release deferred: {self._busy} worker(s) still reading")
                return
        self._close_resources()

    def _close_resources(self) -> None:
        try:
            if self._source_open:
                self._source_open = False
                self.frame_source.close()
        finally:
            try:
                if self._detector_loaded:
                    self._detector_loaded = False
                    self.detector.close()
            finally:
                self._released.set()

    def _transition(self, new_state: CaptureState) -> None:
        old_state = self.session.state
        if old_state is new_state:
            return
        self.session.state = new_state
        logger.info(f"Session {self.session.session_id[:8]}: {old_state.value} -> {new_state.value}")

    def _finish(self, state: CaptureState) -> None:
        """Enter a terminal state and release everything the session holds."""
        self.session.countdown_remaining = None
        self._transition(state)
        self._queue.clear()
        self._cancel_tasks()
        try:
            self._release_resources()
        finally:
            if self._wakeup is not None:
                self._wakeup.set()

    def _fail(self, error: FaceVerificationError) -> None:
        logger.error(f"Session {self.session.session_id[:8]} failed: {error!r}")
        self.error = error
        try:
            self._finish(CaptureState.FAILED)
        finally:
            if self.on_error is not None:
                self.on_error(error)

    # ============================================================
    # Synchronous driver
    # ============================================================

    def tick(self) -> None:
        """Sample one frame now and handle it."""
        self._require_started()
        if self.state in (CaptureState.SAMPLING, CaptureState.COUNTDOWN):
            self._post(EventType.SAMPLE_TICK, self._observe())
        self._drain()

    def countdown_tick(self) -> None:
        """Advance the running countdown by one step."""
        self._require_started()
        if self.state is CaptureState.COUNTDOWN:
            self._post(EventType.COUNTDOWN_TICK, generation=self.session.countdown_generation)
        self._drain()

    def request_capture(self) -> None:
        """
        Capture now, skipping the countdown.

        Raises:
            NoFaceDetectedError: No face on the last sampled tick.
            MultipleFacesDetectedError: More than one face on the last tick.
            RuntimeError: The session is not running, or a capture is
                already in progress.
        """
        self._require_started()
        if self.is_terminal:
            raise RuntimeError(f"Capture session is {self.state.value}")
        if self.state is CaptureState.CAPTURING:
            raise RuntimeError("Capture already in progress")

        if not self.session.face_detected:
            if self.session.face_count > 1:
                raise MultipleFacesDetectedError(self.session.face_count)
            raise NoFaceDetectedError("No face detected, cannot capture")

        self._post(EventType.MANUAL_CAPTURE)
        self._drain_if_sync()

    def cancel(self) -> None:
        """Cancel the session. No callbacks fire afterwards."""
        if self.session is None:
            self._open_session()
            self._finish(CaptureState.CANCELLED)
            return
        if self.is_terminal:
            return

        self._post(EventType.CANCEL)
        self._drain_if_sync()

    def _require_started(self) -> None:
        if self.session is None:
            raise RuntimeError("Capture session not started")

    def _drain_if_sync(self) -> None:
        if self._loop is None:
            self._drain()

    # ============================================================
    # Event queue
    # ============================================================

    def _post(self, event_type: EventType, payload: Any = None, generation: int = 0) -> None:
        if self._loop is not None and threading.get_ident() != self._loop_thread:
            self._loop.call_soon_threadsafe(self._post, event_type, payload, generation)
            return

        heapq.heappush(self._queue, (int(event_type), next(self._seq), Event(event_type, payload, generation)))
        if self._wakeup is not None:
            self._wakeup.set()

    def _drain(self) -> None:
        # Callbacks may post events (e.g. cancel from on_feedback); the
        # outer drain picks them up.
        if self._draining:
            return

        self._draining = True
        try:
            while self._queue:
                _, _, event = heapq.heappop(self._queue)
                if self.is_terminal:
                    self._queue.clear()
                    break
                self._dispatch(event)
        finally:
            self._draining = False

    def _dispatch(self, event: Event) -> None:
        if event.type is EventType.CANCEL:
            logger.info(f"Session {self.session.session_id[:8]} cancelled")
            self._finish(CaptureState.CANCELLED)
        elif event.type is EventType.EXTRACTION_DONE:
            self._on_extraction_done(event)
        elif event.type is EventType.MANUAL_CAPTURE:
            self._on_manual_capture()
        elif event.type is EventType.COUNTDOWN_TICK:
            self._on_countdown_tick(event)
        elif event.type is EventType.SAMPLE_TICK:
            self._on_sample(event.payload)

    # ============================================================
    # Sampling
    # ============================================================

    def _observe(self) -> Observation:
        """Grab the current frame, detect and analyse it. Runs off the loop in async mode."""
        try:
            with self._resource_use():
                frame = self.frame_source.current_frame()
                region = self.detector.detect(frame)
            report = None
            if region is not None and region.is_single_face:
                report = self.analyzer.analyze(region.pixels)
        except FaceVerificationError as e:
            return Observation(error=e)
        except Exception as e:
            error = BackendFailure(f"Frame processing failed: {e}")
            error.__cause__ = e
            return Observation(error=error)

        return Observation(region=region, report=report)

    def _on_sample(self, observation: Observation) -> None:
        if self.state not in (CaptureState.SAMPLING, CaptureState.COUNTDOWN):
            return

        session = self.session
        session.ticks_since_start += 1

        if observation.error is not None:
            if observation.error.fatal:
                self._fail(observation.error)
                return
            logger.warning(f"Recoverable error while sampling: {observation.error!r}")
            self._on_face_missing(0, observation.error.kind)
            return

        region = observation.region
        if region is None or not region.is_single_face:
            face_count = region.face_count if region is not None else 0
            issue = ErrorKind.MULTIPLE_FACES_DETECTED if face_count > 1 else ErrorKind.NO_FACE_DETECTED
            self._on_face_missing(face_count, issue)
            return

        report = observation.report
        session.face_detected = True
        session.face_count = region.face_count
        session.current_quality = report.score
        session.brightness = report.brightness

        lighting_notice = self._update_lighting(report.brightness_level)

        if session.countdown_remaining is None:
            if self.config.auto_capture and report.score >= self.config.quality_good_threshold:
                self._start_countdown()
        elif report.score < self.config.quality_abort_threshold:
            self._clear_countdown(f"quality {report.score} below {self.config.quality_abort_threshold}")

        issue = None
        if report.score < self.config.quality_good_threshold:
            issue = ErrorKind.POOR_QUALITY

        logger.debug(
            f"tick {session.ticks_since_start}: quality={report.score} "
            f"brightness={report.brightness} state={session.state.value}"
        )
        self._emit_feedback(issue=issue, brightness_level=report.brightness_level,
                            lighting_notice=lighting_notice)

    def _on_face_missing(self, face_count: int, issue: ErrorKind) -> None:
        session = self.session
        session.face_detected = False
        session.face_count = face_count
        session.current_quality = 0
        session.brightness = 0

        if session.countdown_remaining is not None:
            self._clear_countdown("face lost")

        self._emit_feedback(issue=issue)

    def _update_lighting(self, level: BrightnessLevel) -> bool:
        """Refresh the lighting notice if the rate limit allows. Returns True if refreshed."""
        session = self.session
        now = self.clock()

        if (session.last_feedback_timestamp is not None
                and now - session.last_feedback_timestamp <= self.config.lighting_feedback_interval_s):
            return False

        session.lighting_feedback = None if level is BrightnessLevel.ACCEPTABLE else level
        session.last_feedback_timestamp = now
        if session.lighting_feedback is not None:
            logger.info(f"Lighting notice: {session.lighting_feedback.value}")
        return True

    # ============================================================
    # Countdown
    # ============================================================

    def _start_countdown(self) -> None:
        session = self.session
        session.countdown_generation += 1
        session.countdown_remaining = self.config.countdown_seconds
        self._transition(CaptureState.COUNTDOWN)
        self._schedule_countdown(session.countdown_generation)

    def _clear_countdown(self, reason: str) -> None:
        session = self.session
        logger.info(f"Countdown cleared: {reason}")
        session.countdown_remaining = None
        session.countdown_generation += 1
        if self._countdown_task is not None:
            self._countdown_task.cancel()
            self._countdown_task = None
        self._transition(CaptureState.SAMPLING)

    def _on_countdown_tick(self, event: Event) -> None:
        session = self.session
        if self.state is not CaptureState.COUNTDOWN or event.generation != session.countdown_generation:
            logger.debug(f"Dropping stale countdown tick (generation {event.generation})")
            return

        session.countdown_remaining -= 1
        self._emit_feedback(brightness_level=self.analyzer.classify_brightness(session.brightness))

        if session.countdown_remaining <= 0:
            self._begin_capture()

    # ============================================================
    # Capture
    # ============================================================

    def _on_manual_capture(self) -> None:
        if self.state not in (CaptureState.SAMPLING, CaptureState.COUNTDOWN):
            logger.debug(f"Dropping manual capture request in state {self.state.value}")
            return

        if self.session.countdown_remaining is not None:
            self.session.countdown_generation += 1
            if self._countdown_task is not None:
                self._countdown_task.cancel()
                self._countdown_task = None
        logger.info("Manual capture requested")
        self._begin_capture()

    def _begin_capture(self) -> None:
        self.session.countdown_remaining = None
        self._transition(CaptureState.CAPTURING)
        self._extraction_generation += 1
        generation = self._extraction_generation

        if self._loop is not None:
            self._spawn(self._extract_async(generation))
        else:
            self._post(EventType.EXTRACTION_DONE, self._extract(), generation)

    def _extract(self) -> ExtractionOutcome:
        """Grab a fresh frame, re-detect and extract. Runs off the loop in async mode."""
        try:
            with self._resource_use():
                frame = self.frame_source.current_frame()
                region = self.detector.detect(frame)
                if region is None or not region.is_single_face:
                    raise NoValidFaceError("Face lost before capture")
                fingerprint = self.extractor.extract(region)
            return ExtractionOutcome(fingerprint=fingerprint)
        except FaceVerificationError as e:
            return ExtractionOutcome(error=e)
        except Exception as e:
            error = BackendFailure(f"Fingerprint extraction failed: {e}")
            error.__cause__ = e
            return ExtractionOutcome(error=error)

    def _on_extraction_done(self, event: Event) -> None:
        if self.state is not CaptureState.CAPTURING or event.generation != self._extraction_generation:
            logger.debug(f"Dropping stale extraction result (generation {event.generation})")
            return

        outcome: ExtractionOutcome = event.payload

        if outcome.error is not None:
            if outcome.error.fatal:
                self._fail(outcome.error)
                return

            error = outcome.error
            if not isinstance(error, ExtractionFailedError):
                wrapped = ExtractionFailedError(error.message)
                wrapped.__cause__ = error
                error = wrapped

            logger.warning(f"Extraction failed, back to sampling: {error.message}")
            self._transition(CaptureState.SAMPLING)
            if self.on_error is not None:
                self.on_error(error)
            return

        self.fingerprint = outcome.fingerprint
        logger.info(
            f"Session {self.session.session_id[:8]} captured "
            f"{self.fingerprint.strategy.value} fingerprint (dim={self.fingerprint.dimension})"
        )
        try:
            self._finish(CaptureState.CAPTURED)
        finally:
            if self.on_captured is not None:
                self.on_captured(self.fingerprint)

    # ============================================================
    # Feedback
    # ============================================================

    def _status(self, issue: Optional[ErrorKind]) -> str:
        session = self.session
        if session.countdown_remaining is not None:
            return "countdown"
        if issue is ErrorKind.MULTIPLE_FACES_DETECTED:
            return "multiple_faces"
        if not session.face_detected:
            return "no_face"
        if session.current_quality < self.config.quality_good_threshold:
            return "poor_quality"
        if session.current_quality < self.config.quality_fair_threshold:
            return "fair_quality"
        return "good"

    def _emit_feedback(
        self,
        issue: Optional[ErrorKind] = None,
        brightness_level: Optional[BrightnessLevel] = None,
        lighting_notice: bool = False,
    ) -> None:
        session = self.session
        feedback = CaptureFeedback(
            face_detected=session.face_detected,
            face_count=session.face_count,
            quality=session.current_quality,
            brightness=session.brightness,
            brightness_level=brightness_level if session.face_detected else None,
            lighting_warning=session.lighting_feedback,
            lighting_notice=lighting_notice,
            countdown_remaining=session.countdown_remaining,
            issue=issue,
            state=session.state,
            tick=session.ticks_since_start,
            status=self._status(issue),
        )

        if self.on_feedback is not None:
            self.on_feedback(feedback)

    # ============================================================
    # Asynchronous driver
    # ============================================================

    async def run(self) -> CaptureState:
        """
        Drive the session on the running event loop until it ends.

        Starts the session first if start() was not called. Cancelling the
        task running run() cancels the session.

        Returns:
            The terminal state.
        """
        if self._loop is not None:
            raise RuntimeError("Capture session is already running")

        self._loop = asyncio.get_running_loop()
        self._loop_thread = threading.get_ident()
        self._wakeup = asyncio.Event()

        try:
            if self.session is None:
                self._open_session()
                error = await asyncio.to_thread(self._acquire_resources)
                self._resources_acquired(error)

            if self.state is CaptureState.COUNTDOWN:
                self._schedule_countdown(self.session.countdown_generation)

            if not self.is_terminal:
                self._spawn(self._sampling_loop())

            while not self.is_terminal:
                await self._wakeup.wait()
                self._wakeup.clear()
                self._drain()
        finally:
            self._cancel_tasks()
            if self.session is not None and not self.is_terminal:
                logger.info(f"Session {self.session.session_id[:8]} cancelled with its driver")
                self._finish(CaptureState.CANCELLED)
            if self._release_pending and not self._released.is_set():
                await self._wait_for_release()
            self._loop = None
            self._loop_thread = None
            self._wakeup = None

        return self.state

    async def _wait_for_release(self) -> None:
        timeout = self.config.frame_timeout_s
        if not await asyncio.to_thread(self._released.wait, timeout):
            logger.warning(f"Capture resources still in use {timeout:.1f}s after the session ended")

    async def _sampling_loop(self) -> None:
        period = self.config.sampling_period_s
        timeout = self.config.frame_timeout_s

        while not self.is_terminal:
            if self.state in (CaptureState.SAMPLING, CaptureState.COUNTDOWN):
                try:
                    observation = await asyncio.wait_for(asyncio.to_thread(self._observe), timeout)
                except asyncio.TimeoutError:
                    observation = Observation(
                        error=NoFrameSourceError(f"No frame within {timeout:.1f}s")
                    )
                self._post(EventType.SAMPLE_TICK, observation)
            await asyncio.sleep(period)

    async def _countdown_timer(self, generation: int) -> None:
        while True:
            await asyncio.sleep(self.config.countdown_interval_s)
            if (self.state is not CaptureState.COUNTDOWN
                    or self.session.countdown_generation != generation):
                return
            self._post(EventType.COUNTDOWN_TICK, generation=generation)

    async def _extract_async(self, generation: int) -> None:
        outcome = await asyncio.to_thread(self._extract)
        self._post(EventType.EXTRACTION_DONE, outcome, generation)

    def _schedule_countdown(self, generation: int) -> None:
        if self._loop is None:
            return
        if self._countdown_task is not None:
            self._countdown_task.cancel()
        self._countdown_task = self._spawn(self._countdown_timer(generation))

    def _spawn(self, coro) -> asyncio.Task:
        task = self._loop.create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._task_done)
        return task

    def _task_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if task is self._countdown_task:
            self._countdown_task = None
        if task.cancelled() or self.is_terminal:
            return

        exc = task.exception()
        if exc is not None:
            error = BackendFailure(f"Capture task crashed: {exc}")
            error.__cause__ = exc
            self._fail(error)

    def _cancel_tasks(self) -> None:
        current = asyncio.current_task() if self._loop is not None else None
        for task in list(self._tasks):
            if task is not current:
                task.cancel()
        self._countdown_task = None


class SessionHandle:
    """
    Caller-facing handle on a running capture session.

    Wraps the orchestrator so that callers only see the operations meant
    for them.
    """

    def __init__(self, orchestrator: CaptureOrchestrator):
        self._orchestrator = orchestrator

    @property
    def session_id(self) -> Optional[str]:
        session = self._orchestrator.session
        return session.session_id if session is not None else None

    @property
    def state(self) -> CaptureState:
        return self._orchestrator.state

    @property
    def session(self) -> Optional[CaptureSession]:
        return self._orchestrator.session

    @property
    def fingerprint(self) -> Optional[Fingerprint]:
        return self._orchestrator.fingerprint

    @property
    def error(self) -> Optional[FaceVerificationError]:
        return self._orchestrator.error

    @property
    def orchestrator(self) -> CaptureOrchestrator:
        return self._orchestrator

    def start(self) -> CaptureState:
        return self._orchestrator.start()

    def tick(self) -> None:
        self._orchestrator.tick()

    def countdown_tick(self) -> None:
        self._orchestrator.countdown_tick()

    def request_capture(self) -> None:
        self._orchestrator.request_capture()

    def cancel(self) -> None:
        self._orchestrator.cancel()

    async def run(self) -> CaptureState:
        return await self._orchestrator.run()

    def __repr__(self) -> str:
        return f"SessionHandle(session_id={self.session_id}, state={self.state.value})"


def start_session(
    config: Union[SessionConfig, Dict[str, Any], None],
    frame_source: FrameSource,
    on_feedback: Optional[FeedbackCallback] = None,
    on_captured: Optional[CapturedCallback] = None,
    on_error: Optional[ErrorCallback] = None,
    backend=None,
    detector: Optional[FaceRegionDetector] = None,
    extractor: Optional[FingerprintExtractor] = None,
    analyzer: Optional[QualityAnalyzer] = None,
    clock: Callable[[], float] = time.monotonic,
    autostart: bool = True,
) -> SessionHandle:
    """
    Create a capture session and (by default) start it.

    Args:
        config: SessionConfig, a dict of its fields, or None to read the
                "capture" section of config.yaml.
        frame_source: Camera frames.
        on_feedback, on_captured, on_error: Session callbacks.
        backend: ModelBackend for the model strategy (default shared backend).
        detector, extractor: Override the strategy components.
        analyzer: Override the quality analyzer.
        clock: Monotonic clock for the lighting rate limit.
        autostart: Acquire resources now. Pass False when the session will
                   be driven by run(), which acquires them off the event loop.

    Returns:
        SessionHandle.

    Raises:
        ValueError: If the configuration is inconsistent.
    """
    if config is None:
        config = SessionConfig.from_config()
    elif isinstance(config, dict):
        config = SessionConfig.from_dict(config)
    config.validate()

    if detector is None or extractor is None:
        default_detector, default_extractor = create_strategy_components(config.strategy, backend=backend)
        detector = detector or default_detector
        extractor = extractor or default_extractor

    if analyzer is None:
        from faceverify.config import get_optional_section

        analyzer = QualityAnalyzer(get_optional_section("quality"))

    orchestrator = CaptureOrchestrator(
        config,
        frame_source,
        detector,
        extractor,
        analyzer=analyzer,
        on_feedback=on_feedback,
        on_captured=on_captured,
        on_error=on_error,
        clock=clock,
    )

    if autostart:
        orchestrator.start()

    return SessionHandle(orchestrator)


def cancel(handle: SessionHandle) -> None:
    """Cancel a capture session."""
    handle.cancel()
