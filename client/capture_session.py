"""
Capture Session Module

State machine that owns one sample buffer and drives it from pointer
events through to a verification outcome:

    IDLE -> CAPTURING -> FINALIZING -> VERIFIED | FAILED

`reset()` returns to CAPTURING from any state.

The host observes the session through three callback lists:
- on_features(vector): live feature updates while capturing
- on_verified(token): the server accepted the session
- on_failed(score, reason): the score was too low or verification failed
Exactly one of the terminal callbacks fires per session (or per reset).
"""

import threading
from concurrent.futures import Executor
from enum import Enum
from typing import Callable, List, Optional
import logging

from client.feature_extractor import FeatureExtractor, FeatureVector
from client.interaction_listener import PointerEvent, PointerEventBus, monotonic_ms
from client.sample_buffer import Sample, SampleBuffer
from client.scoring_engine import ScoringEngine
from client.verification_client import VerificationClient
from shared.config import CaptureConfig
from shared.errors import SubmissionError

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

FeatureCallback = Callable[[FeatureVector], None]
VerifiedCallback = Callable[[str], None]
FailedCallback = Callable[[float, str], None]


class SessionState(str, Enum):
    IDLE = "idle"
    CAPTURING = "capturing"
    FINALIZING = "finalizing"
    VERIFIED = "verified"
    FAILED = "failed"


class CaptureSession:
    """
    One capture-and-verify cycle for an embedding page.
    Created by init_session() and owned by the caller.
    """

    def __init__(
        self,
        identity: str,
        bus: PointerEventBus,
        engine: ScoringEngine,
        client: VerificationClient,
        config: Optional[CaptureConfig] = None,
        extractor: Optional[FeatureExtractor] = None,
        executor: Optional[Executor] = None,
        clock: Callable[[], float] = monotonic_ms,
        is_simulating: bool = False,
    ):
        """
        Args:
            identity: Site key sent with the verification request.
            bus: Pointer event bus to subscribe to.
            engine: Scoring engine for the final decision.
            client: Submits accepted scores to the verification server.
            config: Capture tunables.
            extractor: Feature extractor; built from `config` if omitted.
            executor: Runs finalization off the input thread. If None,
                      finalization runs inline on the thread that delivered
                      the last sample.
            clock: Millisecond clock; must match the clock of the event source.
            is_simulating: Start in simulated mode.
        """
        self.identity = identity
        self.config = config or CaptureConfig()
        self.bus = bus
        self.engine = engine
        self.client = client
        self.extractor = extractor or FeatureExtractor(
            ranges=self.config.ranges,
            direction_change_rad=self.config.direction_change_rad,
            pause_velocity=self.config.pause_velocity,
        )
        self.executor = executor
        self._clock = clock

        self.buffer = SampleBuffer(
            capacity=self.config.max_points,
            min_interval_ms=self.config.sample_interval_ms,
        )
        self.state = SessionState.IDLE
        self.is_simulating = is_simulating
        self.start_time = 0.0
        self.verified = False
        self.token: Optional[str] = None
        self.score: Optional[float] = None

        self._lock = threading.RLock()
        # Bumped by reset/close so that an in-flight finalize can tell it is stale
        self._generation = 0

        self._feature_callbacks: List[FeatureCallback] = []
        self._verified_callbacks: List[VerifiedCallback] = []
        self._failed_callbacks: List[FailedCallback] = []

        self._begin_capture()
        logger.info(f"Capture session started for {identity} (simulating={is_simulating})")

    # ------------------------------------------------------------------
    # Subscription API
    # ------------------------------------------------------------------

    def on_features(self, callback: FeatureCallback) -> FeatureCallback:
        self._feature_callbacks.append(callback)
        return callback

    def on_verified(self, callback: VerifiedCallback) -> VerifiedCallback:
        self._verified_callbacks.append(callback)
        return callback

    def on_failed(self, callback: FailedCallback) -> FailedCallback:
        self._failed_callbacks.append(callback)
        return callback

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    @property
    def is_capturing(self) -> bool:
        return self.state == SessionState.CAPTURING

    def _begin_capture(self) -> None:
        self.state = SessionState.CAPTURING
        self.start_time = self._clock()
        # Detach first so the handler is never registered twice
        self.bus.unsubscribe(self._handle_event)
        self.bus.subscribe(self._handle_event)

    def reset(self, is_simulating: bool = False) -> None:
        """Discard all captured data and start a fresh capture."""
        with self._lock:
            self._generation += 1
            self.buffer.clear()
            self.verified = False
            self.token = None
            self.score = None
            self.is_simulating = is_simulating
            self._begin_capture()
        logger.info(f"Session reset (simulating={is_simulating})")

    def close(self) -> None:
        """Detach from input for good; any in-flight result is dropped."""
        with self._lock:
            self._generation += 1
            self.bus.unsubscribe(self._handle_event)
            self.state = SessionState.IDLE
        logger.info("Session closed")

    # ------------------------------------------------------------------
    # Sampling
    # ------------------------------------------------------------------

    def _handle_event(self, event: PointerEvent) -> None:
        features: Optional[FeatureVector] = None
        finalize_with: Optional[List[Sample]] = None

        with self._lock:
            if self.state != SessionState.CAPTURING:
                return
            # Strict isolation between real and simulated streams
            if event.simulated != self.is_simulating:
                return
            if not self.buffer.add(Sample(x=event.x, y=event.y, t=event.t)):
                return

            count = len(self.buffer)
            if count > self.config.min_observations:
                features = self.extractor.extract(self.buffer.snapshot())

            elapsed = event.t - self.start_time
            if elapsed > self.config.capture_duration_ms and count > self.config.min_finalize_samples:
                # Stop listening before any scoring work starts
                self.state = SessionState.FINALIZING
                self.bus.unsubscribe(self._handle_event)
                finalize_with = self.buffer.snapshot()
                generation = self._generation

        if features is not None:
            self._emit_features(features)

        if finalize_with is not None:
            if self.executor is not None:
                self.executor.submit(self._finalize, finalize_with, generation)
            else:
                self._finalize(finalize_with, generation)

    # ------------------------------------------------------------------
    # Finalization
    # ------------------------------------------------------------------

    def _finalize(self, samples: List[Sample], generation: int) -> None:
        try:
            features = self.extractor.extract(samples)
            score = self.engine.score(features)
        except Exception as e:
            logger.error(f"Finalization failed: {e}", exc_info=True)
            self._conclude(generation, SessionState.FAILED, score=0.0, reason=f"finalize_error: {e}")
            return

        logger.info(f"Final score: {score:.4f} ({self.engine.last_strategy})")

        if score <= self.config.threshold:
            self._conclude(generation, SessionState.FAILED, score=score, reason="below_threshold")
            return

        try:
            result = self.client.submit(score=score, identity=self.identity)
        except SubmissionError as e:
            logger.warning(f"Verification request failed: {e}")
            self._conclude(generation, SessionState.FAILED, score=score, reason=str(e))
            return
        except Exception as e:
            logger.error(f"Verification client raised: {e}", exc_info=True)
            self._conclude(generation, SessionState.FAILED, score=score, reason=f"submit_error: {e}")
            return

        if result.success and result.token:
            self._conclude(generation, SessionState.VERIFIED, score=score, token=result.token)
        else:
            self._conclude(generation, SessionState.FAILED, score=score, reason=result.error or "rejected")

    def _conclude(
        self,
        generation: int,
        state: SessionState,
        score: float,
        token: Optional[str] = None,
        reason: str = "",
    ) -> None:
        with self._lock:
            if generation != self._generation:
                logger.debug("Discarding outcome of a superseded session")
                return
            self.state = state
            self.score = score
            self.verified = state == SessionState.VERIFIED
            self.token = token

        if state == SessionState.VERIFIED:
            logger.info(f"Session verified for {self.identity}")
            for callback in list(self._verified_callbacks):
                self._safe_call(callback, token)
        else:
            logger.info(f"Session failed for {self.identity}: score={score:.4f} reason={reason}")
            for callback in list(self._failed_callbacks):
                self._safe_call(callback, score, reason)

    def _emit_features(self, features: FeatureVector) -> None:
        for callback in list(self._feature_callbacks):
            self._safe_call(callback, features)

    @staticmethod
    def _safe_call(callback, *args) -> None:
        # Host callbacks must never take down the capture pipeline
        try:
            callback(*args)
        except Exception as e:
            logger.error(f"Session callback raised: {e}", exc_info=True)


def init_session(
    identity: str,
    bus: PointerEventBus,
    config: Optional[CaptureConfig] = None,
    executor: Optional[Executor] = None,
    engine: Optional[ScoringEngine] = None,
    client: Optional[VerificationClient] = None,
    clock: Callable[[], float] = monotonic_ms,
    is_simulating: bool = False,
) -> CaptureSession:
    """
    Build a capture session with its scoring engine and verification client.
    The model asset is loaded here; a load failure degrades to heuristic scoring.
    """
    config = config or CaptureConfig()
    if engine is None:
        engine = ScoringEngine.from_asset(config.model_path, rules=config.rules, timeout=config.request_timeout)
    if client is None:
        client = VerificationClient(config.verify_endpoint, timeout=config.request_timeout)
    return CaptureSession(
        identity=identity,
        bus=bus,
        engine=engine,
        client=client,
        config=config,
        executor=executor,
        clock=clock,
        is_simulating=is_simulating,
    )
