"""
Interaction Listener Module

Delivers pointer positions to capture sessions. Only coordinates and
timestamps are ever captured: no clicks, no keystrokes, no window titles.

Producers publish PointerEvents onto a PointerEventBus; capture sessions
subscribe to the bus. Two producers are provided:
- RealPointerListener: system-wide pointer hooks via pynput.
- SimulatedPointerSource: replays a synthetic path, tagging every event as
  simulated so sessions can keep real and simulated streams apart.
"""

import threading
import time
from dataclasses import dataclass
from typing import Callable, List, Optional, Sequence, Tuple
import logging

try:
    from pynput import mouse
    PYNPUT_AVAILABLE = True
except ImportError:
    PYNPUT_AVAILABLE = False

logger = logging.getLogger(__name__)


def monotonic_ms() -> float:
    """Monotonic clock in milliseconds, shared by all producers."""
    return time.monotonic() * 1000.0


@dataclass(frozen=True)
class PointerEvent:
    """Pointer movement. `simulated` marks events produced by a simulator."""
    x: float
    y: float
    t: float
    simulated: bool = False


PointerCallback = Callable[[PointerEvent], None]


class PointerEventBus:
    """
    Fan-out of pointer events to subscribers.
    A callback is registered at most once, so re-subscribing never causes
    duplicate delivery.
    """

    def __init__(self):
        self._subscribers: List[PointerCallback] = []
        self._lock = threading.Lock()

    def subscribe(self, callback: PointerCallback) -> None:
        with self._lock:
            if callback not in self._subscribers:
                self._subscribers.append(callback)

    def unsubscribe(self, callback: PointerCallback) -> None:
        with self._lock:
            if callback in self._subscribers:
                self._subscribers.remove(callback)

    def is_subscribed(self, callback: PointerCallback) -> bool:
        with self._lock:
            return callback in self._subscribers

    @property
    def subscriber_count(self) -> int:
        with self._lock:
            return len(self._subscribers)

    def publish(self, event: PointerEvent) -> None:
        with self._lock:
            subscribers = list(self._subscribers)
        for callback in subscribers:
            try:
                callback(event)
            except Exception as e:
                # A failing subscriber must not break the input thread
                logger.error(f"Pointer subscriber raised: {e}", exc_info=True)


# ============================================================================
# Abstract Base Class
# ============================================================================

class InteractionListener:
    """Abstract base class for pointer event producers."""

    def __init__(self, bus: PointerEventBus):
        self.bus = bus

    def start(self) -> None:
        """Start producing pointer events."""
        raise NotImplementedError

    def stop(self) -> None:
        """Stop producing and release any system hooks."""
        raise NotImplementedError


# ============================================================================
# REAL Implementation (Production)
# ============================================================================

class RealPointerListener(InteractionListener):
    """
    System pointer listener using pynput hooks.
    Publishes untagged (real) events for every pointer move.
    """

    def __init__(self, bus: PointerEventBus, clock: Callable[[], float] = monotonic_ms):
        super().__init__(bus)
        self._clock = clock
        self._listener = None
        self._running = False

    def _on_move(self, x, y) -> None:
        self.bus.publish(PointerEvent(x=float(x), y=float(y), t=self._clock()))

    def start(self) -> None:
        if not PYNPUT_AVAILABLE:
            logger.error("Cannot start pointer capture: pynput not installed")
            return
        if self._running:
            return

        # pynput runs the hook on its own thread
        self._listener = mouse.Listener(on_move=self._on_move)
        self._listener.start()
        self._running = True
        logger.info("Real pointer capture started")

    def stop(self) -> None:
        if not self._running:
            return
        self._running = False
        if self._listener is not None:
            self._listener.stop()
            self._listener = None
        logger.info("Real pointer capture stopped")

    @property
    def running(self) -> bool:
        return self._running


# ============================================================================
# SIMULATED Implementation (Testing/Demonstration)
# ============================================================================

class SimulatedPointerSource(InteractionListener):
    """
    Replays a synthetic path as tagged pointer events.

    NOT for production use! Useful for:
    - Demonstrating how scripted movement is scored
    - Exercising sessions without system permissions
    """

    def __init__(self, bus: PointerEventBus, path: Sequence[Tuple[float, float, float]] = ()):
        """
        Args:
            bus: Event bus to publish on.
            path: (x, y, t_ms) points; `t_ms` is relative to the start of playback.
        """
        super().__init__(bus)
        self.path = list(path)
        self._thread: Optional[threading.Thread] = None
        self._running = False

    def play(self, origin_ms: float = 0.0) -> int:
        """
        Publish the whole path synchronously, timestamps offset by `origin_ms`.
        Returns the number of events published.
        """
        for x, y, t in self.path:
            self.bus.publish(PointerEvent(x=x, y=y, t=origin_ms + t, simulated=True))
        return len(self.path)

    def start(self) -> None:
        """Replay the path on a background thread in real time."""
        if self._running:
            return
        self._running = True
        self._thread = threading.Thread(target=self._replay, daemon=True)
        self._thread.start()
        logger.info(f"Simulated pointer playback started ({len(self.path)} points)")

    def _replay(self) -> None:
        origin = monotonic_ms()
        for x, y, t in self.path:
            if not self._running:
                break
            delay = (origin + t - monotonic_ms()) / 1000.0
            if delay > 0:
                time.sleep(delay)
            self.bus.publish(PointerEvent(x=x, y=y, t=monotonic_ms(), simulated=True))
        self._running = False

    def stop(self) -> None:
        self._running = False
        if self._thread is not None:
            self._thread.join(timeout=2.0)
            self._thread = None
