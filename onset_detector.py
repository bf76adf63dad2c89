"""
Solo Leveller - Onset Detector
Turns byte frequency frames into discrete, debounced "voice onset" events.

Idle -> Listening on start(), back to Idle on stop(), on context exit, or
when the capture reports that its stream ended. Frame handling and stop()
share one re-entrant lock, so once stop() returns no further onset is
delivered, and stop() may be called from inside the onset callback.
"""

import threading
import time
from enum import Enum
from typing import Callable, Optional

import numpy as np

from config import OnsetCaptureMode, OnsetConfig
from errors import CaptureUnavailable
from logging_utils import log_event


class DetectorState(Enum):
    IDLE = "idle"
    LISTENING = "listening"


class CaptureArbiter:
    """Exclusive ownership of the capture device.

    A second detector asking for the device while it is held fails with
    CaptureUnavailable instead of taking it over.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._owner = None

    @property
    def owner(self):
        return self._owner

    def acquire(self, owner) -> None:
        with self._lock:
            if self._owner is not None and self._owner is not owner:
                raise CaptureUnavailable("capture device is in use by another detector")
            self._owner = owner

    def release(self, owner) -> None:
        with self._lock:
            if self._owner is owner:
                self._owner = None


class ExternalCapture:
    """No-op capture for hosts that push frames into process_frame themselves."""

    def __init__(self, on_frame, on_end):
        self.on_frame = on_frame
        self.on_end = on_end

    def start(self) -> None:
        pass

    def stop(self) -> None:
        pass


def _default_capture_factory(config: OnsetConfig):
    if config.capture_mode == OnsetCaptureMode.EXTERNAL:
        return ExternalCapture
    from audio_capture import sounddevice_capture_factory
    return sounddevice_capture_factory(config)


class OnsetDetector:
    def __init__(
        self,
        on_onset: Callable[[float], None],
        config: Optional[OnsetConfig] = None,
        *,
        threshold: Optional[float] = None,
        debounce_ms: Optional[int] = None,
        capture_factory=None,
        arbiter: Optional[CaptureArbiter] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.config = config or OnsetConfig()
        self.on_onset = on_onset
        self.threshold = float(self.config.threshold if threshold is None else threshold)
        debounce = self.config.debounce_ms if debounce_ms is None else debounce_ms
        self.debounce_s = max(0, debounce) / 1000.0
        self._capture_factory = capture_factory or _default_capture_factory(self.config)
        self._arbiter = arbiter or CaptureArbiter()
        self._clock = clock
        self._lock = threading.RLock()
        self._state = DetectorState.IDLE
        self._capture = None
        self._last_emit: Optional[float] = None
        self.onset_count = 0

    @property
    def state(self) -> DetectorState:
        return self._state

    @property
    def listening(self) -> bool:
        return self._state is DetectorState.LISTENING

    def start(self) -> None:
        """Acquire the device and begin listening; raises CaptureUnavailable."""
        with self._lock:
            if self._state is DetectorState.LISTENING:
                return
            self._arbiter.acquire(self)
            try:
                capture = self._capture_factory(self.process_frame, self._on_capture_end)
                self._capture = capture
                self._last_emit = None
                self.onset_count = 0
                # Listening before start so frames delivered during start are analysed
                self._state = DetectorState.LISTENING
                capture.start()
            except CaptureUnavailable:
                self._abort_start()
                raise
            except Exception as e:
                self._abort_start()
                raise CaptureUnavailable(f"capture failed to start: {e}") from e
        log_event("INFO", "OnsetDetector", "Listening",
                  threshold=self.threshold, debounce_ms=int(self.debounce_s * 1000))

    def _abort_start(self) -> None:
        self._state = DetectorState.IDLE
        self._capture = None
        self._arbiter.release(self)
        log_event("WARN", "OnsetDetector", "Capture unavailable, staying idle")

    def stop(self) -> None:
        """Stop listening and release the device. Idempotent."""
        with self._lock:
            if self._state is DetectorState.IDLE:
                return
            self._state = DetectorState.IDLE
            capture, self._capture = self._capture, None
        # Outside the lock: the capture may wait on its own callback thread
        try:
            if capture is not None:
                capture.stop()
        finally:
            self._arbiter.release(self)
        log_event("INFO", "OnsetDetector", "Stopped", onsets=self.onset_count)

    def _on_capture_end(self) -> None:
        log_event("WARN", "OnsetDetector", "Capture stream ended")
        self.stop()

    def process_frame(self, frame, now: Optional[float] = None) -> bool:
        """Feed one byte-magnitude frame. Returns True when an onset was emitted."""
        with self._lock:
            if self._state is not DetectorState.LISTENING:
                return False
            data = np.asarray(frame)
            if data.size == 0:
                return False
            energy = float(np.mean(data))
            if energy <= self.threshold:
                return False
            now = self._clock() if now is None else now
            if self._last_emit is not None and (now - self._last_emit) <= self.debounce_s:
                return False
            self._last_emit = now
            self.onset_count += 1
            log_event("DEBUG", "OnsetDetector", "Onset", energy=f"{energy:.1f}")
            self.on_onset(now)
            return True

    def __enter__(self) -> "OnsetDetector":
        self.start()
        return self

    def __exit__(self, *exc) -> None:
        self.stop()
