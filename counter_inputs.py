"""Voice channel wiring between the onset detector and the mantra counter.

Onsets arrive on the capture thread and are handed to the counter's event
loop; the counter stays the only place the count changes. Listening stops
by itself when the session completes or ends.
"""
from typing import Callable, Optional

from audio_capture import probe_input
from config import OnsetConfig
from errors import CaptureUnavailable, NoActiveSession
from logging_utils import log_event
from mantra_counter import CounterState, CounterStateMachine
from models import CountChannel
from onset_detector import CaptureArbiter, OnsetDetector
from persistence_facade import PersistenceFacade


def request_microphone_permission(
    facade: PersistenceFacade,
    config: Optional[OnsetConfig] = None,
    probe: Callable[[Optional[OnsetConfig]], None] = probe_input,
) -> bool:
    """Probe the input device once and remember whether it worked."""
    try:
        probe(config)
    except CaptureUnavailable as e:
        log_event("WARN", "Voice", "Microphone permission denied", error=e)
        facade.set_mic_permission(False)
        return False
    facade.set_mic_permission(True)
    log_event("INFO", "Voice", "Microphone permission granted")
    return True


class VoiceCounterInput:
    def __init__(
        self,
        counter: CounterStateMachine,
        facade: PersistenceFacade,
        config: Optional[OnsetConfig] = None,
        *,
        arbiter: Optional[CaptureArbiter] = None,
        capture_factory=None,
    ):
        self.counter = counter
        self.facade = facade
        self.config = config or OnsetConfig()
        self.arbiter = arbiter or CaptureArbiter()
        self._capture_factory = capture_factory
        self.detector: Optional[OnsetDetector] = None
        counter.add_state_listener(self._on_counter_state)

    @property
    def listening(self) -> bool:
        return self.detector is not None and self.detector.listening

    def start(self) -> OnsetDetector:
        """Begin counting voice onsets; raises CaptureUnavailable or NoActiveSession."""
        if not self.facade.get_mic_permission():
            raise CaptureUnavailable("microphone permission has not been granted")
        if self.counter.state is not CounterState.ACTIVE:
            raise NoActiveSession("start a mantra session before voice counting")
        if self.listening:
            return self.detector
        detector = OnsetDetector(
            self._on_onset,
            self.config,
            capture_factory=self._capture_factory,
            arbiter=self.arbiter,
        )
        detector.start()
        self.detector = detector
        return detector

    def stop(self) -> None:
        if self.detector is not None:
            self.detector.stop()

    def _on_onset(self, timestamp: float) -> None:
        self.counter.submit_event_threadsafe(CountChannel.VOICE)

    def _on_counter_state(self, state: CounterState, session) -> None:
        if state is not CounterState.ACTIVE and self.listening:
            log_event("INFO", "Voice", "Session left active state, stopping detection", state=state.value)
            self.stop()
