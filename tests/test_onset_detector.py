import threading
import unittest

import numpy as np

from config import OnsetCaptureMode, OnsetConfig
from errors import CaptureUnavailable
from onset_detector import CaptureArbiter, DetectorState, OnsetDetector


class DummyCapture:
    instances = []

    def __init__(self, on_frame, on_end):
        self.on_frame = on_frame
        self.on_end = on_end
        self.started = False
        self.stopped = 0
        DummyCapture.instances.append(self)

    def start(self):
        self.started = True

    def stop(self):
        self.stopped += 1


class FailingCapture(DummyCapture):
    def start(self):
        raise OSError("permission denied")


def loud(value=40):
    return np.full(128, value, dtype=np.uint8)


class TestOnsetDetector(unittest.TestCase):
    def setUp(self):
        DummyCapture.instances = []
        self.onsets = []

    def make(self, **kwargs):
        kwargs.setdefault("capture_factory", DummyCapture)
        return OnsetDetector(self.onsets.append, OnsetConfig(), **kwargs)

    def test_frames_ignored_while_idle(self):
        detector = self.make()
        self.assertFalse(detector.process_frame(loud(), now=1.0))
        self.assertEqual(self.onsets, [])

    def test_threshold_is_strict(self):
        detector = self.make()
        detector.start()
        self.assertFalse(detector.process_frame(loud(30), now=1.0))
        self.assertTrue(detector.process_frame(loud(31), now=2.0))

    def test_debounce_suppresses_inside_window(self):
        detector = self.make(debounce_ms=500)
        detector.start()
        times = [0.0, 0.1, 0.2, 0.3, 0.4, 0.5, 0.6]
        emitted = [detector.process_frame(loud(), now=t) for t in times]

        # 0.5 is exactly on the window edge and still suppressed
        self.assertEqual(emitted, [True, False, False, False, False, False, True])
        self.assertEqual(self.onsets, [0.0, 0.6])

    def test_start_failure_raises_and_stays_idle(self):
        arbiter = CaptureArbiter()
        detector = self.make(capture_factory=FailingCapture, arbiter=arbiter)
        with self.assertRaises(CaptureUnavailable):
            detector.start()
        self.assertIs(detector.state, DetectorState.IDLE)
        self.assertIsNone(arbiter.owner)

    def test_stop_is_idempotent_and_releases_device(self):
        arbiter = CaptureArbiter()
        detector = self.make(arbiter=arbiter)
        detector.stop()
        detector.start()
        self.assertIs(arbiter.owner, detector)
        detector.stop()
        detector.stop()
        self.assertEqual(DummyCapture.instances[0].stopped, 1)
        self.assertIsNone(arbiter.owner)
        self.assertFalse(detector.process_frame(loud(), now=5.0))

    def test_second_detector_cannot_take_the_device(self):
        arbiter = CaptureArbiter()
        first = self.make(arbiter=arbiter)
        second = self.make(arbiter=arbiter)
        first.start()
        with self.assertRaises(CaptureUnavailable):
            second.start()
        self.assertTrue(first.listening)
        first.stop()
        second.start()
        self.assertTrue(second.listening)
        second.stop()

    def test_stream_end_stops_detector(self):
        detector = self.make()
        detector.start()
        DummyCapture.instances[0].on_end()
        self.assertIs(detector.state, DetectorState.IDLE)
        self.assertFalse(detector.process_frame(loud(), now=1.0))

    def test_stop_from_inside_callback(self):
        def on_onset(ts):
            self.onsets.append(ts)
            detector.stop()

        detector = OnsetDetector(on_onset, capture_factory=DummyCapture)
        detector.start()
        self.assertTrue(detector.process_frame(loud(), now=1.0))
        self.assertFalse(detector.process_frame(loud(), now=9.0))
        self.assertEqual(self.onsets, [1.0])

    def test_no_onset_after_stop_returns_across_threads(self):
        detector = self.make(debounce_ms=0)
        detector.start()
        stop_done = threading.Event()
        late = []

        def pump():
            t = 0.0
            while not stop_done.is_set():
                t += 1.0
                detector.process_frame(loud(), now=t)
            # anything after stop() returned must be dropped
            late.append(detector.process_frame(loud(), now=t + 1.0))

        worker = threading.Thread(target=pump)
        worker.start()
        detector.stop()
        stop_done.set()
        worker.join(timeout=5)
        self.assertEqual(late, [False])

    def test_context_manager_stops_on_exit(self):
        detector = self.make()
        with self.assertRaises(RuntimeError):
            with detector:
                self.assertTrue(detector.listening)
                raise RuntimeError("boom")
        self.assertFalse(detector.listening)

    def test_external_mode_accepts_pushed_frames(self):
        detector = OnsetDetector(self.onsets.append, OnsetConfig(capture_mode=OnsetCaptureMode.EXTERNAL))
        detector.start()
        self.assertTrue(detector.process_frame(loud(), now=1.0))
        detector.stop()

    def test_empty_frame_is_ignored(self):
        detector = self.make()
        detector.start()
        self.assertFalse(detector.process_frame(np.array([], dtype=np.uint8), now=1.0))


if __name__ == "__main__":
    unittest.main()
