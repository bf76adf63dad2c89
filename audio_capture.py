"""
Solo Leveller - Audio Capture
Microphone capture through sounddevice, turned into byte frequency frames
(0-255 per bin) for the onset detector. The analyser follows the usual
browser analyser conventions: Blackman window, temporal smoothing, and a
linear map of the min..max decibel range onto 0..255.
"""

import threading
import time
from typing import Callable, Optional

import numpy as np
from scipy.signal import butter, sosfilt, sosfilt_zi

from config import OnsetConfig
from errors import CaptureUnavailable
from logging_utils import log_event


def _import_sounddevice():
    # PortAudio is loaded at import time; a missing library surfaces as OSError
    try:
        import sounddevice as sd
    except (ImportError, OSError) as e:
        raise CaptureUnavailable(f"audio backend unavailable: {e}") from e
    return sd


class SpectrumAnalyser:
    """Byte frequency data from blocks of float samples."""

    def __init__(self, fft_size: int = 256, smoothing: float = 0.8,
                 min_decibels: float = -100.0, max_decibels: float = -30.0):
        self.fft_size = int(fft_size)
        self.bin_count = self.fft_size // 2
        self.smoothing = float(smoothing)
        self.min_decibels = float(min_decibels)
        self.max_decibels = float(max_decibels)
        self._window = np.blackman(self.fft_size).astype(np.float32)
        self._previous = np.zeros(self.bin_count, dtype=np.float64)

    def reset(self) -> None:
        self._previous[:] = 0.0

    def byte_frequency_data(self, samples: np.ndarray) -> np.ndarray:
        """Analyse the most recent ``fft_size`` samples into ``bin_count`` bytes."""
        block = np.asarray(samples, dtype=np.float32)
        if len(block) >= self.fft_size:
            block = block[-self.fft_size:]
        else:
            block = np.pad(block, (self.fft_size - len(block), 0))

        spectrum = np.abs(np.fft.rfft(block * self._window))[:self.bin_count] / self.fft_size
        smoothed = self.smoothing * self._previous + (1.0 - self.smoothing) * spectrum
        self._previous = smoothed

        with np.errstate(divide='ignore'):
            decibels = 20.0 * np.log10(smoothed)
        span = self.max_decibels - self.min_decibels
        scaled = 255.0 * (decibels - self.min_decibels) / span
        scaled = np.nan_to_num(scaled, nan=0.0, neginf=0.0, posinf=255.0)
        return np.clip(scaled, 0.0, 255.0).astype(np.uint8)


class SoundDeviceCapture:
    """Mono input stream feeding byte frames to ``on_frame``.

    ``on_end`` fires when the stream finishes on its own (device unplugged,
    host error); a stop requested through ``stop()`` does not report it.
    """

    def __init__(self, on_frame: Callable[[np.ndarray], None], on_end: Callable[[], None],
                 config: Optional[OnsetConfig] = None):
        self.config = config or OnsetConfig()
        self._on_frame = on_frame
        self._on_end = on_end
        self.analyser = SpectrumAnalyser(
            self.config.fft_size, self.config.smoothing,
            self.config.min_decibels, self.config.max_decibels,
        )
        self.stream = None
        self._hp_sos = None
        self._hp_zi = None
        self._stopping = False
        self._callback_thread: Optional[int] = None

    def _init_highpass_filter(self, sample_rate: int) -> None:
        """2nd order Butterworth high-pass ahead of the analyser"""
        cutoff = self.config.highpass_filter_hz
        self._hp_sos = None
        self._hp_zi = None
        if not cutoff:
            return
        nyquist = sample_rate / 2
        norm = max(0.001, min(0.99, cutoff / nyquist))
        self._hp_sos = butter(2, norm, btype='highpass', output='sos')
        self._hp_zi = sosfilt_zi(self._hp_sos)
        log_event("INFO", "Capture", "High-pass initialized", cutoff_hz=cutoff)

    def start(self) -> None:
        sd = _import_sounddevice()
        self._stopping = False
        self.analyser.reset()
        self._init_highpass_filter(self.config.sample_rate)
        try:
            self.stream = sd.InputStream(
                samplerate=self.config.sample_rate,
                blocksize=self.config.block_size,
                device=self.config.device_index,
                channels=1,
                dtype='float32',
                callback=self._audio_callback,
                finished_callback=self._finished_callback,
            )
            self.stream.start()
        except (sd.PortAudioError, ValueError) as e:
            self._close_stream()
            log_event("ERROR", "Capture", "Failed to start", error=e)
            raise CaptureUnavailable(f"cannot open input device: {e}") from e
        log_event("INFO", "Capture", "Input capture started",
                  device=self.config.device_index, sample_rate=self.config.sample_rate)

    def _audio_callback(self, indata, frames, time_info, status):
        self._callback_thread = threading.get_ident()
        if self._stopping:
            return
        mono = indata[:, 0]
        if self._hp_sos is not None and len(mono):
            mono, self._hp_zi = sosfilt(self._hp_sos, mono, zi=self._hp_zi)
        self._on_frame(self.analyser.byte_frequency_data(mono))

    def _finished_callback(self):
        self._callback_thread = threading.get_ident()
        if self._stopping:
            return
        log_event("WARN", "Capture", "Input stream ended")
        self._on_end()

    def _close_stream(self) -> None:
        stream, self.stream = self.stream, None
        if stream is None:
            return
        stream.stop()
        stream.close()

    def stop(self) -> None:
        """Stop and close the stream; safe to call from the audio callback."""
        if self._stopping and self.stream is None:
            return
        self._stopping = True
        if threading.get_ident() == self._callback_thread:
            # PortAudio cannot stop a stream from inside its own callback
            threading.Thread(target=self._close_stream, name="capture-close", daemon=True).start()
            return
        self._close_stream()
        log_event("INFO", "Capture", "Stopped")


def sounddevice_capture_factory(config: Optional[OnsetConfig] = None):
    """Capture factory for OnsetDetector bound to one onset config."""
    def factory(on_frame, on_end):
        return SoundDeviceCapture(on_frame, on_end, config)
    return factory


def probe_input(config: Optional[OnsetConfig] = None) -> None:
    """Open and immediately close the input device; raises CaptureUnavailable."""
    config = config or OnsetConfig()
    sd = _import_sounddevice()
    try:
        stream = sd.InputStream(samplerate=config.sample_rate, device=config.device_index,
                                channels=1, dtype='float32')
        stream.start()
        stream.stop()
        stream.close()
    except (sd.PortAudioError, ValueError) as e:
        raise CaptureUnavailable(f"microphone not accessible: {e}") from e


def list_input_devices() -> list[dict]:
    """Input-capable devices as plain dicts"""
    sd = _import_sounddevice()
    devices = []
    for i, d in enumerate(sd.query_devices()):
        if d['max_input_channels'] <= 0:
            continue
        devices.append({
            'index': i,
            'name': d['name'],
            'inputs': d['max_input_channels'],
            'default_samplerate': d['default_samplerate'],
        })
    return devices


if __name__ == "__main__":
    from onset_detector import OnsetDetector

    log_event("INFO", "Capture", "Available input devices")
    for d in list_input_devices():
        log_event("INFO", "Capture", "Device", index=d['index'], name=d['name'], inputs=d['inputs'])

    def on_onset(timestamp: float):
        log_event("INFO", "Onset", "Voice onset", t=f"{timestamp:.3f}")

    detector = OnsetDetector(on_onset)
    log_event("INFO", "Capture", "Listening (Ctrl+C to stop)...")
    with detector:
        try:
            while detector.listening:
                time.sleep(0.1)
        except KeyboardInterrupt:
            pass
