# Solo Leveller Configuration
# All default values and constants

from dataclasses import dataclass, field, is_dataclass
from enum import IntEnum
from typing import Optional

from logging_utils import log_event


CURRENT_CONFIG_VERSION = 1

# Storage schema
SCHEMA_NAME = "SoloLevellerDB"
SCHEMA_VERSION = 1

# Collections (one table each in the record store)
COLLECTION_RADIONICS_PRESETS = "presets-radionics"
COLLECTION_EMISSION_LOGS = "emission-logs-radionics"
COLLECTION_AUDIO_TRACKS = "audio-tracks"
COLLECTION_AMPLIFIER_SETTINGS = "amplifier-settings"
COLLECTION_SUBLIMINAL_PROFILES = "subliminal-profiles"
COLLECTION_HEALING_PRESETS = "healing-presets"
COLLECTION_FREQUENCY_PRESETS = "frequency-presets"
COLLECTION_MANTRA_SESSIONS = "mantra-sessions"

ALL_COLLECTIONS = (
    COLLECTION_RADIONICS_PRESETS,
    COLLECTION_EMISSION_LOGS,
    COLLECTION_AUDIO_TRACKS,
    COLLECTION_AMPLIFIER_SETTINGS,
    COLLECTION_SUBLIMINAL_PROFILES,
    COLLECTION_HEALING_PRESETS,
    COLLECTION_FREQUENCY_PRESETS,
    COLLECTION_MANTRA_SESSIONS,
)

SINGLETON_ID = "singleton"

# Scalar key/value keys
KEY_APP_SETTINGS = "app-settings"
KEY_MIC_PERMISSION = "mic-permission-granted"
KEY_WELCOME_SHOWN = "welcome-message-shown"

# "Last active" pointers, one per module with a selectable record
POINTER_RADIONICS = "radionics"
POINTER_SUBLIMINAL_MAKER = "subliminal-maker"
POINTER_HEALING = "healing"
POINTER_FREQUENCY = "frequency"
POINTER_MANTRA = "mantra"
POINTER_MODULES = (
    POINTER_RADIONICS,
    POINTER_SUBLIMINAL_MAKER,
    POINTER_HEALING,
    POINTER_FREQUENCY,
    POINTER_MANTRA,
)


def last_active_key(module: str) -> str:
    """Scalar key that holds the last active record id for a module."""
    if module not in POINTER_MODULES:
        raise ValueError(f"unknown module for last-active pointer: {module!r}")
    return f"last-active-{module}"


# Record field limits
PRESET_NAME_MAX = 50
SESSION_NAME_MAX = 100
RITUAL_DESCRIPTION_MAX = 1000
MANTRA_TEXT_MAX = 500
AFFIRMATION_TEXT_MAX = 200
AFFIRMATION_DELAY_MAX_MS = 10000
CUSTOM_REPETITIONS_MAX = 1_000_000
AMPLIFIER_SLOT_COUNT = 3

# Default settings values (sliders 0-100)
DEFAULT_SLIDER_VALUE = 50.0
DEFAULT_FREQUENCY_HZ = 432.0
FREQUENCY_MAX_HZ = 1000.0


class OnsetCaptureMode(IntEnum):
    """Where byte spectra come from"""
    MICROPHONE = 1      # sounddevice input stream
    EXTERNAL = 2        # frames pushed by the host application


@dataclass
class StorageConfig:
    """Record store + key/value locations"""
    schema_name: str = SCHEMA_NAME
    schema_version: int = SCHEMA_VERSION
    data_dir: str = ""                 # Empty = config dir
    db_filename: str = "sololeveller.db"
    kv_filename: str = "settings.json"
    in_memory_fallback: bool = True    # Keep running with a volatile store when the file cannot open


@dataclass
class OnsetConfig:
    """Voice onset detection parameters"""
    capture_mode: OnsetCaptureMode = OnsetCaptureMode.MICROPHONE
    threshold: float = 30.0            # Mean byte magnitude (0-255) that counts as a voice onset
    debounce_ms: int = 500             # Minimum spacing between emitted onsets
    sample_rate: int = 44100
    block_size: int = 2048             # Samples per capture callback
    fft_size: int = 256                # Analyser window, frame holds fft_size // 2 bins
    smoothing: float = 0.8             # Temporal smoothing of magnitudes (0.0-0.99)
    min_decibels: float = -100.0       # Maps to byte 0
    max_decibels: float = -30.0        # Maps to byte 255
    highpass_filter_hz: int = 30       # High-pass cutoff before analysis (0=disabled, 30=drop rumble)
    device_index: Optional[int] = None # None = default input device


@dataclass
class CounterConfig:
    """Session counter persistence timing"""
    flush_delay_ms: int = 400          # Trailing debounce after the last change
    flush_max_delay_ms: int = 2000     # Upper bound on time a change stays unsaved


@dataclass
class SimulationConfig:
    """Timed panel simulations"""
    max_energy_pool: float = 1000.0
    energy_regen_per_second: float = 0.5
    emission_cost_factor: float = 0.1  # Energy cost per resonance point
    healing_tick_ms: int = 200
    healing_max_step: float = 5.0      # Meter rise per tick is uniform(0, this)
    healing_target_spread: float = 20.0
    healing_target_cap: float = 95.0
    preset_autosave_delay_ms: int = 500


@dataclass
class Config:
    """Master configuration"""
    version: int = 1                  # Schema version for persisted configs
    storage: StorageConfig = field(default_factory=StorageConfig)
    onset: OnsetConfig = field(default_factory=OnsetConfig)
    counter: CounterConfig = field(default_factory=CounterConfig)
    simulation: SimulationConfig = field(default_factory=SimulationConfig)
    log_level: str = "INFO"           # Logging level (DEBUG/INFO/WARNING/ERROR)
    log_file: str = ""                # File name under the data dir; empty logs to console only


def apply_dict_to_dataclass(target, data) -> None:
    """Recursively apply values from a dict onto a dataclass instance.
    Unknown keys are ignored; IntEnum fields are coerced when possible."""
    if not isinstance(data, dict):
        return

    for key, value in data.items():
        if not hasattr(target, key):
            continue

        current = getattr(target, key)

        if is_dataclass(current) and isinstance(value, dict):
            apply_dict_to_dataclass(current, value)
            continue

        if isinstance(current, IntEnum):
            try:
                setattr(target, key, current.__class__(value))
            except ValueError:
                log_event("WARN", "Config", "Could not convert value, keeping default",
                          key=key, enum=current.__class__.__name__)
            continue

        setattr(target, key, value)


def _clamp_number(value, default, low, high, cast=float):
    try:
        number = cast(value)
    except (TypeError, ValueError):
        number = default
    return max(low, min(high, number))


def migrate_config(config: Config, loaded_version) -> None:
    """Upgrade older config structures to the current schema.
    Adds defaults for newly introduced fields and bumps version."""
    try:
        version = int(loaded_version) if loaded_version is not None else 0
    except (TypeError, ValueError):
        version = 0

    if version < 1:
        if getattr(config.onset, 'threshold', None) is None:
            config.onset.threshold = 30.0
        if getattr(config.onset, 'debounce_ms', None) is None:
            config.onset.debounce_ms = 500
        if getattr(config.counter, 'flush_delay_ms', None) is None:
            config.counter.flush_delay_ms = 400
        if getattr(config.counter, 'flush_max_delay_ms', None) is None:
            config.counter.flush_max_delay_ms = 2000

    if getattr(config, 'log_level', None) is None:
        config.log_level = "INFO"
    if getattr(config, 'log_file', None) is None:
        config.log_file = ""
    if getattr(config.storage, 'data_dir', None) is None:
        config.storage.data_dir = ""
    if getattr(config.storage, 'in_memory_fallback', None) is None:
        config.storage.in_memory_fallback = True

    # Always clamp safety ranges
    config.onset.threshold = _clamp_number(config.onset.threshold, 30.0, 0.0, 255.0)
    config.onset.debounce_ms = _clamp_number(config.onset.debounce_ms, 500, 0, 10000, int)
    config.onset.smoothing = _clamp_number(config.onset.smoothing, 0.8, 0.0, 0.99)
    config.counter.flush_delay_ms = _clamp_number(config.counter.flush_delay_ms, 400, 0, 60000, int)
    config.counter.flush_max_delay_ms = max(
        config.counter.flush_delay_ms,
        _clamp_number(config.counter.flush_max_delay_ms, 2000, 0, 600000, int),
    )

    # Analyser window must be a power of two for the byte-spectrum layout
    fft_size = _clamp_number(config.onset.fft_size, 256, 32, 32768, int)
    if fft_size & (fft_size - 1):
        fft_size = 256
    config.onset.fft_size = fft_size

    config.version = CURRENT_CONFIG_VERSION


# Default config instance
DEFAULT_CONFIG = Config()
