"""
Solo Leveller - Record types
One dataclass per persisted entity. Each record type names the collection it
lives in (``COLLECTION``) and converts itself to/from the plain dicts the
record store holds. ``from_dict`` ignores keys it does not know, which is how
deprecated fields get dropped on read.
"""

import time
import uuid
from dataclasses import asdict, dataclass, field, fields
from datetime import date
from enum import Enum
from typing import ClassVar, Optional

import config as cfg


def now_ms() -> int:
    """Current wall clock time as integer epoch milliseconds."""
    return int(time.time() * 1000)


def new_id() -> str:
    return uuid.uuid4().hex


def clamp(value, low: float, high: float, default: float) -> float:
    try:
        number = float(value)
    except (TypeError, ValueError):
        return default
    if number != number:  # NaN
        return default
    return max(low, min(high, number))


def _dict_factory(items) -> dict:
    return {k: (v.value if isinstance(v, Enum) else v) for k, v in items}


def _known(cls, data: dict) -> dict:
    names = {f.name for f in fields(cls)}
    return {k: v for k, v in (data or {}).items() if k in names}


class ModuleType(str, Enum):
    RADIONICS = "Radionics"
    SUBLIMINAL_AMPLIFIER = "SubliminalAmplifier"
    SUBLIMINAL_MAKER = "SubliminalMaker"
    QUANTUM_HEALING = "QuantumHealing"
    FREQUENCY_GENERATOR = "FrequencyGenerator"
    MANTRA_SIDDHI = "MantraSiddhi"
    SETTINGS = "Settings"


class CountChannel(str, Enum):
    """Where a repetition came from"""
    TAP = "tap"
    VOICE = "voice"
    MANUAL = "manual"


class Waveform(str, Enum):
    SINE = "sine"
    SQUARE = "square"
    SAWTOOTH = "sawtooth"


class WitnessKind(str, Enum):
    TEXT = "text"
    IMAGE = "image"


# Offered repetition targets; any other positive integer is a custom target
REPETITION_PRESETS = (10008, 20000, 100000)


class Record:
    """Mixin for dataclass records stored in a collection."""
    COLLECTION: ClassVar[str] = ""

    def to_dict(self) -> dict:
        return asdict(self, dict_factory=_dict_factory)

    @classmethod
    def from_dict(cls, data: dict):
        return cls(**_known(cls, data))


# --- Radionics -------------------------------------------------------------

@dataclass
class RadionicsRates:
    """Six dial positions (0-100)"""
    trend1: float = cfg.DEFAULT_SLIDER_VALUE
    trend2: float = cfg.DEFAULT_SLIDER_VALUE
    trend3: float = cfg.DEFAULT_SLIDER_VALUE
    target1: float = cfg.DEFAULT_SLIDER_VALUE
    target2: float = cfg.DEFAULT_SLIDER_VALUE
    target3: float = cfg.DEFAULT_SLIDER_VALUE

    @classmethod
    def from_dict(cls, data: Optional[dict]) -> "RadionicsRates":
        rates = cls()
        for name, value in _known(cls, data or {}).items():
            setattr(rates, name, clamp(value, 0.0, 100.0, cfg.DEFAULT_SLIDER_VALUE))
        return rates

    def values(self) -> list:
        return [getattr(self, f.name) for f in fields(self)]

    def resonance(self) -> int:
        """Rounded mean of the six dials."""
        values = self.values()
        return round(sum(values) / len(values))


@dataclass
class RadionicsWitness:
    kind: WitnessKind = WitnessKind.TEXT
    data: str = ""
    name: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Optional[dict]) -> Optional["RadionicsWitness"]:
        if not data:
            return None
        try:
            kind = WitnessKind(data.get("kind", WitnessKind.TEXT))
        except ValueError:
            kind = WitnessKind.TEXT
        return cls(kind=kind, data=str(data.get("data", "")), name=data.get("name"))

    def summary(self) -> str:
        if self.kind is WitnessKind.TEXT:
            return f"Text: {self.data[:30]}..."
        return f"Image: {self.name or 'Untitled'}"


def witness_summary(witness: Optional[RadionicsWitness]) -> str:
    return witness.summary() if witness else "No witness"


@dataclass
class RadionicsPreset(Record):
    COLLECTION: ClassVar[str] = cfg.COLLECTION_RADIONICS_PRESETS

    id: str = field(default_factory=new_id)
    name: str = ""
    rates: RadionicsRates = field(default_factory=RadionicsRates)
    witness: Optional[RadionicsWitness] = None
    created_at: int = field(default_factory=now_ms)

    @classmethod
    def from_dict(cls, data: dict) -> "RadionicsPreset":
        values = _known(cls, data)
        values["rates"] = RadionicsRates.from_dict(values.get("rates"))
        values["witness"] = RadionicsWitness.from_dict(values.get("witness"))
        return cls(**values)


@dataclass
class EmissionLog(Record):
    """Append-only record of one radionics emission."""
    COLLECTION: ClassVar[str] = cfg.COLLECTION_EMISSION_LOGS

    id: str = field(default_factory=new_id)
    timestamp: int = field(default_factory=now_ms)
    rates: RadionicsRates = field(default_factory=RadionicsRates)
    resonance_strength: int = 0
    witness_info: str = "No witness"
    energy_consumed: float = 0.0

    @classmethod
    def from_dict(cls, data: dict) -> "EmissionLog":
        values = _known(cls, data)
        values["rates"] = RadionicsRates.from_dict(values.get("rates"))
        return cls(**values)


# --- Healing / frequency ---------------------------------------------------

@dataclass
class HealingPreset(Record):
    COLLECTION: ClassVar[str] = cfg.COLLECTION_HEALING_PRESETS

    id: str = field(default_factory=new_id)
    name: str = ""
    chakra_focus: str = ""
    energy_coherence_target: float = cfg.DEFAULT_SLIDER_VALUE
    harmony_meter_target: float = cfg.DEFAULT_SLIDER_VALUE
    alignment_indicator_target: float = cfg.DEFAULT_SLIDER_VALUE
    created_at: int = field(default_factory=now_ms)

    @classmethod
    def from_dict(cls, data: dict) -> "HealingPreset":
        values = _known(cls, data)
        for name in ("energy_coherence_target", "harmony_meter_target", "alignment_indicator_target"):
            if name in values:
                values[name] = clamp(values[name], 0.0, 100.0, cfg.DEFAULT_SLIDER_VALUE)
        return cls(**values)


@dataclass
class FrequencyPreset(Record):
    COLLECTION: ClassVar[str] = cfg.COLLECTION_FREQUENCY_PRESETS

    id: str = field(default_factory=new_id)
    name: str = ""
    frequency_hz: float = cfg.DEFAULT_FREQUENCY_HZ
    emission_intensity: float = cfg.DEFAULT_SLIDER_VALUE
    waveform_type: Waveform = Waveform.SINE
    created_at: int = field(default_factory=now_ms)

    @classmethod
    def from_dict(cls, data: dict) -> "FrequencyPreset":
        values = _known(cls, data)
        values["frequency_hz"] = clamp(values.get("frequency_hz"), 0.0, cfg.FREQUENCY_MAX_HZ,
                                       cfg.DEFAULT_FREQUENCY_HZ)
        values["emission_intensity"] = clamp(values.get("emission_intensity"), 0.0, 100.0,
                                             cfg.DEFAULT_SLIDER_VALUE)
        try:
            values["waveform_type"] = Waveform(values.get("waveform_type", Waveform.SINE))
        except ValueError:
            values["waveform_type"] = Waveform.SINE
        return cls(**values)


# --- Subliminal ------------------------------------------------------------

@dataclass
class AudioTrack(Record):
    COLLECTION: ClassVar[str] = cfg.COLLECTION_AUDIO_TRACKS

    id: str = field(default_factory=new_id)
    name: str = ""
    file_data_url: str = ""
    mime_type: str = ""


@dataclass
class Affirmation:
    id: str = field(default_factory=new_id)
    text: str = ""
    intensity: float = cfg.DEFAULT_SLIDER_VALUE
    delay_ms: int = 0

    @classmethod
    def from_dict(cls, data: dict) -> "Affirmation":
        values = _known(cls, data)
        values["text"] = str(values.get("text", ""))[:cfg.AFFIRMATION_TEXT_MAX]
        values["intensity"] = clamp(values.get("intensity"), 0.0, 100.0, cfg.DEFAULT_SLIDER_VALUE)
        values["delay_ms"] = int(clamp(values.get("delay_ms"), 0, cfg.AFFIRMATION_DELAY_MAX_MS, 0))
        return cls(**values)


@dataclass
class InfusionSettings:
    harmonic_resonance: float = cfg.DEFAULT_SLIDER_VALUE
    quantum_entanglement: float = cfg.DEFAULT_SLIDER_VALUE
    ethereal_vibration: float = cfg.DEFAULT_SLIDER_VALUE

    @classmethod
    def from_dict(cls, data: Optional[dict]) -> "InfusionSettings":
        settings = cls()
        for name, value in _known(cls, data or {}).items():
            setattr(settings, name, clamp(value, 0.0, 100.0, cfg.DEFAULT_SLIDER_VALUE))
        return settings


@dataclass
class SubliminalProfile(Record):
    COLLECTION: ClassVar[str] = cfg.COLLECTION_SUBLIMINAL_PROFILES

    id: str = field(default_factory=new_id)
    name: str = ""
    base_audio_id: Optional[str] = None
    affirmations: list = field(default_factory=list)
    infusion: InfusionSettings = field(default_factory=InfusionSettings)
    created_at: int = field(default_factory=now_ms)

    @classmethod
    def from_dict(cls, data: dict) -> "SubliminalProfile":
        values = _known(cls, data)
        values["affirmations"] = [Affirmation.from_dict(a) for a in values.get("affirmations") or []
                                  if isinstance(a, dict)]
        values["infusion"] = InfusionSettings.from_dict(values.get("infusion"))
        return cls(**values)


@dataclass
class AmplifierSettings(Record):
    """Singleton record: always stored under ``singleton``."""
    COLLECTION: ClassVar[str] = cfg.COLLECTION_AMPLIFIER_SETTINGS

    id: str = cfg.SINGLETON_ID
    aura_expansion: float = cfg.DEFAULT_SLIDER_VALUE
    frequency_field: float = cfg.DEFAULT_SLIDER_VALUE
    active_tracks: list = field(default_factory=lambda: [None] * cfg.AMPLIFIER_SLOT_COUNT)

    @classmethod
    def from_dict(cls, data: dict) -> "AmplifierSettings":
        values = _known(cls, data)
        values["id"] = cfg.SINGLETON_ID
        values["aura_expansion"] = clamp(values.get("aura_expansion"), 0.0, 100.0, cfg.DEFAULT_SLIDER_VALUE)
        values["frequency_field"] = clamp(values.get("frequency_field"), 0.0, 100.0, cfg.DEFAULT_SLIDER_VALUE)
        slots = list(values.get("active_tracks") or [])[:cfg.AMPLIFIER_SLOT_COUNT]
        slots += [None] * (cfg.AMPLIFIER_SLOT_COUNT - len(slots))
        values["active_tracks"] = [s if s else None for s in slots]
        return cls(**values)


# --- App settings ----------------------------------------------------------

@dataclass
class AppSettings:
    """Stored as one JSON blob in the key/value layer, not in a collection."""
    active_module: ModuleType = ModuleType.RADIONICS

    def to_dict(self) -> dict:
        return asdict(self, dict_factory=_dict_factory)

    @classmethod
    def from_dict(cls, data: dict) -> "AppSettings":
        values = _known(cls, data)
        try:
            values["active_module"] = ModuleType(values.get("active_module", ModuleType.RADIONICS))
        except ValueError:
            values["active_module"] = ModuleType.RADIONICS
        return cls(**values)


# --- Mantra ----------------------------------------------------------------

@dataclass
class LogEntry:
    timestamp: int
    channel: CountChannel

    @classmethod
    def from_dict(cls, data: dict) -> "LogEntry":
        raw = data.get("channel", data.get("type", CountChannel.MANUAL))
        try:
            channel = CountChannel(raw)
        except ValueError:
            channel = CountChannel.MANUAL
        return cls(timestamp=int(data.get("timestamp", 0)), channel=channel)


def default_session_name(today: Optional[date] = None) -> str:
    return f"Mantra Session {(today or date.today()).isoformat()}"


@dataclass
class MantraSession(Record):
    COLLECTION: ClassVar[str] = cfg.COLLECTION_MANTRA_SESSIONS

    id: str = field(default_factory=new_id)
    name: str = field(default_factory=default_session_name)
    date_of_birth: Optional[str] = None
    time_of_birth: Optional[str] = None
    ritual_description: str = ""
    mantra_text: str = ""
    required_repetitions: int = REPETITION_PRESETS[0]
    current_repetitions: int = 0
    is_active: bool = False
    started_at: int = field(default_factory=now_ms)
    completed_at: Optional[int] = None
    log: list = field(default_factory=list)

    @property
    def target_reached(self) -> bool:
        return self.current_repetitions >= self.required_repetitions

    @classmethod
    def from_dict(cls, data: dict) -> "MantraSession":
        values = _known(cls, data)
        values["log"] = [LogEntry.from_dict(e) for e in values.get("log") or [] if isinstance(e, dict)]
        return cls(**values)
