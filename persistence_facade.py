"""Typed load/save/delete over the record store and the key/value settings.

The facade owns no mutable state of its own: it converts between record
dataclasses and the dicts the store holds, applies singleton defaults, and
strips deprecated settings fields on read. Store errors propagate as
PersistenceError; key/value access never raises.
"""
from __future__ import annotations

from typing import Callable, Iterable, Optional, Type, TypeVar

import config as cfg
from logging_utils import log_event
from models import (
    AmplifierSettings,
    AppSettings,
    AudioTrack,
    EmissionLog,
    FrequencyPreset,
    HealingPreset,
    MantraSession,
    RadionicsPreset,
    Record,
    SubliminalProfile,
)
from record_store import RecordStore
from simple_kv import SimpleKV

R = TypeVar("R", bound=Record)

LEGACY_APP_SETTINGS_FIELDS = ("acknowledgedDisclaimer", "acknowledged_disclaimer")


class PersistenceFacade:
    def __init__(self, store: RecordStore, kv: SimpleKV):
        self.store = store
        self.kv = kv

    # -- generic -----------------------------------------------------------

    @staticmethod
    def _decode(model: Type[R], data: dict) -> Optional[R]:
        if not isinstance(data, dict):
            log_event("WARN", "Persistence", "Skipping record that is not an object",
                      collection=model.COLLECTION, kind=type(data).__name__)
            return None
        try:
            return model.from_dict(data)
        except (TypeError, ValueError) as e:
            log_event("WARN", "Persistence", "Skipping unreadable record",
                      collection=model.COLLECTION, id=data.get("id"), error=e)
            return None

    async def load(self, model: Type[R]) -> list[R]:
        rows = await self.store.get_all(model.COLLECTION)
        records = (self._decode(model, row) for row in rows)
        return [r for r in records if r is not None]

    async def get(self, model: Type[R], record_id: str) -> Optional[R]:
        row = await self.store.get(model.COLLECTION, record_id)
        return self._decode(model, row) if row is not None else None

    async def save(self, record: Record) -> None:
        await self.store.put(record.COLLECTION, record.to_dict())

    async def add(self, record: Record) -> None:
        await self.store.add(record.COLLECTION, record.to_dict())

    async def delete(self, model: Type[R], record_id: str) -> None:
        await self.store.delete(model.COLLECTION, record_id)

    async def load_singleton(self, model: Type[R], defaults: Callable[[], R]) -> R:
        """The record stored under ``singleton``, or ``defaults()`` when absent."""
        record = await self.get(model, cfg.SINGLETON_ID)
        return record if record is not None else defaults()

    async def save_singleton(self, record: Record) -> None:
        data = record.to_dict()
        data["id"] = cfg.SINGLETON_ID
        await self.store.put(record.COLLECTION, data)

    def load_backward_compatible(self, key: str, defaults: dict, legacy_fields: Iterable[str] = ()) -> dict:
        """Stored JSON object merged over ``defaults`` with deprecated fields removed."""
        stored = self.kv.get_json(key)
        merged = dict(defaults)
        if isinstance(stored, dict):
            merged.update(stored)
        elif stored is not None:
            log_event("WARN", "Persistence", "Stored settings are not an object, using defaults", key=key)
        for name in legacy_fields:
            merged.pop(name, None)
        return merged

    # -- radionics ---------------------------------------------------------

    async def load_radionics_presets(self) -> list[RadionicsPreset]:
        return await self.load(RadionicsPreset)

    async def save_radionics_preset(self, preset: RadionicsPreset) -> None:
        await self.save(preset)

    async def delete_radionics_preset(self, preset_id: str) -> None:
        await self.delete(RadionicsPreset, preset_id)

    async def load_emission_logs(self) -> list[EmissionLog]:
        logs = await self.load(EmissionLog)
        return sorted(logs, key=lambda entry: entry.timestamp, reverse=True)

    async def add_emission_log(self, entry: EmissionLog) -> None:
        await self.add(entry)

    # -- subliminal --------------------------------------------------------

    async def load_audio_tracks(self) -> list[AudioTrack]:
        return await self.load(AudioTrack)

    async def save_audio_track(self, track: AudioTrack) -> None:
        await self.save(track)

    async def delete_audio_track(self, track_id: str) -> None:
        await self.delete(AudioTrack, track_id)

    async def resolve_track(self, track_id: Optional[str]) -> Optional[AudioTrack]:
        """The referenced track, or None when the reference is empty or dangling."""
        if not track_id:
            return None
        track = await self.get(AudioTrack, track_id)
        if track is None:
            log_event("DEBUG", "Persistence", "Dangling track reference", id=track_id)
        return track

    async def load_amplifier_settings(self) -> AmplifierSettings:
        return await self.load_singleton(AmplifierSettings, AmplifierSettings)

    async def save_amplifier_settings(self, settings: AmplifierSettings) -> None:
        await self.save_singleton(settings)

    async def load_subliminal_profiles(self) -> list[SubliminalProfile]:
        return await self.load(SubliminalProfile)

    async def save_subliminal_profile(self, profile: SubliminalProfile) -> None:
        await self.save(profile)

    async def delete_subliminal_profile(self, profile_id: str) -> None:
        await self.delete(SubliminalProfile, profile_id)

    # -- healing / frequency -----------------------------------------------

    async def load_healing_presets(self) -> list[HealingPreset]:
        return await self.load(HealingPreset)

    async def save_healing_preset(self, preset: HealingPreset) -> None:
        await self.save(preset)

    async def delete_healing_preset(self, preset_id: str) -> None:
        await self.delete(HealingPreset, preset_id)

    async def load_frequency_presets(self) -> list[FrequencyPreset]:
        return await self.load(FrequencyPreset)

    async def save_frequency_preset(self, preset: FrequencyPreset) -> None:
        await self.save(preset)

    async def delete_frequency_preset(self, preset_id: str) -> None:
        await self.delete(FrequencyPreset, preset_id)

    # -- mantra ------------------------------------------------------------

    async def load_mantra_sessions(self) -> list[MantraSession]:
        return await self.load(MantraSession)

    async def get_mantra_session(self, session_id: str) -> Optional[MantraSession]:
        return await self.get(MantraSession, session_id)

    async def save_mantra_session(self, session: MantraSession) -> None:
        await self.save(session)

    async def delete_mantra_session(self, session_id: str) -> None:
        await self.delete(MantraSession, session_id)

    # -- scalar settings ---------------------------------------------------

    def load_app_settings(self) -> AppSettings:
        data = self.load_backward_compatible(
            cfg.KEY_APP_SETTINGS, AppSettings().to_dict(), LEGACY_APP_SETTINGS_FIELDS
        )
        return AppSettings.from_dict(data)

    def save_app_settings(self, settings: AppSettings) -> bool:
        return self.kv.set_json(cfg.KEY_APP_SETTINGS, settings.to_dict())

    def get_mic_permission(self) -> bool:
        return self.kv.get_bool(cfg.KEY_MIC_PERMISSION, False)

    def set_mic_permission(self, granted: bool) -> bool:
        return self.kv.set_bool(cfg.KEY_MIC_PERMISSION, granted)

    def get_welcome_shown(self) -> bool:
        return self.kv.get_bool(cfg.KEY_WELCOME_SHOWN, False)

    def set_welcome_shown(self, shown: bool = True) -> bool:
        return self.kv.set_bool(cfg.KEY_WELCOME_SHOWN, shown)

    def get_last_active(self, module: str) -> Optional[str]:
        return self.kv.get_string(cfg.last_active_key(module)) or None

    def set_last_active(self, module: str, record_id: Optional[str]) -> bool:
        if not record_id:
            return self.clear_last_active(module)
        return self.kv.set_string(cfg.last_active_key(module), record_id)

    def clear_last_active(self, module: str) -> bool:
        return self.kv.remove(cfg.last_active_key(module))
