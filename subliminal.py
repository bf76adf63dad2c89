"""Subliminal amplifier slots and subliminal maker profiles.

Tracks are referenced by id only. A slot or profile pointing at a track
that no longer exists resolves to "no track" rather than an error.
"""
from typing import Callable, Optional

import config as cfg
from autosave import DebouncedFlush
from errors import EmptyName, InvalidProfile
from logging_utils import log_event
from models import Affirmation, AmplifierSettings, AudioTrack, SubliminalProfile, clamp
from persistence_facade import PersistenceFacade
from presets import PresetLibrary


class AmplifierController:
    def __init__(
        self,
        facade: PersistenceFacade,
        *,
        autosave_delay_ms: int = 500,
        on_error: Optional[Callable[[BaseException], None]] = None,
    ):
        self.facade = facade
        self.settings = AmplifierSettings()
        self.tracks: list[AudioTrack] = []
        self._flush = DebouncedFlush(
            self._write_settings,
            delay_ms=autosave_delay_ms,
            max_delay_ms=autosave_delay_ms * 4,
            on_error=on_error,
            name=cfg.COLLECTION_AMPLIFIER_SETTINGS,
        )

    async def _write_settings(self) -> None:
        await self.facade.save_amplifier_settings(AmplifierSettings.from_dict(self.settings.to_dict()))

    async def load(self) -> AmplifierSettings:
        self.settings = await self.facade.load_amplifier_settings()
        self.tracks = await self.facade.load_audio_tracks()
        return self.settings

    def set_level(self, name: str, value: float) -> None:
        if name not in ("aura_expansion", "frequency_field"):
            raise AttributeError(f"unknown amplifier level {name!r}")
        setattr(self.settings, name, clamp(value, 0.0, 100.0, cfg.DEFAULT_SLIDER_VALUE))
        self._flush.mark_dirty()

    def assign_slot(self, slot: int, track_id: Optional[str]) -> None:
        if not 0 <= slot < cfg.AMPLIFIER_SLOT_COUNT:
            raise IndexError(f"slot {slot} out of range")
        self.settings.active_tracks[slot] = track_id or None
        self._flush.mark_dirty()

    async def import_track(self, name: str, file_data_url: str, mime_type: str) -> AudioTrack:
        track = AudioTrack(name=name, file_data_url=file_data_url, mime_type=mime_type)
        await self.facade.save_audio_track(track)
        self.tracks.append(track)
        log_event("INFO", "Amplifier", "Track imported", id=track.id, name=name, mime=mime_type)
        return track

    async def delete_track(self, track_id: str) -> None:
        """Remove a track and empty every slot that referenced it."""
        await self.facade.delete_audio_track(track_id)
        self.tracks = [t for t in self.tracks if t.id != track_id]
        if track_id in self.settings.active_tracks:
            self.settings.active_tracks = [None if t == track_id else t for t in self.settings.active_tracks]
            self._flush.mark_dirty()

    def resolved_slots(self) -> list[Optional[AudioTrack]]:
        by_id = {t.id: t for t in self.tracks}
        return [by_id.get(track_id) if track_id else None for track_id in self.settings.active_tracks]

    async def flush(self) -> bool:
        return await self._flush.flush()

    async def close(self) -> None:
        await self._flush.close()


def new_affirmation(text: str = "") -> Affirmation:
    return Affirmation(text=text)


def clean_affirmations(affirmations) -> list[Affirmation]:
    """Trimmed affirmations with blank entries dropped."""
    cleaned = []
    for affirmation in affirmations:
        text = (affirmation.text or "").strip()
        if not text:
            continue
        cleaned.append(Affirmation(
            id=affirmation.id,
            text=text[:cfg.AFFIRMATION_TEXT_MAX],
            intensity=clamp(affirmation.intensity, 0.0, 100.0, cfg.DEFAULT_SLIDER_VALUE),
            delay_ms=int(clamp(affirmation.delay_ms, 0, cfg.AFFIRMATION_DELAY_MAX_MS, 0)),
        ))
    return cleaned


def validate_profile(name: str, base_audio_id: Optional[str], affirmations) -> list[Affirmation]:
    if not (name or "").strip():
        raise EmptyName("profile name is empty")
    if not base_audio_id:
        raise InvalidProfile("a base audio track is required")
    cleaned = clean_affirmations(affirmations)
    if not cleaned:
        raise InvalidProfile("at least one affirmation with text is required")
    return cleaned


class SubliminalMaker(PresetLibrary[SubliminalProfile]):
    def __init__(self, facade: PersistenceFacade, **kwargs):
        super().__init__(facade, SubliminalProfile, cfg.POINTER_SUBLIMINAL_MAKER, **kwargs)

    async def save_new(self, name: str, **values) -> SubliminalProfile:
        values["affirmations"] = validate_profile(
            name, values.get("base_audio_id"), values.get("affirmations") or []
        )
        return await super().save_new(name, **values)

    async def base_track(self) -> Optional[AudioTrack]:
        if self.selected is None:
            return None
        return await self.facade.resolve_track(self.selected.base_audio_id)
