"""
Solo Leveller - Application Services
Explicitly constructed service graph with an open/close lifecycle:
record store, key/value settings, persistence facade, capture arbiter,
mantra counter, voice input, preset libraries and panel simulations.

If the record store cannot be opened the services fall back to an
in-memory store and report ``degraded``: records do not survive a restart,
while the key/value settings file is still used when the data directory is
writable.
"""

from pathlib import Path
from typing import Optional

import config as cfg
import config_persistence
from config import Config
from counter_inputs import VoiceCounterInput, request_microphone_permission
from errors import PersistenceError, StoreUnavailable
from logging_utils import configure_logging, log_event
from mantra_counter import CounterStateMachine
from models import AppSettings, FrequencyPreset, HealingPreset, ModuleType, RadionicsPreset
from onset_detector import CaptureArbiter
from persistence_facade import PersistenceFacade
from presets import PresetLibrary
from record_store import RecordStore
from simple_kv import SimpleKV
from simulations import HealingSimulation, RadionicsSimulator
from subliminal import AmplifierController, SubliminalMaker


class AppServices:
    def __init__(self, config: Optional[Config] = None, data_dir: Optional[Path] = None):
        self.config = config or Config()
        self._data_dir_override = Path(data_dir) if data_dir is not None else None
        self.degraded = False
        self.persistence_errors: list[BaseException] = []
        self.store: Optional[RecordStore] = None
        self.kv: Optional[SimpleKV] = None
        self.facade: Optional[PersistenceFacade] = None
        self.arbiter = CaptureArbiter()
        self.counter: Optional[CounterStateMachine] = None
        self.voice: Optional[VoiceCounterInput] = None
        self.radionics_presets: Optional[PresetLibrary] = None
        self.healing_presets: Optional[PresetLibrary] = None
        self.frequency_presets: Optional[PresetLibrary] = None
        self.subliminal_maker: Optional[SubliminalMaker] = None
        self.amplifier: Optional[AmplifierController] = None
        self.radionics: Optional[RadionicsSimulator] = None
        self.healing: Optional[HealingSimulation] = None
        self.settings = AppSettings()

    def _record_error(self, error: BaseException) -> None:
        self.persistence_errors.append(error)

    def _resolve_data_dir(self) -> Optional[Path]:
        if self._data_dir_override is not None:
            self._data_dir_override.mkdir(parents=True, exist_ok=True)
            return self._data_dir_override
        return config_persistence.get_data_dir(self.config)

    async def _open_store(self, data_dir: Optional[Path]) -> RecordStore:
        storage = self.config.storage
        if data_dir is not None:
            store = RecordStore(data_dir / storage.db_filename, storage.schema_name,
                                cfg.ALL_COLLECTIONS, storage.schema_version)
            try:
                return await store.open()
            except StoreUnavailable:
                if not storage.in_memory_fallback:
                    raise
        elif not storage.in_memory_fallback:
            raise StoreUnavailable("no writable data directory")
        log_event("WARN", "App", "Storage unavailable, changes will be lost on restart")
        self.degraded = True
        store = RecordStore(None, storage.schema_name, cfg.ALL_COLLECTIONS, storage.schema_version)
        return await store.open()

    async def _load_panel(self, panel) -> None:
        """Load one panel; an unreadable collection leaves that panel on its defaults."""
        try:
            await panel.load()
        except PersistenceError as e:
            log_event("ERROR", "App", "Panel data could not be loaded", collection=e.collection, error=e)
            self._record_error(e)

    async def open(self) -> "AppServices":
        configure_logging(self.config.log_level)
        try:
            data_dir = self._resolve_data_dir()
        except OSError as e:
            log_event("ERROR", "App", "Data directory unavailable", error=e)
            data_dir = None
        if data_dir is not None and self.config.log_file:
            configure_logging(self.config.log_level, data_dir / self.config.log_file)

        self.store = await self._open_store(data_dir)
        kv_path = data_dir / self.config.storage.kv_filename if data_dir is not None else None
        self.kv = SimpleKV(kv_path)
        self.facade = PersistenceFacade(self.store, self.kv)

        sim = self.config.simulation
        delay = sim.preset_autosave_delay_ms
        self.counter = CounterStateMachine(self.facade, self.config.counter,
                                           on_persistence_error=self._record_error)
        self.voice = VoiceCounterInput(self.counter, self.facade, self.config.onset, arbiter=self.arbiter)
        self.radionics_presets = PresetLibrary(self.facade, RadionicsPreset, cfg.POINTER_RADIONICS,
                                               autosave_delay_ms=delay, on_error=self._record_error)
        self.healing_presets = PresetLibrary(self.facade, HealingPreset, cfg.POINTER_HEALING,
                                             autosave_delay_ms=delay, on_error=self._record_error)
        self.frequency_presets = PresetLibrary(self.facade, FrequencyPreset, cfg.POINTER_FREQUENCY,
                                               autosave_delay_ms=delay, on_error=self._record_error)
        self.subliminal_maker = SubliminalMaker(self.facade, autosave_delay_ms=delay, on_error=self._record_error)
        self.amplifier = AmplifierController(self.facade, autosave_delay_ms=delay, on_error=self._record_error)
        self.radionics = RadionicsSimulator(self.facade, sim, on_error=self._record_error)
        self.healing = HealingSimulation(sim)

        for panel in (self.radionics_presets, self.healing_presets,
                      self.frequency_presets, self.subliminal_maker, self.amplifier):
            await self._load_panel(panel)
        self.radionics.apply_preset(self.radionics_presets.selected)
        self.healing.apply_preset(self.healing_presets.selected)
        self.settings = self.facade.load_app_settings()
        await self.counter.restore()

        log_event("INFO", "App", "Services ready", degraded=self.degraded,
                  module=self.settings.active_module.value)
        return self

    async def close(self) -> None:
        if self.voice is not None:
            self.voice.stop()
        closers = [self.counter, self.radionics_presets, self.healing_presets,
                   self.frequency_presets, self.subliminal_maker, self.amplifier]
        for closer in closers:
            if closer is not None:
                await closer.close()
        if self.store is not None:
            await self.store.close()
        log_event("INFO", "App", "Services closed")
        configure_logging(self.config.log_level)

    # -- app-level settings ------------------------------------------------

    def set_active_module(self, module) -> AppSettings:
        self.settings.active_module = ModuleType(module)
        self.facade.save_app_settings(self.settings)
        return self.settings

    def should_show_welcome(self) -> bool:
        return not self.facade.get_welcome_shown()

    def acknowledge_welcome(self) -> None:
        self.facade.set_welcome_shown(True)

    def request_microphone(self) -> bool:
        return request_microphone_permission(self.facade, self.config.onset)

    async def __aenter__(self) -> "AppServices":
        return await self.open()

    async def __aexit__(self, *exc) -> None:
        await self.close()
