"""Named preset libraries for the radionics, healing, frequency and
subliminal maker panels.

Every library keeps its presets newest first, remembers the selected one in
a last-active pointer, and auto-saves edits to the selected preset through a
debounced flush. ``created_at`` and ``id`` never change after creation.
"""
import copy
from typing import Callable, Generic, Optional, Type, TypeVar

import config as cfg
from autosave import DebouncedFlush
from errors import EmptyName
from logging_utils import log_event
from models import Record
from persistence_facade import PersistenceFacade

P = TypeVar("P", bound=Record)

_FROZEN_FIELDS = ("id", "created_at")


def clean_preset_name(name) -> str:
    name = (name or "").strip()
    if not name:
        raise EmptyName("preset name is empty")
    return name[:cfg.PRESET_NAME_MAX]


class PresetLibrary(Generic[P]):
    def __init__(
        self,
        facade: PersistenceFacade,
        model: Type[P],
        pointer_module: str,
        *,
        autosave_delay_ms: int = 500,
        on_error: Optional[Callable[[BaseException], None]] = None,
    ):
        self.facade = facade
        self.model = model
        self.pointer_module = pointer_module
        self.presets: list[P] = []
        self.selected: Optional[P] = None
        self._flush = DebouncedFlush(
            self._write_selected,
            delay_ms=autosave_delay_ms,
            max_delay_ms=autosave_delay_ms * 4,
            on_error=on_error,
            name=model.COLLECTION,
        )

    def _sort(self) -> None:
        self.presets.sort(key=lambda p: p.created_at, reverse=True)

    async def _write_selected(self) -> None:
        if self.selected is None:
            return
        await self.facade.save(copy.deepcopy(self.selected))

    async def load(self) -> list[P]:
        """Load all presets and restore the last selected one."""
        self.presets = await self.facade.load(self.model)
        self._sort()
        self.selected = None
        pointer = self.facade.get_last_active(self.pointer_module)
        if pointer:
            self.selected = next((p for p in self.presets if p.id == pointer), None)
            if self.selected is None:
                log_event("INFO", "Presets", "Clearing stale selection", collection=self.model.COLLECTION, id=pointer)
                self.facade.clear_last_active(self.pointer_module)
        return self.presets

    def get(self, preset_id: str) -> Optional[P]:
        return next((p for p in self.presets if p.id == preset_id), None)

    async def save_new(self, name: str, **values) -> P:
        """Store a new preset and select it."""
        name = clean_preset_name(name)
        await self._flush.flush()
        preset = self.model(name=name, **values)
        await self.facade.save(preset)
        self.presets.insert(0, preset)
        self._sort()
        self.selected = preset
        self.facade.set_last_active(self.pointer_module, preset.id)
        log_event("INFO", "Presets", "Saved", collection=self.model.COLLECTION, id=preset.id, name=name)
        return preset

    async def select(self, preset_id: Optional[str]) -> Optional[P]:
        """Select a preset by id (None clears the selection)."""
        await self._flush.flush()
        preset = self.get(preset_id) if preset_id else None
        if preset_id and preset is None:
            raise KeyError(preset_id)
        self.selected = preset
        self.facade.set_last_active(self.pointer_module, preset.id if preset else None)
        return preset

    def update_selected(self, **changes) -> Optional[P]:
        """Edit the selected preset; the write happens after the edits settle."""
        if self.selected is None:
            return None
        for name in _FROZEN_FIELDS:
            changes.pop(name, None)
        unknown = [name for name in changes if not hasattr(self.selected, name)]
        if unknown:
            raise AttributeError(f"{self.model.__name__} has no field {unknown[0]!r}")
        if "name" in changes:
            changes["name"] = clean_preset_name(changes["name"])
        for name, value in changes.items():
            setattr(self.selected, name, value)
        self._flush.mark_dirty()
        return self.selected

    async def delete(self, preset_id: str) -> None:
        if self.selected is not None and self.selected.id == preset_id:
            self._flush.cancel()
            await self._flush.wait_idle()
            self.selected = None
            self.facade.clear_last_active(self.pointer_module)
        await self.facade.delete(self.model, preset_id)
        self.presets = [p for p in self.presets if p.id != preset_id]
        log_event("INFO", "Presets", "Deleted", collection=self.model.COLLECTION, id=preset_id)

    async def flush(self) -> bool:
        return await self._flush.flush()

    async def close(self) -> None:
        await self._flush.close()
