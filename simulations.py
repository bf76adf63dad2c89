"""
Solo Leveller - Panel Simulations
Timed state behind the radionics and quantum healing panels. Both are plain
objects advanced by explicit calls; Ticker drives them from the event loop.
"""

import asyncio
import copy
import random
import time
from typing import Callable, Optional

from config import SimulationConfig, DEFAULT_SLIDER_VALUE
from errors import InsufficientEnergy, PersistenceError
from logging_utils import log_event
from models import (
    EmissionLog,
    HealingPreset,
    RadionicsPreset,
    RadionicsRates,
    RadionicsWitness,
    now_ms,
    witness_summary,
)
from persistence_facade import PersistenceFacade


class Ticker:
    """Calls ``callback`` every ``interval_s`` until it returns False or stop() is called."""

    def __init__(self, interval_s: float, callback: Callable[[], Optional[bool]], name: str = "ticker"):
        self.interval_s = interval_s
        self.callback = callback
        self.name = name
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self.running:
            return
        self._task = asyncio.get_running_loop().create_task(self._run(), name=self.name)

    async def _run(self) -> None:
        while True:
            await asyncio.sleep(self.interval_s)
            if self.callback() is False:
                return

    async def stop(self) -> None:
        task, self._task = self._task, None
        if task is None or task.done():
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass


# --- Radionics -------------------------------------------------------------

class RadionicsSimulator:
    def __init__(
        self,
        facade: PersistenceFacade,
        config: Optional[SimulationConfig] = None,
        *,
        clock: Callable[[], float] = time.monotonic,
        on_error: Optional[Callable[[BaseException], None]] = None,
    ):
        self.facade = facade
        self.config = config or SimulationConfig()
        self.on_error = on_error
        self._clock = clock
        self._last_tick = clock()
        self.energy = self.config.max_energy_pool
        self.rates = RadionicsRates()
        self.witness: Optional[RadionicsWitness] = None
        self.emission_count = 0

    @property
    def resonance(self) -> int:
        return self.rates.resonance()

    def emission_cost(self) -> float:
        return round(self.resonance * self.config.emission_cost_factor, 2)

    def can_emit(self) -> bool:
        return self.energy >= self.emission_cost()

    def tick(self, now: Optional[float] = None) -> float:
        """Passive regeneration for the time since the previous tick."""
        now = self._clock() if now is None else now
        elapsed = max(0.0, now - self._last_tick)
        self._last_tick = now
        self.energy = min(self.config.max_energy_pool,
                          self.energy + elapsed * self.config.energy_regen_per_second)
        return self.energy

    def recharge(self) -> None:
        self.energy = self.config.max_energy_pool
        log_event("INFO", "Radionics", "Energy pool recharged", energy=self.energy)

    def set_rate(self, name: str, value: float) -> None:
        if not hasattr(self.rates, name):
            raise AttributeError(f"unknown rate {name!r}")
        setattr(self.rates, name, max(0.0, min(100.0, float(value))))

    def apply_preset(self, preset: Optional[RadionicsPreset]) -> None:
        """Load dials and witness from a preset; None restores defaults."""
        if preset is None:
            self.rates = RadionicsRates()
            self.witness = None
            return
        self.rates = copy.deepcopy(preset.rates)
        self.witness = copy.deepcopy(preset.witness)

    async def emit(self) -> EmissionLog:
        """Spend energy for one emission and append it to the emission log."""
        cost = self.emission_cost()
        if self.energy < cost:
            raise InsufficientEnergy(cost, self.energy)
        self.energy = round(self.energy - cost, 2)
        self.emission_count += 1
        entry = EmissionLog(
            timestamp=now_ms(),
            rates=copy.deepcopy(self.rates),
            resonance_strength=self.resonance,
            witness_info=witness_summary(self.witness),
            energy_consumed=cost,
        )
        log_event("INFO", "Radionics", "Emission", resonance=entry.resonance_strength,
                  cost=cost, energy=self.energy)
        try:
            await self.facade.add_emission_log(entry)
        except PersistenceError as e:
            log_event("ERROR", "Radionics", "Emission log not saved", id=entry.id, error=e)
            if self.on_error is not None:
                self.on_error(e)
        return entry


# --- Quantum healing -------------------------------------------------------

METERS = ("energy_coherence", "harmony_meter", "alignment_indicator")


class HealingSimulation:
    """Three meters that climb towards randomised targets while a run is active."""

    def __init__(self, config: Optional[SimulationConfig] = None, rng: Optional[random.Random] = None):
        self.config = config or SimulationConfig()
        self.rng = rng or random.Random()
        self.meters = {name: DEFAULT_SLIDER_VALUE for name in METERS}
        self.targets = dict(self.meters)
        self.running = False

    def reset(self) -> None:
        self.meters = {name: DEFAULT_SLIDER_VALUE for name in METERS}
        self.targets = dict(self.meters)
        self.running = False

    def apply_preset(self, preset: Optional[HealingPreset]) -> None:
        if preset is None:
            self.reset()
            return
        self.running = False
        self.meters = {
            "energy_coherence": preset.energy_coherence_target,
            "harmony_meter": preset.harmony_meter_target,
            "alignment_indicator": preset.alignment_indicator_target,
        }
        self.targets = dict(self.meters)

    def preset_values(self) -> dict:
        """Current meters in HealingPreset field names"""
        return {
            "energy_coherence_target": self.meters["energy_coherence"],
            "harmony_meter_target": self.meters["harmony_meter"],
            "alignment_indicator_target": self.meters["alignment_indicator"],
        }

    def begin(self) -> dict:
        """Pick new targets above the current meters and start climbing."""
        cap = self.config.healing_target_cap
        spread = self.config.healing_target_spread
        self.targets = {
            name: min(cap, value + self.rng.random() * spread)
            for name, value in self.meters.items()
        }
        self.running = True
        log_event("INFO", "Healing", "Run started",
                  **{name: f"{target:.1f}" for name, target in self.targets.items()})
        return dict(self.targets)

    def step(self) -> bool:
        """Advance one tick. Returns False once every meter has reached its target."""
        if not self.running:
            return False
        for name, value in self.meters.items():
            target = self.targets[name]
            if value < target:
                value = min(target, value + self.rng.random() * self.config.healing_max_step)
                self.meters[name] = round(value, 2)
        if all(self.meters[n] >= round(self.targets[n], 2) for n in METERS):
            self.running = False
            log_event("INFO", "Healing", "Run complete")
        return self.running

    def ticker(self) -> Ticker:
        return Ticker(self.config.healing_tick_ms / 1000.0, self.step, name="healing")
