import asyncio
import random
import unittest
from unittest import mock

import config as cfg
from config import SimulationConfig
from errors import InsufficientEnergy, PersistenceError
from models import HealingPreset, RadionicsPreset, RadionicsRates, RadionicsWitness, WitnessKind
from persistence_facade import PersistenceFacade
from record_store import open_store
from simple_kv import SimpleKV
from simulations import HealingSimulation, RadionicsSimulator, Ticker


class FixedRandom(random.Random):
    def __init__(self, value):
        super().__init__()
        self.value = value

    def random(self):
        return self.value


class TestRadionicsSimulator(unittest.IsolatedAsyncioTestCase):
    async def asyncSetUp(self):
        self.store = await open_store(None, cfg.SCHEMA_NAME, cfg.ALL_COLLECTIONS)
        self.facade = PersistenceFacade(self.store, SimpleKV(None))
        self.now = 0.0
        self.sim = RadionicsSimulator(self.facade, clock=lambda: self.now)

    async def asyncTearDown(self):
        await self.store.close()

    async def test_emit_spends_energy_and_logs(self):
        self.sim.witness = RadionicsWitness(WitnessKind.TEXT, "Healing intention for the garden")
        entry = await self.sim.emit()

        self.assertEqual(entry.resonance_strength, 50)
        self.assertEqual(entry.energy_consumed, 5.0)
        self.assertEqual(self.sim.energy, 995.0)
        self.assertEqual(entry.witness_info, "Text: Healing intention for the gard...")
        logs = await self.facade.load_emission_logs()
        self.assertEqual([log.id for log in logs], [entry.id])

    async def test_emit_rejected_when_pool_too_low(self):
        self.sim.energy = 4.99
        with self.assertRaises(InsufficientEnergy):
            await self.sim.emit()
        self.assertEqual(self.sim.energy, 4.99)
        self.assertEqual(await self.facade.load_emission_logs(), [])

    async def test_regeneration_is_capped(self):
        self.sim.energy = 900.0
        self.now = 10.0
        self.assertEqual(self.sim.tick(), 905.0)
        self.now = 10_000.0
        self.assertEqual(self.sim.tick(), 1000.0)

    async def test_recharge_and_presets(self):
        self.sim.energy = 1.0
        self.sim.recharge()
        self.assertEqual(self.sim.energy, 1000.0)

        preset = RadionicsPreset(name="High", rates=RadionicsRates(trend1=100, trend2=100, trend3=100,
                                                                   target1=100, target2=100, target3=100))
        self.sim.apply_preset(preset)
        self.assertEqual(self.sim.resonance, 100)
        self.assertEqual(self.sim.emission_cost(), 10.0)
        self.sim.set_rate("trend1", 250)
        self.assertEqual(preset.rates.trend1, 100)
        self.assertEqual(self.sim.rates.trend1, 100.0)
        self.sim.apply_preset(None)
        self.assertEqual(self.sim.resonance, 50)

    async def test_log_write_failure_is_reported(self):
        errors = []
        self.sim.on_error = errors.append
        with mock.patch.object(self.facade, "add_emission_log",
                               side_effect=PersistenceError(cfg.COLLECTION_EMISSION_LOGS, "add")):
            entry = await self.sim.emit()
        self.assertEqual(self.sim.energy, 995.0)
        self.assertEqual(len(errors), 1)
        self.assertIsNotNone(entry)


class TestHealingSimulation(unittest.TestCase):
    def test_targets_are_capped(self):
        sim = HealingSimulation(rng=FixedRandom(1.0))
        sim.meters["harmony_meter"] = 90.0
        targets = sim.begin()
        self.assertEqual(targets["energy_coherence"], 70.0)
        self.assertEqual(targets["harmony_meter"], 95.0)

    def test_run_climbs_to_targets_and_stops(self):
        sim = HealingSimulation(rng=FixedRandom(0.5))
        sim.begin()  # targets 60.0
        steps = 0
        while sim.step():
            steps += 1
            self.assertLess(steps, 100)
        # each tick adds 2.5 towards a 10 point gap
        self.assertEqual(steps, 3)
        self.assertEqual(sim.meters, {"energy_coherence": 60.0, "harmony_meter": 60.0,
                                      "alignment_indicator": 60.0})
        self.assertFalse(sim.running)

    def test_preset_values_and_reset(self):
        sim = HealingSimulation()
        sim.apply_preset(HealingPreset(name="p", energy_coherence_target=10.0,
                                       harmony_meter_target=20.0, alignment_indicator_target=30.0))
        self.assertEqual(sim.preset_values(), {"energy_coherence_target": 10.0, "harmony_meter_target": 20.0,
                                               "alignment_indicator_target": 30.0})
        sim.apply_preset(None)
        self.assertEqual(set(sim.meters.values()), {50.0})

    def test_step_when_idle(self):
        self.assertFalse(HealingSimulation().step())


class TestTicker(unittest.IsolatedAsyncioTestCase):
    async def test_stops_when_callback_returns_false(self):
        calls = []

        def callback():
            calls.append(1)
            return len(calls) < 3

        ticker = Ticker(0.001, callback)
        ticker.start()
        await asyncio.sleep(0.1)
        self.assertEqual(len(calls), 3)
        self.assertFalse(ticker.running)

    async def test_stop_cancels(self):
        ticker = Ticker(10.0, lambda: None)
        ticker.start()
        self.assertTrue(ticker.running)
        await ticker.stop()
        self.assertFalse(ticker.running)

    async def test_healing_ticker_uses_config_interval(self):
        sim = HealingSimulation(SimulationConfig(healing_tick_ms=250))
        self.assertEqual(sim.ticker().interval_s, 0.25)


if __name__ == "__main__":
    unittest.main()
