import sys
import tempfile
import unittest
from pathlib import Path
from unittest import mock

import config as cfg
from app_services import AppServices
from config import Config
from errors import PersistenceError, StoreUnavailable
from mantra_counter import CounterState, SessionParams
from models import ModuleType
from record_store import RecordStore
from simulations import HealingSimulation


class TestAppServices(unittest.IsolatedAsyncioTestCase):
    def setUp(self):
        self._tmp = tempfile.TemporaryDirectory()
        self.data_dir = Path(self._tmp.name)

    def tearDown(self):
        self._tmp.cleanup()

    async def test_session_survives_restart(self):
        async with AppServices(Config(), data_dir=self.data_dir) as app:
            self.assertFalse(app.degraded)
            session = await app.counter.start(SessionParams("Om", 5))
            app.counter.record_event("tap")
            app.counter.record_event("manual")

        async with AppServices(Config(), data_dir=self.data_dir) as app:
            self.assertIs(app.counter.state, CounterState.ACTIVE)
            self.assertEqual(app.counter.session.id, session.id)
            self.assertEqual(app.counter.count, 2)

    async def test_settings_and_welcome_flag(self):
        async with AppServices(Config(), data_dir=self.data_dir) as app:
            self.assertTrue(app.should_show_welcome())
            app.acknowledge_welcome()
            app.set_active_module("MantraSiddhi")

        async with AppServices(Config(), data_dir=self.data_dir) as app:
            self.assertFalse(app.should_show_welcome())
            self.assertEqual(app.settings.active_module, ModuleType.MANTRA_SIDDHI)

    async def test_selected_presets_are_applied_on_open(self):
        async with AppServices(Config(), data_dir=self.data_dir) as app:
            await app.healing_presets.save_new("Calm", harmony_meter_target=80.0)

        async with AppServices(Config(), data_dir=self.data_dir) as app:
            self.assertEqual(app.healing_presets.selected.name, "Calm")
            self.assertEqual(app.healing.meters["harmony_meter"], 80.0)

    async def test_unopenable_store_falls_back_to_memory(self):
        config = Config()
        (self.data_dir / config.storage.db_filename).mkdir()

        async with AppServices(config, data_dir=self.data_dir) as app:
            self.assertTrue(app.degraded)
            self.assertTrue(app.store.in_memory)
            session = await app.counter.start(SessionParams("Om", 3))
            self.assertEqual((await app.facade.get_mantra_session(session.id)).id, session.id)

    async def test_degraded_mode_keeps_settings_file(self):
        config = Config()
        (self.data_dir / config.storage.db_filename).mkdir()

        async with AppServices(config, data_dir=self.data_dir) as app:
            self.assertTrue(app.degraded)
            app.acknowledge_welcome()
            await app.counter.start(SessionParams("Om", 3))

        async with AppServices(config, data_dir=self.data_dir) as app:
            self.assertTrue(app.degraded)
            self.assertFalse(app.should_show_welcome())
            self.assertIs(app.counter.state, CounterState.NO_SESSION)
            self.assertIsNone(app.facade.get_last_active(cfg.POINTER_MANTRA))

    async def test_corrupt_collection_does_not_block_open(self):
        async with AppServices(Config(), data_dir=self.data_dir) as app:
            await app.frequency_presets.save_new("Alpha", frequency_hz=10.0)
            with app.store._conn:
                app.store._conn.execute('INSERT INTO "healing-presets" (id, data) VALUES (?, ?)', ("x", "oops"))

        async with AppServices(Config(), data_dir=self.data_dir) as app:
            self.assertEqual(app.healing_presets.presets, [])
            self.assertEqual(app.frequency_presets.selected.name, "Alpha")

    async def test_failed_panel_load_is_reported_and_open_continues(self):
        original = RecordStore.get_all

        async def failing_get_all(store, collection):
            if collection == cfg.COLLECTION_HEALING_PRESETS:
                raise PersistenceError(collection, "get_all", "disk I/O error")
            return await original(store, collection)

        with mock.patch.object(RecordStore, "get_all", failing_get_all):
            async with AppServices(Config(), data_dir=self.data_dir) as app:
                self.assertIsNotNone(app.counter)
                self.assertEqual(app.healing_presets.presets, [])
                self.assertEqual(app.healing.meters, HealingSimulation().meters)
                self.assertEqual(len(app.persistence_errors), 1)
                self.assertEqual(app.persistence_errors[0].collection, cfg.COLLECTION_HEALING_PRESETS)

    async def test_unopenable_store_without_fallback_raises(self):
        config = Config()
        config.storage.in_memory_fallback = False
        (self.data_dir / config.storage.db_filename).mkdir()

        app = AppServices(config, data_dir=self.data_dir)
        with self.assertRaises(StoreUnavailable):
            await app.open()

    async def test_microphone_request_without_backend_is_denied(self):
        async with AppServices(Config(), data_dir=self.data_dir) as app:
            with mock.patch.dict(sys.modules, {"sounddevice": None}):
                self.assertFalse(app.request_microphone())
            self.assertFalse(app.facade.get_mic_permission())


if __name__ == "__main__":
    unittest.main()
