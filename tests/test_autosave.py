import asyncio
import unittest

from autosave import DebouncedFlush


class Recorder:
    def __init__(self, fail=False):
        self.writes = 0
        self.fail = fail

    async def __call__(self):
        self.writes += 1
        if self.fail:
            raise OSError("disk full")


class TestDebouncedFlush(unittest.IsolatedAsyncioTestCase):
    async def test_burst_of_changes_writes_once(self):
        writer = Recorder()
        flush = DebouncedFlush(writer, delay_ms=20, max_delay_ms=1000)
        for _ in range(5):
            flush.mark_dirty()
        self.assertEqual(writer.writes, 0)

        await asyncio.sleep(0.1)
        self.assertEqual(writer.writes, 1)
        self.assertFalse(flush.dirty)

    async def test_max_delay_caps_trailing_debounce(self):
        writer = Recorder()
        flush = DebouncedFlush(writer, delay_ms=50, max_delay_ms=80)
        for _ in range(8):
            flush.mark_dirty()
            await asyncio.sleep(0.02)
        # 160 ms of continuous edits: the cap forces a write before they stop
        self.assertGreaterEqual(writer.writes, 1)
        await flush.close()

    async def test_explicit_flush_and_clean_noop(self):
        writer = Recorder()
        flush = DebouncedFlush(writer, delay_ms=1000)
        self.assertTrue(await flush.flush())
        self.assertEqual(writer.writes, 0)

        flush.mark_dirty()
        self.assertTrue(await flush.flush())
        self.assertEqual(writer.writes, 1)
        self.assertFalse(flush.pending)

    async def test_forced_flush_writes_even_when_clean(self):
        writer = Recorder()
        flush = DebouncedFlush(writer)
        await flush.flush(force=True)
        self.assertEqual(writer.writes, 1)

    async def test_cancel_drops_pending_write(self):
        writer = Recorder()
        flush = DebouncedFlush(writer, delay_ms=10)
        flush.mark_dirty()
        self.assertTrue(flush.cancel())
        await asyncio.sleep(0.05)
        self.assertEqual(writer.writes, 0)
        self.assertFalse(flush.cancel())

    async def test_flush_soon_writes_on_next_iteration(self):
        writer = Recorder()
        flush = DebouncedFlush(writer, delay_ms=10000)
        flush.flush_soon()
        await asyncio.sleep(0.01)
        self.assertEqual(writer.writes, 1)

    async def test_write_failure_is_reported_not_raised(self):
        errors = []
        writer = Recorder(fail=True)
        flush = DebouncedFlush(writer, on_error=errors.append)
        flush.mark_dirty()

        self.assertFalse(await flush.flush())
        self.assertEqual(len(errors), 1)
        self.assertIsInstance(errors[0], OSError)
        self.assertFalse(flush.dirty)


if __name__ == "__main__":
    unittest.main()
