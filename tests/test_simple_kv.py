import tempfile
import unittest
from pathlib import Path
from unittest import mock

from simple_kv import SimpleKV


class TestSimpleKV(unittest.TestCase):
    def test_values_persist_across_instances(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            path = Path(tmpdir) / "settings.json"
            kv = SimpleKV(path)
            kv.set_string("name", "value")
            kv.set_bool("flag", True)
            kv.set_json("blob", {"a": [1, 2]})

            reopened = SimpleKV(path)
            self.assertEqual(reopened.get_string("name"), "value")
            self.assertTrue(reopened.get_bool("flag"))
            self.assertEqual(reopened.get_json("blob"), {"a": [1, 2]})

    def test_defaults_for_missing_keys(self):
        kv = SimpleKV(None)
        self.assertIsNone(kv.get_string("x"))
        self.assertEqual(kv.get_string("x", "d"), "d")
        self.assertFalse(kv.get_bool("x"))
        self.assertTrue(kv.get_bool("x", True))
        self.assertEqual(kv.get_json("x", {}), {})

    def test_bool_is_stored_as_text(self):
        kv = SimpleKV(None)
        kv.set_bool("flag", False)
        self.assertEqual(kv.get_string("flag"), "false")
        self.assertFalse(kv.get_bool("flag", True))

    def test_remove(self):
        kv = SimpleKV(None)
        kv.set_string("k", "v")
        self.assertTrue(kv.remove("k"))
        self.assertFalse(kv.has("k"))
        self.assertTrue(kv.remove("k"))

    def test_corrupt_file_reads_as_empty(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            path = Path(tmpdir) / "settings.json"
            path.write_text("{broken", encoding="utf-8")
            kv = SimpleKV(path)
            self.assertIsNone(kv.get_string("anything"))
            kv.set_string("k", "v")
            self.assertEqual(SimpleKV(path).get_string("k"), "v")

    def test_unreadable_json_value_returns_default(self):
        kv = SimpleKV(None)
        kv.set_string("blob", "not json")
        self.assertEqual(kv.get_json("blob", "fallback"), "fallback")

    def test_write_failure_keeps_memory_value(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            kv = SimpleKV(Path(tmpdir) / "settings.json")
            with mock.patch("simple_kv.os.replace", side_effect=OSError("disk full")):
                self.assertFalse(kv.set_string("k", "v"))
            self.assertEqual(kv.get_string("k"), "v")

    def test_unserialisable_json_is_rejected(self):
        kv = SimpleKV(None)
        self.assertFalse(kv.set_json("blob", object()))
        self.assertIsNone(kv.get_string("blob"))


if __name__ == "__main__":
    unittest.main()
