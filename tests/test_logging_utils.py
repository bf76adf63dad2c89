import logging
import tempfile
import unittest
from pathlib import Path

import logging_utils
from logging_utils import configure_logging, format_value, get_log_level, log_event


class _Capture(logging.Handler):
    def __init__(self):
        super().__init__()
        self.records = []

    def emit(self, record):
        self.records.append(record)


class TestLoggingUtils(unittest.TestCase):
    def setUp(self):
        self.capture = _Capture()
        logging_utils.get_logger().addHandler(self.capture)
        self._level = get_log_level()

    def tearDown(self):
        logging_utils.get_logger().removeHandler(self.capture)
        configure_logging(self._level)

    def test_fields_are_appended_with_tag(self):
        configure_logging("DEBUG")
        log_event("info", "Counter", "Event accepted", count=3, channel="tap")
        record = self.capture.records[-1]
        self.assertEqual(record.levelno, logging.INFO)
        self.assertEqual(record.tag, "Counter")
        self.assertEqual(record.getMessage(), "Event accepted | count=3 channel=tap")

    def test_level_filters_and_unknown_level_falls_back_to_info(self):
        configure_logging("WARNING")
        log_event("INFO", "App", "hidden")
        self.assertEqual(self.capture.records, [])
        configure_logging("nonsense")
        self.assertEqual(get_log_level(), "INFO")

    def test_format_value(self):
        self.assertEqual(format_value(0.5), "0.500")
        self.assertEqual(format_value(ValueError("bad")), "ValueError: bad")
        long_text = format_value("data:audio/mp3;base64," + "A" * 500)
        self.assertEqual(len(long_text), logging_utils.MAX_FIELD_CHARS)
        self.assertTrue(long_text.endswith("..."))

    def test_log_file_handler_is_replaced_and_removed(self):
        with tempfile.TemporaryDirectory() as tmp:
            path = Path(tmp) / "app.log"
            configure_logging("INFO", path)
            log_event("INFO", "Store", "Opened", path="x.db")
            configure_logging("INFO")
            self.assertIn("[INFO][Store] Opened | path=x.db", path.read_text(encoding="utf-8"))
            log_event("INFO", "Store", "After detach")
            self.assertNotIn("After detach", path.read_text(encoding="utf-8"))


if __name__ == "__main__":
    unittest.main()
