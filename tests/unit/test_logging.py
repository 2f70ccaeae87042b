"""Unit tests for warning collection and per-run log files."""

import logging
import tempfile
import unittest

from pathlib import Path

from robotsmith.utils.logging import FileLoggingContext, WarningCollector


class TestWarningCollector(unittest.TestCase):
    """Tests for WarningCollector."""

    def test_collects_and_logs(self):
        """Messages are kept in order and logged as warnings."""
        logger = logging.getLogger("robotsmith.test_collector")
        collector = WarningCollector(logger)
        with self.assertLogs(logger, level="WARNING") as captured:
            collector("first")
            collector("second")
        self.assertEqual(collector.messages, ["first", "second"])
        self.assertEqual(len(captured.records), 2)

    def test_extend_does_not_log(self):
        """Extended messages are recorded without logging them again."""
        collector = WarningCollector()
        collector.extend(["a", "b"])
        self.assertEqual(list(collector), ["a", "b"])
        self.assertEqual(len(collector), 2)


class TestFileLoggingContext(unittest.TestCase):
    """Tests for FileLoggingContext."""

    def test_writes_and_detaches(self):
        """Records inside the context go to the file; the handler is removed on exit."""
        root = logging.getLogger()
        logger = logging.getLogger("robotsmith.test_file_logging")
        previous_level = logger.level
        logger.setLevel(logging.INFO)
        handlers_before = list(root.handlers)
        try:
            with tempfile.TemporaryDirectory() as temp_dir:
                log_path = Path(temp_dir) / "nested" / "run.log"
                with FileLoggingContext(log_path, suppress_stdout=True):
                    logger.info("inside the run")
                logger.info("after the run")
                text = log_path.read_text()
        finally:
            logger.setLevel(previous_level)
        self.assertIn("inside the run", text)
        self.assertNotIn("after the run", text)
        self.assertEqual(root.handlers, handlers_before)


if __name__ == "__main__":
    unittest.main()
