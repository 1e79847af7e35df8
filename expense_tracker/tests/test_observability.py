import logging
import unittest

from expense_tracker.observability import JSONFormatter, setup_logging


class SetupLoggingTests(unittest.TestCase):
    def setUp(self) -> None:
        self.saved_handlers = list(logging.root.handlers)
        self.saved_level = logging.root.level
        logging.root.handlers[:] = [
            h for h in self.saved_handlers if not getattr(h, "expense_tracker_handler", False)
        ]

    def tearDown(self) -> None:
        logging.root.handlers[:] = self.saved_handlers
        logging.root.setLevel(self.saved_level)

    def installed(self) -> list[logging.Handler]:
        return [h for h in logging.root.handlers if h not in self.saved_handlers]

    def test_repeated_setup_installs_one_handler(self) -> None:
        setup_logging("INFO", "json")
        setup_logging("DEBUG", "json")

        handlers = self.installed()
        self.assertEqual(len(handlers), 1)
        self.assertIsInstance(handlers[0].formatter, JSONFormatter)
        self.assertEqual(logging.root.level, logging.DEBUG)


if __name__ == "__main__":
    unittest.main()
