import logging
import os
import shutil
import tempfile
import unittest
from pathlib import Path


class TestLogger(unittest.TestCase):

    def setUp(self):
        self.tmpdir = Path(tempfile.mkdtemp())
        self.name = f"attendancetimer_test_{self.id().rsplit('.', 1)[-1]}"

    def tearDown(self):
        logger = logging.getLogger(self.name)
        for handler in list(logger.handlers):
            handler.close()
            logger.removeHandler(handler)
        shutil.rmtree(self.tmpdir, ignore_errors=True)

    def test_selfie_and_token_are_redacted(self):
        from at.common.logger import get_logger
        logger = get_logger(self.name, log_dir=self.tmpdir, keep_debug_runs=0)
        logger.info("Posting %s with Bearer abc.def.ghi", "data:image/jpeg;base64,QUJDRA==")
        for handler in logger.handlers:
            handler.flush()

        text = (self.tmpdir / f"{self.name}.log").read_text(encoding="utf-8")
        self.assertIn("data:image/jpeg;base64,<8 chars>", text)
        self.assertIn("Bearer ***", text)
        self.assertNotIn("QUJDRA==", text)
        self.assertNotIn("abc.def.ghi", text)

    def test_handlers_are_not_duplicated(self):
        from at.common.logger import get_logger
        first = get_logger(self.name, log_dir=self.tmpdir)
        count = len(first.handlers)
        second = get_logger(self.name, log_dir=self.tmpdir)
        self.assertIs(first, second)
        self.assertEqual(len(second.handlers), count)

    def test_old_debug_runs_are_pruned(self):
        from at.common.logger import get_logger
        debug_dir = self.tmpdir / "debug"
        debug_dir.mkdir()
        for day in range(1, 6):
            old = debug_dir / f"{self.name}_2020-01-0{day}_00-00-00.log"
            old.write_text("old run\n", encoding="utf-8")
            os.utime(old, (day * 1000, day * 1000))

        get_logger(self.name, log_dir=self.tmpdir, keep_debug_runs=3)
        remaining = sorted(p.name for p in debug_dir.glob(f"{self.name}_*.log"))
        self.assertEqual(len(remaining), 3)
        self.assertIn(f"{self.name}_2020-01-05_00-00-00.log", remaining)
        self.assertIn(f"{self.name}_2020-01-04_00-00-00.log", remaining)
        self.assertNotIn(f"{self.name}_2020-01-01_00-00-00.log", remaining)

    def test_enable_console_adjusts_existing_handler(self):
        from at.common.logger import enable_console, get_logger
        logger = get_logger(self.name, log_dir=self.tmpdir, keep_debug_runs=0, console_level=logging.WARNING)
        enable_console(logging.INFO, logger)
        consoles = [h for h in logger.handlers if h.get_name() == f"{self.name}:console"]
        self.assertEqual(len(consoles), 1)
        self.assertEqual(consoles[0].level, logging.INFO)


if __name__ == "__main__":
    unittest.main()
