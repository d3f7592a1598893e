import io
import os
import tempfile
import unittest
from contextlib import redirect_stdout
from unittest.mock import patch

from liftcoach.cli import main


PROGRAM_PATH = os.path.join(os.path.dirname(os.path.dirname(os.path.abspath(__file__))), "program.yaml")


class CliTests(unittest.TestCase):
    def setUp(self):
        self.tmp_dir = tempfile.TemporaryDirectory()
        self.config_path = os.path.join(self.tmp_dir.name, "config.yaml")
        with open(self.config_path, "w", encoding="utf-8") as f:
            f.write(
                "claude:\n"
                "  api_key_env: LIFTCOACH_TEST_API_KEY\n"
                "database:\n"
                f"  path: {os.path.join(self.tmp_dir.name, 'workout.db')}\n"
                "program:\n"
                f"  path: {PROGRAM_PATH}\n"
                "logging:\n"
                "  level: WARNING\n"
            )
        env_patcher = patch.dict(os.environ, {}, clear=True)
        env_patcher.start()
        self.addCleanup(env_patcher.stop)

    def tearDown(self):
        self.tmp_dir.cleanup()

    def _run(self, *args):
        output = io.StringIO()
        with redirect_stdout(output):
            code = main(["--config", self.config_path, *args])
        return code, output.getvalue()

    def test_session_flow_without_api_key(self):
        code, output = self._run("init-db")
        self.assertEqual(code, 0)
        self.assertIn("Database ready", output)

        code, output = self._run("status")
        self.assertIn("Next workout: Week 1, Day 1", output)

        code, output = self._run("start", "1", "1")
        self.assertEqual(code, 0)
        self.assertIn("Started session #1", output)

        code, output = self._run(
            "log-set", "1", "Leg Press", "1", "heavy", "--weight", "140", "--reps", "6", "--rpe", "8"
        )
        self.assertEqual(code, 0)

        code, output = self._run("finish", "1", "--notes", "fine")
        self.assertEqual(code, 0)
        self.assertIn("AI analysis unavailable", output)

        code, output = self._run("plan", "2", "1")
        self.assertIn("Week 2, Day 1: Full Body", output)
        self.assertIn("140", output)

        code, output = self._run("status")
        self.assertIn("Next workout: Week 1, Day 2", output)

    def test_history_and_stored_analysis(self):
        code, output = self._run("history")
        self.assertEqual(code, 0)
        self.assertIn("No finished sessions yet.", output)

        self._run("start", "1", "1")
        self._run("log-set", "1", "Leg Press", "1", "heavy", "--weight", "140", "--reps", "6")
        self._run("finish", "1")

        code, output = self._run("history")
        self.assertEqual(code, 0)
        self.assertIn("#1 W1D1 Full Body", output)
        self.assertIn("1/1 sets", output)

        code, output = self._run("exercise-history", "Leg Press")
        self.assertEqual(code, 0)
        self.assertIn("W1D1 set 1 heavy", output)
        self.assertIn("140 x 6", output)

        code, output = self._run("exercise-history", "Cable Fly")
        self.assertEqual(code, 1)

        code, output = self._run("analysis", "1")
        self.assertEqual(code, 0)
        self.assertIn('"fallback": true', output)

        code, output = self._run("analysis", "99")
        self.assertEqual(code, 1)
        self.assertIn("Session #99 not found", output)

    def test_errors_exit_non_zero(self):
        self._run("start", "1", "1")
        code, output = self._run("start", "1", "2")
        self.assertEqual(code, 1)
        self.assertIn("Active session #1 exists", output)

        code, output = self._run("log-set", "1", "Cable Fly", "1", "working", "--weight", "20")
        self.assertEqual(code, 1)
        self.assertIn("Unknown exercise", output)

        code, output = self._run("finish", "99")
        self.assertEqual(code, 1)

    def test_reset_requires_confirmation(self):
        with patch("builtins.input", return_value="no"):
            code, output = self._run("reset")
        self.assertEqual(code, 0)
        self.assertIn("Aborted", output)

        code, output = self._run("reset", "--yes")
        self.assertIn("Reset to Week 1, Day 1", output)


if __name__ == "__main__":
    unittest.main()
