import os
import tempfile
import unittest

from liftcoach.program import ProgramConfig, canonical_key, load_program


PROGRAM_PATH = os.path.join(os.path.dirname(os.path.dirname(os.path.abspath(__file__))), "program.yaml")


class ProgramConfigTests(unittest.TestCase):
    def setUp(self):
        self.program = load_program(PROGRAM_PATH)

    def test_allowed_set_types_follow_the_day_layout(self):
        self.assertEqual(self.program.allowed_set_types("Leg Press", 1), ("heavy", "backoff"))
        self.assertEqual(self.program.allowed_set_types("leg  press", 3), ("working",))
        self.assertIsNone(self.program.allowed_set_types("Leg Press", 2))
        self.assertIsNone(self.program.allowed_set_types("Cable Fly", 1))

    def test_repeating_exercises_are_derived_from_days(self):
        self.assertEqual(self.program.other_days_for_exercise("Machine Crunch", 1), (2, 3))
        self.assertEqual(self.program.other_days_for_exercise("Leg Press", 1), (3,))
        self.assertEqual(self.program.other_days_for_exercise("T-Bar Row", 1), ())

    def test_weekly_increase_caps(self):
        self.assertEqual(self.program.weekly_increase_cap("Leg Press"), 5.0)
        self.assertEqual(self.program.weekly_increase_cap("Leg Extension"), 2.0)
        self.assertEqual(self.program.weekly_increase_cap("DB Lateral Raise"), 1.0)
        self.assertEqual(self.program.weekly_increase_cap("Cable Fly"), 5.0)

    def test_rounding_rule_by_equipment(self):
        self.assertEqual(
            self.program.rounding_rule("Incline DB Press"), {"increment": 1.0, "minimum": 4.0}
        )
        self.assertEqual(self.program.rounding_rule("EZ Bar Curl")["increment"], 10.0)
        self.assertEqual(self.program.rounding_rule("Cable Fly")["increment"], 5.0)

    def test_next_position_cycles_weeks(self):
        self.assertEqual(self.program.next_position(2, 1), (2, 2))
        self.assertEqual(self.program.next_position(1, 3), (2, 1))
        self.assertEqual(self.program.next_position(8, 3), (1, 1))
        self.assertEqual(self.program.next_week(8), 1)

    def test_block_week(self):
        self.assertEqual(self.program.block_week(1), 1)
        self.assertEqual(self.program.block_week(5), 1)
        self.assertEqual(self.program.block_week(8), 4)

    def test_superset_pairs_are_kept(self):
        day_two = self.program.get_day(2)
        skull_crusher = [ex for ex in day_two.exercises if ex.name == "EZ Bar Skull Crusher"][0]
        self.assertEqual(skull_crusher.superset_with, "EZ Bar Curl")
        self.assertEqual(self.program.last_day, 3)

    def test_unknown_set_type_is_rejected(self):
        data = {
            "exercises": [{"name": "Leg Press"}],
            "days": [
                {"day": 1, "exercises": [{"name": "Leg Press", "sets": [{"type": "amrap", "reps": "10"}]}]}
            ],
        }
        with self.assertRaises(ValueError):
            ProgramConfig.from_dict(data)

    def test_missing_program_file(self):
        with tempfile.TemporaryDirectory() as tmp_dir:
            with self.assertRaises(FileNotFoundError):
                load_program(os.path.join(tmp_dir, "missing.yaml"))

    def test_canonical_key(self):
        self.assertEqual(canonical_key("  Leg   Press "), "leg press")


if __name__ == "__main__":
    unittest.main()
