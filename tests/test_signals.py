import unittest

from liftcoach.signals import (
    INSUFFICIENT_DATA,
    NO_DATA,
    calculate_average_rpe,
    calculate_exercise_trends,
    calculate_rest_times,
    calculate_target_hit_rate,
    calculate_weekly_volume,
    extract_recurring_issues,
    extract_signals,
    should_suggest_light_session,
)


def _log(week, weight, set_type="heavy", exercise="Leg Press", rpe=8, reps=6, notes=None):
    return {
        "exercise_name": exercise,
        "set_type": set_type,
        "week": week,
        "actual_weight": weight,
        "actual_reps": reps,
        "rpe": rpe,
        "notes": notes,
        "finished_at": f"2026-0{week}-01T10:00:00Z",
    }


class SessionMetricTests(unittest.TestCase):
    def test_average_rpe_ignores_missing_values(self):
        logs = [{"rpe": 8}, {"rpe": 9}, {"rpe": None}]
        self.assertEqual(calculate_average_rpe(logs), 8.5)
        self.assertIsNone(calculate_average_rpe([]))

    def test_target_hit_rate(self):
        logs = [
            {"target_reps": 8, "actual_reps": 8},
            {"target_reps": 8, "actual_reps": 7},
            {"target_reps": 10, "actual_reps": 12},
        ]
        self.assertEqual(calculate_target_hit_rate(logs), 67)
        self.assertEqual(calculate_target_hit_rate([]), 100)

    def test_rest_times_between_sets_of_one_exercise(self):
        logs = [
            {"exercise_id": 1, "set_type": "warmup", "completed_at": "2026-03-01T10:00:00Z"},
            {"exercise_id": 1, "set_type": "heavy", "completed_at": "2026-03-01T10:02:00Z"},
            {"exercise_id": 1, "set_type": "backoff", "completed_at": "2026-03-01T10:04:30Z"},
            {"exercise_id": 2, "set_type": "working", "completed_at": "2026-03-01T10:05:00Z"},
        ]
        rest = calculate_rest_times(logs)
        self.assertEqual(rest["average"], 135)
        self.assertEqual(rest["by_set_type"], {"heavy": 120, "backoff": 150})

    def test_rest_times_outside_window_are_ignored(self):
        logs = [
            {"exercise_id": 1, "set_type": "heavy", "completed_at": "2026-03-01T10:00:00Z"},
            # 20 s: too short to be a rest.
            {"exercise_id": 1, "set_type": "heavy", "completed_at": "2026-03-01T10:00:20Z"},
            # 900 s: a break, not a rest.
            {"exercise_id": 1, "set_type": "backoff", "completed_at": "2026-03-01T10:15:20Z"},
        ]
        self.assertEqual(calculate_rest_times(logs), {"average": None, "by_set_type": {}})

    def test_rest_time_window_bounds_are_inclusive(self):
        logs = [
            {"exercise_id": 1, "set_type": "heavy", "completed_at": "2026-03-01T10:00:00Z"},
            {"exercise_id": 1, "set_type": "heavy", "completed_at": "2026-03-01T10:00:30Z"},
            {"exercise_id": 1, "set_type": "backoff", "completed_at": "2026-03-01T10:10:30Z"},
            {"exercise_id": 1, "set_type": "backoff", "completed_at": "2026-03-01T10:10:50Z"},
        ]
        rest = calculate_rest_times(logs)
        self.assertEqual(rest["average"], 315)
        self.assertEqual(rest["by_set_type"], {"heavy": 30, "backoff": 600})

    def test_rest_times_without_timestamps(self):
        self.assertEqual(calculate_rest_times([{"exercise_id": 1}]), {"average": None, "by_set_type": {}})


class HistorySignalTests(unittest.TestCase):
    def test_weekly_volume_trend(self):
        history = [_log(2, 100, reps=10), _log(1, 90, reps=10)]
        self.assertEqual(calculate_weekly_volume(history)["trend"], "increasing")

        history = [_log(2, 80, reps=10), _log(1, 100, reps=10)]
        self.assertEqual(calculate_weekly_volume(history)["trend"], "decreasing")

        history = [_log(2, 101, reps=10), _log(1, 100, reps=10)]
        self.assertEqual(calculate_weekly_volume(history)["trend"], "stable")

    def test_weekly_volume_degrades_without_data(self):
        self.assertEqual(calculate_weekly_volume([])["trend"], NO_DATA)
        self.assertEqual(calculate_weekly_volume([_log(1, 100)])["trend"], INSUFFICIENT_DATA)

    def test_recurring_issues_in_first_seen_order(self):
        logs = [
            {"notes": "Knee felt off on the last rep"},
            {"notes": "slight pain in the knee"},
            {"notes": None},
        ]
        self.assertEqual(extract_recurring_issues(logs), ["knee problem", "pain/discomfort"])

    def test_exercise_trends(self):
        history = [_log(1, 100), _log(2, 105), _log(3, 110, exercise="Cable Fly", set_type="backoff")]
        trends = calculate_exercise_trends(history)
        self.assertEqual(trends["Leg Press"]["direction"], "increasing")
        self.assertEqual(trends["Leg Press"]["latest_weight"], 105.0)
        self.assertNotIn("Cable Fly", trends)


class LightSessionTests(unittest.TestCase):
    def test_stagnation_within_two_percent_suggests_moderate(self):
        history = [
            _log(3, 100),
            _log(2, 99),
            _log(1, 101),
            _log(3, 90, set_type="backoff"),
            _log(2, 85, set_type="backoff"),
            _log(1, 80, set_type="backoff"),
        ]
        result = should_suggest_light_session(history, current_week=4)
        self.assertTrue(result["suggest"])
        self.assertEqual(result["severity"], "moderate")
        self.assertIn("Leg Press (heavy) stagnant", result["reason"])

    def test_steady_progress_does_not_suggest(self):
        history = [
            _log(3, 110),
            _log(2, 105),
            _log(1, 100),
            _log(3, 90, set_type="backoff"),
            _log(2, 85, set_type="backoff"),
            _log(1, 80, set_type="backoff"),
        ]
        result = should_suggest_light_session(history, current_week=4)
        self.assertFalse(result["suggest"])
        self.assertEqual(result["severity"], "none")

    def test_short_history_is_insufficient(self):
        result = should_suggest_light_session([_log(1, 100)], current_week=2)
        self.assertFalse(result["suggest"])
        self.assertEqual(result["reason"], "insufficient history")

    def test_frequent_failure_is_high_severity(self):
        history = [_log(4, 50, exercise=f"Exercise {i}", rpe=10) for i in range(5)]
        history.append(_log(4, 50, exercise="Exercise 5", rpe=8))
        result = should_suggest_light_session(history, current_week=4)
        self.assertTrue(result["suggest"])
        self.assertEqual(result["severity"], "high")

    def test_strength_drop_is_high_severity(self):
        history = [
            _log(3, 85),
            _log(2, 100),
            _log(3, 40, exercise="T-Bar Row", set_type="working"),
            _log(2, 40, exercise="T-Bar Row", set_type="working"),
            _log(3, 30, exercise="Leg Extension", set_type="working"),
            _log(2, 28, exercise="Leg Extension", set_type="working"),
        ]
        result = should_suggest_light_session(history, current_week=4)
        self.assertEqual(result["severity"], "high")
        self.assertIn("Leg Press (heavy) strength down 10%+", result["reason"])

    def test_pain_notes_suggest_moderate(self):
        history = [_log(w, 100 + w * 5, exercise=f"Ex {w}") for w in range(1, 6)]
        history.append(_log(5, 60, exercise="T-Bar Row", notes="Lower back pain again"))
        result = should_suggest_light_session(history, current_week=6)
        self.assertTrue(result["suggest"])
        self.assertEqual(result["severity"], "moderate")


class ExtractSignalsTests(unittest.TestCase):
    def test_fixed_shape_on_empty_input(self):
        signals = extract_signals([], [], current_week=6)
        self.assertEqual(
            set(signals),
            {
                "average_rpe",
                "target_hit_rate",
                "weekly_volume_trend",
                "recurring_issues",
                "rest_times",
                "light_session",
                "exercise_trends",
                "block_week",
            },
        )
        self.assertIsNone(signals["average_rpe"])
        self.assertEqual(signals["target_hit_rate"], 100)
        self.assertEqual(signals["weekly_volume_trend"]["trend"], NO_DATA)
        self.assertEqual(signals["block_week"], 2)


if __name__ == "__main__":
    unittest.main()
