import os
import unittest

from liftcoach.program import load_program
from liftcoach.recommendation import Recommendation
from liftcoach.recommendation_validator import (
    clamp_to_window,
    correct_backoff,
    index_session_sets,
    resolve_baseline,
    validate_recommendation,
    validate_recommendations,
)


PROGRAM_PATH = os.path.join(os.path.dirname(os.path.dirname(os.path.abspath(__file__))), "program.yaml")


def _set(set_type, actual=None, target=None):
    return {"set_type": set_type, "actual_weight": actual, "target_weight": target}


class BoundsTests(unittest.TestCase):
    def test_clamp_window(self):
        self.assertEqual(clamp_to_window(112, 100, 5), (105, "cap"))
        self.assertEqual(clamp_to_window(70, 100, 5), (80.0, "floor"))
        self.assertEqual(clamp_to_window(103, 100, 5), (103, ""))
        self.assertEqual(clamp_to_window(80, 100, 5), (80, ""))

    def test_backoff_band(self):
        self.assertEqual(correct_backoff(84, 100), (84, False))
        for candidate in (90, 70):
            value, changed = correct_backoff(candidate, 100)
            self.assertAlmostEqual(value, 82.5)
            self.assertTrue(changed)

    def test_baseline_resolution_order(self):
        sets = [_set("heavy", actual=140, target=135), _set("backoff", target=115), _set("dropset")]
        self.assertEqual(resolve_baseline(sets, "heavy"), 140)
        self.assertEqual(resolve_baseline(sets, "backoff"), 115)
        # No dropset weight at all: generic heavy baseline.
        self.assertEqual(resolve_baseline(sets, "dropset"), 140)
        self.assertEqual(resolve_baseline([], "working"), 0.0)


class ValidateRecommendationTests(unittest.TestCase):
    def setUp(self):
        self.program = load_program(PROGRAM_PATH)

    def test_compound_cap(self):
        rec = Recommendation(heavy_weight=112, reason="Strong session")
        result = validate_recommendation(
            "Leg Press", rec, [_set("heavy", actual=100)], self.program, day=1
        )
        self.assertEqual(result.heavy_weight, 105.0)
        self.assertIn("[Heavy corrected from 112 - max +5/week]", result.reason)
        self.assertTrue(result.reason.startswith("Strong session"))

    def test_deload_floor(self):
        rec = Recommendation(heavy_weight=70)
        result = validate_recommendation(
            "Leg Press", rec, [_set("heavy", actual=100)], self.program, day=1
        )
        self.assertEqual(result.heavy_weight, 80.0)
        self.assertIn("max -20% deload", result.reason)

    def test_isolation_cap(self):
        rec = Recommendation(working_weight=16)
        result = validate_recommendation(
            "DB Bicep Curl", rec, [_set("working", actual=12)], self.program, day=1
        )
        self.assertEqual(result.working_weight, 14.0)
        self.assertIn("max +2/week", result.reason)

    def test_barbell_rounding_stays_under_weekly_cap(self):
        rec = Recommendation(working_weight=112)
        result = validate_recommendation(
            "Romanian Deadlift", rec, [_set("working", actual=100)], self.program, day=3
        )
        # 105 would round up to 110; one barbell step back down is 100.
        self.assertEqual(result.working_weight, 100.0)
        self.assertLessEqual(result.working_weight, 105.0)
        self.assertIn("max +5/week", result.reason)

    def test_barbell_rounding_stays_above_deload_floor(self):
        rec = Recommendation(working_weight=60)
        result = validate_recommendation(
            "Romanian Deadlift", rec, [_set("working", actual=130)], self.program, day=3
        )
        # Floor is 104, which rounds down to 100; one step up gives 110.
        self.assertEqual(result.working_weight, 110.0)
        self.assertIn("max -20% deload", result.reason)

    def test_holds_baseline_when_no_increment_fits(self):
        rec = Recommendation(working_weight=17)
        result = validate_recommendation(
            "EZ Bar Curl", rec, [_set("working", actual=15)], self.program, day=2
        )
        self.assertEqual(result.working_weight, 15.0)
        self.assertIn("[Working held at 15 - no loadable step]", result.reason)

    def test_backoff_corrected_against_validated_heavy(self):
        rec = Recommendation(heavy_weight=105, backoff_weight=100)
        sets = [_set("heavy", actual=100), _set("backoff", actual=85)]
        result = validate_recommendation("Leg Press", rec, sets, self.program, day=1)
        self.assertEqual(result.heavy_weight, 105.0)
        # 0.825 * 105 = 86.625, machine rounding to 85.
        self.assertEqual(result.backoff_weight, 85.0)
        self.assertIn("[Backoff corrected to 82.5% of heavy]", result.reason)

    def test_backoff_inside_band_passes(self):
        rec = Recommendation(heavy_weight=100, backoff_weight=85)
        sets = [_set("heavy", actual=100), _set("backoff", actual=85)]
        result = validate_recommendation("Leg Press", rec, sets, self.program, day=1)
        self.assertEqual(result.backoff_weight, 85.0)
        self.assertEqual(result.reason, "")

    def test_set_type_whitelist(self):
        rec = Recommendation(heavy_weight=110, working_weight=115, reason="Progress")
        result = validate_recommendation(
            "Leg Press", rec, [_set("working", actual=110)], self.program, day=3
        )
        self.assertIsNone(result.heavy_weight)
        self.assertEqual(result.working_weight, 115.0)
        self.assertIn("[Filtered: heavy_weight=110 - not valid for D3]", result.reason)

    def test_no_baseline_rounds_only(self):
        rec = Recommendation(working_weight=13.4)
        result = validate_recommendation("DB Bicep Curl", rec, [], self.program, day=1)
        self.assertEqual(result.working_weight, 13.0)

    def test_dumbbell_minimum(self):
        rec = Recommendation(working_weight=3)
        result = validate_recommendation(
            "DB Lateral Raise", rec, [_set("working", actual=3.5)], self.program, day=1
        )
        self.assertEqual(result.working_weight, 4.0)

    def test_dropset_uses_its_own_baseline(self):
        rec = Recommendation(working_weight=12, dropset_weight=12)
        sets = [_set("working", actual=12), _set("dropset", actual=8)]
        result = validate_recommendation("DB Bicep Curl", rec, sets, self.program, day=1)
        self.assertEqual(result.working_weight, 12.0)
        self.assertEqual(result.dropset_weight, 10.0)

    def test_empty_recommendation_is_unchanged(self):
        rec = Recommendation(reason="Hold")
        result = validate_recommendation("Leg Press", rec, [], self.program, day=1)
        self.assertEqual(result, rec)


class ValidateBatchTests(unittest.TestCase):
    def setUp(self):
        self.program = load_program(PROGRAM_PATH)

    def test_matches_session_sets_by_canonical_name(self):
        set_logs = [
            {"exercise_name": "Leg Press", "set_type": "heavy", "actual_weight": 100, "target_weight": 100},
            {"exercise_name": "Leg Press", "set_type": "backoff", "actual_weight": 85, "target_weight": 85},
        ]
        recommendations = {
            "leg press": Recommendation(heavy_weight=120),
            "Cable Fly": {"working_weight": 23},
        }
        result = validate_recommendations(
            recommendations, index_session_sets(set_logs), self.program, day=1
        )
        self.assertEqual(result["leg press"].heavy_weight, 105.0)
        # Unlisted exercise: no whitelist entry, no baseline, machine rounding.
        self.assertEqual(result["Cable Fly"].working_weight, 25.0)


if __name__ == "__main__":
    unittest.main()
