"""
Weight arithmetic shared by the validator, fallback and plan assembly.

Rounding policy: equipment-based increments (dumbbell 1, barbell 10,
machine 5), half-up, never below zero. Dumbbells also have a minimum
available weight.
"""

import math
import re


TARGET_REPS_RE = re.compile(r"(\d+)")


def parse_float(value):
    """Coerce to float; None for missing, boolean or non-numeric input."""
    if value is None or isinstance(value, bool):
        return None
    try:
        result = float(str(value).strip())
    except (TypeError, ValueError):
        return None
    if math.isnan(result) or math.isinf(result):
        return None
    return result


def parse_target_reps(value):
    """Collapse a rep target like '8-10' to its lower bound."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return int(value)
    match = TARGET_REPS_RE.search(str(value))
    return int(match.group(1)) if match else None


def round_to_increment(value, increment, minimum=0.0):
    if increment <= 0:
        raise ValueError("Rounding increment must be positive")
    rounded = math.floor(value / increment + 0.5) * increment
    # Trim float noise from the multiplication (e.g. 0.1 increments).
    rounded = round(rounded, 6)
    if rounded <= 0:
        return 0.0
    return max(float(minimum or 0.0), rounded)


def round_weight_for_exercise(value, exercise_name, program):
    """Round to the exercise's equipment increment and floor at zero."""
    rule = program.rounding_rule(exercise_name)
    return round_to_increment(max(0.0, float(value)), rule["increment"], rule.get("minimum", 0.0))


def round_within_bounds(value, exercise_name, program, lower, upper):
    """
    Round like round_weight_for_exercise, but keep the result in [lower, upper].

    A rounded value past either bound moves one increment back toward the
    window. Returns None when no loadable weight fits.
    """
    rule = program.rounding_rule(exercise_name)
    increment = rule["increment"]
    minimum = float(rule.get("minimum", 0.0) or 0.0)
    rounded = round_weight_for_exercise(value, exercise_name, program)
    if rounded > upper:
        rounded = round(rounded - increment, 6)
    elif rounded < lower:
        rounded = round(rounded + increment, 6)
    if not lower <= rounded <= upper:
        return None
    if 0 < rounded < minimum:
        return None
    return max(0.0, rounded)


def calculate_warmup_weights(working_weight, exercise_name, program):
    """Two ramp-up sets at ~50% and ~70% of the working weight."""
    if not working_weight or working_weight <= 0:
        return {"warmup1": 0.0, "warmup2": 0.0}
    return {
        "warmup1": round_weight_for_exercise(working_weight * 0.50, exercise_name, program),
        "warmup2": round_weight_for_exercise(working_weight * 0.70, exercise_name, program),
    }


def primary_working_weight(sets):
    """
    Pick the reference weight for warm-ups: heavy, then working, then backoff.

    Args:
        sets: iterable of dicts with set_type and weight/target_weight keys
    """
    for set_type in ("heavy", "working", "backoff"):
        for set_entry in sets or []:
            if set_entry.get("set_type") != set_type:
                continue
            weight = set_entry.get("weight") or set_entry.get("target_weight")
            if weight:
                return float(weight)
    return 0.0


def format_load(value):
    """Format load values while preserving meaningful decimal precision."""
    if value is None:
        return ""

    if abs(value - round(value)) < 1e-9:
        return str(int(round(value)))

    return f"{value:.3f}".rstrip("0").rstrip(".")
