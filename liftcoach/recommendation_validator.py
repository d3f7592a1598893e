"""
Guard rails for model-proposed weights.

Per exercise: drop set types the exercise does not have on the day, clamp
heavy/working/dropset weights to [baseline * 0.80, baseline + weekly cap],
pull backoff weights outside 80-85% of heavy to 82.5%, and round to the
equipment increment without leaving those windows.
"""

import logging
from dataclasses import replace

from liftcoach.program import canonical_key
from liftcoach.recommendation import FIELD_BY_SET_TYPE, Recommendation
from liftcoach.weights import (
    format_load,
    parse_float,
    round_weight_for_exercise,
    round_within_bounds,
)


logger = logging.getLogger(__name__)

MAX_DECREASE_RATIO = 0.80
BACKOFF_MIN_RATIO = 0.80
BACKOFF_MAX_RATIO = 0.85
BACKOFF_TARGET_RATIO = 0.825


def index_session_sets(set_logs):
    """Group set log rows by canonical exercise name."""
    grouped = {}
    for log in set_logs or []:
        name = log.get("exercise_name")
        if not name:
            continue
        grouped.setdefault(canonical_key(name), []).append(
            {
                "set_type": log.get("set_type"),
                "actual_weight": parse_float(log.get("actual_weight")),
                "target_weight": parse_float(log.get("target_weight")),
            }
        )
    return grouped


def _first_positive(sets, set_type, key):
    for set_entry in sets:
        if set_entry.get("set_type") != set_type:
            continue
        value = set_entry.get(key)
        if value:
            return value
    return 0.0


def resolve_baseline(sets, set_type):
    """
    Best-known prior weight for one set type.

    Same-type actual weight, then same-type target weight, then the generic
    heavy/working baseline. Returns 0.0 when nothing is known.
    """
    sets = sets or []
    return (
        _first_positive(sets, set_type, "actual_weight")
        or _first_positive(sets, set_type, "target_weight")
        or _first_positive(sets, "heavy", "actual_weight")
        or _first_positive(sets, "working", "actual_weight")
        or _first_positive(sets, "heavy", "target_weight")
        or _first_positive(sets, "working", "target_weight")
        or 0.0
    )


def clamp_to_window(value, baseline, max_increase):
    """
    Clamp value to [baseline * 0.80, baseline + max_increase].

    Returns:
        Tuple[float, str] => (clamped value, violation or "" if inside)
    """
    upper = baseline + max_increase
    lower = baseline * MAX_DECREASE_RATIO
    if value > upper:
        return upper, "cap"
    if value < lower:
        return lower, "floor"
    return value, ""


def correct_backoff(value, heavy_weight):
    """Keep backoff inside 80-85% of heavy, otherwise reset to 82.5%."""
    lower = heavy_weight * BACKOFF_MIN_RATIO
    upper = heavy_weight * BACKOFF_MAX_RATIO
    if lower <= value <= upper:
        return value, False
    return heavy_weight * BACKOFF_TARGET_RATIO, True


def filter_set_types(exercise_name, recommendation, program, day):
    """Strip weight fields whose set type the exercise does not have on day."""
    if day is None:
        return recommendation
    allowed = program.allowed_set_types(exercise_name, day)
    if allowed is None:
        return recommendation

    removed = []
    changes = {}
    for set_type, weight in recommendation.weights():
        if set_type in allowed:
            continue
        field_name = FIELD_BY_SET_TYPE[set_type]
        removed.append(f"{field_name}={format_load(weight)}")
        changes[field_name] = None

    if not removed:
        return recommendation
    logger.warning(
        "Removed set types not valid for %s on D%s: %s", exercise_name, day, ", ".join(removed)
    )
    filtered = replace(recommendation, **changes)
    return filtered.with_note(f"[Filtered: {', '.join(removed)} - not valid for D{day}]")


def validate_recommendation(exercise_name, recommendation, current_sets, program, day=None):
    """Validate one exercise's recommendation; returns a new Recommendation."""
    recommendation = filter_set_types(exercise_name, recommendation, program, day)
    sets = current_sets or []
    max_increase = program.weekly_increase_cap(exercise_name)
    notes = []
    validated = {}

    def _round(value):
        return round_weight_for_exercise(value, exercise_name, program)

    for set_type in ("heavy", "working", "dropset"):
        value = recommendation.get(set_type)
        if value is None:
            continue
        baseline = resolve_baseline(sets, set_type)
        if baseline <= 0:
            logger.warning("%s %s: no baseline, rounding only", exercise_name, set_type)
            validated[set_type] = _round(value)
            continue

        clamped, violation = clamp_to_window(value, baseline, max_increase)
        if violation == "cap":
            logger.info(
                "corrected %s %s: %s -> %s (exceeds +%s/week cap)",
                exercise_name, set_type, format_load(value), format_load(clamped),
                format_load(max_increase),
            )
            notes.append(
                f"[{set_type.capitalize()} corrected from {format_load(value)} - "
                f"max +{format_load(max_increase)}/week]"
            )
        elif violation == "floor":
            logger.info(
                "corrected %s %s: %s -> %s (exceeds -20%% deload limit)",
                exercise_name, set_type, format_load(value), format_load(clamped),
            )
            notes.append(
                f"[{set_type.capitalize()} corrected from {format_load(value)} - max -20% deload]"
            )
        else:
            logger.debug("approved %s %s: %s", exercise_name, set_type, format_load(value))

        rounded = round_within_bounds(
            clamped, exercise_name, program, baseline * MAX_DECREASE_RATIO, baseline + max_increase
        )
        if rounded is None:
            logger.info(
                "holding %s %s at %s (no %s increment inside the weekly window)",
                exercise_name, set_type, format_load(baseline), program.equipment_for(exercise_name),
            )
            notes.append(f"[{set_type.capitalize()} held at {format_load(baseline)} - no loadable step]")
            rounded = baseline
        validated[set_type] = rounded

    backoff = recommendation.get("backoff")
    if backoff is not None:
        heavy = validated.get("heavy") or resolve_baseline(sets, "heavy")
        if heavy <= 0:
            logger.warning("%s backoff: no heavy reference, rounding only", exercise_name)
            validated["backoff"] = _round(backoff)
        else:
            corrected, changed = correct_backoff(backoff, heavy)
            if changed:
                logger.info(
                    "corrected %s backoff: %s -> %s (outside 80-85%% of heavy %s)",
                    exercise_name, format_load(backoff), format_load(corrected), format_load(heavy),
                )
                notes.append("[Backoff corrected to 82.5% of heavy]")
            else:
                logger.debug("approved %s backoff: %s", exercise_name, format_load(backoff))
            rounded = round_within_bounds(
                corrected, exercise_name, program, heavy * BACKOFF_MIN_RATIO, heavy * BACKOFF_MAX_RATIO
            )
            if rounded is None:
                # Band narrower than one increment: nearest loadable weight wins.
                logger.info(
                    "%s backoff: no %s increment inside 80-85%% of heavy %s",
                    exercise_name, program.equipment_for(exercise_name), format_load(heavy),
                )
                rounded = _round(corrected)
            validated["backoff"] = rounded

    result = replace(
        recommendation,
        **{FIELD_BY_SET_TYPE[set_type]: weight for set_type, weight in validated.items()},
    )
    for note in notes:
        result = result.with_note(note)
    return result


def validate_recommendations(recommendations, current_sets, program, day=None):
    """
    Validate a batch of recommendations keyed by exercise name.

    Args:
        recommendations: Dict[str, Recommendation]
        current_sets: output of index_session_sets for the reference session
        program: ProgramConfig
        day: optional program day for the set-type whitelist

    Returns:
        Dict[str, Recommendation] with the same keys
    """
    validated = {}
    for exercise_name, recommendation in (recommendations or {}).items():
        if not isinstance(recommendation, Recommendation):
            recommendation = Recommendation.from_payload(recommendation)
        sets = (current_sets or {}).get(canonical_key(exercise_name), [])
        validated[exercise_name] = validate_recommendation(
            exercise_name, recommendation, sets, program, day
        )
    return validated
