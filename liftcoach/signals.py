"""
Deterministic training signals derived from raw set logs.

Every function accepts plain dict rows (as returned by WorkoutDB) and
degrades to an explicit "no data" value on empty input instead of raising.
"""

from collections import defaultdict
from datetime import datetime, timezone


NO_DATA = "no data"
INSUFFICIENT_DATA = "insufficient data"

MIN_HISTORY_FOR_LIGHT_SESSION = 6
MIN_REST_SECONDS = 30
MAX_REST_SECONDS = 600

ISSUE_KEYWORDS = [
    ("pain", "pain/discomfort"),
    ("hurt", "pain/discomfort"),
    ("discomfort", "pain/discomfort"),
    ("ache", "pain/discomfort"),
    ("knee", "knee problem"),
    ("lower back", "back problem"),
    ("shoulder", "shoulder problem"),
    ("elbow", "elbow problem"),
    ("wrist", "wrist problem"),
    ("tired", "fatigue"),
    ("fatigue", "fatigue"),
    ("exhausted", "fatigue"),
    ("weak", "low energy"),
    ("technique", "technique issues"),
    ("bad form", "form issues"),
    ("form broke", "form issues"),
]

# Labels that count as pain/injury for the light-session check.
PAIN_ISSUE_LABELS = {
    "pain/discomfort",
    "knee problem",
    "back problem",
    "shoulder problem",
    "elbow problem",
    "wrist problem",
}


def _number(value):
    if value is None or isinstance(value, bool):
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def _parse_timestamp(value):
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        parsed = value
    else:
        text = str(value).strip().replace(" ", "T", 1)
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError:
            return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def calculate_average_rpe(set_logs):
    """Mean RPE rounded to one decimal, or None when no RPE was logged."""
    values = [_number(log.get("rpe")) for log in set_logs or []]
    values = [value for value in values if value is not None]
    if not values:
        return None
    return round(sum(values) / len(values), 1)


def calculate_target_hit_rate(set_logs):
    """Percent of sets that met the rep target; 100 when nothing is measurable."""
    relevant = []
    for log in set_logs or []:
        target = _number(log.get("target_reps"))
        actual = _number(log.get("actual_reps"))
        if target is None or actual is None:
            continue
        relevant.append(actual >= target)
    if not relevant:
        return 100
    return int(sum(relevant) / len(relevant) * 100 + 0.5)


def calculate_weekly_volume(history):
    """
    Compare tonnage of the two most recent weeks in history.

    Returns:
        dict with keys: trend, total_sets, weekly_tonnage
    """
    if not history:
        return {"trend": NO_DATA, "total_sets": 0, "weekly_tonnage": {}}

    weekly = defaultdict(lambda: {"sets": 0, "tonnage": 0.0})
    for log in history:
        week = log.get("week")
        if week is None:
            continue
        weight = _number(log.get("actual_weight")) or 0.0
        reps = _number(log.get("actual_reps")) or 0.0
        weekly[int(week)]["sets"] += 1
        weekly[int(week)]["tonnage"] += weight * reps

    weeks = sorted(weekly.keys(), reverse=True)
    tonnage = {week: round(weekly[week]["tonnage"], 1) for week in weeks}
    if len(weeks) < 2:
        total_sets = weekly[weeks[0]]["sets"] if weeks else 0
        return {"trend": INSUFFICIENT_DATA, "total_sets": total_sets, "weekly_tonnage": tonnage}

    latest = weekly[weeks[0]]
    previous = weekly[weeks[1]]
    if latest["tonnage"] >= previous["tonnage"] * 1.05 and latest["tonnage"] > previous["tonnage"]:
        trend = "increasing"
    elif latest["tonnage"] <= previous["tonnage"] * 0.95 and latest["tonnage"] < previous["tonnage"]:
        trend = "decreasing"
    else:
        trend = "stable"
    return {"trend": trend, "total_sets": latest["sets"], "weekly_tonnage": tonnage}


def extract_recurring_issues(logs):
    """Canonical issue labels mentioned in any notes field, first-seen order."""
    found = []
    for log in logs or []:
        notes = (log.get("notes") or "").lower()
        if not notes:
            continue
        for keyword, label in ISSUE_KEYWORDS:
            if keyword in notes and label not in found:
                found.append(label)
    return found


def calculate_rest_times(set_logs):
    """Average rest between consecutive sets of the same exercise, in seconds."""
    timed = []
    for log in set_logs or []:
        completed_at = _parse_timestamp(log.get("completed_at"))
        if completed_at is None:
            continue
        exercise = log.get("exercise_id")
        if exercise is None:
            exercise = log.get("exercise_name")
        timed.append((str(exercise), completed_at, log.get("set_type") or "unknown"))

    if len(timed) < 2:
        return {"average": None, "by_set_type": {}}

    timed.sort(key=lambda item: (item[0], item[1]))
    by_type = defaultdict(list)
    all_rests = []
    for previous, current in zip(timed, timed[1:]):
        if previous[0] != current[0]:
            continue
        seconds = round((current[1] - previous[1]).total_seconds())
        if MIN_REST_SECONDS <= seconds <= MAX_REST_SECONDS:
            by_type[current[2]].append(seconds)
            all_rests.append(seconds)

    return {
        "average": round(sum(all_rests) / len(all_rests)) if all_rests else None,
        "by_set_type": {
            set_type: round(sum(values) / len(values)) for set_type, values in by_type.items()
        },
    }


def _weekly_top_weights(history):
    """(exercise, set_type) -> [(week, top weight)] newest week first."""
    grouped = defaultdict(dict)
    for log in history or []:
        set_type = log.get("set_type")
        week = log.get("week")
        weight = _number(log.get("actual_weight"))
        if set_type in (None, "warmup") or week is None or weight is None:
            continue
        key = (log.get("exercise_name") or str(log.get("exercise_id")), set_type)
        week = int(week)
        grouped[key][week] = max(weight, grouped[key].get(week, 0.0))
    return {
        key: sorted(weeks.items(), key=lambda item: item[0], reverse=True)
        for key, weeks in grouped.items()
    }


def should_suggest_light_session(history, current_week):
    """
    Decide whether the next session should be a reduced-intensity one.

    Returns:
        dict with keys: suggest, reason, severity (none|moderate|high)
    """
    if not history or len(history) < MIN_HISTORY_FOR_LIGHT_SESSION:
        return {"suggest": False, "reason": "insufficient history", "severity": "none"}

    reasons = []
    severity = "none"
    weekly_weights = _weekly_top_weights(history)

    for (exercise, set_type), weeks in weekly_weights.items():
        if len(weeks) < 3:
            continue
        recent = [weight for _week, weight in weeks[:3]]
        top = max(recent)
        if top > 0 and (top - min(recent)) / top < 0.02:
            reasons.append(f"{exercise} ({set_type}) stagnant for 3+ weeks")
            if severity != "high":
                severity = "moderate"

    if current_week is not None:
        recent_logs = [
            log for log in history
            if log.get("week") is not None and int(log["week"]) >= int(current_week) - 1
        ]
        failures = [log for log in recent_logs if (_number(log.get("rpe")) or 0) >= 10]
        if len(recent_logs) >= 5 and len(failures) / len(recent_logs) >= 0.7:
            reasons.append("over 70% of sets at RPE 10 in the last 2 weeks")
            severity = "high"

    issues = extract_recurring_issues(history)
    if any(issue in PAIN_ISSUE_LABELS for issue in issues):
        reasons.append("recurring pain/discomfort notes")
        if severity != "high":
            severity = "moderate"

    for (exercise, set_type), weeks in weekly_weights.items():
        if len(weeks) < 2:
            continue
        latest, previous = weeks[0][1], weeks[1][1]
        if previous > 0 and latest <= previous * 0.9:
            reasons.append(f"{exercise} ({set_type}) strength down 10%+")
            severity = "high"

    return {"suggest": bool(reasons), "reason": "; ".join(reasons), "severity": severity}


def calculate_exercise_trends(history):
    """Direction of heavy/working weight per exercise across sessions."""
    by_exercise = defaultdict(list)
    for log in history or []:
        if log.get("set_type") not in ("heavy", "working"):
            continue
        name = log.get("exercise_name")
        if not name:
            continue
        by_exercise[name].append(
            (_parse_timestamp(log.get("finished_at")), _number(log.get("actual_weight")) or 0.0)
        )

    epoch = datetime.min.replace(tzinfo=timezone.utc)
    trends = {}
    for name, entries in by_exercise.items():
        if len(entries) < 2:
            continue
        entries.sort(key=lambda item: item[0] or epoch, reverse=True)
        latest = entries[0][1]
        previous = entries[-1][1]
        if latest > previous:
            direction = "increasing"
        elif latest < previous:
            direction = "decreasing"
        else:
            direction = "stagnant"
        trends[name] = {
            "direction": direction,
            "latest_weight": latest,
            "previous_weight": previous,
            "sessions_analyzed": len(entries),
        }
    return trends


def extract_signals(set_logs, history, current_week=None, block_length=4):
    """Fixed-shape signal summary for one analysis request."""
    set_logs = list(set_logs or [])
    history = list(history or [])
    return {
        "average_rpe": calculate_average_rpe(set_logs),
        "target_hit_rate": calculate_target_hit_rate(set_logs),
        "weekly_volume_trend": calculate_weekly_volume(history),
        "recurring_issues": extract_recurring_issues(history + set_logs),
        "rest_times": calculate_rest_times(set_logs),
        "light_session": should_suggest_light_session(history, current_week),
        "exercise_trends": calculate_exercise_trends(history),
        "block_week": ((int(current_week) - 1) % block_length) + 1 if current_week else None,
    }
