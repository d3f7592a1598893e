"""
Parse freeform model responses into typed recommendations.
"""

import json
import logging
import re

from liftcoach.errors import NoValidJson
from liftcoach.recommendation import Recommendation


logger = logging.getLogger(__name__)

DAY_KEY_RE = re.compile(r"(\d+)")


def extract_json_object(text):
    """
    Parse the JSON object spanning the first '{' to the last '}' of text.

    Raises:
        NoValidJson: no brace-delimited span, a syntax error, or a
            top-level value that is not an object.
    """
    text = text or ""
    start = text.find("{")
    end = text.rfind("}")
    if start == -1 or end == -1 or end < start:
        logger.warning("No JSON object found in model response")
        raise NoValidJson("No valid JSON in response", response_text=text)

    try:
        payload = json.loads(text[start:end + 1])
    except json.JSONDecodeError as exc:
        logger.warning("JSON parse error in model response: %s", exc)
        raise NoValidJson(f"Invalid JSON in response: {exc}", response_text=text) from exc

    if not isinstance(payload, dict):
        raise NoValidJson("Top-level JSON value is not an object", response_text=text)
    return payload


def parse_recommendations(payload, context=""):
    """Map exercise name -> Recommendation, dropping entries that are not objects."""
    if payload is None:
        return {}
    if not isinstance(payload, dict):
        logger.warning(
            "Invalid recommendations%s: expected object, got %s",
            f" ({context})" if context else "",
            type(payload).__name__,
        )
        return {}

    recommendations = {}
    for exercise_name, entry in payload.items():
        if not isinstance(entry, dict):
            logger.warning(
                "Invalid recommendation for %s: expected object, got %s",
                exercise_name,
                type(entry).__name__,
            )
            continue
        recommendations[str(exercise_name).strip()] = Recommendation.from_payload(entry)
    return recommendations


def parse_daily_response(text):
    """Parse a single-session analysis response."""
    payload = extract_json_object(text)
    next_workout = parse_recommendations(payload.get("next_workout"), context="next_workout")
    exercise_analysis = payload.get("exercise_analysis")
    logger.info("Parsed daily response: %d exercise recommendation(s)", len(next_workout))
    return {
        "analysis": str(payload.get("analysis") or ""),
        "exercise_analysis": exercise_analysis if isinstance(exercise_analysis, dict) else {},
        "light_session_suggested": bool(payload.get("light_session_suggested", False)),
        "next_workout": next_workout,
    }


def normalize_day_key(key, valid_days=(1, 2, 3)):
    """'1', 'day2', 'Day 3' -> int; None when no valid day can be read."""
    match = DAY_KEY_RE.search(str(key))
    if not match:
        return None
    day = int(match.group(1))
    return day if day in valid_days else None


def parse_weekly_response(text, valid_days=(1, 2, 3)):
    """Parse a whole-week analysis response with per-day recommendations."""
    payload = extract_json_object(text)

    per_day = {}
    raw_days = payload.get("next_week_recommendations")
    if isinstance(raw_days, dict):
        for key, exercises in raw_days.items():
            day = normalize_day_key(key, valid_days)
            if day is None:
                logger.warning("Weekly analysis: skipping invalid day key %r", key)
                continue
            per_day[day] = parse_recommendations(exercises, context=f"day {day}")
    elif raw_days is not None:
        logger.warning(
            "Invalid next_week_recommendations: expected object, got %s",
            type(raw_days).__name__,
        )

    def _string_list(value):
        return [str(item) for item in value] if isinstance(value, list) else []

    logger.info("Parsed weekly response: %d day(s) of recommendations", len(per_day))
    return {
        "week_summary": str(payload.get("week_summary") or ""),
        "strengths": _string_list(payload.get("strengths")),
        "improvements": _string_list(payload.get("improvements")),
        "light_session_suggested": bool(payload.get("light_session_suggested", False)),
        "next_week_strategy": str(payload.get("next_week_strategy") or ""),
        "next_week_recommendations": per_day,
    }
