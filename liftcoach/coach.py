"""
AI progression coach: asks Claude for next-session weights and guards the answer.
"""

import json
import logging
import re
import time

import anthropic

from liftcoach.errors import AnalysisError, ExternalCallFailure
from liftcoach.recommendation import FIELD_BY_SET_TYPE, Recommendation
from liftcoach.recommendation_parser import parse_daily_response, parse_weekly_response
from liftcoach.recommendation_validator import index_session_sets, validate_recommendations
from liftcoach.signals import extract_signals
from liftcoach.weights import format_load, parse_float


logger = logging.getLogger(__name__)

FALLBACK_REASON = "Fallback - hold previous weights (AI analysis unavailable)"
FALLBACK_ANALYSIS = (
    "AI analysis unavailable. Keep your current weights and try again next session."
)
WEEKLY_FALLBACK_SUMMARY = "Weekly analysis unavailable. Continue with your current weights."

BLOCK_FOCUS = {
    1: "establish baseline",
    2: "gentle progression",
    3: "continue progression",
    4: "peak week",
}

ROLE_MARKER_RE = re.compile(r"\b(system|assistant|human|user):\s*", re.IGNORECASE)
TAG_RE = re.compile(r"</?[^>]+>")
BRACES_RE = re.compile(r"[{}\[\]]")
WHITESPACE_RE = re.compile(r"\s+")


def sanitize_user_input(text, max_length=500):
    """Strip prompt-injection markers from free text and cap its length."""
    if not text or not isinstance(text, str):
        return ""
    cleaned = ROLE_MARKER_RE.sub("", text)
    cleaned = TAG_RE.sub("", cleaned)
    cleaned = BRACES_RE.sub("", cleaned)
    cleaned = WHITESPACE_RE.sub(" ", cleaned).strip()
    if len(cleaned) > max_length:
        cleaned = cleaned[:max_length] + "..."
    return cleaned


def group_sets_for_prompt(set_logs):
    """Exercise name -> performed sets, in logged order."""
    grouped = {}
    for log in set_logs or []:
        name = log.get("exercise_name")
        if not name:
            continue
        entry = grouped.setdefault(name, {"muscle_group": log.get("muscle_group"), "sets": []})
        entry["sets"].append(
            {
                "type": log.get("set_type"),
                "target_weight": log.get("target_weight"),
                "actual_weight": log.get("actual_weight"),
                "target_reps": log.get("target_reps"),
                "actual_reps": log.get("actual_reps"),
                "rpe": log.get("rpe"),
                "notes": sanitize_user_input(log.get("notes"), 200) or None,
            }
        )
    return grouped


def build_fallback_recommendations(set_logs):
    """Hold-weight recommendations from the session's own actual/target weights."""
    fallback = {}
    for log in set_logs or []:
        name = log.get("exercise_name")
        field_name = FIELD_BY_SET_TYPE.get(log.get("set_type"))
        if not name or field_name is None:
            continue
        weight = parse_float(log.get("actual_weight")) or parse_float(log.get("target_weight"))
        if not weight or weight <= 0:
            continue
        fallback.setdefault(name, {})[field_name] = weight

    return {
        name: Recommendation(reason=FALLBACK_REASON, **weights)
        for name, weights in fallback.items()
    }


class ProgressionCoach:
    """Runs daily and weekly progression analyses against Claude."""

    def __init__(self, api_key, config, program, client=None):
        """
        Initialize the coach.

        Args:
            api_key: Anthropic API key (may be None when client is given)
            config: Full configuration dictionary
            program: ProgramConfig used for prompts and validation
            client: Optional pre-built client exposing messages.create
        """
        claude = config["claude"]
        self.model = claude["model"]
        self.max_tokens = claude.get("max_tokens", 2000)
        self.weekly_max_tokens = claude.get("weekly_max_tokens", 4000)
        self.temperature = claude.get("temperature", 0.3)
        self.timeout = claude.get("timeout", 60)
        self.program = program

        if client is not None:
            self.client = client
        elif api_key:
            # One attempt per analysis; failures go to the fallback path.
            self.client = anthropic.Anthropic(api_key=api_key, timeout=self.timeout, max_retries=0)
        else:
            self.client = None

        self.system_prompt = self._build_system_prompt()

    # -- model call ------------------------------------------------------

    def _call_model(self, system, prompt, max_tokens, label):
        if self.client is None:
            raise ExternalCallFailure("Anthropic API key not configured")

        logger.info("Calling %s for %s", self.model, label)
        start = time.time()
        try:
            message = self.client.messages.create(
                model=self.model,
                max_tokens=max_tokens,
                temperature=self.temperature,
                system=system,
                messages=[{"role": "user", "content": prompt}],
            )
            text = message.content[0].text
        except anthropic.APIError as exc:
            raise ExternalCallFailure(f"{label} call failed: {exc}") from exc
        except (IndexError, AttributeError, TypeError) as exc:
            raise ExternalCallFailure(f"{label} returned an unexpected response: {exc}") from exc
        except Exception as exc:
            raise ExternalCallFailure(f"{label} call failed: {exc}") from exc

        usage = getattr(message, "usage", None)
        logger.info(
            "%s response in %.1fs (%s output tokens)",
            label,
            time.time() - start,
            getattr(usage, "output_tokens", "?"),
        )
        return text or ""

    # -- prompts ---------------------------------------------------------

    def _build_system_prompt(self):
        exercise_lines = []
        for exercise in self.program.exercises.values():
            exercise_lines.append(
                f"- {exercise.name}: {exercise.kind}, {exercise.equipment}, "
                f"max +{format_load(self.program.weekly_increase_cap(exercise.name))}/week"
            )
        increments = ", ".join(
            f"{equipment} every {format_load(rule['increment'])}"
            + (f" (min {format_load(rule['minimum'])})" if rule.get("minimum") else "")
            for equipment, rule in self.program.equipment_increments.items()
        )
        caps = self.program.max_weekly_increase

        return f"""You are a strength coach reviewing sessions of a 3-day full/upper/lower program.
Progress by beating the logbook: add weight only when reps and RPE targets were met.

EXERCISES:
{chr(10).join(exercise_lines)}

HARD LIMITS (recommendations outside them are corrected automatically):
- Weekly increase cap: compound +{format_load(caps['compound'])}, isolation +{format_load(caps['isolation'])}
- Maximum decrease: -20% (light sessions only)
- Backoff sets: 80-85% of the heavy set
- Rounding: {increments}
- Recommend only set types the exercise has on that day
- Without data, hold the previous weight

If pain or injury is mentioned, account for it. If weights stall or RPE is
consistently 10, consider a single light session (-10 to -15%)."""

    def _build_daily_prompt(self, session, exercise_data, signals, history, session_notes):
        week, day = session["week"], session["day"]
        workout_day = self.program.get_day(day)
        day_name = workout_day.name if workout_day else f"Day {day}"
        block_week = self.program.block_week(week)

        allowed_lines = []
        for name in exercise_data:
            allowed = self.program.allowed_set_types(name, day) or ("working",)
            allowed_lines.append(f"- {name}: {', '.join(allowed)}")

        light = signals["light_session"]
        light_block = ""
        if light["suggest"]:
            light_block = (
                f"\nCONSIDER A LIGHT SESSION:\n- Reason: {light['reason']}\n"
                f"- Severity: {light['severity']}\n"
            )
        rest = signals["rest_times"]
        rest_text = f"average {rest['average']}s" if rest["average"] else "no data"
        if rest["by_set_type"]:
            rest_text += " (" + ", ".join(
                f"{set_type}: {seconds}s" for set_type, seconds in rest["by_set_type"].items()
            ) + ")"

        return f"""TODAY: Week {week}, Day {day} ({day_name})
BLOCK POSITION: week {block_week} of {self.program.block_length} - {BLOCK_FOCUS.get(block_week, '')}

ALLOWED EXERCISES AND SET TYPES FOR THIS DAY:
{chr(10).join(allowed_lines)}

PERFORMED SETS:
{json.dumps(exercise_data, indent=2)}

SESSION METRICS:
- Average RPE: {signals['average_rpe'] if signals['average_rpe'] is not None else 'no data'}
- Rep targets hit: {signals['target_hit_rate']}%
- Weekly volume trend: {signals['weekly_volume_trend']['trend']}
- Recurring issues: {', '.join(signals['recurring_issues']) or 'none'}
- Rest between sets: {rest_text}
{light_block}
HISTORY (same day, previous sessions):
{json.dumps(history, indent=2) if history else 'No previous sessions for this day'}

TRENDS:
{json.dumps(signals['exercise_trends'], indent=2) if signals['exercise_trends'] else 'Not enough data'}

ATHLETE NOTES:
{sanitize_user_input(session_notes) or 'none'}

Recommend weights for the next session of this day.
Return ONLY JSON:
{{
  "analysis": "2-3 sentence overview",
  "exercise_analysis": {{"Exercise Name": "one sentence"}},
  "light_session_suggested": false,
  "next_workout": {{
    "Exercise Name": {{
      "heavy_weight": null,
      "backoff_weight": null,
      "working_weight": null,
      "dropset_weight": null,
      "reason": "short justification"
    }}
  }}
}}"""

    def _build_weekly_prompt(self, week, week_data, signals, history, week_notes, daily_analyses):
        block_week = self.program.block_week(week)
        next_block_week = 1 if block_week == self.program.block_length else block_week + 1

        day_blocks = []
        for workout_day in self.program.days:
            day_blocks.append(
                f"DAY {workout_day.day} ({workout_day.name}):\n"
                f"{json.dumps(week_data.get(workout_day.day, {}), indent=2)}"
            )
        daily_lines = [
            f"Day {entry['day']}: {entry.get('analysis') or 'no analysis'}"
            for entry in daily_analyses or []
        ]
        light = signals["light_session"]

        return f"""WEEK {week} REVIEW
BLOCK POSITION: week {block_week} of {self.program.block_length}
NEXT WEEK: week {next_block_week} - {BLOCK_FOCUS.get(next_block_week, '')}

WEEK METRICS:
- Average RPE: {signals['average_rpe'] if signals['average_rpe'] is not None else 'no data'}
- Rep targets hit: {signals['target_hit_rate']}%
- Volume trend: {signals['weekly_volume_trend']['trend']}
- Recurring issues: {', '.join(signals['recurring_issues']) or 'none'}
- Light session: {light['reason'] if light['suggest'] else 'not indicated'}

{chr(10).join(day_blocks)}

PREVIOUS WEEKS:
{json.dumps(history, indent=2) if history else 'No previous weeks'}

NOTES:
{sanitize_user_input(week_notes, 1000) or 'none'}

DAILY ANALYSES:
{chr(10).join(daily_lines) or 'none'}

Return ONLY JSON:
{{
  "week_summary": "3-4 sentences",
  "strengths": [],
  "improvements": [],
  "light_session_suggested": false,
  "next_week_strategy": "one paragraph",
  "next_week_recommendations": {{
    "1": {{"Exercise Name": {{"heavy_weight": null, "backoff_weight": null, "working_weight": null, "dropset_weight": null, "reason": ""}}}},
    "2": {{}},
    "3": {{}}
  }}
}}"""

    # -- analyses --------------------------------------------------------

    def analyze_workout(self, session, set_logs, previous_data, session_notes=None):
        """
        Analyze one finished session and recommend the next one's weights.

        Returns:
            dict with keys: analysis, exercise_analysis, light_session_suggested,
            next_workout (Dict[str, Recommendation]), signals, fallback
        """
        week, day = session["week"], session["day"]
        signals = extract_signals(set_logs, previous_data, week, self.program.block_length)
        exercise_data = group_sets_for_prompt(set_logs)
        history = [
            {
                "exercise": row.get("exercise_name"),
                "date": row.get("finished_at"),
                "set_type": row.get("set_type"),
                "weight": row.get("actual_weight"),
                "reps": row.get("actual_reps"),
                "rpe": row.get("rpe"),
            }
            for row in previous_data or []
        ]

        try:
            prompt = self._build_daily_prompt(session, exercise_data, signals, history, session_notes)
            text = self._call_model(self.system_prompt, prompt, self.max_tokens, "daily analysis")
            result = parse_daily_response(text)
        except AnalysisError as exc:
            logger.warning("Daily analysis failed for W%sD%s: %s", week, day, exc)
            fallback = build_fallback_recommendations(set_logs)
            logger.warning("Returning fallback with %d exercise(s)", len(fallback))
            return {
                "analysis": FALLBACK_ANALYSIS,
                "exercise_analysis": {},
                "light_session_suggested": signals["light_session"]["suggest"],
                "next_workout": fallback,
                "signals": signals,
                "fallback": True,
                "error": str(exc),
            }

        result["next_workout"] = validate_recommendations(
            result["next_workout"], index_session_sets(set_logs), self.program, day
        )
        result["signals"] = signals
        result["fallback"] = False
        return result

    def analyze_week(self, week, sessions, set_logs, previous_weeks_data, week_notes="", daily_analyses=None):
        """
        Analyze a completed week and recommend next week's weights per day.

        Returns:
            dict with week_summary, strengths, improvements, next_week_strategy,
            next_week_recommendations (Dict[int, Dict[str, Recommendation]]),
            signals, fallback
        """
        logs_by_day = {}
        for log in set_logs or []:
            logs_by_day.setdefault(log.get("day"), []).append(log)
        week_data = {day: group_sets_for_prompt(logs) for day, logs in logs_by_day.items()}
        signals = extract_signals(set_logs, previous_weeks_data, week, self.program.block_length)
        history = [
            {
                "exercise": row.get("exercise_name"),
                "week": row.get("week"),
                "day": row.get("day"),
                "set_type": row.get("set_type"),
                "weight": row.get("actual_weight"),
                "reps": row.get("actual_reps"),
                "rpe": row.get("rpe"),
            }
            for row in previous_weeks_data or []
        ]
        logger.info("Weekly analysis for W%s over %d session(s)", week, len(sessions or []))

        try:
            prompt = self._build_weekly_prompt(
                week, week_data, signals, history, week_notes, daily_analyses
            )
            text = self._call_model(self.system_prompt, prompt, self.weekly_max_tokens, "weekly analysis")
            result = parse_weekly_response(text, valid_days=tuple(d.day for d in self.program.days))
        except AnalysisError as exc:
            logger.warning("Weekly analysis failed for W%s: %s", week, exc)
            return {
                "week_summary": WEEKLY_FALLBACK_SUMMARY,
                "strengths": [],
                "improvements": [],
                "light_session_suggested": signals["light_session"]["suggest"],
                "next_week_strategy": "Hold current intensity",
                "next_week_recommendations": {},
                "signals": signals,
                "fallback": True,
                "error": str(exc),
            }

        result["next_week_recommendations"] = {
            day: validate_recommendations(
                recommendations, index_session_sets(logs_by_day.get(day, [])), self.program, day
            )
            for day, recommendations in result["next_week_recommendations"].items()
        }
        result["signals"] = signals
        result["fallback"] = False
        logger.info("Weekly analysis complete for W%s", week)
        return result
