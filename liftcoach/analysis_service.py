"""
Finish-workout orchestration: mark the session done, analyze it, persist
next-session progression weights in one transaction.
"""

import json
import logging

from liftcoach.errors import SessionNotFoundError
from liftcoach.recommendation import Recommendation
from liftcoach.recommendation_validator import filter_set_types


logger = logging.getLogger(__name__)

WEEKLY_DEFAULT_REASON = "Weekly analysis"


def _serializable(value):
    if isinstance(value, Recommendation):
        return value.to_dict()
    if isinstance(value, dict):
        return {str(key): _serializable(item) for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return [_serializable(item) for item in value]
    return value


def analysis_to_json(analysis):
    return json.dumps(_serializable(analysis), ensure_ascii=False)


class WorkoutAnalysisService:
    """Runs the finish-workout pipeline over a WorkoutDB and ProgressionCoach."""

    def __init__(self, db, coach, program, daily_history_limit=50, weekly_history_limit=150):
        self.db = db
        self.coach = coach
        self.program = program
        self.daily_history_limit = daily_history_limit
        self.weekly_history_limit = weekly_history_limit

    def finish_workout(self, session_id, notes=None):
        """
        Finish a session and store recommendations for upcoming sessions.

        Returns:
            dict with success, session_id, analysis, weekly_analysis,
            ai_analysis_unavailable, progressions_saved

        Raises:
            SessionNotFoundError: unknown session_id
        """
        session = self.db.get_session(session_id)
        if session is None:
            raise SessionNotFoundError(f"Session #{session_id} not found")

        session = self.db.finish_session(session_id, notes)
        result = {
            "success": True,
            "session_id": session_id,
            "analysis": None,
            "weekly_analysis": None,
            "ai_analysis_unavailable": False,
            "progressions_saved": 0,
        }

        try:
            analysis = self._run_daily_analysis(session)
            weekly = self._maybe_run_weekly_analysis(session, analysis)

            if self.db.get_session(session_id) is None:
                logger.warning("Session #%s was deleted during analysis; results discarded", session_id)
                result["ai_analysis_unavailable"] = True
                return result

            with self.db.transaction():
                saved = self._persist(session, analysis, weekly)

            result["analysis"] = _serializable(analysis)
            result["weekly_analysis"] = _serializable(weekly) if weekly else None
            result["ai_analysis_unavailable"] = bool(
                analysis.get("fallback") or (weekly and weekly.get("fallback"))
            )
            result["progressions_saved"] = saved
            logger.info("Completed analysis for session #%s (%d progression row(s))", session_id, saved)
        except Exception:
            logger.exception("Analysis failed for session #%s", session_id)
            result["analysis"] = None
            result["weekly_analysis"] = None
            result["ai_analysis_unavailable"] = True
            result["progressions_saved"] = 0

        return result

    # -- analysis steps --------------------------------------------------

    def _run_daily_analysis(self, session):
        set_logs = self.db.get_session_set_logs(session["id"])
        previous_data = self.db.get_previous_day_data(
            session["day"], session["id"], limit=self.daily_history_limit
        )
        return self.coach.analyze_workout(
            session, set_logs, previous_data, session.get("overall_notes")
        )

    def _week_complete(self, week):
        finished_days = {row["day"] for row in self.db.get_week_sessions(week)}
        return all(workout_day.day in finished_days for workout_day in self.program.days)

    def _maybe_run_weekly_analysis(self, session, analysis):
        week = session["week"]
        if session["day"] != self.program.last_day:
            return None
        if not self._week_complete(week):
            logger.info("W%s last day finished but the week is incomplete; skipping weekly analysis", week)
            return None

        logger.info("Last day of W%s completed - running weekly analysis", week)
        sessions = self.db.get_week_sessions(week)
        week_notes = "\n".join(
            f"Day {row['day']}: {row['overall_notes']}" for row in sessions if row.get("overall_notes")
        )

        daily_analyses = []
        for row in sessions:
            if row["id"] == session["id"]:
                daily_analyses.append({"day": row["day"], "analysis": analysis.get("analysis")})
                continue
            if not row.get("ai_analysis"):
                continue
            try:
                stored = json.loads(row["ai_analysis"])
            except ValueError:
                logger.warning("Stored analysis for session #%s is not valid JSON", row["id"])
                continue
            daily_analyses.append({"day": row["day"], "analysis": stored.get("analysis")})

        return self.coach.analyze_week(
            week,
            sessions,
            self.db.get_week_set_logs(week),
            self.db.get_previous_weeks_data(week, limit=self.weekly_history_limit),
            week_notes,
            daily_analyses,
        )

    # -- persistence -----------------------------------------------------

    def _save_recommendation(self, exercise_name, recommendation, week, day, reason):
        exercise_id = self.db.get_exercise_id(exercise_name)
        if exercise_id is None:
            logger.warning("Unknown exercise in recommendation: %s (skipped)", exercise_name)
            return None
        if not recommendation.has_weights():
            logger.info("No weights recommended for %s W%sD%s", exercise_name, week, day)
            return None
        inserted = self.db.replace_progression(
            exercise_id, week, day, dict(recommendation.weights()), reason
        )
        logger.info("Saved progression %s W%sD%s: %s", exercise_name, week, day, recommendation.describe())
        return inserted

    def _persist(self, session, analysis, weekly):
        """Write analysis blobs and all derived progression rows; caller commits."""
        week, day = session["week"], session["day"]
        next_week = self.program.next_week(week)
        saved = 0

        self.db.save_analysis(session["id"], analysis_to_json(analysis))

        for exercise_name, recommendation in analysis.get("next_workout", {}).items():
            inserted = self._save_recommendation(
                exercise_name, recommendation, next_week, day, recommendation.reason
            )
            if inserted is None:
                continue
            saved += inserted

            for other_day in self.program.other_days_for_exercise(exercise_name, day):
                if self.db.is_day_finished(week, other_day):
                    continue
                other_recommendation = filter_set_types(
                    exercise_name, recommendation, self.program, other_day
                )
                same_week_reason = f"{other_recommendation.reason} [Same-week update from D{day}]".strip()
                logger.info("Same-week: %s W%sD%s (from D%s)", exercise_name, week, other_day, day)
                saved += self._save_recommendation(
                    exercise_name, other_recommendation, week, other_day, same_week_reason
                ) or 0

        if weekly:
            self.db.save_weekly_analysis(session["id"], analysis_to_json(weekly))
            for target_day, recommendations in weekly.get("next_week_recommendations", {}).items():
                for exercise_name, recommendation in recommendations.items():
                    saved += self._save_recommendation(
                        exercise_name,
                        recommendation,
                        next_week,
                        target_day,
                        recommendation.reason or WEEKLY_DEFAULT_REASON,
                    ) or 0

        return saved
