"""
SQLite persistence for sessions, set logs and progression weights.
"""

import json
import logging
import os
import sqlite3
from contextlib import contextmanager

from liftcoach.errors import ActiveSessionError, InvalidSetLogError, SessionNotFoundError
from liftcoach.program import SET_TYPES, canonical_key
from liftcoach.weights import (
    calculate_warmup_weights,
    parse_float,
    parse_target_reps,
    primary_working_weight,
)


logger = logging.getLogger(__name__)

NOW_SQL = "strftime('%Y-%m-%dT%H:%M:%SZ', 'now')"
RESET_REASON = "Reset - starting weight from program"


def _rows(cursor):
    return [dict(row) for row in cursor.fetchall()]


def _row(cursor):
    row = cursor.fetchone()
    return dict(row) if row is not None else None


class WorkoutDB:
    """Small SQLite wrapper for workout logging and progression storage."""

    def __init__(self, db_path):
        self.db_path = db_path
        parent = os.path.dirname(db_path)
        if parent:
            os.makedirs(parent, exist_ok=True)

        self.conn = sqlite3.connect(db_path)
        self.conn.row_factory = sqlite3.Row
        self.conn.execute("PRAGMA foreign_keys = ON")

    def close(self):
        self.conn.close()

    @contextmanager
    def transaction(self):
        """Context manager for atomic write operations."""
        try:
            yield
            self.conn.commit()
        except Exception:
            self.conn.rollback()
            raise

    def init_schema(self):
        """Create core schema if it does not already exist."""
        self.conn.executescript(
            """
            CREATE TABLE IF NOT EXISTS exercises (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                name TEXT NOT NULL,
                normalized_name TEXT NOT NULL UNIQUE,
                muscle_group TEXT,
                equipment TEXT,
                kind TEXT,
                notes TEXT,
                created_at TEXT NOT NULL DEFAULT (datetime('now')),
                updated_at TEXT NOT NULL DEFAULT (datetime('now'))
            );

            CREATE TABLE IF NOT EXISTS workout_sessions (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                week INTEGER NOT NULL,
                day INTEGER NOT NULL,
                day_name TEXT,
                started_at TEXT NOT NULL,
                finished_at TEXT,
                overall_notes TEXT,
                ai_analysis TEXT,
                weekly_analysis TEXT
            );

            CREATE TABLE IF NOT EXISTS set_logs (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                session_id INTEGER NOT NULL,
                exercise_id INTEGER NOT NULL,
                set_number INTEGER NOT NULL,
                set_type TEXT NOT NULL,
                target_weight REAL,
                actual_weight REAL,
                target_reps INTEGER,
                actual_reps INTEGER,
                rpe INTEGER,
                notes TEXT,
                completed INTEGER NOT NULL DEFAULT 1,
                completed_at TEXT NOT NULL,
                FOREIGN KEY(session_id) REFERENCES workout_sessions(id) ON DELETE CASCADE,
                FOREIGN KEY(exercise_id) REFERENCES exercises(id) ON DELETE RESTRICT,
                UNIQUE(session_id, exercise_id, set_number, set_type)
            );

            CREATE TABLE IF NOT EXISTS progression (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                exercise_id INTEGER NOT NULL,
                week INTEGER NOT NULL,
                day INTEGER NOT NULL,
                set_type TEXT NOT NULL,
                calculated_weight REAL NOT NULL,
                reason TEXT,
                created_at TEXT NOT NULL DEFAULT (datetime('now')),
                FOREIGN KEY(exercise_id) REFERENCES exercises(id) ON DELETE CASCADE
            );

            CREATE INDEX IF NOT EXISTS idx_set_logs_session_id ON set_logs(session_id);
            CREATE INDEX IF NOT EXISTS idx_set_logs_exercise_id ON set_logs(exercise_id);
            CREATE INDEX IF NOT EXISTS idx_workout_sessions_week_day ON workout_sessions(week, day);
            CREATE INDEX IF NOT EXISTS idx_progression_week_day ON progression(week, day);
            """
        )
        self.conn.commit()

    # -- exercises -------------------------------------------------------

    def upsert_exercise(self, exercise):
        """Insert or update a program Exercise and return its id."""
        normalized = canonical_key(exercise.name)
        if not normalized:
            raise ValueError("Exercise name cannot be empty")

        self.conn.execute(
            """
            INSERT INTO exercises (name, normalized_name, muscle_group, equipment, kind, notes, updated_at)
            VALUES (?, ?, ?, ?, ?, ?, datetime('now'))
            ON CONFLICT(normalized_name) DO UPDATE SET
                name = excluded.name,
                muscle_group = excluded.muscle_group,
                equipment = excluded.equipment,
                kind = excluded.kind,
                notes = excluded.notes,
                updated_at = datetime('now')
            """,
            (
                exercise.name,
                normalized,
                exercise.muscle_group,
                exercise.equipment,
                exercise.kind,
                exercise.notes,
            ),
        )
        return self.get_exercise_id(exercise.name)

    def seed_program(self, program):
        """Upsert every program exercise; returns the number seeded."""
        with self.transaction():
            for exercise in program.exercises.values():
                self.upsert_exercise(exercise)
        logger.info("Seeded %d exercise(s)", len(program.exercises))
        return len(program.exercises)

    def get_exercise_id(self, name):
        row = self.conn.execute(
            "SELECT id FROM exercises WHERE normalized_name = ?",
            (canonical_key(name),),
        ).fetchone()
        return int(row["id"]) if row else None

    # -- sessions --------------------------------------------------------

    def get_active_session(self):
        return _row(
            self.conn.execute(
                """
                SELECT id, week, day, started_at
                FROM workout_sessions
                WHERE finished_at IS NULL
                ORDER BY started_at DESC, id DESC
                LIMIT 1
                """
            )
        )

    def start_session(self, week, day, day_name=None):
        """Open a session for (week, day); only one may be active at a time."""
        active = self.get_active_session()
        if active:
            logger.warning("Cannot start W%sD%s: active session #%s exists", week, day, active["id"])
            raise ActiveSessionError(active["id"])

        with self.transaction():
            cursor = self.conn.execute(
                f"""
                INSERT INTO workout_sessions (week, day, day_name, started_at)
                VALUES (?, ?, ?, {NOW_SQL})
                """,
                (int(week), int(day), day_name),
            )
        session_id = int(cursor.lastrowid)
        logger.info("Started session #%s (W%sD%s)", session_id, week, day)
        return session_id

    def get_session(self, session_id):
        return _row(self.conn.execute("SELECT * FROM workout_sessions WHERE id = ?", (session_id,)))

    def finish_session(self, session_id, notes=None):
        """Stamp finished_at and notes; returns the updated session row."""
        with self.transaction():
            cursor = self.conn.execute(
                f"""
                UPDATE workout_sessions
                SET finished_at = {NOW_SQL}, overall_notes = ?
                WHERE id = ?
                """,
                (notes or None, session_id),
            )
        if cursor.rowcount == 0:
            raise SessionNotFoundError(f"Session #{session_id} not found")
        logger.info("Finished session #%s", session_id)
        return self.get_session(session_id)

    def delete_session(self, session_id):
        with self.transaction():
            self.conn.execute("DELETE FROM workout_sessions WHERE id = ?", (session_id,))

    # -- set logs --------------------------------------------------------

    def log_set(
        self,
        session_id,
        exercise_id,
        set_number,
        set_type,
        target_weight=None,
        actual_weight=None,
        target_reps=None,
        actual_reps=None,
        rpe=None,
        notes=None,
    ):
        """Insert or update one set; re-logging the same set updates its actuals."""
        if set_type not in SET_TYPES:
            raise InvalidSetLogError(f"Unknown set type: {set_type!r}")
        if self.get_session(session_id) is None:
            raise SessionNotFoundError(f"Session #{session_id} not found")

        actual_weight = parse_float(actual_weight) or 0.0
        target_weight = parse_float(target_weight) or 0.0
        if actual_weight < 0 or target_weight < 0:
            raise InvalidSetLogError("Weights cannot be negative")

        actual_reps = parse_target_reps(actual_reps) or 0
        target_reps = parse_target_reps(target_reps)
        if actual_reps < 0:
            raise InvalidSetLogError("Reps cannot be negative")

        rpe_value = parse_float(rpe)
        if rpe_value is not None:
            if not 1 <= rpe_value <= 10:
                raise InvalidSetLogError(f"RPE must be between 1 and 10, got {rpe}")
            rpe_value = int(round(rpe_value))

        with self.transaction():
            self.conn.execute(
                f"""
                INSERT INTO set_logs (
                    session_id,
                    exercise_id,
                    set_number,
                    set_type,
                    target_weight,
                    actual_weight,
                    target_reps,
                    actual_reps,
                    rpe,
                    notes,
                    completed,
                    completed_at
                )
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, 1, {NOW_SQL})
                ON CONFLICT(session_id, exercise_id, set_number, set_type) DO UPDATE SET
                    actual_weight = excluded.actual_weight,
                    actual_reps = excluded.actual_reps,
                    rpe = excluded.rpe,
                    notes = excluded.notes,
                    completed = 1,
                    completed_at = excluded.completed_at
                """,
                (
                    session_id,
                    exercise_id,
                    int(set_number),
                    set_type,
                    target_weight,
                    actual_weight,
                    target_reps,
                    actual_reps,
                    rpe_value,
                    notes or None,
                ),
            )
        logger.debug(
            "Logged set #%s (%s) exercise %s: %s x %s @ RPE %s",
            set_number, set_type, exercise_id, actual_weight, actual_reps, rpe_value,
        )

    def get_session_set_logs(self, session_id):
        return _rows(
            self.conn.execute(
                """
                SELECT sl.*, e.name AS exercise_name, e.muscle_group, ws.week, ws.day
                FROM set_logs sl
                JOIN exercises e ON sl.exercise_id = e.id
                JOIN workout_sessions ws ON sl.session_id = ws.id
                WHERE sl.session_id = ?
                ORDER BY sl.exercise_id, sl.set_number, sl.id
                """,
                (session_id,),
            )
        )

    def get_previous_day_data(self, day, exclude_session_id, limit=50):
        """Same-day sets from other finished sessions, newest first."""
        return _rows(
            self.conn.execute(
                """
                SELECT
                    sl.exercise_id,
                    e.name AS exercise_name,
                    sl.set_type,
                    sl.actual_weight,
                    sl.actual_reps,
                    sl.rpe,
                    sl.notes,
                    sl.completed_at,
                    ws.week,
                    ws.day,
                    ws.finished_at
                FROM set_logs sl
                JOIN workout_sessions ws ON sl.session_id = ws.id
                JOIN exercises e ON sl.exercise_id = e.id
                WHERE ws.day = ?
                  AND ws.id != ?
                  AND ws.finished_at IS NOT NULL
                ORDER BY ws.finished_at DESC, ws.id DESC, sl.id
                LIMIT ?
                """,
                (day, exclude_session_id, limit),
            )
        )

    def get_week_sessions(self, week):
        return _rows(
            self.conn.execute(
                """
                SELECT * FROM workout_sessions
                WHERE week = ? AND finished_at IS NOT NULL
                ORDER BY day, id
                """,
                (week,),
            )
        )

    def get_week_set_logs(self, week):
        return _rows(
            self.conn.execute(
                """
                SELECT sl.*, e.name AS exercise_name, e.muscle_group, ws.week, ws.day
                FROM set_logs sl
                JOIN exercises e ON sl.exercise_id = e.id
                JOIN workout_sessions ws ON sl.session_id = ws.id
                WHERE ws.week = ? AND ws.finished_at IS NOT NULL
                ORDER BY ws.day, sl.exercise_id, sl.set_number, sl.id
                """,
                (week,),
            )
        )

    def get_previous_weeks_data(self, week, limit=150):
        return _rows(
            self.conn.execute(
                """
                SELECT
                    sl.exercise_id,
                    e.name AS exercise_name,
                    sl.set_type,
                    sl.actual_weight,
                    sl.actual_reps,
                    sl.rpe,
                    sl.notes,
                    ws.week,
                    ws.day,
                    ws.finished_at
                FROM set_logs sl
                JOIN workout_sessions ws ON sl.session_id = ws.id
                JOIN exercises e ON sl.exercise_id = e.id
                WHERE ws.week < ? AND ws.finished_at IS NOT NULL
                ORDER BY ws.week DESC, ws.day, sl.id
                LIMIT ?
                """,
                (week, limit),
            )
        )

    def is_day_finished(self, week, day):
        row = self.conn.execute(
            """
            SELECT id FROM workout_sessions
            WHERE week = ? AND day = ? AND finished_at IS NOT NULL
            LIMIT 1
            """,
            (week, day),
        ).fetchone()
        return row is not None

    def get_history(self, limit=20, offset=0):
        """Finished sessions, newest first, with total and completed set counts."""
        sessions = _rows(
            self.conn.execute(
                """
                SELECT
                    ws.id,
                    ws.week,
                    ws.day,
                    ws.day_name,
                    ws.started_at,
                    ws.finished_at,
                    ws.overall_notes,
                    COUNT(sl.id) AS total_sets,
                    COALESCE(SUM(CASE WHEN sl.completed THEN 1 ELSE 0 END), 0) AS completed_sets
                FROM workout_sessions ws
                LEFT JOIN set_logs sl ON ws.id = sl.session_id
                WHERE ws.finished_at IS NOT NULL
                GROUP BY ws.id
                ORDER BY ws.finished_at DESC, ws.id DESC
                LIMIT ? OFFSET ?
                """,
                (limit, offset),
            )
        )
        logger.debug("History returned %d session(s) (offset %d)", len(sessions), offset)
        return sessions

    def get_exercise_history(self, exercise_id, limit=50):
        """Sets of one exercise from finished sessions, newest session first."""
        return _rows(
            self.conn.execute(
                """
                SELECT sl.*, e.name AS exercise_name, ws.week, ws.day, ws.finished_at
                FROM set_logs sl
                JOIN workout_sessions ws ON sl.session_id = ws.id
                JOIN exercises e ON sl.exercise_id = e.id
                WHERE sl.exercise_id = ? AND ws.finished_at IS NOT NULL
                ORDER BY ws.finished_at DESC, ws.id DESC, sl.set_number
                LIMIT ?
                """,
                (exercise_id, limit),
            )
        )

    def get_analysis(self, session_id):
        """
        Stored analyses of one session.

        Returns:
            dict with keys: analysis, weekly_analysis (decoded JSON or None)
        """
        row = self.conn.execute(
            "SELECT ai_analysis, weekly_analysis FROM workout_sessions WHERE id = ?",
            (session_id,),
        ).fetchone()
        if row is None:
            raise SessionNotFoundError(f"Session #{session_id} not found")
        return {
            "analysis": json.loads(row["ai_analysis"]) if row["ai_analysis"] else None,
            "weekly_analysis": json.loads(row["weekly_analysis"]) if row["weekly_analysis"] else None,
        }

    # -- analysis and progression ---------------------------------------
    # Writers below do not commit; wrap them in transaction().

    def save_analysis(self, session_id, analysis_json):
        self.conn.execute(
            "UPDATE workout_sessions SET ai_analysis = ? WHERE id = ?",
            (analysis_json, session_id),
        )

    def save_weekly_analysis(self, session_id, weekly_json):
        self.conn.execute(
            "UPDATE workout_sessions SET weekly_analysis = ? WHERE id = ?",
            (weekly_json, session_id),
        )

    def replace_progression(self, exercise_id, week, day, weights, reason):
        """
        Replace all progression rows of one exercise for (week, day).

        Args:
            weights: Dict[set_type, weight]; non-positive weights are skipped
        Returns:
            Number of rows inserted
        """
        self.conn.execute(
            "DELETE FROM progression WHERE exercise_id = ? AND week = ? AND day = ?",
            (exercise_id, week, day),
        )
        inserted = 0
        for set_type, weight in weights.items():
            if weight is None or weight <= 0:
                continue
            self.conn.execute(
                f"""
                INSERT INTO progression (exercise_id, week, day, set_type, calculated_weight, reason, created_at)
                VALUES (?, ?, ?, ?, ?, ?, {NOW_SQL})
                """,
                (exercise_id, week, day, set_type, float(weight), reason),
            )
            inserted += 1
        return inserted

    def get_progressions(self, week, day):
        return _rows(
            self.conn.execute(
                """
                SELECT p.exercise_id, e.name AS exercise_name, p.week, p.day, p.set_type,
                       p.calculated_weight, p.reason, p.created_at
                FROM progression p
                JOIN exercises e ON p.exercise_id = e.id
                WHERE p.week = ? AND p.day = ?
                ORDER BY p.created_at DESC, p.id DESC
                """,
                (week, day),
            )
        )

    # -- position and plan ----------------------------------------------

    def get_current_position(self, program):
        """Next workout to do, derived from the last finished session."""
        last = _row(
            self.conn.execute(
                """
                SELECT week, day, finished_at FROM workout_sessions
                WHERE finished_at IS NOT NULL
                ORDER BY finished_at DESC, id DESC
                LIMIT 1
                """
            )
        )
        if last:
            week, day = program.next_position(last["week"], last["day"])
        else:
            week, day = 1, program.days[0].day if program.days else 1
        return {"week": week, "day": day, "active_session": self.get_active_session()}

    def _last_results(self, exercise_ids):
        if not exercise_ids:
            return {}
        placeholders = ",".join("?" for _ in exercise_ids)
        rows = self.conn.execute(
            f"""
            SELECT sl.exercise_id, sl.set_type, sl.actual_weight, sl.actual_reps, sl.rpe,
                   sl.notes, ws.week, ws.day, ws.finished_at
            FROM set_logs sl
            JOIN workout_sessions ws ON sl.session_id = ws.id
            WHERE sl.exercise_id IN ({placeholders}) AND ws.finished_at IS NOT NULL
            ORDER BY ws.finished_at DESC, ws.id DESC, sl.set_number
            """,
            list(exercise_ids),
        ).fetchall()
        latest = {}
        for row in rows:
            latest.setdefault((row["exercise_id"], row["set_type"]), dict(row))
        return latest

    def get_day_plan(self, program, week, day):
        """
        Program prescription for (week, day) with progression weights applied.

        Each set carries target_weight (progression row, else program weight),
        progression_reason and last_result for its set type. Warm-up targets
        are derived from the exercise's primary working weight.
        """
        workout_day = program.get_day(day)
        if workout_day is None:
            raise ValueError(f"Workout day not found: {day}")

        progression_map = {}
        for row in self.get_progressions(week, day):
            progression_map.setdefault((row["exercise_id"], row["set_type"]), row)

        exercise_ids = {
            day_exercise.name: self.get_exercise_id(day_exercise.name)
            for day_exercise in workout_day.exercises
        }
        last_results = self._last_results([i for i in exercise_ids.values() if i is not None])

        exercises = []
        for day_exercise in workout_day.exercises:
            exercise_id = exercise_ids[day_exercise.name]
            info = program.get_exercise(day_exercise.name)
            sets = []
            for prescription in day_exercise.sets:
                progression = progression_map.get((exercise_id, prescription.set_type))
                last = last_results.get((exercise_id, prescription.set_type))
                sets.append(
                    {
                        "set_type": prescription.set_type,
                        "reps": prescription.reps,
                        "rpe": prescription.rpe,
                        "target_weight": (
                            progression["calculated_weight"] if progression else prescription.weight
                        ),
                        "progression_reason": progression["reason"] if progression else None,
                        "last_result": (
                            {
                                "weight": last["actual_weight"],
                                "reps": last["actual_reps"],
                                "rpe": last["rpe"],
                                "notes": last["notes"],
                                "date": last["finished_at"],
                            }
                            if last
                            else None
                        ),
                    }
                )

            warmups = calculate_warmup_weights(
                primary_working_weight(sets), day_exercise.name, program
            )
            warmup_index = 0
            for set_entry in sets:
                if set_entry["set_type"] != "warmup":
                    continue
                key = "warmup1" if warmup_index == 0 else "warmup2"
                set_entry["target_weight"] = warmups[key]
                warmup_index += 1

            exercises.append(
                {
                    "exercise_id": exercise_id,
                    "name": day_exercise.name,
                    "order": day_exercise.order,
                    "muscle_group": info.muscle_group if info else "",
                    "notes": info.notes if info else "",
                    "superset_with": day_exercise.superset_with,
                    "sets": sets,
                }
            )

        logger.info(
            "Loaded W%sD%s (%s): %d exercise(s), %d progression(s)",
            week, day, workout_day.name, len(exercises), len(progression_map),
        )
        return {"week": week, "day": day, "day_name": workout_day.name, "exercises": exercises}

    # -- maintenance -----------------------------------------------------

    def reset(self, program):
        """Clear workout data and reseed week-1 progression from the program."""
        with self.transaction():
            self.conn.execute("DELETE FROM set_logs")
            self.conn.execute("DELETE FROM workout_sessions")
            self.conn.execute("DELETE FROM progression")
            for exercise in program.exercises.values():
                self.upsert_exercise(exercise)
            for workout_day in program.days:
                for day_exercise in workout_day.exercises:
                    exercise_id = self.get_exercise_id(day_exercise.name)
                    if exercise_id is None:
                        continue
                    weights = {}
                    for prescription in day_exercise.sets:
                        if prescription.set_type != "warmup" and prescription.weight > 0:
                            weights.setdefault(prescription.set_type, prescription.weight)
                    if weights:
                        self.replace_progression(exercise_id, 1, workout_day.day, weights, RESET_REASON)
        logger.info("All workout data cleared, week 1 progressions reseeded")

    def count_summary(self):
        """Return high-level row counts for quick sanity checks."""
        counts = {}
        for table in ("exercises", "workout_sessions", "set_logs", "progression"):
            counts[table] = int(
                self.conn.execute(f"SELECT COUNT(*) AS c FROM {table}").fetchone()["c"]
            )
        return counts
