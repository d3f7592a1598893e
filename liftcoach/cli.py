"""
Command-line interface for logging workouts and running progression analysis.

Usage:
    liftcoach init-db
    liftcoach status
    liftcoach plan 2 1
    liftcoach start 2 1
    liftcoach log-set 5 "Leg Press" 1 heavy --weight 140 --reps 6 --rpe 8
    liftcoach finish 5 --notes "Knees felt fine"
    liftcoach history --limit 10
    liftcoach exercise-history "Leg Press"
    liftcoach analysis 5
    liftcoach reset --yes
"""

import argparse
import json
import logging
import sys

from liftcoach.analysis_service import WorkoutAnalysisService
from liftcoach.coach import ProgressionCoach
from liftcoach.errors import LiftcoachError
from liftcoach.logging_setup import setup_logging
from liftcoach.program import SET_TYPES, load_program
from liftcoach.settings import get_api_key, load_config
from liftcoach.weights import format_load
from liftcoach.workout_db import WorkoutDB


logger = logging.getLogger(__name__)


def parse_args(argv=None):
    parser = argparse.ArgumentParser(
        description="Log workouts and get AI-guarded progression weights."
    )
    parser.add_argument(
        "--config",
        default="config.yaml",
        help="Path to config.yaml (default: config.yaml)",
    )
    parser.add_argument(
        "--db-path",
        default=None,
        help="Path to SQLite database file (overrides config value)",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    subparsers.add_parser("init-db", help="Create tables and seed program exercises")
    subparsers.add_parser("status", help="Show the next workout and row counts")

    plan = subparsers.add_parser("plan", help="Show targets for a week/day")
    plan.add_argument("week", type=int)
    plan.add_argument("day", type=int)

    start = subparsers.add_parser("start", help="Start a session")
    start.add_argument("week", type=int)
    start.add_argument("day", type=int)

    log_set = subparsers.add_parser("log-set", help="Log or update one set")
    log_set.add_argument("session_id", type=int)
    log_set.add_argument("exercise", help="Exercise name as in program.yaml")
    log_set.add_argument("set_number", type=int)
    log_set.add_argument("set_type", choices=SET_TYPES)
    log_set.add_argument("--weight", type=float, default=None, help="Actual weight")
    log_set.add_argument("--reps", type=int, default=None, help="Actual reps")
    log_set.add_argument("--rpe", type=int, default=None, help="RPE 1-10")
    log_set.add_argument("--target-weight", type=float, default=None)
    log_set.add_argument("--target-reps", default=None, help="Rep target, e.g. 8-10")
    log_set.add_argument("--notes", default=None)

    finish = subparsers.add_parser("finish", help="Finish a session and run analysis")
    finish.add_argument("session_id", type=int)
    finish.add_argument("--notes", default=None, help="Session notes for the coach")

    history = subparsers.add_parser("history", help="List finished sessions, newest first")
    history.add_argument("--limit", type=int, default=20)
    history.add_argument("--offset", type=int, default=0)

    exercise_history = subparsers.add_parser(
        "exercise-history", help="Show logged sets of one exercise"
    )
    exercise_history.add_argument("exercise", help="Exercise name as in program.yaml")
    exercise_history.add_argument("--limit", type=int, default=50)

    analysis = subparsers.add_parser("analysis", help="Show the stored analysis of a session")
    analysis.add_argument("session_id", type=int)

    reset = subparsers.add_parser("reset", help="Delete all workout data and reseed week 1")
    reset.add_argument("--yes", action="store_true", help="Skip the confirmation prompt")

    return parser.parse_args(argv)


def open_database(config, program, db_path=None):
    db = WorkoutDB(db_path or config["database"]["path"])
    db.init_schema()
    db.seed_program(program)
    return db


def print_plan(plan):
    print(f"\nWeek {plan['week']}, Day {plan['day']}: {plan['day_name']}")
    print("=" * 60)
    for exercise in plan["exercises"]:
        superset = f" (superset with {exercise['superset_with']})" if exercise["superset_with"] else ""
        print(f"\n{exercise['order']}. {exercise['name']}{superset}")
        for number, set_entry in enumerate(exercise["sets"], start=1):
            line = (
                f"   {number}. {set_entry['set_type']:<8} {format_load(set_entry['target_weight']) or '-':>6}"
                f" x {set_entry['reps']}"
            )
            if set_entry["rpe"]:
                line += f" @ RPE {set_entry['rpe']}"
            last = set_entry["last_result"]
            if last:
                line += f"   last: {format_load(last['weight'])} x {last['reps']}"
            print(line)
            if set_entry["progression_reason"] and set_entry["set_type"] != "warmup":
                print(f"      -> {set_entry['progression_reason']}")


def print_finish_result(result):
    if result["ai_analysis_unavailable"]:
        print("\n⚠ AI analysis unavailable - next targets hold current weights.")

    analysis = result.get("analysis") or {}
    if analysis.get("analysis"):
        print("\n" + "=" * 60)
        print("SESSION ANALYSIS")
        print("=" * 60)
        print(analysis["analysis"])

    next_workout = analysis.get("next_workout") or {}
    if next_workout:
        print("\nNext session:")
        for name, recommendation in next_workout.items():
            weights = ", ".join(
                f"{key.replace('_weight', '')} {format_load(value)}"
                for key, value in recommendation.items()
                if key != "reason"
            )
            print(f"  {name}: {weights or 'no change'}")
            if recommendation.get("reason"):
                print(f"    {recommendation['reason']}")

    weekly = result.get("weekly_analysis")
    if weekly:
        print("\n" + "=" * 60)
        print("WEEK SUMMARY")
        print("=" * 60)
        print(weekly.get("week_summary", ""))
        if weekly.get("next_week_strategy"):
            print(f"\nStrategy: {weekly['next_week_strategy']}")

    print(f"\n✓ Saved {result['progressions_saved']} progression row(s)")


def run(args, config, program):
    db = open_database(config, program, args.db_path)
    try:
        if args.command == "init-db":
            counts = db.count_summary()
            print(f"✓ Database ready: {db.db_path}")
            print(json.dumps(counts, indent=2))

        elif args.command == "status":
            position = db.get_current_position(program)
            print(f"Next workout: Week {position['week']}, Day {position['day']}")
            active = position["active_session"]
            if active:
                print(
                    f"Active session: #{active['id']} (W{active['week']}D{active['day']}, "
                    f"started {active['started_at']})"
                )
            print(json.dumps(db.count_summary(), indent=2))

        elif args.command == "plan":
            print_plan(db.get_day_plan(program, args.week, args.day))

        elif args.command == "start":
            workout_day = program.get_day(args.day)
            if workout_day is None:
                print(f"❌ Unknown day: {args.day}")
                return 1
            session_id = db.start_session(args.week, args.day, workout_day.name)
            print(f"✓ Started session #{session_id} (W{args.week}D{args.day} {workout_day.name})")

        elif args.command == "log-set":
            exercise_id = db.get_exercise_id(args.exercise)
            if exercise_id is None:
                print(f"❌ Unknown exercise: {args.exercise}")
                return 1
            db.log_set(
                args.session_id,
                exercise_id,
                args.set_number,
                args.set_type,
                target_weight=args.target_weight,
                actual_weight=args.weight,
                target_reps=args.target_reps,
                actual_reps=args.reps,
                rpe=args.rpe,
                notes=args.notes,
            )
            print(f"✓ Logged {args.exercise} set {args.set_number} ({args.set_type})")

        elif args.command == "finish":
            coach = ProgressionCoach(get_api_key(config), config, program)
            if coach.client is None:
                logger.warning(
                    "%s not set; progression will hold current weights",
                    config["claude"]["api_key_env"],
                )
            service = WorkoutAnalysisService(
                db,
                coach,
                program,
                daily_history_limit=config["history"]["daily_limit"],
                weekly_history_limit=config["history"]["weekly_limit"],
            )
            print_finish_result(service.finish_workout(args.session_id, args.notes))

        elif args.command == "history":
            sessions = db.get_history(args.limit, args.offset)
            if not sessions:
                print("No finished sessions yet.")
            for session in sessions:
                print(
                    f"#{session['id']} W{session['week']}D{session['day']} "
                    f"{session['day_name'] or ''} - finished {session['finished_at']}, "
                    f"{session['completed_sets']}/{session['total_sets']} sets"
                )

        elif args.command == "exercise-history":
            exercise_id = db.get_exercise_id(args.exercise)
            if exercise_id is None:
                print(f"❌ Unknown exercise: {args.exercise}")
                return 1
            rows = db.get_exercise_history(exercise_id, args.limit)
            if not rows:
                print(f"No finished sets for {args.exercise}.")
            for row in rows:
                line = (
                    f"W{row['week']}D{row['day']} set {row['set_number']} {row['set_type']:<8} "
                    f"{format_load(row['actual_weight']) or '-':>6} x {row['actual_reps']}"
                )
                if row["rpe"]:
                    line += f" @ RPE {row['rpe']}"
                print(line)

        elif args.command == "analysis":
            stored = db.get_analysis(args.session_id)
            if stored["analysis"] is None and stored["weekly_analysis"] is None:
                print(f"No analysis stored for session #{args.session_id}.")
            else:
                print(json.dumps(stored, indent=2))

        elif args.command == "reset":
            if not args.yes:
                answer = input("Delete all sessions and progression? (yes/no): ").strip().lower()
                if answer not in ["yes", "y"]:
                    print("Aborted.")
                    return 0
            db.reset(program)
            print("✓ Reset to Week 1, Day 1")
    finally:
        db.close()
    return 0


def main(argv=None):
    args = parse_args(argv)
    config = load_config(args.config)
    setup_logging(config["logging"]["level"], config["logging"].get("file"))

    try:
        program = load_program(config["program"]["path"])
        return run(args, config, program)
    except (LiftcoachError, FileNotFoundError, ValueError) as exc:
        print(f"\n❌ Error: {exc}")
        return 1


if __name__ == "__main__":
    sys.exit(main())
