"""
Immutable program configuration: exercises, equipment, per-day set layout.

Loaded once from program.yaml at startup and passed explicitly to the
signal extractor, validator and persistence layer.
"""

import os
import re
from dataclasses import dataclass, field
from types import MappingProxyType

import yaml


SET_TYPES = ("warmup", "heavy", "backoff", "working", "dropset")
WEIGHTED_SET_TYPES = ("heavy", "backoff", "working", "dropset")

DEFAULT_EQUIPMENT = "machine"
DEFAULT_EQUIPMENT_INCREMENTS = {
    "dumbbell": {"increment": 1.0, "minimum": 4.0},
    "barbell": {"increment": 10.0, "minimum": 0.0},
    "machine": {"increment": 5.0, "minimum": 0.0},
}
DEFAULT_MAX_WEEKLY_INCREASE = {"compound": 5.0, "isolation": 2.0}


def canonical_key(name):
    """Return a stable lookup key for an exercise name."""
    return re.sub(r"\s+", " ", str(name or "").strip().lower())


@dataclass(frozen=True)
class Exercise:
    name: str
    muscle_group: str = ""
    equipment: str = DEFAULT_EQUIPMENT
    kind: str = "compound"
    max_weekly_increase: float = None
    notes: str = ""


@dataclass(frozen=True)
class SetPrescription:
    set_type: str
    reps: str
    rpe: str = ""
    weight: float = 0.0


@dataclass(frozen=True)
class DayExercise:
    name: str
    order: int
    sets: tuple = ()
    superset_with: str = None

    @property
    def set_types(self):
        """Ordered, de-duplicated non-warmup set types of this prescription."""
        ordered = []
        for prescription in self.sets:
            if prescription.set_type == "warmup":
                continue
            if prescription.set_type not in ordered:
                ordered.append(prescription.set_type)
        return tuple(ordered)


@dataclass(frozen=True)
class WorkoutDay:
    day: int
    name: str
    exercises: tuple = ()


@dataclass(frozen=True)
class ProgramConfig:
    """Static training program and the guard-rail tables derived from it."""

    weeks: int
    block_length: int
    exercises: MappingProxyType
    days: tuple
    equipment_increments: MappingProxyType = field(
        default_factory=lambda: MappingProxyType(dict(DEFAULT_EQUIPMENT_INCREMENTS))
    )
    max_weekly_increase: MappingProxyType = field(
        default_factory=lambda: MappingProxyType(dict(DEFAULT_MAX_WEEKLY_INCREASE))
    )

    @classmethod
    def from_dict(cls, data):
        data = data or {}
        exercises = {}
        for entry in data.get("exercises", []) or []:
            exercise = Exercise(
                name=str(entry["name"]).strip(),
                muscle_group=entry.get("muscle_group") or "",
                equipment=(entry.get("equipment") or DEFAULT_EQUIPMENT).lower(),
                kind=(entry.get("type") or "compound").lower(),
                max_weekly_increase=_optional_float(entry.get("max_weekly_increase")),
                notes=entry.get("notes") or "",
            )
            exercises[canonical_key(exercise.name)] = exercise

        days = []
        for day_entry in data.get("days", []) or []:
            day_exercises = []
            for order, ex_entry in enumerate(day_entry.get("exercises", []) or [], start=1):
                sets = tuple(
                    SetPrescription(
                        set_type=str(set_entry["type"]).lower(),
                        reps=str(set_entry.get("reps", "")),
                        rpe=str(set_entry.get("rpe", "") or ""),
                        weight=float(set_entry.get("weight") or 0),
                    )
                    for set_entry in ex_entry.get("sets", []) or []
                )
                for prescription in sets:
                    if prescription.set_type not in SET_TYPES:
                        raise ValueError(
                            f"Unknown set type '{prescription.set_type}' for {ex_entry.get('name')}"
                        )
                day_exercises.append(
                    DayExercise(
                        name=str(ex_entry["name"]).strip(),
                        order=int(ex_entry.get("order") or order),
                        sets=sets,
                        superset_with=ex_entry.get("superset_with"),
                    )
                )
            days.append(
                WorkoutDay(
                    day=int(day_entry["day"]),
                    name=day_entry.get("name") or f"Day {day_entry['day']}",
                    exercises=tuple(day_exercises),
                )
            )

        increments = dict(DEFAULT_EQUIPMENT_INCREMENTS)
        for equipment, rule in (data.get("equipment_increments") or {}).items():
            increments[str(equipment).lower()] = {
                "increment": float(rule.get("increment") or 1.0),
                "minimum": float(rule.get("minimum") or 0.0),
            }

        caps = dict(DEFAULT_MAX_WEEKLY_INCREASE)
        caps.update({k: float(v) for k, v in (data.get("max_weekly_increase") or {}).items()})

        return cls(
            weeks=int(data.get("weeks") or 8),
            block_length=int(data.get("block_length") or 4),
            exercises=MappingProxyType(exercises),
            days=tuple(sorted(days, key=lambda d: d.day)),
            equipment_increments=MappingProxyType(increments),
            max_weekly_increase=MappingProxyType(caps),
        )

    # -- lookups ---------------------------------------------------------

    def get_exercise(self, name):
        return self.exercises.get(canonical_key(name))

    def get_day(self, day):
        for workout_day in self.days:
            if workout_day.day == day:
                return workout_day
        return None

    @property
    def last_day(self):
        return self.days[-1].day if self.days else 3

    def allowed_set_types(self, exercise_name, day):
        """ExerciseSetConfig lookup; None when (exercise, day) has no entry."""
        workout_day = self.get_day(day)
        if workout_day is None:
            return None
        key = canonical_key(exercise_name)
        for day_exercise in workout_day.exercises:
            if canonical_key(day_exercise.name) == key:
                return day_exercise.set_types
        return None

    def days_for_exercise(self, exercise_name):
        key = canonical_key(exercise_name)
        return tuple(
            workout_day.day
            for workout_day in self.days
            if any(canonical_key(ex.name) == key for ex in workout_day.exercises)
        )

    def other_days_for_exercise(self, exercise_name, current_day):
        """Other program days in the same week that repeat this exercise."""
        return tuple(d for d in self.days_for_exercise(exercise_name) if d != current_day)

    def equipment_for(self, exercise_name):
        exercise = self.get_exercise(exercise_name)
        equipment = exercise.equipment if exercise else DEFAULT_EQUIPMENT
        if equipment not in self.equipment_increments:
            return DEFAULT_EQUIPMENT
        return equipment

    def rounding_rule(self, exercise_name):
        return self.equipment_increments[self.equipment_for(exercise_name)]

    def weekly_increase_cap(self, exercise_name):
        """Hard cap on absolute weekly increase; unknown names get the compound cap."""
        exercise = self.get_exercise(exercise_name)
        if exercise is None:
            return self.max_weekly_increase["compound"]
        if exercise.max_weekly_increase is not None:
            return exercise.max_weekly_increase
        return self.max_weekly_increase.get(exercise.kind, self.max_weekly_increase["compound"])

    def next_week(self, week):
        return week + 1 if week < self.weeks else 1

    def next_position(self, week, day):
        """Week/day of the workout that follows (week, day)."""
        if day < self.last_day:
            return week, day + 1
        return self.next_week(week), self.days[0].day if self.days else 1

    def block_week(self, week):
        return ((int(week) - 1) % self.block_length) + 1


def _optional_float(value):
    if value is None or value == "":
        return None
    return float(value)


def load_program(path="program.yaml"):
    """Load program.yaml into a ProgramConfig."""
    if not os.path.exists(path):
        raise FileNotFoundError(f"Program file not found: {path}")
    with open(path, "r", encoding="utf-8") as f:
        data = yaml.safe_load(f) or {}
    return ProgramConfig.from_dict(data)
