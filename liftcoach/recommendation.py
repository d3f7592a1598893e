"""
Typed next-session recommendation for one exercise.
"""

from dataclasses import dataclass, replace

from liftcoach.weights import format_load, parse_float


WEIGHT_FIELDS = (
    ("heavy", "heavy_weight"),
    ("backoff", "backoff_weight"),
    ("working", "working_weight"),
    ("dropset", "dropset_weight"),
)
FIELD_BY_SET_TYPE = dict(WEIGHT_FIELDS)


@dataclass(frozen=True)
class Recommendation:
    """Per-set-type target weights; None means no change recommended."""

    heavy_weight: float = None
    backoff_weight: float = None
    working_weight: float = None
    dropset_weight: float = None
    reason: str = ""

    @classmethod
    def from_payload(cls, payload):
        """
        Build from an untyped model payload.

        Numeric strings are coerced; a value that is present but not numeric
        is dropped and noted in the reason instead of becoming zero.
        """
        values = {}
        ignored = []
        for _set_type, field_name in WEIGHT_FIELDS:
            raw = payload.get(field_name)
            if raw is None:
                continue
            number = parse_float(raw)
            if number is None:
                ignored.append(f"{field_name}={raw!r}")
                continue
            values[field_name] = number

        reason = payload.get("reason")
        reason = "" if reason is None else str(reason).strip()
        if ignored:
            reason = _append(reason, f"[Ignored non-numeric: {', '.join(ignored)}]")
        return cls(reason=reason, **values)

    def get(self, set_type):
        return getattr(self, FIELD_BY_SET_TYPE[set_type])

    def weights(self):
        """(set_type, weight) pairs for the fields that are present."""
        return [
            (set_type, getattr(self, field_name))
            for set_type, field_name in WEIGHT_FIELDS
            if getattr(self, field_name) is not None
        ]

    def has_weights(self):
        return bool(self.weights())

    def with_note(self, note):
        return replace(self, reason=_append(self.reason, note))

    def to_dict(self):
        data = {
            field_name: getattr(self, field_name)
            for _set_type, field_name in WEIGHT_FIELDS
            if getattr(self, field_name) is not None
        }
        data["reason"] = self.reason
        return data

    def describe(self):
        parts = [f"{set_type}={format_load(weight)}" for set_type, weight in self.weights()]
        return ", ".join(parts) if parts else "no change"


def _append(reason, note):
    return f"{reason} {note}".strip() if reason else note
