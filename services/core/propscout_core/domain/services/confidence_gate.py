"""Confidence gate for AI-produced listing statistics.

Decides whether a stats batch may be confirmed automatically. Each required
field's confidence is resolved through a fixed lookup chain and the batch
passes only if every required field is at least MEDIUM. Absence is never
sufficient: an unresolvable field counts as LOW.
"""

import enum
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Mapping, Optional


class Confidence(str, enum.Enum):
    """AI confidence level for a single value."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"

    @classmethod
    def parse(cls, value: Any) -> Optional["Confidence"]:
        """Parse a raw label, or None if it is not a recognised level."""
        if isinstance(value, cls):
            return value
        if not isinstance(value, str):
            return None
        try:
            return cls(value.strip().lower())
        except ValueError:
            return None

    @property
    def sufficient(self) -> bool:
        return self in (Confidence.MEDIUM, Confidence.HIGH)


# Fields that must be medium/high for auto-confirmation
REQUIRED_FIELDS: tuple[str, ...] = (
    "commute_total_minutes",
    "commute_walk_minutes",
    "commute_mode",
    "nearest_station_distance_m",
    "nearest_station_name",
    "supermarket_distance_m",
    "supermarket_name",
    "green_space_distance_m",
    "green_space_name",
    "safety_score",
)

# Expected value types for the required fields
INT_FIELDS = frozenset(
    {
        "commute_total_minutes",
        "commute_walk_minutes",
        "nearest_station_distance_m",
        "supermarket_distance_m",
        "green_space_distance_m",
        "safety_score",
    }
)
STR_FIELDS = frozenset(REQUIRED_FIELDS) - INT_FIELDS

AUTO_CONFIRM_NOTE = "Auto-confirmed (required fields medium/high)"


def resolve_confidence(
    field_name: str,
    fields: Mapping[str, Any],
    required_confidence: Optional[Mapping[str, Any]] = None,
) -> Confidence:
    """Resolve the confidence of one required field.

    Lookup order: the field's own annotation, then the batch-level
    ``required_confidence`` map, then LOW. A field label that is present but
    not a recognised level resolves to LOW; only a missing or null label
    falls through to the batch map.
    """
    annotation = fields.get(field_name) if isinstance(fields, Mapping) else None
    if isinstance(annotation, Mapping) and annotation.get("confidence") is not None:
        return Confidence.parse(annotation["confidence"]) or Confidence.LOW

    if isinstance(required_confidence, Mapping):
        parsed = Confidence.parse(required_confidence.get(field_name))
        if parsed is not None:
            return parsed

    return Confidence.LOW


@dataclass
class GateDecision:
    """Result of running the gate over a stats batch."""

    auto_confirm: bool
    confidences: dict[str, Confidence] = field(default_factory=dict)

    @property
    def insufficient_fields(self) -> list[str]:
        return [name for name, c in self.confidences.items() if not c.sufficient]


def evaluate_gate(
    fields: Mapping[str, Any],
    required_confidence: Optional[Mapping[str, Any]] = None,
) -> GateDecision:
    """Decide whether a stats batch may be auto-confirmed."""
    confidences = {
        name: resolve_confidence(name, fields, required_confidence)
        for name in REQUIRED_FIELDS
    }
    return GateDecision(
        auto_confirm=all(c.sufficient for c in confidences.values()),
        confidences=confidences,
    )


def build_auto_confirmed(
    raw: Mapping[str, Any],
    required_confidence: Optional[dict] = None,
    required_source: Optional[dict] = None,
    now: Optional[datetime] = None,
) -> dict[str, Any]:
    """Build the confirmed stats record from a raw stats record.

    Only the required fields are carried over; optional fields stay on the raw
    artifact.
    """
    record = {name: raw.get(name) for name in REQUIRED_FIELDS}
    record.update(
        required_confidence=required_confidence,
        required_source=required_source,
        notes=AUTO_CONFIRM_NOTE,
        confirmed_by_user=False,
        confirmed_at=now or datetime.now(timezone.utc),
    )
    return record


def validate_required_stats(draft: Mapping[str, Any]) -> list[str]:
    """Return the required fields that are missing or mistyped in a user draft."""
    invalid = []
    for name in REQUIRED_FIELDS:
        value = draft.get(name) if isinstance(draft, Mapping) else None
        if name in INT_FIELDS:
            if isinstance(value, bool) or not isinstance(value, (int, float)):
                invalid.append(name)
            elif isinstance(value, float) and not value.is_integer():
                invalid.append(name)
        elif not isinstance(value, str) or not value.strip():
            invalid.append(name)
    return invalid
