"""
Award types: the effects a rule can grant.

An Award is one of four frozen dataclasses (a closed union):

    BonusPoints(value)                      +N points
    Multiplier(value, duration, ...)        points multiplier, optionally expiring
    UnlockReward(reward)                    unlock a reward by code
    ApplyTag(tag, expires_days)             add a customer tag

An AwardGroup bundles awards granted together, optionally tied to a location.
Groups within one plan are mutually exclusive alternatives.

Serialized form (stored in PendingAwardChoice.award_options):

    [
        {"location_id": "LOC-A", "awards": [{"type": "unlock_reward", "reward_id": "R1"}]},
        {"location_id": null, "awards": [{"type": "bonus_points", "value": 100}]},
    ]
"""

from dataclasses import dataclass
from datetime import datetime, time, timedelta
from decimal import Decimal, InvalidOperation
from typing import ClassVar, Union

from django.utils import timezone
from django.utils.dateparse import parse_date, parse_datetime

from lootman.exceptions import ConfigurationError


MULTIPLIER_DURATIONS = ("permanent", "days", "until_date")

# Enrollment.points_multiplier is DecimalField(max_digits=6, decimal_places=2)
MULTIPLIER_MAX = Decimal("9999.99")
MULTIPLIER_STEP = Decimal("0.01")

# Upper bound for point values and day counts
MAX_AWARD_INT = 999_999_999


@dataclass(frozen=True)
class BonusPoints:
    value: int

    type: ClassVar[str] = "bonus_points"

    def to_dict(self) -> dict:
        return {"type": self.type, "value": self.value}

    def describe(self) -> str:
        return f"+{self.value} bonus points"


@dataclass(frozen=True)
class Multiplier:
    value: Decimal
    duration: str = "permanent"
    duration_days: int | None = None
    until: datetime | None = None

    type: ClassVar[str] = "multiplier"

    def to_dict(self) -> dict:
        d = {"type": self.type, "value": str(self.value), "duration": self.duration}
        if self.duration_days is not None:
            d["duration_days"] = self.duration_days
        if self.until is not None:
            d["until"] = self.until.isoformat()
        return d

    def expires_at(self, now: datetime) -> datetime | None:
        """Expiry of this multiplier if granted at ``now`` (None = permanent)."""
        if self.duration == "days":
            return now + timedelta(days=self.duration_days)
        if self.duration == "until_date":
            return self.until
        return None

    def describe(self) -> str:
        text = f"{self.value.normalize():f}x points"
        if self.duration == "days":
            return f"{text} for {self.duration_days} days"
        if self.duration == "until_date":
            return f"{text} until {self.until:%b %d, %Y}"
        return text


@dataclass(frozen=True)
class UnlockReward:
    reward: str

    type: ClassVar[str] = "unlock_reward"

    def to_dict(self) -> dict:
        return {"type": self.type, "reward_id": self.reward}

    def describe(self) -> str:
        return f"Unlock reward {self.reward}"


@dataclass(frozen=True)
class ApplyTag:
    tag: str
    expires_days: int | None = None

    type: ClassVar[str] = "apply_tag"

    def to_dict(self) -> dict:
        d = {"type": self.type, "tag": self.tag}
        if self.expires_days is not None:
            d["expires_days"] = self.expires_days
        return d

    def describe(self) -> str:
        return f"Tag: {self.tag}"


Award = Union[BonusPoints, Multiplier, UnlockReward, ApplyTag]

AWARD_TYPES = (BonusPoints, Multiplier, UnlockReward, ApplyTag)


@dataclass(frozen=True)
class AwardGroup:
    """Awards granted together. ``location`` is a Location code or None (any location)."""

    awards: tuple
    location: str | None = None

    def to_dict(self) -> dict:
        return {
            "location_id": self.location,
            "awards": [award.to_dict() for award in self.awards],
        }

    @classmethod
    def from_dict(cls, data: dict) -> "AwardGroup":
        if not isinstance(data, dict):
            raise ConfigurationError("INVALID_AWARD", message="Award group must be an object")
        awards = data.get("awards") or []
        if not isinstance(awards, list):
            raise ConfigurationError("INVALID_AWARD", message="Group awards must be a list")
        location = data.get("location_id") or None
        return cls(
            awards=tuple(parse_award(a) for a in awards),
            location=str(location) if location is not None else None,
        )

    def describe(self) -> list[str]:
        return [award.describe() for award in self.awards]


@dataclass(frozen=True)
class AwardPlan:
    """
    Expansion of a rule's award template.

    One group: granted immediately. Two or more: the customer must choose.
    None: misconfigured rule, nothing happens.
    """

    groups: tuple

    @property
    def is_empty(self) -> bool:
        return len(self.groups) == 0

    @property
    def is_immediate(self) -> bool:
        return len(self.groups) == 1

    @property
    def is_deferred(self) -> bool:
        return len(self.groups) >= 2


# =============================================================================
# Parsing
# =============================================================================


def parse_award(data) -> Award:
    """
    Build an Award from its dict form.

    Accepts the legacy ``points`` and ``reward`` type names.

    Raises:
        ConfigurationError: Unknown type or invalid values
    """
    if isinstance(data, AWARD_TYPES):
        return data
    if not isinstance(data, dict) or not data.get("type"):
        raise ConfigurationError("INVALID_AWARD", award=data)

    award_type = data["type"]

    if award_type in ("bonus_points", "points"):
        value = _positive_int(data.get("value"), data)
        return BonusPoints(value=value)

    if award_type == "multiplier":
        return _parse_multiplier(data)

    if award_type in ("unlock_reward", "reward"):
        reward = data.get("reward_id") or data.get("value")
        if not reward:
            raise ConfigurationError("INVALID_AWARD", message="No reward specified", award=data)
        return UnlockReward(reward=str(reward))

    if award_type == "apply_tag":
        tag = data.get("tag") or data.get("value")
        if not tag or not str(tag).strip():
            raise ConfigurationError("INVALID_AWARD", message="No tag specified", award=data)
        expires_days = data.get("expires_days")
        if expires_days is not None:
            expires_days = _positive_int(expires_days, data)
        return ApplyTag(tag=str(tag).strip().lower(), expires_days=expires_days)

    raise ConfigurationError(
        "INVALID_AWARD",
        message=f"Unknown award type: {award_type}",
        award=data,
    )


def _parse_multiplier(data: dict) -> Multiplier:
    try:
        value = Decimal(str(data.get("value")))
    except (InvalidOperation, ValueError):
        raise ConfigurationError("INVALID_AWARD", message="Invalid multiplier value", award=data)
    if not value.is_finite() or value <= 0:
        raise ConfigurationError("INVALID_AWARD", message="Invalid multiplier value", award=data)
    if value > MULTIPLIER_MAX or value != value.quantize(MULTIPLIER_STEP):
        raise ConfigurationError(
            "INVALID_AWARD",
            message=f"Multiplier must be at most {MULTIPLIER_MAX} with two decimals",
            award=data,
        )

    duration = data.get("duration") or "permanent"
    if duration not in MULTIPLIER_DURATIONS:
        raise ConfigurationError(
            "INVALID_AWARD",
            message=f"Unknown multiplier duration: {duration}",
            award=data,
        )

    duration_days = None
    until = None
    if duration == "days":
        duration_days = _positive_int(data.get("duration_days"), data)
    elif duration == "until_date":
        until = _parse_until(data.get("until"))
        if until is None:
            raise ConfigurationError("INVALID_AWARD", message="Invalid multiplier end date", award=data)

    return Multiplier(value=value, duration=duration, duration_days=duration_days, until=until)


def _parse_until(raw) -> datetime | None:
    """Datetime or date string; a bare date means the end of that day."""
    if isinstance(raw, datetime):
        until = raw
    else:
        until = parse_datetime(str(raw or ""))
        if until is None:
            day = parse_date(str(raw or ""))
            if day is None:
                return None
            until = datetime.combine(day, time.max)
    if timezone.is_naive(until):
        until = timezone.make_aware(until)
    return until


def _positive_int(raw, award) -> int:
    if isinstance(raw, bool):
        raise ConfigurationError("INVALID_AWARD", award=award)
    try:
        value = int(raw)
    except (TypeError, ValueError):
        raise ConfigurationError("INVALID_AWARD", award=award)
    if value <= 0 or value > MAX_AWARD_INT or (value != raw and str(value) != str(raw)):
        raise ConfigurationError("INVALID_AWARD", award=award)
    return value


# =============================================================================
# Storage round-trip
# =============================================================================


def dump_groups(groups) -> list[dict]:
    """Serialize award groups for a JSONField."""
    return [group.to_dict() for group in groups]


def load_groups(data) -> tuple:
    """Inverse of dump_groups()."""
    if not isinstance(data, list):
        raise ConfigurationError("INVALID_AWARD", message="Award options must be a list")
    return tuple(AwardGroup.from_dict(item) for item in data)
