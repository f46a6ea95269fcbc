"""
Rule conditions: pure predicates over a trigger event and an enrollment snapshot.

A condition is either a group:

    {"operator": "AND" | "OR", "items": [<condition>, ...]}

or a leaf:

    {"type": "spend_amount", "params": {"scope": "cumulative", "comparison": ">=", "value": 100}}

``None`` (no condition) always matches. Nothing here touches the database;
everything needed is on the TriggerEvent and EnrollmentSnapshot.

A ``time_window`` leaf always matches. It bounds the history that the
``location_visit`` and ``rule_triggered`` leaves of the same tree look at:

    {"type": "time_window", "params": {"value": 30, "unit": "days"}}

Malformed conditions raise ConfigurationError so the evaluator can skip the
offending rule.
"""

import calendar
from datetime import date, datetime, timedelta
from decimal import Decimal, InvalidOperation
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from django.utils.dateparse import parse_date, parse_datetime

from lootman.exceptions import ConfigurationError


WEEKDAYS = ("monday", "tuesday", "wednesday", "thursday", "friday", "saturday", "sunday")
WINDOW_UNITS = ("days", "weeks", "months")


def evaluate_condition(condition, trigger, snapshot, now: datetime) -> bool:
    """
    Evaluate a condition tree.

    Args:
        condition: Condition dict (or None)
        trigger: TriggerEvent being evaluated
        snapshot: EnrollmentSnapshot taken before any award of this trigger
        now: Evaluation instant (the trigger's occurred_at)

    Raises:
        ConfigurationError: Unknown operator/type or missing parameters
    """
    window = find_time_window(condition)
    since = window_start(window, now) if window is not None else None
    return _evaluate(condition, trigger, snapshot, now, since)


def find_time_window(condition) -> dict | None:
    """Params of the first ``time_window`` leaf in the tree (depth first), if any."""
    if not isinstance(condition, dict):
        return None
    if condition.get("type") == "time_window":
        params = condition.get("params") or {}
        if not isinstance(params, dict):
            raise ConfigurationError("INVALID_CONDITION", message="Condition params must be an object")
        return params
    items = condition.get("items")
    if isinstance(items, list):
        for item in items:
            found = find_time_window(item)
            if found is not None:
                return found
    return None


def window_start(params: dict, now: datetime) -> datetime:
    """Start of a ``time_window``: ``value`` days, weeks or calendar months before ``now``."""
    raw = params.get("value")
    value = _number(raw, "value")
    if value <= 0 or value != value.to_integral_value():
        raise ConfigurationError("INVALID_CONDITION", message=f"Invalid time window: {raw}")
    unit = params.get("unit", "days")
    if unit not in WINDOW_UNITS:
        raise ConfigurationError("INVALID_CONDITION", message=f"Unknown time window unit: {unit}")

    try:
        if unit == "months":
            return _months_before(now, int(value))
        days = int(value) * (7 if unit == "weeks" else 1)
        return now - timedelta(days=days)
    except (OverflowError, ValueError):
        raise ConfigurationError("INVALID_CONDITION", message=f"Invalid time window: {raw}")


def _months_before(now: datetime, months: int) -> datetime:
    index = now.year * 12 + (now.month - 1) - months
    year, month = divmod(index, 12)
    month += 1
    # Clamp e.g. March 31 - 1 month to February 28/29
    day = min(now.day, calendar.monthrange(year, month)[1])
    return now.replace(year=year, month=month, day=day)


def _evaluate(condition, trigger, snapshot, now, since) -> bool:
    if condition is None:
        return True
    if not isinstance(condition, dict):
        raise ConfigurationError("INVALID_CONDITION", condition=condition)

    if "operator" in condition:
        operator = str(condition["operator"]).upper()
        items = condition.get("items")
        if not isinstance(items, list):
            raise ConfigurationError("INVALID_CONDITION", message="Condition group needs items")
        # No short-circuit: a malformed item anywhere fails the whole rule
        results = [_evaluate(item, trigger, snapshot, now, since) for item in items]
        if operator == "AND":
            return all(results)
        if operator == "OR":
            return any(results)
        raise ConfigurationError(
            "INVALID_CONDITION",
            message=f"Unknown condition operator: {condition['operator']}",
        )

    condition_type = condition.get("type")
    handler = _EVALUATORS.get(condition_type) if isinstance(condition_type, str) else None
    if handler is None:
        raise ConfigurationError(
            "INVALID_CONDITION",
            message=f"Unknown condition type: {condition_type}",
        )
    params = condition.get("params") or {}
    if not isinstance(params, dict):
        raise ConfigurationError("INVALID_CONDITION", message="Condition params must be an object")
    return handler(params, trigger, snapshot, now, since)


# =============================================================================
# Comparison helpers
# =============================================================================


def compare(actual, comparison: str, expected, expected_max=None) -> bool:
    """Numeric comparison. Unknown operators are configuration errors."""
    if comparison in (None, "", ">="):
        return actual >= expected
    if comparison == ">":
        return actual > expected
    if comparison in ("=", "=="):
        return actual == expected
    if comparison == "!=":
        return actual != expected
    if comparison == "<=":
        return actual <= expected
    if comparison == "<":
        return actual < expected
    if comparison == "between":
        if expected_max is None:
            raise ConfigurationError("INVALID_CONDITION", message="'between' needs value_max")
        return expected <= actual <= expected_max
    raise ConfigurationError("INVALID_CONDITION", message=f"Unknown comparison: {comparison}")


def _number(raw, name: str) -> Decimal:
    if raw is None or isinstance(raw, bool):
        raise ConfigurationError("INVALID_CONDITION", message=f"Missing numeric '{name}'")
    try:
        value = Decimal(str(raw))
    except (InvalidOperation, ValueError):
        raise ConfigurationError("INVALID_CONDITION", message=f"Invalid numeric '{name}'")
    if not value.is_finite():
        raise ConfigurationError("INVALID_CONDITION", message=f"Invalid numeric '{name}'")
    return value


def _dollars_to_cents(raw, name: str) -> Decimal:
    return _number(raw, name) * 100


def _local(now: datetime, snapshot) -> datetime:
    try:
        return now.astimezone(ZoneInfo(snapshot.timezone))
    except (ZoneInfoNotFoundError, ValueError):
        raise ConfigurationError("INVALID_CONDITION", message=f"Unknown timezone: {snapshot.timezone}")


def _str_list(params: dict, key: str, single_key: str | None = None) -> list[str]:
    """
    String list parameter; a lone string counts as a one-item list.

    ``single_key`` names the singular form (e.g. ``tag`` for ``tags``),
    read when the list is absent.
    """
    raw = params.get(key)
    if raw in (None, "", []) and single_key:
        raw = params.get(single_key)
    if raw in (None, "", []):
        return []
    if isinstance(raw, str):
        return [raw]
    if isinstance(raw, list) and all(isinstance(item, str) for item in raw):
        return raw
    raise ConfigurationError("INVALID_CONDITION", message=f"'{key}' must be a list of strings")


# =============================================================================
# Leaf evaluators
# =============================================================================


def _spend_amount(params, trigger, snapshot, now, since) -> bool:
    scope = params.get("scope", "single_transaction")
    if scope == "single_transaction":
        actual = trigger.amount_q
    elif scope == "cumulative":
        actual = snapshot.lifetime_spend_q
    else:
        raise ConfigurationError("INVALID_CONDITION", message=f"Unknown spend scope: {scope}")

    location = params.get("location_id")
    if location and trigger.location_code != location:
        return False

    expected = _dollars_to_cents(params.get("value"), "value")
    expected_max = None
    if params.get("value_max") is not None:
        expected_max = _dollars_to_cents(params["value_max"], "value_max")
    return compare(Decimal(actual), params.get("comparison"), expected, expected_max)


def _customer_attribute(params, trigger, snapshot, now, since) -> bool:
    attribute = params.get("attribute")
    comparison = params.get("comparison")

    if attribute == "tier":
        actual = (snapshot.tier or "").lower()
        expected = str(params.get("value") or "").lower()
        if comparison in (None, "", "=", "=="):
            return actual == expected
        if comparison == "!=":
            return actual != expected
        raise ConfigurationError("INVALID_CONDITION", message=f"Unknown tier comparison: {comparison}")

    if attribute == "membership_age_days":
        actual = Decimal((now - snapshot.enrolled_at).days)
    elif attribute == "lifetime_spend":
        actual = Decimal(snapshot.lifetime_spend_q) / 100
    elif attribute == "lifetime_points":
        actual = Decimal(snapshot.lifetime_points)
    elif attribute == "visit_count":
        actual = Decimal(snapshot.visit_count)
    elif attribute == "points_balance":
        actual = Decimal(snapshot.points_balance)
    elif attribute == "points_multiplier":
        actual = snapshot.points_multiplier
    else:
        raise ConfigurationError(
            "INVALID_CONDITION",
            message=f"Unknown customer attribute: {attribute}",
        )
    return compare(actual, comparison, _number(params.get("value"), "value"))


def _customer_tag(params, trigger, snapshot, now, since) -> bool:
    wanted = [t.strip().lower() for t in _str_list(params, "tags", "tag")]
    if not wanted:
        return True
    active = snapshot.active_tags(now)
    match = params.get("match", "has")

    if match in ("has", "has_all"):
        return all(t in active for t in wanted)
    if match == "has_not":
        return all(t not in active for t in wanted)
    if match == "has_any":
        return any(t in active for t in wanted)
    raise ConfigurationError("INVALID_CONDITION", message=f"Unknown tag match: {match}")


def _day_of_week(params, trigger, snapshot, now, since) -> bool:
    days = [d.lower() for d in _str_list(params, "days")]
    if not days:
        return True
    today = WEEKDAYS[_local(now, snapshot).weekday()]
    if "weekends" in days and today in ("saturday", "sunday"):
        return True
    if "weekdays" in days and today not in ("saturday", "sunday"):
        return True
    return today in days


def _parse_hhmm(raw: str) -> int:
    try:
        hours, minutes = str(raw).split(":")
        hours, minutes = int(hours), int(minutes)
    except ValueError:
        raise ConfigurationError("INVALID_CONDITION", message=f"Invalid time: {raw}")
    if not (0 <= hours < 24 and 0 <= minutes < 60):
        raise ConfigurationError("INVALID_CONDITION", message=f"Invalid time: {raw}")
    return hours * 60 + minutes


def _time_of_day(params, trigger, snapshot, now, since) -> bool:
    start, end = params.get("start_time"), params.get("end_time")
    if not start or not end:
        return True
    local = _local(now, snapshot)
    current = local.hour * 60 + local.minute
    start_minutes, end_minutes = _parse_hhmm(start), _parse_hhmm(end)
    if start_minutes > end_minutes:
        # Overnight, e.g. 22:00 → 02:00
        return current >= start_minutes or current <= end_minutes
    return start_minutes <= current <= end_minutes


def _as_date(raw, name: str) -> date:
    parsed = parse_date(str(raw))
    if parsed is None:
        as_datetime = parse_datetime(str(raw))
        if as_datetime is None:
            raise ConfigurationError("INVALID_CONDITION", message=f"Invalid date '{name}': {raw}")
        parsed = as_datetime.date()
    return parsed


def _date_range(params, trigger, snapshot, now, since) -> bool:
    today = _local(now, snapshot).date()
    if params.get("start_date") and today < _as_date(params["start_date"], "start_date"):
        return False
    if params.get("end_date") and today > _as_date(params["end_date"], "end_date"):
        return False
    return True


def _location_visit(params, trigger, snapshot, now, since) -> bool:
    """
    Visit history by location, within the tree's time window if any.

    Scopes, compared against ``value`` (default ``>= 1``):
        any: distinct locations visited
        specific: visits to ``location_id``
        group: distinct locations visited among ``location_ids``
        all: every active location of the business visited (no comparison)

    Without a scope, the trigger must happen at one of ``location_ids``
    (or ``location_id``); ``min_visits`` then counts visits to those locations.
    """
    visits = snapshot.visits_by_location(since)
    scope = params.get("scope")

    if scope is None:
        locations = _str_list(params, "location_ids", "location_id")
        if not locations:
            raise ConfigurationError("INVALID_CONDITION", message="location_visit needs a scope or locations")
        if trigger.location_code not in locations:
            return False
        if params.get("min_visits") is not None:
            at_listed = sum(visits.get(code, 0) for code in set(locations))
            return Decimal(at_listed) >= _number(params["min_visits"], "min_visits")
        return True

    if scope == "any":
        actual = len(visits)
    elif scope == "specific":
        location = params.get("location_id")
        if not location or not isinstance(location, str):
            raise ConfigurationError("INVALID_CONDITION", message="Scope 'specific' needs location_id")
        actual = visits.get(location, 0)
    elif scope == "group":
        group = _str_list(params, "location_ids")
        if not group:
            raise ConfigurationError("INVALID_CONDITION", message="Scope 'group' needs location_ids")
        actual = len(set(group) & visits.keys())
    elif scope == "all":
        return bool(snapshot.locations) and snapshot.locations <= visits.keys()
    else:
        raise ConfigurationError("INVALID_CONDITION", message=f"Unknown location scope: {scope}")

    return compare(Decimal(actual), params.get("comparison"), _number(params.get("value", 1), "value"))


def _voyage_step(params, trigger, snapshot, now, since) -> bool:
    voyage = params.get("voyage_id")
    if not voyage:
        raise ConfigurationError("INVALID_CONDITION", message="voyage_step needs voyage_id")
    if trigger.voyage_code != voyage:
        return False
    if params.get("step_id") and trigger.step_code != params["step_id"]:
        return False
    if params.get("min_completed_steps") is not None:
        completed = len(snapshot.voyage_steps.get(voyage, ()))
        return Decimal(completed) >= _number(params["min_completed_steps"], "min_completed_steps")
    return True


def _rule_triggered(params, trigger, snapshot, now, since) -> bool:
    rule_codes = _str_list(params, "rule_ids")
    if not rule_codes:
        return True

    if params.get("within_days") is not None:
        raw = params["within_days"]
        days = _number(raw, "within_days")
        if days < 0:
            raise ConfigurationError("INVALID_CONDITION", message=f"Invalid within_days: {raw}")
        try:
            within = now - timedelta(days=int(days))
        except (OverflowError, ValueError):
            raise ConfigurationError("INVALID_CONDITION", message=f"Invalid within_days: {raw}")
        # The narrower of within_days and the time window wins
        since = within if since is None else max(since, within)

    fired = {
        code
        for code in rule_codes
        if any(since is None or at >= since for at in snapshot.trigger_history.get(code, ()))
    }
    match = params.get("match", "all")
    if match == "all":
        return len(fired) == len(set(rule_codes))
    if match == "any":
        return bool(fired)
    if match == "at_least":
        return Decimal(len(fired)) >= _number(params.get("at_least_count"), "at_least_count")
    raise ConfigurationError("INVALID_CONDITION", message=f"Unknown rule match: {match}")


def _time_window(params, trigger, snapshot, now, since) -> bool:
    # Modifier: validated here, applied through ``since`` on the other leaves
    window_start(params, now)
    return True


_EVALUATORS = {
    "spend_amount": _spend_amount,
    "customer_attribute": _customer_attribute,
    "customer_tag": _customer_tag,
    "day_of_week": _day_of_week,
    "time_of_day": _time_of_day,
    "date_range": _date_range,
    "location_visit": _location_visit,
    "voyage_step": _voyage_step,
    "rule_triggered": _rule_triggered,
    "time_window": _time_window,
}
