"""Award plan builder: expands a rule's award template into award groups.

Template forms (Rule.awards):

    [award, ...]                                   one group, any location
    {"operator": "AND", "groups": [group, ...]}    all groups merged into one
    {"operator": "OR", "groups": [group, ...]}     one alternative per group

where group is {"location_id": <code or null>, "awards": [award, ...]}.
"""

from datetime import datetime, timedelta

from lootman.awards import AwardGroup, AwardPlan, parse_award
from lootman.conf import lootman_settings
from lootman.exceptions import ConfigurationError
from lootman.models import Rule


def build_plan(rule: Rule, match=None) -> AwardPlan:
    """
    Expand ``rule.awards`` into an AwardPlan.

    Raises:
        ConfigurationError: Malformed template or award
    """
    template = rule.awards

    if template is None:
        return AwardPlan(groups=())

    if isinstance(template, list):
        if not template:
            return AwardPlan(groups=())
        return AwardPlan(groups=(AwardGroup(awards=tuple(parse_award(a) for a in template)),))

    if not isinstance(template, dict) or "operator" not in template:
        raise ConfigurationError("RULE_MISCONFIGURED", message="Unknown awards structure", rule=rule.code)

    operator = str(template["operator"]).upper()
    raw_groups = template.get("groups") or []
    if not isinstance(raw_groups, list):
        raise ConfigurationError("RULE_MISCONFIGURED", message="Award groups must be a list", rule=rule.code)
    groups = tuple(AwardGroup.from_dict(g) for g in raw_groups)

    if operator == "AND":
        merged = tuple(award for group in groups for award in group.awards)
        return AwardPlan(groups=(AwardGroup(awards=merged),) if merged else ())

    if operator == "OR":
        return AwardPlan(groups=groups)

    raise ConfigurationError(
        "RULE_MISCONFIGURED",
        message=f"Unknown awards operator: {template['operator']}",
        rule=rule.code,
    )


def choice_expiry(rule: Rule, now: datetime) -> datetime | None:
    """When a choice created now for ``rule`` stops being claimable (None = never)."""
    hours = rule.choice_window_hours
    if hours is None:
        hours = lootman_settings.DEFAULT_CHOICE_WINDOW_HOURS
    if hours is None:
        return None
    return now + timedelta(hours=hours)
