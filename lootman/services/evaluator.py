"""Trigger evaluator: which active rules does a trigger event satisfy?

Evaluation is pure over (TriggerEvent, EnrollmentSnapshot, rules). Loading
the snapshot and candidate rules is the only I/O, done up front by the caller.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from decimal import Decimal

from django.utils import timezone

from lootman.conditions import evaluate_condition
from lootman.conf import lootman_settings
from lootman.exceptions import ConfigurationError
from lootman.models import (
    CustomerTag,
    Enrollment,
    Location,
    LocationVisit,
    Rule,
    RuleTrigger,
    TriggerKind,
    VoyageProgress,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TriggerEvent:
    """
    Something that happened to a customer at a business.

    Emitted by the visit/spend recording caller once its own write is persisted.
    ``event_ref`` (e.g. "txn:123") makes re-recording the same event safe.
    """

    kind: str
    customer_code: str
    business_code: str
    amount_q: int = 0
    location_code: str = ""
    voyage_code: str = ""
    step_code: str = ""
    event_ref: str = ""
    occurred_at: datetime | None = None
    payload: dict = field(default_factory=dict)

    def __post_init__(self):
        if self.kind not in TriggerKind.values:
            raise ValueError(f"Unknown trigger kind: {self.kind!r}")

    def as_context(self) -> dict:
        """JSON-safe description stored on RuleTrigger."""
        return {
            "kind": self.kind,
            "amount_q": self.amount_q,
            "location_id": self.location_code or None,
            "voyage_id": self.voyage_code or None,
            "step_id": self.step_code or None,
            "event_ref": self.event_ref or None,
            "payload": self.payload,
        }


@dataclass(frozen=True)
class EnrollmentSnapshot:
    """Read-only view of an enrollment at evaluation time."""

    points_balance: int = 0
    lifetime_points: int = 0
    lifetime_spend_q: int = 0
    visit_count: int = 0
    tier: str = "member"
    points_multiplier: Decimal = Decimal("1.00")
    enrolled_at: datetime | None = None
    timezone: str = "America/New_York"
    # tag -> expires_at (None = never)
    tags: dict = field(default_factory=dict)
    # rule code -> tuple of triggered_at
    trigger_history: dict = field(default_factory=dict)
    # voyage code -> frozenset of completed rule codes
    voyage_steps: dict = field(default_factory=dict)
    # location code -> tuple of visited_at
    location_visits: dict = field(default_factory=dict)
    # Active location codes of the business
    locations: frozenset = frozenset()

    def active_tags(self, now: datetime) -> set[str]:
        return {tag for tag, expires_at in self.tags.items() if expires_at is None or expires_at > now}

    def visits_by_location(self, since: datetime | None = None) -> dict[str, int]:
        """Visit counts per location, from ``since`` on. Unvisited locations are absent."""
        counts = {}
        for code, visited in self.location_visits.items():
            count = sum(1 for at in visited if since is None or at >= since)
            if count:
                counts[code] = count
        return counts

    @classmethod
    def load(cls, enrollment: Enrollment, now: datetime | None = None) -> "EnrollmentSnapshot":
        """Read everything conditions may need for ``enrollment``."""
        now = now or timezone.now()

        tags = dict(
            CustomerTag.objects.filter(
                customer_id=enrollment.customer_id,
                business_id=enrollment.business_id,
            ).values_list("tag", "expires_at")
        )

        history: dict[str, list] = {}
        for code, triggered_at in RuleTrigger.objects.filter(enrollment=enrollment).values_list(
            "rule__code", "triggered_at"
        ):
            history.setdefault(code, []).append(triggered_at)

        voyage_steps = {
            code: frozenset(completed or [])
            for code, completed in VoyageProgress.objects.filter(enrollment=enrollment).values_list(
                "voyage__code", "completed_rule_codes"
            )
        }

        visits: dict[str, list] = {}
        for code, visited_at in LocationVisit.objects.filter(enrollment=enrollment).values_list(
            "location_code", "visited_at"
        ):
            visits.setdefault(code, []).append(visited_at)

        locations = frozenset(
            Location.objects.filter(business_id=enrollment.business_id, is_active=True).values_list(
                "code", flat=True
            )
        )

        return cls(
            points_balance=enrollment.points_balance,
            lifetime_points=enrollment.lifetime_points,
            lifetime_spend_q=enrollment.lifetime_spend_q,
            visit_count=enrollment.visit_count,
            tier=enrollment.tier,
            points_multiplier=enrollment.active_multiplier(now),
            enrolled_at=enrollment.enrolled_at,
            timezone=enrollment.business.timezone or lootman_settings.DEFAULT_TIMEZONE,
            tags=tags,
            trigger_history={code: tuple(sorted(times)) for code, times in history.items()},
            voyage_steps=voyage_steps,
            location_visits={code: tuple(sorted(times)) for code, times in visits.items()},
            locations=locations,
        )


@dataclass(frozen=True)
class RuleMatch:
    """A rule satisfied by a trigger."""

    rule: Rule
    now: datetime
    context: dict = field(default_factory=dict)


class TriggerEvaluator:
    """
    Selects the rules a trigger satisfies.

    Uses @classmethod for extensibility (consistent with the other services).
    """

    @classmethod
    def candidate_rules(cls, business_id: int, kind: str) -> list[Rule]:
        """Active rules of a business listening to ``kind``, highest priority first."""
        return list(
            Rule.objects.filter(
                business_id=business_id,
                trigger_kind=kind,
                is_active=True,
            ).order_by("-priority", "code")
        )

    @classmethod
    def evaluate(
        cls,
        trigger: TriggerEvent,
        snapshot: EnrollmentSnapshot,
        rules: list[Rule],
        now: datetime | None = None,
    ) -> list[RuleMatch]:
        """
        Evaluate ``rules`` against a trigger.

        Pure: nothing is read or written. Rules are independent; a rule with
        a malformed condition is logged and skipped without affecting the rest.

        Args:
            trigger: The incoming event
            snapshot: Enrollment state before this trigger's awards
            rules: Candidate rules (see candidate_rules())
            now: Evaluation instant, defaults to trigger.occurred_at

        Returns:
            Matches, in the order of ``rules``
        """
        now = now or trigger.occurred_at or timezone.now()
        matches = []

        for rule in rules:
            reason = cls.ineligibility(rule, trigger, snapshot, now)
            if reason:
                logger.debug("Rule %s skipped: %s", rule.code, reason)
                continue

            try:
                satisfied = evaluate_condition(rule.conditions, trigger, snapshot, now)
            except ConfigurationError as exc:
                logger.warning("Rule %s has a malformed condition, skipped: %s", rule.code, exc.message)
                continue
            except (TypeError, ValueError, ArithmeticError) as exc:
                logger.warning("Rule %s condition failed to evaluate, skipped: %r", rule.code, exc)
                continue

            if satisfied:
                matches.append(RuleMatch(rule=rule, now=now, context=trigger.as_context()))

        return matches

    @classmethod
    def ineligibility(cls, rule: Rule, trigger: TriggerEvent, snapshot: EnrollmentSnapshot, now: datetime) -> str:
        """
        Why ``rule`` cannot fire for this trigger, or "" when it can.

        Checks activity, trigger kind, scheduling window, repeatability,
        cooldown and the per-customer trigger cap against the snapshot.
        """
        if not rule.is_active:
            return "inactive"
        if rule.trigger_kind != trigger.kind:
            return "trigger_kind"
        if rule.starts_at and rule.starts_at > now:
            return "not_started"
        if rule.ends_at and rule.ends_at < now:
            return "ended"

        history = snapshot.trigger_history.get(rule.code, ())
        if history and not rule.is_repeatable:
            return "already_triggered"
        if rule.cooldown_days and history:
            if history[-1] + timedelta(days=rule.cooldown_days) > now:
                return "cooldown"
        if rule.max_triggers_per_customer and len(history) >= rule.max_triggers_per_customer:
            return "max_triggers"
        return ""
