"""
Lootman public API.

CORE (essential):
    AwardService.record_trigger(event)                     - Evaluate, plan and apply awards for an event
    AwardService.list_pending_choices(customer, business)  - Claimable choices
    AwardService.claim_choice(choice_id, customer, index)  - Resolve a choice

CONVENIENCE (helpers):
    AwardService.get_choice(choice_id, customer)   - One choice, owner only
    AwardService.cancel_choice(choice_id, reason)  - Staff cancel
    AwardService.expire_choices()                  - Expiration sweep
    AwardService.apply_awards(...)                 - Manual grant
    AwardService.enroll(customer, business)        - Get or create an enrollment
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime

from django.db import transaction
from django.utils import timezone

from lootman.exceptions import ConfigurationError, NotFoundError
from lootman.models import (
    Business,
    Customer,
    Enrollment,
    LocationVisit,
    PendingAwardChoice,
    RuleTrigger,
    TriggerKind,
)
from lootman.services.applier import AppliedAward, AwardApplier
from lootman.services.choices import ChoiceService, ClaimResult
from lootman.services.evaluator import EnrollmentSnapshot, RuleMatch, TriggerEvaluator, TriggerEvent
from lootman.services.planner import build_plan, choice_expiry
from lootman.services.voyages import VoyageService

logger = logging.getLogger(__name__)


@dataclass
class RuleOutcome:
    """What one matching rule produced for a trigger."""

    rule_code: str
    rule_trigger_id: int | None
    awards: list[AppliedAward] = field(default_factory=list)
    pending_choice: PendingAwardChoice | None = None
    replayed: bool = False

    @property
    def is_deferred(self) -> bool:
        return self.pending_choice is not None

    def as_dict(self) -> dict:
        return {
            "rule_id": self.rule_code,
            "rule_trigger_id": self.rule_trigger_id,
            "awards": [a.as_dict() for a in self.awards],
            "pending_choice_id": str(self.pending_choice.pk) if self.pending_choice else None,
            "replayed": self.replayed,
        }


@dataclass
class TriggerOutcome:
    """Result of record_trigger: immediate awards and/or pending choices."""

    event: TriggerEvent
    rules: list[RuleOutcome] = field(default_factory=list)
    points_balance: int = 0

    @property
    def awards(self) -> list[AppliedAward]:
        return [award for outcome in self.rules for award in outcome.awards]

    @property
    def pending_choices(self) -> list[PendingAwardChoice]:
        return [o.pending_choice for o in self.rules if o.pending_choice is not None]

    def as_dict(self) -> dict:
        return {
            "event_ref": self.event.event_ref or None,
            "points_balance": self.points_balance,
            "rules": [o.as_dict() for o in self.rules],
            "pending_choice_ids": [str(c.pk) for c in self.pending_choices],
        }


class AwardService:
    """
    Lootman public API.

    Uses @classmethod for extensibility.

    CORE (essential):
        record_trigger(event)      - Trigger → evaluate → plan → apply or defer
        list_pending_choices(...)  - Claimable choices for display
        claim_choice(...)          - Claim one group of a choice

    CONVENIENCE (helpers):
        get_choice(...)            - One choice, owner only
        cancel_choice(...)         - Staff cancel
        expire_choices(...)        - Expiration sweep
        apply_awards(...)          - Manual grant
        enroll(...)                - Get or create an enrollment
    """

    # ======================================================================
    # CORE API
    # ======================================================================

    @classmethod
    def record_trigger(cls, event: TriggerEvent) -> TriggerOutcome:
        """
        Process a trigger event end to end.

        Called by the visit-recording collaborator after its own write is
        persisted. Returns once every matching rule's awards are applied or
        its pending choice is stored.

        Each matching rule runs in its own savepoint: a misconfigured rule is
        logged and skipped while the others still apply. With an
        ``event_ref``, rules that already fired for that event are replayed
        from their RuleTrigger rows instead of firing again. Visit events that
        carry a location are added to the location history before evaluation.

        Raises:
            NotFoundError: Customer is not enrolled at the business
        """
        now = event.occurred_at or timezone.now()

        with transaction.atomic():
            enrollment = AwardApplier.lock_enrollment(event.customer_code, event.business_code)

            outcomes = []
            fired_rule_ids = set()
            if event.event_ref:
                for outcome, rule_id in cls._replay(enrollment, event.event_ref):
                    outcomes.append(outcome)
                    fired_rule_ids.add(rule_id)

            if event.kind == TriggerKind.VISIT and event.location_code:
                cls._record_visit(enrollment, event, now)

            snapshot = EnrollmentSnapshot.load(enrollment, now)
            rules = [
                rule
                for rule in TriggerEvaluator.candidate_rules(enrollment.business_id, event.kind)
                if rule.pk not in fired_rule_ids
            ]

            for match in TriggerEvaluator.evaluate(event, snapshot, rules, now=now):
                try:
                    with transaction.atomic():
                        outcome = cls._fire(enrollment, event, match, now)
                except (ConfigurationError, NotFoundError) as exc:
                    logger.warning("Rule %s skipped for %s: %s", match.rule.code, event.customer_code, exc)
                    # In-memory counters may include the rolled-back awards
                    enrollment.refresh_from_db()
                    continue
                if outcome is not None:
                    outcomes.append(outcome)

            balance = enrollment.points_balance

        return TriggerOutcome(event=event, rules=outcomes, points_balance=balance)

    @classmethod
    def list_pending_choices(
        cls,
        customer_code: str,
        business_code: str,
        now: datetime | None = None,
    ) -> list[PendingAwardChoice]:
        """Pending, non-expired choices of a customer at a business, newest first."""
        return ChoiceService.list_pending(customer_code, business_code, now=now)

    @classmethod
    def claim_choice(cls, choice_id, customer_code: str, group_index, now: datetime | None = None) -> ClaimResult:
        """
        Claim one group of a pending choice.

        See ChoiceService.claim() for the error contract.
        """
        return ChoiceService.claim(choice_id, customer_code, group_index, now=now)

    # ======================================================================
    # CONVENIENCE API
    # ======================================================================

    @classmethod
    def get_choice(cls, choice_id, customer_code: str) -> PendingAwardChoice:
        return ChoiceService.get(choice_id, customer_code)

    @classmethod
    def cancel_choice(cls, choice_id, reason: str = "") -> PendingAwardChoice:
        return ChoiceService.cancel(choice_id, reason=reason)

    @classmethod
    def expire_choices(cls, now: datetime | None = None, business_code: str | None = None) -> int:
        return ChoiceService.expire_overdue(now=now, business_code=business_code)

    @classmethod
    def apply_awards(
        cls,
        customer_code: str,
        business_code: str,
        awards: list,
        source_key: str = "",
    ) -> list[AppliedAward]:
        """Grant awards outside any rule (e.g. staff goodwill)."""
        return AwardApplier.apply(customer_code, business_code, awards, source_key=source_key)

    @classmethod
    def enroll(cls, customer_code: str, business_code: str) -> Enrollment:
        """
        Get or create the enrollment of a customer at a business.

        Raises:
            NotFoundError: Unknown or inactive customer/business
        """
        try:
            customer = Customer.objects.get(code=customer_code, is_active=True)
        except Customer.DoesNotExist:
            raise NotFoundError("CUSTOMER_NOT_FOUND", customer_code=customer_code)
        try:
            business = Business.objects.get(code=business_code, is_active=True)
        except Business.DoesNotExist:
            raise NotFoundError("BUSINESS_NOT_FOUND", business_code=business_code)

        enrollment, created = Enrollment.objects.get_or_create(customer=customer, business=business)
        if created:
            logger.info("Enrolled %s at %s", customer_code, business_code)
        return enrollment

    # ======================================================================
    # Internals
    # ======================================================================

    @classmethod
    def _fire(cls, enrollment: Enrollment, event: TriggerEvent, match: RuleMatch, now: datetime):
        """Plan and apply (or defer) one matching rule. Runs inside a savepoint."""
        rule = match.rule
        plan = build_plan(rule, match)

        if plan.is_empty:
            logger.warning("Rule %s matched but has no awards; nothing granted", rule.code)
            return None

        rule_trigger = RuleTrigger.objects.create(
            rule=rule,
            enrollment=enrollment,
            trigger_kind=event.kind,
            event_ref=event.event_ref,
            deferred=plan.is_deferred,
            context=match.context,
            triggered_at=now,
        )

        if plan.is_deferred:
            choice = ChoiceService.create_pending(
                enrollment,
                rule,
                plan,
                expires_at=choice_expiry(rule, now),
                rule_trigger=rule_trigger,
                now=now,
            )
            VoyageService.record_step(enrollment, rule, now)
            return RuleOutcome(rule_code=rule.code, rule_trigger_id=rule_trigger.pk, pending_choice=choice)

        if event.event_ref:
            source_key = f"rule:{rule.code}:event:{event.event_ref}"
        else:
            source_key = f"trigger:{rule_trigger.pk}"

        results = AwardApplier.apply_to_enrollment(
            enrollment,
            plan.groups[0].awards,
            source_key=source_key,
            source_ref=f"rule:{rule.code}",
            rule=rule,
            now=now,
        )

        rule_trigger.awards_given = [r.as_dict() for r in results]
        rule_trigger.points_awarded = sum(r.points_awarded for r in results)
        rule_trigger.save(update_fields=["awards_given", "points_awarded"])

        VoyageService.record_step(enrollment, rule, now)

        logger.info(
            "Rule %s fired for %s: %d awards",
            rule.code, event.customer_code, len(results),
        )
        return RuleOutcome(rule_code=rule.code, rule_trigger_id=rule_trigger.pk, awards=results)

    @classmethod
    def _record_visit(cls, enrollment: Enrollment, event: TriggerEvent, now: datetime) -> LocationVisit:
        """Location history for location_visit conditions. Once per event_ref."""
        if not event.event_ref:
            return LocationVisit.objects.create(
                enrollment=enrollment,
                location_code=event.location_code,
                visited_at=now,
            )
        visit, _ = LocationVisit.objects.get_or_create(
            enrollment=enrollment,
            event_ref=event.event_ref,
            defaults={"location_code": event.location_code, "visited_at": now},
        )
        return visit

    @classmethod
    def _replay(cls, enrollment: Enrollment, event_ref: str):
        """Outcomes of rules that already fired for ``event_ref``."""
        triggers = (
            RuleTrigger.objects.filter(enrollment=enrollment, event_ref=event_ref)
            .select_related("rule")
            .order_by("pk")
        )
        for rule_trigger in triggers:
            choice = rule_trigger.award_choices.first() if rule_trigger.deferred else None
            outcome = RuleOutcome(
                rule_code=rule_trigger.rule.code,
                rule_trigger_id=rule_trigger.pk,
                awards=[AppliedAward.from_dict(a) for a in rule_trigger.awards_given or []],
                pending_choice=choice,
                replayed=True,
            )
            yield outcome, rule_trigger.rule_id
