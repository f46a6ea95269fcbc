"""
Pending award choices: storage, claim resolution and the expiration sweep.

Every status change is a compare-and-set: an UPDATE guarded by
``status='pending'``. Whoever changes the row wins; everyone else gets
StateConflictError and nothing they did inside their transaction survives.
"""

import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime

from django.db import transaction
from django.utils import timezone

from lootman.awards import AwardPlan, dump_groups
from lootman.conf import lootman_settings
from lootman.exceptions import (
    AuthorizationError,
    ConfigurationError,
    ExpiredError,
    InvalidSelectionError,
    NotFoundError,
    StateConflictError,
)
from lootman.models import ChoiceStatus, Enrollment, Location, PendingAwardChoice, Rule, RuleTrigger
from lootman.services.applier import AppliedAward, AwardApplier
from lootman.signals import choice_cancelled, choice_claimed, choice_created, choice_expired

logger = logging.getLogger(__name__)


@dataclass
class ClaimResult:
    """Outcome of a successful claim."""

    choice_id: str
    group_index: int
    location_code: str | None
    claimed_at: datetime
    awards_given: list[AppliedAward] = field(default_factory=list)

    def as_dict(self) -> dict:
        return {
            "choice_id": self.choice_id,
            "group_index": self.group_index,
            "location_id": self.location_code,
            "claimed_at": self.claimed_at.isoformat(),
            "awards_given": [a.as_dict() for a in self.awards_given],
        }

    @classmethod
    def from_choice(cls, choice: PendingAwardChoice) -> "ClaimResult":
        return cls(
            choice_id=str(choice.pk),
            group_index=choice.claimed_group_index,
            location_code=choice.claimed_location_id,
            claimed_at=choice.claimed_at,
            awards_given=[AppliedAward.from_dict(a) for a in choice.awards_given or []],
        )


class ChoiceService:
    """
    Pending choice operations.

    Uses @classmethod for extensibility (consistent with the other services).
    """

    @classmethod
    def create_pending(
        cls,
        enrollment: Enrollment,
        rule: Rule,
        plan: AwardPlan,
        expires_at: datetime | None = None,
        rule_trigger: RuleTrigger | None = None,
        now: datetime | None = None,
    ) -> PendingAwardChoice:
        """
        Persist a deferred plan as a pending choice.

        Raises:
            ConfigurationError: Plan is not deferred, or names an unknown location
        """
        if not plan.is_deferred:
            raise ConfigurationError(
                "RULE_MISCONFIGURED",
                message="Only plans with two or more groups become choices",
                rule=rule.code,
            )

        locations = {g.location for g in plan.groups if g.location}
        if locations:
            known = set(
                Location.objects.filter(
                    business_id=enrollment.business_id,
                    code__in=locations,
                ).values_list("code", flat=True)
            )
            unknown = sorted(locations - known)
            if unknown:
                raise ConfigurationError(
                    "RULE_MISCONFIGURED",
                    message=f"Unknown locations: {', '.join(unknown)}",
                    rule=rule.code,
                )

        choice = PendingAwardChoice.objects.create(
            customer_id=enrollment.customer_id,
            business_id=enrollment.business_id,
            rule=rule,
            rule_trigger=rule_trigger,
            award_options=dump_groups(plan.groups),
            created_at=now or timezone.now(),
            expires_at=expires_at,
        )

        logger.info(
            "Choice %s created for %s (rule %s, %d options)",
            choice.pk, enrollment.customer.code, rule.code, len(plan.groups),
        )
        transaction.on_commit(lambda: choice_created.send(sender=PendingAwardChoice, choice=choice))
        return choice

    @classmethod
    def get(cls, choice_id, customer_code: str) -> PendingAwardChoice:
        """
        Get a choice owned by ``customer_code``.

        Raises:
            NotFoundError: No such choice
            AuthorizationError: Choice belongs to another customer
        """
        try:
            choice = PendingAwardChoice.objects.select_related(
                "customer", "business", "rule",
            ).get(pk=cls._parse_id(choice_id))
        except PendingAwardChoice.DoesNotExist:
            raise NotFoundError("CHOICE_NOT_FOUND", choice_id=str(choice_id))
        if choice.customer.code != customer_code:
            raise AuthorizationError()
        return choice

    @classmethod
    def list_pending(cls, customer_code: str, business_code: str, now: datetime | None = None) -> list:
        """
        Claimable choices of a customer at a business, newest first.

        Choices past their expiry are never listed. With EXPIRE_ON_READ they
        are also moved to ``expired`` first.
        """
        now = now or timezone.now()
        if lootman_settings.EXPIRE_ON_READ:
            cls.expire_overdue(now=now, customer_code=customer_code, business_code=business_code)

        qs = PendingAwardChoice.objects.filter(
            customer__code=customer_code,
            business__code=business_code,
            status=ChoiceStatus.PENDING,
        ).select_related("rule").order_by("-created_at")
        return [c for c in qs if not c.is_past_expiry(now)]

    @classmethod
    def claim(cls, choice_id, customer_code: str, group_index, now: datetime | None = None) -> ClaimResult:
        """
        Claim one group of a pending choice.

        The group's awards and the status change commit together or not at all.

        Args:
            choice_id: Choice UUID
            customer_code: Claiming customer, must own the choice
            group_index: 0-based index into the award options
            now: Claim instant

        Returns:
            ClaimResult

        Raises:
            NotFoundError: No such choice
            AuthorizationError: Not the owner
            StateConflictError: Already claimed/expired/cancelled, or lost a race
            ExpiredError: Past expiry (the choice becomes expired)
            InvalidSelectionError: group_index out of range
        """
        now = now or timezone.now()

        try:
            with transaction.atomic():
                choice = cls._get_for_update(choice_id)
                if choice.customer.code != customer_code:
                    raise AuthorizationError()

                if choice.status == ChoiceStatus.CLAIMED:
                    raise StateConflictError(status=choice.status, result=ClaimResult.from_choice(choice))
                if choice.status != ChoiceStatus.PENDING:
                    raise StateConflictError(status=choice.status)
                if choice.is_past_expiry(now):
                    raise ExpiredError("CHOICE_EXPIRED", expires_at=choice.expires_at.isoformat())

                groups = choice.groups
                if isinstance(group_index, bool) or not isinstance(group_index, int) \
                        or not 0 <= group_index < len(groups):
                    raise InvalidSelectionError(
                        "INVALID_GROUP",
                        group_index=group_index,
                        options=len(groups),
                    )
                group = groups[group_index]

                enrollment = AwardApplier.lock_enrollment(customer_code, choice.business.code)
                source_key = f"choice:{choice.pk}"
                results = AwardApplier.apply_to_enrollment(
                    enrollment,
                    group.awards,
                    source_key=source_key,
                    source_ref=source_key,
                    rule=choice.rule,
                    now=now,
                )
                awards_given = [r.as_dict() for r in results]

                updated = PendingAwardChoice.objects.filter(
                    pk=choice.pk,
                    status=ChoiceStatus.PENDING,
                ).update(
                    status=ChoiceStatus.CLAIMED,
                    claimed_group_index=group_index,
                    claimed_location_id=group.location,
                    claimed_at=now,
                    awards_given=awards_given,
                    resolved_at=now,
                )
                if updated == 0:
                    # Another claim or the sweep resolved it first
                    raise StateConflictError()

                result = ClaimResult(
                    choice_id=str(choice.pk),
                    group_index=group_index,
                    location_code=group.location,
                    claimed_at=now,
                    awards_given=results,
                )
                transaction.on_commit(
                    lambda: choice_claimed.send(sender=PendingAwardChoice, choice=choice, result=result)
                )
        except ExpiredError:
            cls._expire(choice.pk, now)
            raise

        logger.info(
            "Choice %s claimed by %s: group %d (%s)",
            choice.pk, customer_code, group_index, group.location or "any location",
        )
        return result

    @classmethod
    def cancel(cls, choice_id, reason: str = "", now: datetime | None = None) -> PendingAwardChoice:
        """
        Cancel a pending choice (operator action). Nothing is granted.

        Raises:
            NotFoundError: No such choice
            StateConflictError: Choice is not pending
        """
        now = now or timezone.now()
        pk = cls._parse_id(choice_id)

        with transaction.atomic():
            updated = PendingAwardChoice.objects.filter(
                pk=pk,
                status=ChoiceStatus.PENDING,
            ).update(status=ChoiceStatus.CANCELLED, resolved_at=now)

            if updated == 0:
                try:
                    choice = PendingAwardChoice.objects.get(pk=pk)
                except PendingAwardChoice.DoesNotExist:
                    raise NotFoundError("CHOICE_NOT_FOUND", choice_id=str(choice_id))
                raise StateConflictError(status=choice.status)

            choice = PendingAwardChoice.objects.get(pk=pk)
            transaction.on_commit(lambda: choice_cancelled.send(sender=PendingAwardChoice, choice=choice))

        logger.info("Choice %s cancelled%s", pk, f": {reason}" if reason else "")
        return choice

    @classmethod
    def expire_overdue(
        cls,
        now: datetime | None = None,
        customer_code: str | None = None,
        business_code: str | None = None,
    ) -> int:
        """
        Move every pending choice past its expiry to ``expired``.

        Safe to run concurrently with claims: a choice claimed in the meantime
        no longer matches the pending precondition and is left alone.

        Returns:
            Number of choices expired
        """
        now = now or timezone.now()
        qs = PendingAwardChoice.objects.filter(status=ChoiceStatus.PENDING, expires_at__lt=now)
        if customer_code:
            qs = qs.filter(customer__code=customer_code)
        if business_code:
            qs = qs.filter(business__code=business_code)

        expired = 0
        with transaction.atomic():
            for pk in list(qs.values_list("pk", flat=True)):
                if cls._expire(pk, now):
                    expired += 1

        if expired:
            logger.info("Expired %d pending choices", expired)
        return expired

    # ======================================================================
    # Internals
    # ======================================================================

    @classmethod
    def _expire(cls, pk, now: datetime) -> bool:
        updated = PendingAwardChoice.objects.filter(
            pk=pk,
            status=ChoiceStatus.PENDING,
        ).update(status=ChoiceStatus.EXPIRED, resolved_at=now)
        if updated:
            transaction.on_commit(lambda: choice_expired.send(sender=PendingAwardChoice, choice_id=pk))
        return bool(updated)

    @classmethod
    def _get_for_update(cls, choice_id) -> PendingAwardChoice:
        """
        Get a choice with a row-level lock.

        MUST be called inside transaction.atomic().
        """
        try:
            return (
                PendingAwardChoice.objects
                .select_for_update(of=("self",))
                .select_related("customer", "business", "rule")
                .get(pk=cls._parse_id(choice_id))
            )
        except PendingAwardChoice.DoesNotExist:
            raise NotFoundError("CHOICE_NOT_FOUND", choice_id=str(choice_id))

    @staticmethod
    def _parse_id(choice_id) -> uuid.UUID:
        if isinstance(choice_id, uuid.UUID):
            return choice_id
        try:
            return uuid.UUID(str(choice_id))
        except ValueError:
            raise NotFoundError("CHOICE_NOT_FOUND", choice_id=str(choice_id))
