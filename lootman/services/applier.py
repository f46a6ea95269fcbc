"""Award applier: the single entry point that mutates enrollment state.

Every batch runs inside transaction.atomic() with the enrollment row locked,
bumps Enrollment.version, and leaves an AwardGrant receipt keyed by the
causing event or choice so a retried batch is replayed, not re-applied.
"""

import logging
import uuid
from dataclasses import asdict, dataclass
from datetime import datetime, timedelta

from django.db import transaction
from django.utils import timezone
from django.utils.crypto import get_random_string

from lootman.awards import ApplyTag, BonusPoints, Multiplier, UnlockReward, parse_award
from lootman.conf import MULTIPLIER_POLICIES, lootman_settings
from lootman.exceptions import ConfigurationError, NotFoundError
from lootman.models import (
    AwardGrant,
    CustomerReward,
    CustomerTag,
    Enrollment,
    Reward,
    RewardSource,
    RewardStatus,
    Rule,
    TagSource,
)
from lootman.signals import award_granted

logger = logging.getLogger(__name__)

REDEMPTION_ALPHABET = "ABCDEFGHJKLMNPQRSTUVWXYZ23456789"


@dataclass
class AppliedAward:
    """Outcome of one award. Stored as JSON in awards_given."""

    type: str
    award: dict
    action: str
    points_awarded: int = 0
    balance_after: int | None = None
    multiplier: str | None = None
    expires_at: str | None = None
    reward_id: str | None = None
    reward_name: str = ""
    redemption_code: str = ""
    tag: str = ""

    def as_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict) -> "AppliedAward":
        return cls(**data)


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value else None


class AwardApplier:
    """
    Applies awards to an enrollment.

    Uses @classmethod for extensibility (consistent with the other services).
    """

    @classmethod
    def apply(
        cls,
        customer_code: str,
        business_code: str,
        awards: list,
        source_key: str = "",
        source_ref: str = "",
        rule: Rule | None = None,
        now: datetime | None = None,
    ) -> list[AppliedAward]:
        """
        Apply awards to a customer's enrollment at a business.

        Args:
            customer_code: Customer code
            business_code: Business code
            awards: Award objects or their dict form
            source_key: Idempotency key of the causing event/choice. A second
                call with the same key returns the first call's results.
            source_ref: Human reference stored on unlocked rewards
            rule: Rule that caused the awards (tag provenance)
            now: Application instant

        Returns:
            One AppliedAward per award, in order

        Raises:
            NotFoundError: Not enrolled, or unknown reward
            ConfigurationError: Malformed award or multiplier policy
        """
        with transaction.atomic():
            enrollment = cls.lock_enrollment(customer_code, business_code)
            return cls.apply_to_enrollment(
                enrollment,
                awards,
                source_key=source_key,
                source_ref=source_ref,
                rule=rule,
                now=now,
            )

    @classmethod
    def lock_enrollment(cls, customer_code: str, business_code: str) -> Enrollment:
        """
        Get the active enrollment with a row-level lock.

        MUST be called inside transaction.atomic().
        Prevents lost updates when one customer triggers events concurrently.
        """
        try:
            return (
                Enrollment.objects
                .select_for_update(of=("self",))
                .select_related("customer", "business")
                .get(
                    customer__code=customer_code,
                    customer__is_active=True,
                    business__code=business_code,
                    is_active=True,
                )
            )
        except Enrollment.DoesNotExist:
            raise NotFoundError(
                "ENROLLMENT_NOT_FOUND",
                customer_code=customer_code,
                business_code=business_code,
            )

    @classmethod
    def apply_to_enrollment(
        cls,
        enrollment: Enrollment,
        awards: list,
        source_key: str = "",
        source_ref: str = "",
        rule: Rule | None = None,
        now: datetime | None = None,
    ) -> list[AppliedAward]:
        """
        Apply awards to an enrollment already locked by lock_enrollment().

        MUST be called inside transaction.atomic().
        """
        now = now or timezone.now()
        parsed = [parse_award(a) for a in awards]

        with transaction.atomic():
            if source_key:
                grant = AwardGrant.objects.filter(enrollment=enrollment, source_key=source_key).first()
                if grant:
                    logger.info("Award batch %s already applied to enrollment %s", source_key, enrollment.pk)
                    return [AppliedAward.from_dict(r) for r in grant.results]
            else:
                source_key = f"adhoc:{uuid.uuid4().hex}"

            results = [
                cls._apply_award(enrollment, award, source_ref or source_key, rule, now)
                for award in parsed
            ]

            enrollment.version += 1
            enrollment.save(update_fields=[
                "points_balance",
                "lifetime_points",
                "points_multiplier",
                "multiplier_expires_at",
                "version",
                "updated_at",
            ])

            AwardGrant.objects.create(
                enrollment=enrollment,
                source_key=source_key,
                results=[r.as_dict() for r in results],
                created_at=now,
            )

            transaction.on_commit(
                lambda: award_granted.send(
                    sender=Enrollment,
                    enrollment=enrollment,
                    results=results,
                    source_key=source_key,
                )
            )

        return results

    # ======================================================================
    # Per-type handlers
    # ======================================================================

    @classmethod
    def _apply_award(cls, enrollment, award, source_ref, rule, now) -> AppliedAward:
        if isinstance(award, BonusPoints):
            return cls._bonus_points(enrollment, award)
        if isinstance(award, Multiplier):
            return cls._multiplier(enrollment, award, now)
        if isinstance(award, UnlockReward):
            return cls._unlock_reward(enrollment, award, source_ref, now)
        if isinstance(award, ApplyTag):
            return cls._apply_tag(enrollment, award, rule, now)
        raise ConfigurationError("INVALID_AWARD", award=repr(award))

    @classmethod
    def _bonus_points(cls, enrollment, award: BonusPoints) -> AppliedAward:
        enrollment.points_balance += award.value
        enrollment.lifetime_points += award.value
        return AppliedAward(
            type=award.type,
            award=award.to_dict(),
            action="credited",
            points_awarded=award.value,
            balance_after=enrollment.points_balance,
        )

    @classmethod
    def _multiplier(cls, enrollment, award: Multiplier, now) -> AppliedAward:
        policy = lootman_settings.MULTIPLIER_POLICY
        if policy not in MULTIPLIER_POLICIES:
            raise ConfigurationError("INVALID_MULTIPLIER_POLICY", policy=policy)

        expires_at = award.expires_at(now)
        action = "set"

        if policy == "highest" and cls._current_wins(enrollment, award.value, expires_at, now):
            action = "kept"
        else:
            enrollment.points_multiplier = award.value
            enrollment.multiplier_expires_at = expires_at

        return AppliedAward(
            type=award.type,
            award=award.to_dict(),
            action=action,
            multiplier=str(enrollment.points_multiplier),
            expires_at=_iso(enrollment.multiplier_expires_at),
        )

    @staticmethod
    def _current_wins(enrollment, value, expires_at, now) -> bool:
        """Under the "highest" policy, does the active multiplier beat the new one?"""
        current = enrollment.active_multiplier(now)
        if current != value:
            return current > value
        # Same value: keep whichever lasts longer
        current_expiry = enrollment.multiplier_expires_at
        if current_expiry is None:
            return True
        return expires_at is not None and current_expiry >= expires_at

    @classmethod
    def _unlock_reward(cls, enrollment, award: UnlockReward, source_ref, now) -> AppliedAward:
        try:
            reward = Reward.objects.get(
                code=award.reward,
                business_id=enrollment.business_id,
                is_active=True,
            )
        except Reward.DoesNotExist:
            raise NotFoundError("REWARD_NOT_FOUND", reward_id=award.reward)

        existing = CustomerReward.objects.filter(
            enrollment=enrollment,
            reward=reward,
            status=RewardStatus.AVAILABLE,
        ).first()

        if existing and existing.expires_at and existing.expires_at <= now:
            existing.status = RewardStatus.EXPIRED
            existing.save(update_fields=["status"])
            existing = None

        if existing:
            return AppliedAward(
                type=award.type,
                award=award.to_dict(),
                action="already_unlocked",
                reward_id=reward.code,
                reward_name=reward.name,
                redemption_code=existing.redemption_code,
                expires_at=_iso(existing.expires_at),
            )

        expires_at = now + timedelta(days=reward.expires_days) if reward.expires_days else None
        unlocked = CustomerReward.objects.create(
            enrollment=enrollment,
            reward=reward,
            source_type=RewardSource.RULE_UNLOCK,
            source_ref=source_ref[:100],
            redemption_code=get_random_string(
                lootman_settings.REDEMPTION_CODE_LENGTH,
                allowed_chars=REDEMPTION_ALPHABET,
            ),
            earned_at=now,
            expires_at=expires_at,
        )
        return AppliedAward(
            type=award.type,
            award=award.to_dict(),
            action="unlocked",
            reward_id=reward.code,
            reward_name=reward.name,
            redemption_code=unlocked.redemption_code,
            expires_at=_iso(expires_at),
        )

    @classmethod
    def _apply_tag(cls, enrollment, award: ApplyTag, rule, now) -> AppliedAward:
        expires_at = now + timedelta(days=award.expires_days) if award.expires_days else None

        tag, created = CustomerTag.objects.get_or_create(
            customer_id=enrollment.customer_id,
            business_id=enrollment.business_id,
            tag=award.tag,
            defaults={
                "source_type": TagSource.RULE,
                "source_rule": rule,
                "created_at": now,
                "expires_at": expires_at,
            },
        )

        action = "created" if created else "unchanged"
        if not created and (expires_at is not None or not tag.is_active_at(now)):
            tag.expires_at = expires_at
            tag.save(update_fields=["expires_at"])
            action = "updated"

        return AppliedAward(
            type=award.type,
            award=award.to_dict(),
            action=action,
            tag=award.tag,
            expires_at=_iso(tag.expires_at),
        )
