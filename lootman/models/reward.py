"""Reward catalogue and unlocked customer rewards."""

from django.db import models
from django.db.models import Q
from django.utils import timezone
from django.utils.translation import gettext_lazy as _


class RewardStatus(models.TextChoices):
    AVAILABLE = "available", _("Available")
    REDEEMED = "redeemed", _("Redeemed")
    EXPIRED = "expired", _("Expired")
    VOIDED = "voided", _("Voided")


class RewardSource(models.TextChoices):
    RULE_UNLOCK = "rule_unlock", _("Unlocked by rule")
    POINTS_REDEMPTION = "points_redemption", _("Points redemption")
    MANUAL = "manual", _("Manual")


class Reward(models.Model):
    """A reward a business offers."""

    business = models.ForeignKey(
        "lootman.Business",
        on_delete=models.CASCADE,
        related_name="rewards",
        verbose_name=_("business"),
    )
    code = models.CharField(_("code"), max_length=50, unique=True)
    name = models.CharField(_("name"), max_length=200)
    icon = models.CharField(_("icon"), max_length=20, blank=True)
    expires_days = models.PositiveIntegerField(
        _("expires after (days)"),
        null=True,
        blank=True,
        help_text=_("Days an unlocked reward stays redeemable"),
    )
    is_active = models.BooleanField(_("active"), default=True)

    class Meta:
        verbose_name = _("reward")
        verbose_name_plural = _("rewards")

    def __str__(self):
        return f"{self.name} ({self.code})"


class CustomerReward(models.Model):
    """
    A reward unlocked for an enrollment.

    At most one ``available`` row per (enrollment, reward): unlocking an
    already-available reward is a no-op.
    """

    enrollment = models.ForeignKey(
        "lootman.Enrollment",
        on_delete=models.CASCADE,
        related_name="rewards",
        verbose_name=_("enrollment"),
    )
    reward = models.ForeignKey(
        Reward,
        on_delete=models.PROTECT,
        related_name="unlocks",
        verbose_name=_("reward"),
    )
    source_type = models.CharField(
        _("source"),
        max_length=30,
        choices=RewardSource.choices,
        default=RewardSource.RULE_UNLOCK,
    )
    source_ref = models.CharField(
        _("source reference"),
        max_length=100,
        blank=True,
        help_text=_("Rule or choice that unlocked it (e.g. rule:VISIT-5)"),
    )
    status = models.CharField(
        _("status"),
        max_length=20,
        choices=RewardStatus.choices,
        default=RewardStatus.AVAILABLE,
    )
    redemption_code = models.CharField(_("redemption code"), max_length=32, unique=True)
    earned_at = models.DateTimeField(_("earned at"), default=timezone.now)
    expires_at = models.DateTimeField(_("expires at"), null=True, blank=True)

    class Meta:
        verbose_name = _("customer reward")
        verbose_name_plural = _("customer rewards")
        constraints = [
            models.UniqueConstraint(
                fields=["enrollment", "reward"],
                condition=Q(status="available"),
                name="lootman_one_available_reward",
            ),
        ]

    def __str__(self):
        return f"{self.reward_id} [{self.status}] {self.redemption_code}"
