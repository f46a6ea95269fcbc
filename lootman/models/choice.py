"""
PendingAwardChoice: an award plan waiting for the customer to pick a group.

State machine:
    pending → claimed | expired | cancelled

Terminal states are final. Only ChoiceService mutates these rows, always
with ``status='pending'`` as the update precondition.
"""

import uuid

from django.db import models
from django.db.models import Q
from django.utils import timezone
from django.utils.translation import gettext_lazy as _


class ChoiceStatus(models.TextChoices):
    PENDING = "pending", _("Pending")
    CLAIMED = "claimed", _("Claimed")
    EXPIRED = "expired", _("Expired")
    CANCELLED = "cancelled", _("Cancelled")


class PendingAwardChoice(models.Model):
    """Unresolved multi-group award. Never deleted (audit)."""

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)

    customer = models.ForeignKey(
        "lootman.Customer",
        on_delete=models.CASCADE,
        related_name="award_choices",
        verbose_name=_("customer"),
    )
    business = models.ForeignKey(
        "lootman.Business",
        on_delete=models.CASCADE,
        related_name="award_choices",
        verbose_name=_("business"),
    )
    rule = models.ForeignKey(
        "lootman.Rule",
        on_delete=models.PROTECT,
        related_name="award_choices",
        verbose_name=_("rule"),
    )
    rule_trigger = models.ForeignKey(
        "lootman.RuleTrigger",
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="award_choices",
        verbose_name=_("rule trigger"),
    )

    award_options = models.JSONField(
        _("award options"),
        help_text=_("Ordered list of award groups"),
    )
    status = models.CharField(
        _("status"),
        max_length=20,
        choices=ChoiceStatus.choices,
        default=ChoiceStatus.PENDING,
    )

    # Claim tracking
    claimed_group_index = models.PositiveSmallIntegerField(
        _("claimed group"),
        null=True,
        blank=True,
    )
    claimed_location = models.ForeignKey(
        "lootman.Location",
        to_field="code",
        on_delete=models.PROTECT,
        null=True,
        blank=True,
        related_name="+",
        verbose_name=_("claimed location"),
    )
    claimed_at = models.DateTimeField(_("claimed at"), null=True, blank=True)
    awards_given = models.JSONField(_("awards given"), null=True, blank=True)

    created_at = models.DateTimeField(_("created at"), default=timezone.now, db_index=True)
    expires_at = models.DateTimeField(_("expires at"), null=True, blank=True)
    resolved_at = models.DateTimeField(
        _("resolved at"),
        null=True,
        blank=True,
        help_text=_("When the choice left the pending state"),
    )

    class Meta:
        verbose_name = _("pending award choice")
        verbose_name_plural = _("pending award choices")
        ordering = ["-created_at"]
        indexes = [
            models.Index(fields=["customer", "business", "status"], name="lootman_choice_owner_idx"),
            models.Index(fields=["status", "expires_at"], name="lootman_choice_expiry_idx"),
        ]
        constraints = [
            models.CheckConstraint(
                condition=(
                    Q(
                        status="claimed",
                        claimed_group_index__isnull=False,
                        claimed_at__isnull=False,
                        awards_given__isnull=False,
                    )
                    | (
                        ~Q(status="claimed")
                        & Q(
                            claimed_group_index__isnull=True,
                            claimed_location__isnull=True,
                            claimed_at__isnull=True,
                            awards_given__isnull=True,
                        )
                    )
                ),
                name="lootman_choice_claim_fields",
            ),
        ]

    def __str__(self):
        return f"{self.rule_id} → {self.customer_id} [{self.status}]"

    @property
    def is_pending(self) -> bool:
        return self.status == ChoiceStatus.PENDING

    def is_past_expiry(self, now=None) -> bool:
        """True once ``now`` is strictly after ``expires_at``."""
        if self.expires_at is None:
            return False
        return (now or timezone.now()) > self.expires_at

    @property
    def groups(self):
        """Deserialized award options (tuple of AwardGroup)."""
        from lootman.awards import load_groups

        return load_groups(self.award_options)
