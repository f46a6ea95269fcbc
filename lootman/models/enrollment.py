"""Enrollment model: a customer's loyalty state at one business."""

from decimal import Decimal

from django.db import models
from django.utils import timezone
from django.utils.translation import gettext_lazy as _


class Enrollment(models.Model):
    """
    Customer × business loyalty state.

    Points balance and multiplier are only ever mutated through
    AwardApplier, which locks the row and bumps ``version`` on every batch.
    Spend and visit totals are maintained by the visit-recording caller.
    """

    customer = models.ForeignKey(
        "lootman.Customer",
        on_delete=models.CASCADE,
        related_name="enrollments",
        verbose_name=_("customer"),
    )
    business = models.ForeignKey(
        "lootman.Business",
        on_delete=models.CASCADE,
        related_name="enrollments",
        verbose_name=_("business"),
    )

    # Points
    points_balance = models.IntegerField(_("points balance"), default=0)
    lifetime_points = models.IntegerField(
        _("lifetime points"),
        default=0,
        help_text=_("Total points ever earned (never decreases)"),
    )

    # Activity totals
    lifetime_spend_q = models.BigIntegerField(
        _("lifetime spend (cents)"),
        default=0,
    )
    visit_count = models.IntegerField(_("visits"), default=0)
    tier = models.CharField(_("tier"), max_length=20, default="member")

    # Multiplier
    points_multiplier = models.DecimalField(
        _("points multiplier"),
        max_digits=6,
        decimal_places=2,
        default=Decimal("1.00"),
    )
    multiplier_expires_at = models.DateTimeField(
        _("multiplier expires at"),
        null=True,
        blank=True,
        help_text=_("Empty means the multiplier is permanent"),
    )

    version = models.PositiveIntegerField(_("version"), default=0)

    is_active = models.BooleanField(_("active"), default=True)
    enrolled_at = models.DateTimeField(_("enrolled at"), default=timezone.now)
    last_visit_at = models.DateTimeField(_("last visit at"), null=True, blank=True)
    updated_at = models.DateTimeField(_("updated at"), auto_now=True)

    class Meta:
        verbose_name = _("enrollment")
        verbose_name_plural = _("enrollments")
        constraints = [
            models.UniqueConstraint(
                fields=["customer", "business"],
                name="lootman_unique_enrollment",
            ),
        ]

    def __str__(self):
        return f"{self.customer_id}@{self.business_id}: {self.points_balance}pts"

    def active_multiplier(self, now=None) -> Decimal:
        """Multiplier in effect at ``now`` (1.00 once it has expired)."""
        now = now or timezone.now()
        if self.multiplier_expires_at and self.multiplier_expires_at <= now:
            return Decimal("1.00")
        return self.points_multiplier
