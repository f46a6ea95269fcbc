"""
AwardGrant: idempotency receipt for Award Applier batches.

One row per (enrollment, source_key). A retried batch with the same key
returns the stored results instead of mutating the enrollment again.
"""

from datetime import timedelta

from django.db import models
from django.utils import timezone
from django.utils.translation import gettext_lazy as _


class AwardGrant(models.Model):
    """Applied award batch, keyed to the event or choice that caused it."""

    enrollment = models.ForeignKey(
        "lootman.Enrollment",
        on_delete=models.CASCADE,
        related_name="grants",
        verbose_name=_("enrollment"),
    )
    source_key = models.CharField(
        _("source key"),
        max_length=200,
        help_text=_("choice:<uuid>, rule:<code>:event:<ref> or trigger:<id>"),
    )
    results = models.JSONField(_("results"), default=list)
    created_at = models.DateTimeField(_("created at"), default=timezone.now)

    class Meta:
        db_table = "lootman_award_grant"
        verbose_name = _("award grant")
        verbose_name_plural = _("award grants")
        constraints = [
            models.UniqueConstraint(
                fields=["enrollment", "source_key"],
                name="lootman_unique_grant_source",
            ),
        ]
        indexes = [
            models.Index(fields=["created_at"], name="lootman_grant_created_idx"),
        ]

    def __str__(self):
        return f"{self.enrollment_id}:{self.source_key[:40]}"

    @classmethod
    def cleanup_old_grants(cls, days: int | None = None):
        """Remove receipts older than N days."""
        if days is None:
            from lootman.conf import lootman_settings
            days = lootman_settings.GRANT_CLEANUP_DAYS
        cutoff = timezone.now() - timedelta(days=days)
        return cls.objects.filter(created_at__lt=cutoff).delete()
