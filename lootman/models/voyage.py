"""Voyages: multi-step quest chains made of rules."""

from django.db import models
from django.utils.translation import gettext_lazy as _


class Voyage(models.Model):
    """A quest chain. Each of its rules is one step."""

    business = models.ForeignKey(
        "lootman.Business",
        on_delete=models.CASCADE,
        related_name="voyages",
        verbose_name=_("business"),
    )
    code = models.CharField(_("code"), max_length=50, unique=True)
    name = models.CharField(_("name"), max_length=200)
    display_name = models.CharField(_("display name"), max_length=200, blank=True)
    icon = models.CharField(_("icon"), max_length=20, blank=True)
    is_active = models.BooleanField(_("active"), default=True)

    class Meta:
        verbose_name = _("voyage")
        verbose_name_plural = _("voyages")

    def __str__(self):
        return f"{self.display_name or self.name} ({self.code})"


class VoyageStatus(models.TextChoices):
    IN_PROGRESS = "in_progress", _("In progress")
    COMPLETED = "completed", _("Completed")


class VoyageProgress(models.Model):
    """A customer's progress through one voyage."""

    voyage = models.ForeignKey(
        Voyage,
        on_delete=models.CASCADE,
        related_name="progress",
        verbose_name=_("voyage"),
    )
    enrollment = models.ForeignKey(
        "lootman.Enrollment",
        on_delete=models.CASCADE,
        related_name="voyage_progress",
        verbose_name=_("enrollment"),
    )
    status = models.CharField(
        _("status"),
        max_length=20,
        choices=VoyageStatus.choices,
        default=VoyageStatus.IN_PROGRESS,
    )
    completed_rule_codes = models.JSONField(_("completed steps"), default=list, blank=True)
    current_step = models.PositiveIntegerField(_("current step"), default=0)
    started_at = models.DateTimeField(_("started at"))
    completed_at = models.DateTimeField(_("completed at"), null=True, blank=True)

    class Meta:
        verbose_name = _("voyage progress")
        verbose_name_plural = _("voyage progress")
        constraints = [
            models.UniqueConstraint(
                fields=["voyage", "enrollment"],
                name="lootman_unique_voyage_progress",
            ),
        ]

    def __str__(self):
        return f"{self.voyage_id}: step {self.current_step} [{self.status}]"
