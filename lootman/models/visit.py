"""Location visits: per-location history for location_visit conditions."""

from django.db import models
from django.db.models import Q
from django.utils import timezone
from django.utils.translation import gettext_lazy as _


class LocationVisit(models.Model):
    """
    One visit of an enrollment at a location.

    Written by AwardService.record_trigger for visit events that carry a
    location; a visit is recorded at most once per (enrollment, event_ref).
    """

    enrollment = models.ForeignKey(
        "lootman.Enrollment",
        on_delete=models.CASCADE,
        related_name="location_visits",
        verbose_name=_("enrollment"),
    )
    location_code = models.CharField(_("location"), max_length=50)
    event_ref = models.CharField(
        _("event reference"),
        max_length=100,
        blank=True,
        help_text=_("Causing event (e.g. txn:123)"),
    )
    visited_at = models.DateTimeField(_("visited at"), default=timezone.now)

    class Meta:
        verbose_name = _("location visit")
        verbose_name_plural = _("location visits")
        ordering = ["-visited_at"]
        indexes = [
            models.Index(fields=["enrollment", "location_code"], name="lootman_visit_location_idx"),
        ]
        constraints = [
            models.UniqueConstraint(
                fields=["enrollment", "event_ref"],
                condition=~Q(event_ref=""),
                name="lootman_visit_once_per_event",
            ),
        ]

    def __str__(self):
        return f"{self.enrollment_id} @ {self.location_code} {self.visited_at:%Y-%m-%d %H:%M}"
