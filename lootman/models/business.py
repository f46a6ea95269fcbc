"""Business and Location models (tenants)."""

from django.db import models
from django.utils.translation import gettext_lazy as _


class Business(models.Model):
    """
    A registered business (tenant).

    Rules, rewards, voyages and enrollments all belong to exactly one business.
    """

    code = models.CharField(
        _("code"),
        max_length=50,
        unique=True,
        help_text=_("Unique business code (e.g. BIZ-001)"),
    )
    name = models.CharField(_("name"), max_length=200)
    timezone = models.CharField(
        _("timezone"),
        max_length=64,
        blank=True,
        help_text=_("IANA timezone for time-based rule conditions"),
    )
    is_active = models.BooleanField(_("active"), default=True)
    created_at = models.DateTimeField(_("created at"), auto_now_add=True)

    class Meta:
        verbose_name = _("business")
        verbose_name_plural = _("businesses")
        ordering = ["name"]

    def __str__(self):
        return f"{self.name} ({self.code})"


class Location(models.Model):
    """Physical location of a business. Award groups can be tied to one."""

    business = models.ForeignKey(
        Business,
        on_delete=models.CASCADE,
        related_name="locations",
        verbose_name=_("business"),
    )
    code = models.CharField(_("code"), max_length=50, unique=True)
    name = models.CharField(_("name"), max_length=200)
    icon = models.CharField(_("icon"), max_length=20, blank=True)
    is_active = models.BooleanField(_("active"), default=True)

    class Meta:
        verbose_name = _("location")
        verbose_name_plural = _("locations")
        ordering = ["name"]

    def __str__(self):
        return f"{self.name} ({self.code})"
