"""Rule definitions and the audit trail of rule firings."""

from django.db import models
from django.db.models import Q
from django.utils import timezone
from django.utils.translation import gettext_lazy as _


class TriggerKind(models.TextChoices):
    VISIT = "visit", _("Visit recorded")
    SPEND_THRESHOLD = "spend_threshold", _("Spend threshold crossed")
    VOYAGE_STEP = "voyage_step", _("Voyage step completed")
    MILESTONE = "milestone", _("Milestone reached")


class Rule(models.Model):
    """
    Configured condition → award mapping for a business.

    ``conditions`` is a predicate tree; ``awards`` is the award template
    (a list of awards, or an AND/OR structure of award groups). Both are
    owned by the rule admin and read-only to the engine.
    """

    business = models.ForeignKey(
        "lootman.Business",
        on_delete=models.CASCADE,
        related_name="rules",
        verbose_name=_("business"),
    )
    voyage = models.ForeignKey(
        "lootman.Voyage",
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="rules",
        verbose_name=_("voyage"),
    )

    code = models.CharField(_("code"), max_length=50, unique=True)
    name = models.CharField(_("name"), max_length=200)
    display_name = models.CharField(_("display name"), max_length=200, blank=True)
    icon = models.CharField(_("icon"), max_length=20, blank=True)

    trigger_kind = models.CharField(
        _("trigger"),
        max_length=20,
        choices=TriggerKind.choices,
    )
    conditions = models.JSONField(_("conditions"), null=True, blank=True)
    awards = models.JSONField(_("awards"), default=list, blank=True)

    # Behaviour
    is_repeatable = models.BooleanField(_("repeatable"), default=False)
    cooldown_days = models.PositiveIntegerField(_("cooldown (days)"), null=True, blank=True)
    max_triggers_per_customer = models.PositiveIntegerField(
        _("max triggers per customer"),
        null=True,
        blank=True,
    )
    choice_window_hours = models.PositiveIntegerField(
        _("choice window (hours)"),
        null=True,
        blank=True,
        help_text=_("How long customers have to pick an award option"),
    )

    sequence_order = models.PositiveIntegerField(_("step order"), null=True, blank=True)
    priority = models.IntegerField(_("priority"), default=0)

    is_active = models.BooleanField(_("active"), default=False)
    starts_at = models.DateTimeField(_("starts at"), null=True, blank=True)
    ends_at = models.DateTimeField(_("ends at"), null=True, blank=True)

    created_at = models.DateTimeField(_("created at"), auto_now_add=True)
    updated_at = models.DateTimeField(_("updated at"), auto_now=True)

    class Meta:
        verbose_name = _("rule")
        verbose_name_plural = _("rules")
        ordering = ["-priority", "code"]
        indexes = [
            models.Index(fields=["business", "trigger_kind", "is_active"], name="lootman_rule_kind_idx"),
        ]

    def __str__(self):
        return f"{self.display_name or self.name} ({self.code})"


class RuleTrigger(models.Model):
    """
    Immutable record of a rule firing for an enrollment.

    ``event_ref`` identifies the causing event when the caller supplies one;
    a rule fires at most once per (enrollment, event_ref).
    """

    rule = models.ForeignKey(
        Rule,
        on_delete=models.PROTECT,
        related_name="triggers",
        verbose_name=_("rule"),
    )
    enrollment = models.ForeignKey(
        "lootman.Enrollment",
        on_delete=models.CASCADE,
        related_name="rule_triggers",
        verbose_name=_("enrollment"),
    )
    trigger_kind = models.CharField(_("trigger"), max_length=20, choices=TriggerKind.choices)
    event_ref = models.CharField(
        _("event reference"),
        max_length=100,
        blank=True,
        help_text=_("Causing event (e.g. txn:123)"),
    )

    awards_given = models.JSONField(_("awards given"), default=list, blank=True)
    points_awarded = models.IntegerField(_("points awarded"), default=0)
    deferred = models.BooleanField(
        _("deferred"),
        default=False,
        help_text=_("Awards wait on a customer choice"),
    )
    context = models.JSONField(_("evaluation context"), default=dict, blank=True)
    triggered_at = models.DateTimeField(_("triggered at"), default=timezone.now, db_index=True)

    class Meta:
        verbose_name = _("rule trigger")
        verbose_name_plural = _("rule triggers")
        ordering = ["-triggered_at"]
        indexes = [
            models.Index(fields=["enrollment", "rule"], name="lootman_trig_enroll_rule_idx"),
        ]
        constraints = [
            models.UniqueConstraint(
                fields=["rule", "enrollment", "event_ref"],
                condition=~Q(event_ref=""),
                name="lootman_rule_fires_once_per_event",
            ),
        ]

    def __str__(self):
        return f"{self.rule_id} → {self.enrollment_id} @ {self.triggered_at:%Y-%m-%d %H:%M}"
