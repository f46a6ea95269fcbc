"""Customer tags: segmentation labels applied by rules or staff."""

from django.db import models
from django.utils import timezone
from django.utils.translation import gettext_lazy as _


class TagSource(models.TextChoices):
    RULE = "rule", _("Rule")
    MANUAL = "manual", _("Manual")
    IMPORT = "import", _("Import")


class CustomerTag(models.Model):
    """Tag on a customer, scoped to a business. Set semantics per (customer, business, tag)."""

    customer = models.ForeignKey(
        "lootman.Customer",
        on_delete=models.CASCADE,
        related_name="tags",
        verbose_name=_("customer"),
    )
    business = models.ForeignKey(
        "lootman.Business",
        on_delete=models.CASCADE,
        related_name="customer_tags",
        verbose_name=_("business"),
    )
    tag = models.CharField(_("tag"), max_length=100)
    source_type = models.CharField(
        _("source"),
        max_length=20,
        choices=TagSource.choices,
        default=TagSource.RULE,
    )
    source_rule = models.ForeignKey(
        "lootman.Rule",
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="+",
        verbose_name=_("source rule"),
    )
    created_at = models.DateTimeField(_("created at"), default=timezone.now)
    expires_at = models.DateTimeField(_("expires at"), null=True, blank=True)

    class Meta:
        verbose_name = _("customer tag")
        verbose_name_plural = _("customer tags")
        constraints = [
            models.UniqueConstraint(
                fields=["customer", "business", "tag"],
                name="lootman_unique_customer_tag",
            ),
        ]

    def __str__(self):
        return self.tag

    def is_active_at(self, now) -> bool:
        return self.expires_at is None or self.expires_at > now
