"""Customer model.

Identity only. Authentication (phone OTP, sessions) lives outside Lootman;
per-business loyalty state lives on Enrollment.
"""

import uuid as uuid_lib

from django.db import models
from django.utils.translation import gettext_lazy as _


class Customer(models.Model):
    """Registered customer."""

    code = models.CharField(
        _("code"),
        max_length=50,
        unique=True,
        help_text=_("Unique customer code (e.g. CUST-001)"),
    )
    uuid = models.UUIDField(default=uuid_lib.uuid4, editable=False, unique=True)

    name = models.CharField(_("name"), max_length=200, blank=True)
    phone = models.CharField(_("phone"), max_length=20, blank=True, db_index=True)

    is_active = models.BooleanField(_("active"), default=True, db_index=True)
    created_at = models.DateTimeField(_("created at"), auto_now_add=True)

    class Meta:
        verbose_name = _("customer")
        verbose_name_plural = _("customers")
        ordering = ["code"]

    def __str__(self):
        return f"{self.name} ({self.code})" if self.name else self.code
