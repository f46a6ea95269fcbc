"""Voyage progress: records which steps (rules) of a voyage a customer has fired."""

import logging
from datetime import datetime

from django.db import transaction

from lootman.models import Enrollment, Rule, VoyageProgress, VoyageStatus
from lootman.signals import voyage_completed

logger = logging.getLogger(__name__)


class VoyageService:
    """
    Voyage progress tracking.

    Uses @classmethod for extensibility (consistent with the other services).
    """

    @classmethod
    def record_step(cls, enrollment: Enrollment, rule: Rule, now: datetime) -> VoyageProgress | None:
        """
        Mark ``rule`` as a completed step of its voyage.

        MUST be called inside transaction.atomic(), after the rule fired.

        Returns:
            VoyageProgress, or None when the rule belongs to no voyage
        """
        if not rule.voyage_id:
            return None

        progress, created = VoyageProgress.objects.select_for_update().get_or_create(
            voyage_id=rule.voyage_id,
            enrollment=enrollment,
            defaults={"started_at": now, "completed_rule_codes": []},
        )

        completed = list(progress.completed_rule_codes or [])
        if rule.code in completed:
            return progress

        completed.append(rule.code)
        progress.completed_rule_codes = completed
        progress.current_step = len(completed)

        steps = set(
            Rule.objects.filter(voyage_id=rule.voyage_id, is_active=True).values_list("code", flat=True)
        )
        if progress.status != VoyageStatus.COMPLETED and steps <= set(completed):
            progress.status = VoyageStatus.COMPLETED
            progress.completed_at = now
            logger.info("Voyage %s completed by enrollment %s", rule.voyage_id, enrollment.pk)
            transaction.on_commit(lambda: voyage_completed.send(sender=VoyageProgress, progress=progress))

        progress.save(update_fields=["completed_rule_codes", "current_step", "status", "completed_at"])
        return progress

    @classmethod
    def progress(cls, enrollment: Enrollment) -> list[VoyageProgress]:
        """All voyage progress of an enrollment."""
        return list(
            VoyageProgress.objects.filter(enrollment=enrollment)
            .select_related("voyage")
            .order_by("started_at")
        )
