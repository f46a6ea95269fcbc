# Generated migration for per-location visit history

import django.db.models.deletion
import django.utils.timezone
from django.db import migrations, models


class Migration(migrations.Migration):

    dependencies = [
        ("lootman", "0001_initial"),
    ]

    operations = [
        migrations.CreateModel(
            name="LocationVisit",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("location_code", models.CharField(max_length=50, verbose_name="location")),
                (
                    "event_ref",
                    models.CharField(
                        blank=True,
                        help_text="Causing event (e.g. txn:123)",
                        max_length=100,
                        verbose_name="event reference",
                    ),
                ),
                ("visited_at", models.DateTimeField(default=django.utils.timezone.now, verbose_name="visited at")),
                (
                    "enrollment",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="location_visits",
                        to="lootman.enrollment",
                        verbose_name="enrollment",
                    ),
                ),
            ],
            options={
                "verbose_name": "location visit",
                "verbose_name_plural": "location visits",
                "ordering": ["-visited_at"],
                "indexes": [
                    models.Index(fields=["enrollment", "location_code"], name="lootman_visit_location_idx"),
                ],
                "constraints": [
                    models.UniqueConstraint(
                        condition=models.Q(("event_ref", ""), _negated=True),
                        fields=("enrollment", "event_ref"),
                        name="lootman_visit_once_per_event",
                    ),
                ],
            },
        ),
    ]
