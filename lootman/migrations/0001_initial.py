# Generated migration for the Lootman award engine

import uuid
from decimal import Decimal

import django.db.models.deletion
import django.utils.timezone
from django.db import migrations, models


TRIGGER_KINDS = [
    ("visit", "Visit recorded"),
    ("spend_threshold", "Spend threshold crossed"),
    ("voyage_step", "Voyage step completed"),
    ("milestone", "Milestone reached"),
]


class Migration(migrations.Migration):

    initial = True

    dependencies = []

    operations = [
        migrations.CreateModel(
            name="Business",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                (
                    "code",
                    models.CharField(
                        help_text="Unique business code (e.g. BIZ-001)",
                        max_length=50,
                        unique=True,
                        verbose_name="code",
                    ),
                ),
                ("name", models.CharField(max_length=200, verbose_name="name")),
                (
                    "timezone",
                    models.CharField(
                        blank=True,
                        help_text="IANA timezone for time-based rule conditions",
                        max_length=64,
                        verbose_name="timezone",
                    ),
                ),
                ("is_active", models.BooleanField(default=True, verbose_name="active")),
                ("created_at", models.DateTimeField(auto_now_add=True, verbose_name="created at")),
            ],
            options={
                "verbose_name": "business",
                "verbose_name_plural": "businesses",
                "ordering": ["name"],
            },
        ),
        migrations.CreateModel(
            name="Customer",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                (
                    "code",
                    models.CharField(
                        help_text="Unique customer code (e.g. CUST-001)",
                        max_length=50,
                        unique=True,
                        verbose_name="code",
                    ),
                ),
                ("uuid", models.UUIDField(default=uuid.uuid4, editable=False, unique=True)),
                ("name", models.CharField(blank=True, max_length=200, verbose_name="name")),
                ("phone", models.CharField(blank=True, db_index=True, max_length=20, verbose_name="phone")),
                ("is_active", models.BooleanField(db_index=True, default=True, verbose_name="active")),
                ("created_at", models.DateTimeField(auto_now_add=True, verbose_name="created at")),
            ],
            options={
                "verbose_name": "customer",
                "verbose_name_plural": "customers",
                "ordering": ["code"],
            },
        ),
        migrations.CreateModel(
            name="Location",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("code", models.CharField(max_length=50, unique=True, verbose_name="code")),
                ("name", models.CharField(max_length=200, verbose_name="name")),
                ("icon", models.CharField(blank=True, max_length=20, verbose_name="icon")),
                ("is_active", models.BooleanField(default=True, verbose_name="active")),
                (
                    "business",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="locations",
                        to="lootman.business",
                        verbose_name="business",
                    ),
                ),
            ],
            options={
                "verbose_name": "location",
                "verbose_name_plural": "locations",
                "ordering": ["name"],
            },
        ),
        migrations.CreateModel(
            name="Voyage",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("code", models.CharField(max_length=50, unique=True, verbose_name="code")),
                ("name", models.CharField(max_length=200, verbose_name="name")),
                ("display_name", models.CharField(blank=True, max_length=200, verbose_name="display name")),
                ("icon", models.CharField(blank=True, max_length=20, verbose_name="icon")),
                ("is_active", models.BooleanField(default=True, verbose_name="active")),
                (
                    "business",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="voyages",
                        to="lootman.business",
                        verbose_name="business",
                    ),
                ),
            ],
            options={
                "verbose_name": "voyage",
                "verbose_name_plural": "voyages",
            },
        ),
        migrations.CreateModel(
            name="Enrollment",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("points_balance", models.IntegerField(default=0, verbose_name="points balance")),
                (
                    "lifetime_points",
                    models.IntegerField(
                        default=0,
                        help_text="Total points ever earned (never decreases)",
                        verbose_name="lifetime points",
                    ),
                ),
                ("lifetime_spend_q", models.BigIntegerField(default=0, verbose_name="lifetime spend (cents)")),
                ("visit_count", models.IntegerField(default=0, verbose_name="visits")),
                ("tier", models.CharField(default="member", max_length=20, verbose_name="tier")),
                (
                    "points_multiplier",
                    models.DecimalField(
                        decimal_places=2,
                        default=Decimal("1.00"),
                        max_digits=6,
                        verbose_name="points multiplier",
                    ),
                ),
                (
                    "multiplier_expires_at",
                    models.DateTimeField(
                        blank=True,
                        help_text="Empty means the multiplier is permanent",
                        null=True,
                        verbose_name="multiplier expires at",
                    ),
                ),
                ("version", models.PositiveIntegerField(default=0, verbose_name="version")),
                ("is_active", models.BooleanField(default=True, verbose_name="active")),
                ("enrolled_at", models.DateTimeField(default=django.utils.timezone.now, verbose_name="enrolled at")),
                ("last_visit_at", models.DateTimeField(blank=True, null=True, verbose_name="last visit at")),
                ("updated_at", models.DateTimeField(auto_now=True, verbose_name="updated at")),
                (
                    "business",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="enrollments",
                        to="lootman.business",
                        verbose_name="business",
                    ),
                ),
                (
                    "customer",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="enrollments",
                        to="lootman.customer",
                        verbose_name="customer",
                    ),
                ),
            ],
            options={
                "verbose_name": "enrollment",
                "verbose_name_plural": "enrollments",
                "constraints": [
                    models.UniqueConstraint(
                        fields=("customer", "business"),
                        name="lootman_unique_enrollment",
                    ),
                ],
            },
        ),
        migrations.CreateModel(
            name="Reward",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("code", models.CharField(max_length=50, unique=True, verbose_name="code")),
                ("name", models.CharField(max_length=200, verbose_name="name")),
                ("icon", models.CharField(blank=True, max_length=20, verbose_name="icon")),
                (
                    "expires_days",
                    models.PositiveIntegerField(
                        blank=True,
                        help_text="Days an unlocked reward stays redeemable",
                        null=True,
                        verbose_name="expires after (days)",
                    ),
                ),
                ("is_active", models.BooleanField(default=True, verbose_name="active")),
                (
                    "business",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="rewards",
                        to="lootman.business",
                        verbose_name="business",
                    ),
                ),
            ],
            options={
                "verbose_name": "reward",
                "verbose_name_plural": "rewards",
            },
        ),
        migrations.CreateModel(
            name="Rule",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("code", models.CharField(max_length=50, unique=True, verbose_name="code")),
                ("name", models.CharField(max_length=200, verbose_name="name")),
                ("display_name", models.CharField(blank=True, max_length=200, verbose_name="display name")),
                ("icon", models.CharField(blank=True, max_length=20, verbose_name="icon")),
                ("trigger_kind", models.CharField(choices=TRIGGER_KINDS, max_length=20, verbose_name="trigger")),
                ("conditions", models.JSONField(blank=True, null=True, verbose_name="conditions")),
                ("awards", models.JSONField(blank=True, default=list, verbose_name="awards")),
                ("is_repeatable", models.BooleanField(default=False, verbose_name="repeatable")),
                ("cooldown_days", models.PositiveIntegerField(blank=True, null=True, verbose_name="cooldown (days)")),
                (
                    "max_triggers_per_customer",
                    models.PositiveIntegerField(blank=True, null=True, verbose_name="max triggers per customer"),
                ),
                (
                    "choice_window_hours",
                    models.PositiveIntegerField(
                        blank=True,
                        help_text="How long customers have to pick an award option",
                        null=True,
                        verbose_name="choice window (hours)",
                    ),
                ),
                ("sequence_order", models.PositiveIntegerField(blank=True, null=True, verbose_name="step order")),
                ("priority", models.IntegerField(default=0, verbose_name="priority")),
                ("is_active", models.BooleanField(default=False, verbose_name="active")),
                ("starts_at", models.DateTimeField(blank=True, null=True, verbose_name="starts at")),
                ("ends_at", models.DateTimeField(blank=True, null=True, verbose_name="ends at")),
                ("created_at", models.DateTimeField(auto_now_add=True, verbose_name="created at")),
                ("updated_at", models.DateTimeField(auto_now=True, verbose_name="updated at")),
                (
                    "business",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="rules",
                        to="lootman.business",
                        verbose_name="business",
                    ),
                ),
                (
                    "voyage",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.SET_NULL,
                        related_name="rules",
                        to="lootman.voyage",
                        verbose_name="voyage",
                    ),
                ),
            ],
            options={
                "verbose_name": "rule",
                "verbose_name_plural": "rules",
                "ordering": ["-priority", "code"],
                "indexes": [
                    models.Index(
                        fields=["business", "trigger_kind", "is_active"],
                        name="lootman_rule_kind_idx",
                    ),
                ],
            },
        ),
        migrations.CreateModel(
            name="CustomerReward",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                (
                    "source_type",
                    models.CharField(
                        choices=[
                            ("rule_unlock", "Unlocked by rule"),
                            ("points_redemption", "Points redemption"),
                            ("manual", "Manual"),
                        ],
                        default="rule_unlock",
                        max_length=30,
                        verbose_name="source",
                    ),
                ),
                (
                    "source_ref",
                    models.CharField(
                        blank=True,
                        help_text="Rule or choice that unlocked it (e.g. rule:VISIT-5)",
                        max_length=100,
                        verbose_name="source reference",
                    ),
                ),
                (
                    "status",
                    models.CharField(
                        choices=[
                            ("available", "Available"),
                            ("redeemed", "Redeemed"),
                            ("expired", "Expired"),
                            ("voided", "Voided"),
                        ],
                        default="available",
                        max_length=20,
                        verbose_name="status",
                    ),
                ),
                ("redemption_code", models.CharField(max_length=32, unique=True, verbose_name="redemption code")),
                ("earned_at", models.DateTimeField(default=django.utils.timezone.now, verbose_name="earned at")),
                ("expires_at", models.DateTimeField(blank=True, null=True, verbose_name="expires at")),
                (
                    "enrollment",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="rewards",
                        to="lootman.enrollment",
                        verbose_name="enrollment",
                    ),
                ),
                (
                    "reward",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="unlocks",
                        to="lootman.reward",
                        verbose_name="reward",
                    ),
                ),
            ],
            options={
                "verbose_name": "customer reward",
                "verbose_name_plural": "customer rewards",
                "constraints": [
                    models.UniqueConstraint(
                        condition=models.Q(("status", "available")),
                        fields=("enrollment", "reward"),
                        name="lootman_one_available_reward",
                    ),
                ],
            },
        ),
        migrations.CreateModel(
            name="CustomerTag",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("tag", models.CharField(max_length=100, verbose_name="tag")),
                (
                    "source_type",
                    models.CharField(
                        choices=[("rule", "Rule"), ("manual", "Manual"), ("import", "Import")],
                        default="rule",
                        max_length=20,
                        verbose_name="source",
                    ),
                ),
                ("created_at", models.DateTimeField(default=django.utils.timezone.now, verbose_name="created at")),
                ("expires_at", models.DateTimeField(blank=True, null=True, verbose_name="expires at")),
                (
                    "business",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="customer_tags",
                        to="lootman.business",
                        verbose_name="business",
                    ),
                ),
                (
                    "customer",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="tags",
                        to="lootman.customer",
                        verbose_name="customer",
                    ),
                ),
                (
                    "source_rule",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.SET_NULL,
                        related_name="+",
                        to="lootman.rule",
                        verbose_name="source rule",
                    ),
                ),
            ],
            options={
                "verbose_name": "customer tag",
                "verbose_name_plural": "customer tags",
                "constraints": [
                    models.UniqueConstraint(
                        fields=("customer", "business", "tag"),
                        name="lootman_unique_customer_tag",
                    ),
                ],
            },
        ),
        migrations.CreateModel(
            name="VoyageProgress",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                (
                    "status",
                    models.CharField(
                        choices=[("in_progress", "In progress"), ("completed", "Completed")],
                        default="in_progress",
                        max_length=20,
                        verbose_name="status",
                    ),
                ),
                (
                    "completed_rule_codes",
                    models.JSONField(blank=True, default=list, verbose_name="completed steps"),
                ),
                ("current_step", models.PositiveIntegerField(default=0, verbose_name="current step")),
                ("started_at", models.DateTimeField(verbose_name="started at")),
                ("completed_at", models.DateTimeField(blank=True, null=True, verbose_name="completed at")),
                (
                    "enrollment",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="voyage_progress",
                        to="lootman.enrollment",
                        verbose_name="enrollment",
                    ),
                ),
                (
                    "voyage",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="progress",
                        to="lootman.voyage",
                        verbose_name="voyage",
                    ),
                ),
            ],
            options={
                "verbose_name": "voyage progress",
                "verbose_name_plural": "voyage progress",
                "constraints": [
                    models.UniqueConstraint(
                        fields=("voyage", "enrollment"),
                        name="lootman_unique_voyage_progress",
                    ),
                ],
            },
        ),
        migrations.CreateModel(
            name="RuleTrigger",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("trigger_kind", models.CharField(choices=TRIGGER_KINDS, max_length=20, verbose_name="trigger")),
                (
                    "event_ref",
                    models.CharField(
                        blank=True,
                        help_text="Causing event (e.g. txn:123)",
                        max_length=100,
                        verbose_name="event reference",
                    ),
                ),
                ("awards_given", models.JSONField(blank=True, default=list, verbose_name="awards given")),
                ("points_awarded", models.IntegerField(default=0, verbose_name="points awarded")),
                (
                    "deferred",
                    models.BooleanField(
                        default=False,
                        help_text="Awards wait on a customer choice",
                        verbose_name="deferred",
                    ),
                ),
                ("context", models.JSONField(blank=True, default=dict, verbose_name="evaluation context")),
                (
                    "triggered_at",
                    models.DateTimeField(
                        db_index=True,
                        default=django.utils.timezone.now,
                        verbose_name="triggered at",
                    ),
                ),
                (
                    "enrollment",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="rule_triggers",
                        to="lootman.enrollment",
                        verbose_name="enrollment",
                    ),
                ),
                (
                    "rule",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="triggers",
                        to="lootman.rule",
                        verbose_name="rule",
                    ),
                ),
            ],
            options={
                "verbose_name": "rule trigger",
                "verbose_name_plural": "rule triggers",
                "ordering": ["-triggered_at"],
                "indexes": [
                    models.Index(fields=["enrollment", "rule"], name="lootman_trig_enroll_rule_idx"),
                ],
                "constraints": [
                    models.UniqueConstraint(
                        condition=models.Q(("event_ref", ""), _negated=True),
                        fields=("rule", "enrollment", "event_ref"),
                        name="lootman_rule_fires_once_per_event",
                    ),
                ],
            },
        ),
        migrations.CreateModel(
            name="AwardGrant",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                (
                    "source_key",
                    models.CharField(
                        help_text="choice:<uuid>, rule:<code>:event:<ref> or trigger:<id>",
                        max_length=200,
                        verbose_name="source key",
                    ),
                ),
                ("results", models.JSONField(default=list, verbose_name="results")),
                ("created_at", models.DateTimeField(default=django.utils.timezone.now, verbose_name="created at")),
                (
                    "enrollment",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="grants",
                        to="lootman.enrollment",
                        verbose_name="enrollment",
                    ),
                ),
            ],
            options={
                "verbose_name": "award grant",
                "verbose_name_plural": "award grants",
                "db_table": "lootman_award_grant",
                "indexes": [
                    models.Index(fields=["created_at"], name="lootman_grant_created_idx"),
                ],
                "constraints": [
                    models.UniqueConstraint(
                        fields=("enrollment", "source_key"),
                        name="lootman_unique_grant_source",
                    ),
                ],
            },
        ),
        migrations.CreateModel(
            name="PendingAwardChoice",
            fields=[
                ("id", models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                (
                    "award_options",
                    models.JSONField(help_text="Ordered list of award groups", verbose_name="award options"),
                ),
                (
                    "status",
                    models.CharField(
                        choices=[
                            ("pending", "Pending"),
                            ("claimed", "Claimed"),
                            ("expired", "Expired"),
                            ("cancelled", "Cancelled"),
                        ],
                        default="pending",
                        max_length=20,
                        verbose_name="status",
                    ),
                ),
                (
                    "claimed_group_index",
                    models.PositiveSmallIntegerField(blank=True, null=True, verbose_name="claimed group"),
                ),
                ("claimed_at", models.DateTimeField(blank=True, null=True, verbose_name="claimed at")),
                ("awards_given", models.JSONField(blank=True, null=True, verbose_name="awards given")),
                (
                    "created_at",
                    models.DateTimeField(
                        db_index=True,
                        default=django.utils.timezone.now,
                        verbose_name="created at",
                    ),
                ),
                ("expires_at", models.DateTimeField(blank=True, null=True, verbose_name="expires at")),
                (
                    "resolved_at",
                    models.DateTimeField(
                        blank=True,
                        help_text="When the choice left the pending state",
                        null=True,
                        verbose_name="resolved at",
                    ),
                ),
                (
                    "business",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="award_choices",
                        to="lootman.business",
                        verbose_name="business",
                    ),
                ),
                (
                    "claimed_location",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="+",
                        to="lootman.location",
                        to_field="code",
                        verbose_name="claimed location",
                    ),
                ),
                (
                    "customer",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="award_choices",
                        to="lootman.customer",
                        verbose_name="customer",
                    ),
                ),
                (
                    "rule",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="award_choices",
                        to="lootman.rule",
                        verbose_name="rule",
                    ),
                ),
                (
                    "rule_trigger",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.SET_NULL,
                        related_name="award_choices",
                        to="lootman.ruletrigger",
                        verbose_name="rule trigger",
                    ),
                ),
            ],
            options={
                "verbose_name": "pending award choice",
                "verbose_name_plural": "pending award choices",
                "ordering": ["-created_at"],
                "indexes": [
                    models.Index(fields=["customer", "business", "status"], name="lootman_choice_owner_idx"),
                    models.Index(fields=["status", "expires_at"], name="lootman_choice_expiry_idx"),
                ],
                "constraints": [
                    models.CheckConstraint(
                        condition=models.Q(
                            models.Q(
                                ("awards_given__isnull", False),
                                ("claimed_at__isnull", False),
                                ("claimed_group_index__isnull", False),
                                ("status", "claimed"),
                            ),
                            models.Q(
                                models.Q(("status", "claimed"), _negated=True),
                                models.Q(
                                    ("awards_given__isnull", True),
                                    ("claimed_at__isnull", True),
                                    ("claimed_group_index__isnull", True),
                                    ("claimed_location__isnull", True),
                                ),
                            ),
                            _connector="OR",
                        ),
                        name="lootman_choice_claim_fields",
                    ),
                ],
            },
        ),
    ]
