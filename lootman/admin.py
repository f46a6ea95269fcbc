"""Lootman admin.

Engine state (rule triggers, award choices, grants) is read-only: it is only
ever written by the services. Pending choices can be cancelled in bulk.
"""

from django.contrib import admin, messages
from django.urls import reverse
from django.utils.html import format_html

from lootman.exceptions import LootmanError
from lootman.models import (
    AwardGrant,
    Business,
    ChoiceStatus,
    Customer,
    CustomerReward,
    CustomerTag,
    Enrollment,
    Location,
    LocationVisit,
    PendingAwardChoice,
    Reward,
    Rule,
    RuleTrigger,
    Voyage,
    VoyageProgress,
)
from lootman.services.choices import ChoiceService


def _customer_link(customer):
    url = reverse("admin:lootman_customer_change", args=[customer.pk])
    return format_html('<a href="{}">{}</a>', url, customer.code)


class ReadOnlyAdmin(admin.ModelAdmin):
    """Audit rows: viewable, never edited by hand."""

    def has_add_permission(self, request):
        return False

    def has_change_permission(self, request, obj=None):
        return False

    def has_delete_permission(self, request, obj=None):
        return False


# ===========================================
# Tenancy
# ===========================================


class LocationInline(admin.TabularInline):
    model = Location
    extra = 0
    fields = ["code", "name", "icon", "is_active"]


@admin.register(Business)
class BusinessAdmin(admin.ModelAdmin):
    list_display = ["code", "name", "timezone", "is_active"]
    list_filter = ["is_active"]
    search_fields = ["code", "name"]
    inlines = [LocationInline]


@admin.register(Customer)
class CustomerAdmin(admin.ModelAdmin):
    list_display = ["code", "name", "phone", "is_active"]
    list_filter = ["is_active"]
    search_fields = ["code", "name", "phone"]
    readonly_fields = ["uuid", "created_at"]


class CustomerRewardInline(admin.TabularInline):
    model = CustomerReward
    extra = 0
    fields = ["reward", "status", "redemption_code", "earned_at", "expires_at"]
    readonly_fields = ["reward", "redemption_code", "earned_at", "expires_at"]

    def has_add_permission(self, request, obj=None):
        return False


@admin.register(Enrollment)
class EnrollmentAdmin(admin.ModelAdmin):
    list_display = [
        "customer_code",
        "business",
        "points_balance",
        "multiplier_badge",
        "visit_count",
        "tier",
        "is_active",
    ]
    list_filter = ["business", "tier", "is_active"]
    search_fields = ["customer__code", "customer__name"]
    raw_id_fields = ["customer"]
    readonly_fields = [
        "points_balance",
        "lifetime_points",
        "points_multiplier",
        "multiplier_expires_at",
        "version",
        "enrolled_at",
        "updated_at",
    ]
    inlines = [CustomerRewardInline]

    def customer_code(self, obj):
        return _customer_link(obj.customer)

    customer_code.short_description = "Customer"

    def multiplier_badge(self, obj):
        multiplier = obj.active_multiplier()
        if multiplier == 1:
            return "-"
        suffix = f" until {obj.multiplier_expires_at:%Y-%m-%d}" if obj.multiplier_expires_at else ""
        return format_html("<strong>{}x</strong>{}", multiplier, suffix)

    multiplier_badge.short_description = "Multiplier"


# ===========================================
# Award targets
# ===========================================


@admin.register(Reward)
class RewardAdmin(admin.ModelAdmin):
    list_display = ["code", "name", "business", "expires_days", "is_active"]
    list_filter = ["business", "is_active"]
    search_fields = ["code", "name"]


@admin.register(CustomerTag)
class CustomerTagAdmin(admin.ModelAdmin):
    list_display = ["tag", "customer", "business", "source_type", "expires_at"]
    list_filter = ["business", "source_type"]
    search_fields = ["tag", "customer__code"]
    raw_id_fields = ["customer", "source_rule"]


class VoyageStepInline(admin.TabularInline):
    model = Rule
    fk_name = "voyage"
    extra = 0
    fields = ["code", "name", "sequence_order", "is_active"]
    readonly_fields = ["code", "name"]
    ordering = ["sequence_order"]
    verbose_name_plural = "Steps"

    def has_add_permission(self, request, obj=None):
        return False


@admin.register(Voyage)
class VoyageAdmin(admin.ModelAdmin):
    list_display = ["code", "name", "business", "is_active"]
    list_filter = ["business", "is_active"]
    search_fields = ["code", "name"]
    inlines = [VoyageStepInline]


@admin.register(VoyageProgress)
class VoyageProgressAdmin(ReadOnlyAdmin):
    list_display = ["voyage", "enrollment", "current_step", "status", "completed_at"]
    list_filter = ["status", "voyage"]


# ===========================================
# Rules
# ===========================================


@admin.register(Rule)
class RuleAdmin(admin.ModelAdmin):
    list_display = [
        "code",
        "name",
        "business",
        "trigger_kind",
        "priority",
        "is_repeatable",
        "active_badge",
    ]
    list_filter = ["business", "trigger_kind", "is_active", "is_repeatable"]
    search_fields = ["code", "name", "display_name"]
    ordering = ["-priority", "code"]
    readonly_fields = ["created_at", "updated_at"]

    fieldsets = [
        (None, {"fields": ["business", "code", "name", "display_name", "icon"]}),
        ("Trigger", {"fields": ["trigger_kind", "conditions", "voyage", "sequence_order"]}),
        ("Awards", {"fields": ["awards", "choice_window_hours"]}),
        (
            "Limits",
            {"fields": ["is_repeatable", "cooldown_days", "max_triggers_per_customer", "priority"]},
        ),
        ("Schedule", {"fields": ["is_active", "starts_at", "ends_at"]}),
        ("Timestamps", {"fields": ["created_at", "updated_at"], "classes": ["collapse"]}),
    ]

    def active_badge(self, obj):
        if obj.is_active:
            return format_html('<span style="color: green;">active</span>')
        return format_html('<span style="color: gray;">draft</span>')

    active_badge.short_description = "Status"


@admin.register(RuleTrigger)
class RuleTriggerAdmin(ReadOnlyAdmin):
    list_display = ["rule", "enrollment", "trigger_kind", "points_awarded", "deferred", "triggered_at"]
    list_filter = ["trigger_kind", "deferred"]
    search_fields = ["rule__code", "enrollment__customer__code", "event_ref"]
    date_hierarchy = "triggered_at"


@admin.register(LocationVisit)
class LocationVisitAdmin(ReadOnlyAdmin):
    list_display = ["enrollment", "location_code", "event_ref", "visited_at"]
    search_fields = ["enrollment__customer__code", "location_code", "event_ref"]
    date_hierarchy = "visited_at"


# ===========================================
# Choices
# ===========================================


@admin.register(PendingAwardChoice)
class PendingAwardChoiceAdmin(ReadOnlyAdmin):
    list_display = [
        "id",
        "customer_link",
        "rule",
        "status_badge",
        "option_count",
        "claimed_location",
        "created_at",
        "expires_at",
    ]
    list_filter = ["status", "business"]
    search_fields = ["id", "customer__code", "rule__code"]
    actions = ["cancel_choices"]

    def customer_link(self, obj):
        return _customer_link(obj.customer)

    customer_link.short_description = "Customer"

    def option_count(self, obj):
        return len(obj.award_options or [])

    option_count.short_description = "Options"

    def status_badge(self, obj):
        colors = {
            ChoiceStatus.PENDING: "orange",
            ChoiceStatus.CLAIMED: "green",
            ChoiceStatus.EXPIRED: "gray",
            ChoiceStatus.CANCELLED: "red",
        }
        return format_html(
            '<span style="color: {};">{}</span>',
            colors.get(obj.status, "black"),
            obj.get_status_display(),
        )

    status_badge.short_description = "Status"

    @admin.action(description="Cancel selected pending choices")
    def cancel_choices(self, request, queryset):
        cancelled = 0
        for choice in queryset.filter(status=ChoiceStatus.PENDING):
            try:
                ChoiceService.cancel(choice.pk, reason=f"admin:{request.user}")
            except LootmanError as exc:
                self.message_user(request, f"{choice.pk}: {exc.message}", messages.WARNING)
                continue
            cancelled += 1
        self.message_user(request, f"{cancelled} choice(s) cancelled.")


@admin.register(AwardGrant)
class AwardGrantAdmin(ReadOnlyAdmin):
    list_display = ["source_key", "enrollment", "created_at"]
    search_fields = ["source_key", "enrollment__customer__code"]
