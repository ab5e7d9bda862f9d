"""
Billing admin configuration.

Payments and activity are read-only: the ledger is append-only and
corrections are new rows.
"""

from django.contrib import admin, messages

from billing.models import ActivityLog, Plan, Subscription, SubscriptionPayment
from billing.services import SubscriptionLedger


@admin.register(Plan)
class PlanAdmin(admin.ModelAdmin):
    list_display = ["name", "price", "currency", "billing_cycle", "is_active"]
    list_filter = ["billing_cycle", "is_active"]
    search_fields = ["name"]


class SubscriptionPaymentInline(admin.TabularInline):
    model = SubscriptionPayment
    extra = 0
    can_delete = False
    fields = ["order_id", "amount", "status", "error_code", "paid_at", "created_at"]
    readonly_fields = fields
    ordering = ["-created_at"]

    def has_add_permission(self, request, obj=None) -> bool:
        return False


@admin.register(Subscription)
class SubscriptionAdmin(admin.ModelAdmin):
    list_display = [
        "id",
        "user",
        "plan",
        "status",
        "next_billing_date",
        "consecutive_failures",
        "cancel_at_period_end",
    ]
    list_filter = ["status", "cancel_at_period_end", "plan"]
    search_fields = ["id", "user__username", "user__email", "customer_key"]
    readonly_fields = [
        "id",
        "status",
        "consecutive_failures",
        "last_payment_at",
        "suspended_at",
        "expired_at",
        "version",
        "created_at",
        "updated_at",
    ]
    inlines = [SubscriptionPaymentInline]
    actions = ["resync_failure_counters"]

    @admin.action(description="Recompute failure counters from the ledger")
    def resync_failure_counters(self, request, queryset):
        for subscription in queryset:
            SubscriptionLedger.resync_counter(subscription.pk)
        self.message_user(
            request,
            f"Resynced {queryset.count()} subscriptions.",
            messages.SUCCESS,
        )


@admin.register(SubscriptionPayment)
class SubscriptionPaymentAdmin(admin.ModelAdmin):
    list_display = ["order_id", "subscription", "amount", "status", "error_code", "created_at"]
    list_filter = ["status", "error_code"]
    search_fields = ["order_id", "payment_key", "subscription__id"]
    readonly_fields = [field.name for field in SubscriptionPayment._meta.fields]

    def has_add_permission(self, request) -> bool:
        return False

    def has_change_permission(self, request, obj=None) -> bool:
        return False

    def has_delete_permission(self, request, obj=None) -> bool:
        return False


@admin.register(ActivityLog)
class ActivityLogAdmin(admin.ModelAdmin):
    list_display = ["action", "user", "entity_type", "entity_id", "created_at"]
    list_filter = ["action", "entity_type"]
    search_fields = ["entity_id", "user__username"]
    readonly_fields = [field.name for field in ActivityLog._meta.fields]

    def has_add_permission(self, request) -> bool:
        return False

    def has_change_permission(self, request, obj=None) -> bool:
        return False
