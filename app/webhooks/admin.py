"""
Webhook admin configuration.

Dead-letter entries are the operator-facing failure record: they can be
inspected and replayed, but never edited or deleted.
"""

from django.contrib import admin, messages

from webhooks.dead_letter import DeadLetterSink
from webhooks.models import DeadLetterEntry, DeliveryAttempt, ServiceEvent


@admin.register(DeadLetterEntry)
class DeadLetterEntryAdmin(admin.ModelAdmin):
    list_display = [
        "id",
        "event_type",
        "target_url",
        "retry_count",
        "error_message",
        "created_at",
    ]
    list_filter = ["event_type", "signed_with_default_secret", "created_at"]
    search_fields = ["id", "request_id", "target_url", "error_message"]
    readonly_fields = [
        "id",
        "event_type",
        "payload",
        "target_url",
        "error_message",
        "retry_count",
        "request_id",
        "signed_with_default_secret",
        "created_at",
    ]
    ordering = ["-created_at"]
    actions = ["replay_selected"]

    @admin.action(description="Replay selected deliveries (signed with WEBHOOK_SECRET)")
    def replay_selected(self, request, queryset):
        sink = DeadLetterSink()
        replayed = skipped = 0
        for entry in queryset:
            # Per-request secrets are not stored; WEBHOOK_SECRET would not verify
            if not entry.signed_with_default_secret:
                skipped += 1
                continue
            sink.replay(entry)
            replayed += 1
        self.message_user(
            request,
            f"Queued {replayed} deliveries for replay.",
            messages.SUCCESS,
        )
        if skipped:
            self.message_user(
                request,
                f"Skipped {skipped} deliveries signed with a per-request secret; "
                "resend them through the send endpoint with that secret.",
                messages.WARNING,
            )

    def has_add_permission(self, request) -> bool:
        return False

    def has_change_permission(self, request, obj=None) -> bool:
        return False

    def has_delete_permission(self, request, obj=None) -> bool:
        return False


@admin.register(DeliveryAttempt)
class DeliveryAttemptAdmin(admin.ModelAdmin):
    list_display = [
        "request_id",
        "attempt_number",
        "event_type",
        "target_url",
        "status",
        "http_status",
        "started_at",
    ]
    list_filter = ["status", "event_type"]
    search_fields = ["request_id", "target_url", "event_id"]
    readonly_fields = [field.name for field in DeliveryAttempt._meta.fields]
    ordering = ["-started_at"]

    def has_add_permission(self, request) -> bool:
        return False

    def has_change_permission(self, request, obj=None) -> bool:
        return False


@admin.register(ServiceEvent)
class ServiceEventAdmin(admin.ModelAdmin):
    list_display = ["event_id", "service_id", "event_type", "occurred_at", "created_at"]
    list_filter = ["service_id", "event_type"]
    search_fields = ["event_id"]
    readonly_fields = [field.name for field in ServiceEvent._meta.fields]

    def has_add_permission(self, request) -> bool:
        return False
