"""
Webhooks app for signed event delivery and inbound verification.

This app handles:
- HMAC-SHA256 signing and replay-protected verification (signing)
- Single delivery attempts with outcome classification (delivery)
- Per-target retry chains with configurable backoff (scheduler)
- Dead-letter recording and manual replay (dead_letter, admin)
- Internal send and public receive endpoints (views)

Related apps:
    - billing: Emits payment and subscription events through deliver_event
    - core: RetryPolicy, TTLCache, exception hierarchy

Usage:
    from webhooks.tasks import deliver_event

    deliver_event.delay(
        event_type="payment.failed",
        payload={"subscription_id": str(subscription.id)},
        target_urls=settings.BILLING_WEBHOOK_URLS,
    )
"""
