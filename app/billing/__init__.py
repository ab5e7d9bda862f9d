"""
Billing app for recurring subscription charges.

This app handles:
- Plans and subscriptions with a django-fsm status machine
- Append-only payment ledger with a consecutive-failure counter
- Payment gateway client with embedded retry (gateway)
- The reconciliation loop that charges due subscriptions (services)
- Celery beat entry point (tasks)

Related apps:
    - webhooks: Billing outcomes are delivered as signed events

Usage:
    from billing.services import BillingReconciler

    summary = BillingReconciler().run()
    summary.to_dict()
"""
