"""Subscription billing: checkout, webhook reconciliation, confirm and cancel."""

from app.services.billing.service import BillingService, WebhookResult

__all__ = ["BillingService", "WebhookResult"]
