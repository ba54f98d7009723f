"""
Storage Billing

Billing and subscription lifecycle engine for storage appointments.

Usage:
    from storage_billing import AppointmentBillingService, TaskCompletedWebhookHandler
    from storage_billing.external.stripe import get_stripe_gateway
    from storage_billing.persistence import SqlAlchemyBillingStore, get_session_factory

    store = SqlAlchemyBillingStore(get_session_factory())
    service = AppointmentBillingService(get_stripe_gateway(), store)
    handler = TaskCompletedWebhookHandler(service, store)

    response = await handler.handle(payload)
"""

__version__ = '0.1.0'

from .appointments import AppointmentBillingService
from .calculator import BillingCalculator, billing_calculator, generate_billing_preview
from .invoices import InvoiceOrchestrator
from .subscriptions import SubscriptionOrchestrator
from .termination import EarlyTerminationService
from .webhooks import TaskCompletedWebhookHandler

__all__ = [
    'AppointmentBillingService',
    'BillingCalculator',
    'billing_calculator',
    'generate_billing_preview',
    'InvoiceOrchestrator',
    'SubscriptionOrchestrator',
    'EarlyTerminationService',
    'TaskCompletedWebhookHandler',
]
