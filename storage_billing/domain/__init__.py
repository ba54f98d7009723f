"""
Domain Entities

Core billing entities used across the engine.
"""

from .appointment import Appointment, RequestedStorageUnit, ServiceMetrics, TaskCompletionDetails
from .invoice import Customer, Invoice, InvoiceLine, SubscriptionLineItem
from .results import (
    CancellationResult,
    CompletionStatus,
    EarlyTerminationResult,
    InvoiceResult,
    StepOutcome,
    StepResult,
    WebhookCompletionResult,
)
from .storage_usage import StorageUnitUsage
from .subscription import Subscription, SubscriptionItem, SubscriptionStatus

__all__ = [
    'Appointment',
    'RequestedStorageUnit',
    'ServiceMetrics',
    'TaskCompletionDetails',
    'Customer',
    'Invoice',
    'InvoiceLine',
    'SubscriptionLineItem',
    'CancellationResult',
    'CompletionStatus',
    'EarlyTerminationResult',
    'InvoiceResult',
    'StepOutcome',
    'StepResult',
    'WebhookCompletionResult',
    'StorageUnitUsage',
    'Subscription',
    'SubscriptionItem',
    'SubscriptionStatus',
]
