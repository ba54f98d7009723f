"""
Shared Module

Configuration, exceptions and concurrency helpers used across the engine.
"""

from .config import (
    ACCESS_STORAGE_UNIT_PRICE,
    COMPLETION_STATUS_BY_TYPE,
    CURRENCY,
    EARLY_TERMINATION_MONTH_DAYS,
    LOADING_HELP_MINIMUM_MINUTES,
    MINIMUM_STORAGE_DAYS,
    STORAGE_SUBSCRIPTION_TRIAL_DAYS,
    TERMINAL_BILLED_STATUSES,
    AppointmentStatus,
    AppointmentType,
    is_terminal_billed_status,
)
from .exceptions import (
    BillingError,
    BillingInProgressError,
    CircuitBreakerOpenError,
    GatewayError,
    GatewayTimeoutError,
    MissingPaymentAccountError,
    NotFoundError,
    PaymentDeclinedError,
    UnsupportedTypeError,
    ValidationError,
)
from .concurrency import settle_all
from .locks import AppointmentLock

__all__ = [
    'ACCESS_STORAGE_UNIT_PRICE',
    'COMPLETION_STATUS_BY_TYPE',
    'CURRENCY',
    'EARLY_TERMINATION_MONTH_DAYS',
    'LOADING_HELP_MINIMUM_MINUTES',
    'MINIMUM_STORAGE_DAYS',
    'STORAGE_SUBSCRIPTION_TRIAL_DAYS',
    'TERMINAL_BILLED_STATUSES',
    'AppointmentStatus',
    'AppointmentType',
    'is_terminal_billed_status',
    'BillingError',
    'BillingInProgressError',
    'CircuitBreakerOpenError',
    'GatewayError',
    'GatewayTimeoutError',
    'MissingPaymentAccountError',
    'NotFoundError',
    'PaymentDeclinedError',
    'UnsupportedTypeError',
    'ValidationError',
    'settle_all',
    'AppointmentLock',
]
