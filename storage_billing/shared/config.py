"""
Billing Configuration

This module defines appointment types, status transitions and the pricing
constants used by the billing engine.

Usage:
    from storage_billing.shared.config import AppointmentType, MINIMUM_STORAGE_DAYS

    appointment_type = AppointmentType.parse('Initial Pickup')
    appointment_type.is_storage  # True
"""

from decimal import Decimal
from enum import Enum
from typing import Dict, Optional

from storage_billing.core.conf import settings


# =============================================================================
# PRICING CONSTANTS
# =============================================================================
CURRENCY: str = settings.BILLING_CURRENCY

# Flat fee per storage unit brought out for an access visit
ACCESS_STORAGE_UNIT_PRICE: Decimal = Decimal(str(settings.ACCESS_STORAGE_UNIT_PRICE))

# Loading help is always billed for at least one hour
LOADING_HELP_MINIMUM_MINUTES: int = settings.LOADING_HELP_MINIMUM_MINUTES

# Minor units (cents) per major unit (dollars)
MINOR_UNITS_PER_MAJOR: int = 100


# =============================================================================
# STORAGE TERM CONSTANTS
# =============================================================================
# Minimum commitment, expressed in days (two 30-day months)
MINIMUM_STORAGE_DAYS: int = settings.MINIMUM_STORAGE_DAYS

# Days per billed month when pro-rating an early termination
EARLY_TERMINATION_MONTH_DAYS: int = settings.EARLY_TERMINATION_MONTH_DAYS

# First month is collected on the appointment invoice, so the
# recurring subscription starts with a trial of the same length
STORAGE_SUBSCRIPTION_TRIAL_DAYS: int = settings.STORAGE_SUBSCRIPTION_TRIAL_DAYS


# =============================================================================
# APPOINTMENT TYPES
# =============================================================================
class AppointmentType(str, Enum):
    """Field appointment types that trigger billing on completion."""
    INITIAL_PICKUP = "Initial Pickup"
    ADDITIONAL_STORAGE = "Additional Storage"
    ACCESS_STORAGE = "Access Storage"
    END_STORAGE_TERM = "End Storage Term"

    @classmethod
    def parse(cls, value) -> Optional['AppointmentType']:
        """Return the matching type, or None for unknown values."""
        if isinstance(value, cls):
            return value
        try:
            return cls(value)
        except ValueError:
            return None

    @property
    def is_storage(self) -> bool:
        """Storage appointments start (or extend) a recurring subscription."""
        return self in (AppointmentType.INITIAL_PICKUP, AppointmentType.ADDITIONAL_STORAGE)

    @property
    def is_access(self) -> bool:
        """Access-shaped appointments bill a flat access fee plus labor."""
        return self in (AppointmentType.ACCESS_STORAGE, AppointmentType.END_STORAGE_TERM)


# =============================================================================
# APPOINTMENT STATUSES
# =============================================================================
class AppointmentStatus(str, Enum):
    """Statuses written by the billing engine after a paid completion."""
    LOADING_COMPLETE = "Loading Complete"
    ACCESS_COMPLETE = "Access Complete"
    STORAGE_TERM_ENDED = "Storage Term Ended"
    COMPLETE = "Complete"


# Statuses meaning "this completion has already been billed"
TERMINAL_BILLED_STATUSES = frozenset(status.value for status in AppointmentStatus)

COMPLETION_STATUS_BY_TYPE: Dict[AppointmentType, AppointmentStatus] = {
    AppointmentType.INITIAL_PICKUP: AppointmentStatus.LOADING_COMPLETE,
    AppointmentType.ADDITIONAL_STORAGE: AppointmentStatus.LOADING_COMPLETE,
    AppointmentType.ACCESS_STORAGE: AppointmentStatus.ACCESS_COMPLETE,
    AppointmentType.END_STORAGE_TERM: AppointmentStatus.STORAGE_TERM_ENDED,
}


def is_terminal_billed_status(status: Optional[str]) -> bool:
    """Check whether a persisted status means the appointment was already billed."""
    if status is None:
        return False
    value = status.value if isinstance(status, AppointmentStatus) else status
    return value in TERMINAL_BILLED_STATUSES
