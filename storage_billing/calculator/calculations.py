"""
Billing Calculation Value Objects

Immutable results of the pure billing math. Amounts are unrounded Decimals;
rounding to cents happens once, when a line is sent to the gateway.
"""

from dataclasses import dataclass, field
from decimal import Decimal
from typing import List, Optional


@dataclass(frozen=True)
class PricingInputs:
    """Rates and quantities needed to bill a storage appointment."""
    number_of_units: Optional[int]
    monthly_storage_rate: Optional[Decimal]
    monthly_insurance_rate: Optional[Decimal]
    loading_help_price: Optional[Decimal]

    @classmethod
    def from_appointment(cls, appointment) -> 'PricingInputs':
        return cls(
            number_of_units=appointment.number_of_units,
            monthly_storage_rate=appointment.monthly_storage_rate,
            monthly_insurance_rate=appointment.monthly_insurance_rate,
            loading_help_price=appointment.loading_help_price,
        )


@dataclass(frozen=True)
class LoadingHelpCalculation:
    service_minutes: float
    billed_minutes: int
    hourly_rate: Decimal
    total: Decimal


@dataclass(frozen=True)
class StorageChargesCalculation:
    number_of_units: int
    monthly_storage_rate: Decimal
    monthly_insurance_rate: Decimal
    storage_total: Decimal
    insurance_total: Decimal

    @property
    def total(self) -> Decimal:
        return self.storage_total + self.insurance_total


@dataclass(frozen=True)
class AccessChargesCalculation:
    unit_count: int
    rate_per_unit: Decimal
    total: Decimal


@dataclass(frozen=True)
class StoragePeriod:
    """How long a unit has been stored, against the minimum commitment."""
    days_in_storage: int
    minimum_days: int
    is_early_termination: bool


@dataclass(frozen=True)
class EarlyTerminationCalculation:
    """
    Early termination fee breakdown.

    remaining_months is at least 1 whenever is_early_termination is True,
    and 0 otherwise.
    """
    days_in_storage: int
    minimum_days: int
    is_early_termination: bool
    remaining_days: int
    remaining_months: int
    number_of_units: int
    monthly_storage_rate: Decimal
    monthly_insurance_rate: Decimal
    storage_fee: Decimal
    insurance_fee: Decimal

    @property
    def total_fee(self) -> Decimal:
        return self.storage_fee + self.insurance_fee


@dataclass(frozen=True)
class BreakdownItem:
    item: str
    amount: Decimal


@dataclass(frozen=True)
class BillingPreview:
    """Quote-time estimate, computed without touching the gateway."""
    appointment_type: str
    total: Decimal
    breakdown: List[BreakdownItem] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            'appointment_type': self.appointment_type,
            'total': float(self.total),
            'breakdown': [{'item': b.item, 'amount': float(b.amount)} for b in self.breakdown],
        }
