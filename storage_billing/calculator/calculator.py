"""
Billing Calculator

Pure billing math for storage appointments:
- Loading help (hourly, one hour minimum)
- Monthly storage and insurance totals
- Flat access fees
- Early termination fees against the minimum storage period
- Money conversion at the gateway boundary
- Pricing validation and quote previews

Nothing here talks to the gateway or the store.
"""

import logging
import math
from datetime import datetime, timezone
from decimal import Decimal, ROUND_HALF_UP
from typing import Optional, Union

from storage_billing.shared.config import (
    ACCESS_STORAGE_UNIT_PRICE,
    EARLY_TERMINATION_MONTH_DAYS,
    LOADING_HELP_MINIMUM_MINUTES,
    MINIMUM_STORAGE_DAYS,
    MINOR_UNITS_PER_MAJOR,
    AppointmentStatus,
    AppointmentType,
)
from storage_billing.shared.exceptions import UnsupportedTypeError, ValidationError
from .calculations import (
    AccessChargesCalculation,
    BillingPreview,
    BreakdownItem,
    EarlyTerminationCalculation,
    LoadingHelpCalculation,
    PricingInputs,
    StorageChargesCalculation,
    StoragePeriod,
)

logger = logging.getLogger(__name__)

Number = Union[int, float, Decimal, str]

SECONDS_PER_DAY = 24 * 60 * 60


def _dec(value: Number) -> Decimal:
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


# =============================================================================
# MONEY HELPERS
# =============================================================================
def to_minor_units(amount: Number) -> int:
    """
    Convert a dollar amount to integer cents, rounding half up.

    This is the only place amounts are rounded; call it once per line, at the
    point the line is handed to the gateway.
    """
    cents = _dec(amount) * MINOR_UNITS_PER_MAJOR
    return int(cents.quantize(Decimal('1'), rounding=ROUND_HALF_UP))


def from_minor_units(amount: int) -> Decimal:
    """Convert integer cents back to dollars."""
    return (Decimal(int(amount)) / MINOR_UNITS_PER_MAJOR).quantize(Decimal('0.01'))


class BillingCalculator:
    """
    Calculate appointment charges.

    Thresholds are injectable so estimates for other markets or tests do not
    depend on global settings.

    Usage:
        calculator = BillingCalculator()
        loading = calculator.calculate_loading_help(service_minutes=42, hourly_rate=189)
        loading.total  # Decimal('189')
    """

    def __init__(
        self,
        access_rate_per_unit: Number = ACCESS_STORAGE_UNIT_PRICE,
        loading_help_minimum_minutes: int = LOADING_HELP_MINIMUM_MINUTES,
        minimum_storage_days: int = MINIMUM_STORAGE_DAYS,
        month_days: int = EARLY_TERMINATION_MONTH_DAYS
    ):
        self.access_rate_per_unit = _dec(access_rate_per_unit)
        self.loading_help_minimum_minutes = loading_help_minimum_minutes
        self.minimum_storage_days = minimum_storage_days
        self.month_days = month_days

    # -------------------------------------------------------------------------
    # Appointment charges
    # -------------------------------------------------------------------------

    def calculate_loading_help(self, service_minutes: float, hourly_rate: Number) -> LoadingHelpCalculation:
        """
        Calculate loading help with the one hour minimum.

        Minutes are rounded half up before the minimum is applied, so 59.5
        minutes bills as 60 and 90.5 as 91.

        Args:
            service_minutes: Actual service time
            hourly_rate: Loading help price per hour

        Returns:
            LoadingHelpCalculation with billed minutes and total
        """
        rounded = int(_dec(max(0.0, float(service_minutes))).quantize(Decimal('1'), rounding=ROUND_HALF_UP))
        billed_minutes = max(self.loading_help_minimum_minutes, rounded)
        rate = _dec(hourly_rate)

        # rate * minutes / 60 keeps the intermediate exact for whole-cent rates
        total = rate * billed_minutes / 60

        logger.debug(f"[CALC] Loading help: {service_minutes:.2f} min -> billed {billed_minutes} min @ ${rate}/h = ${total}")

        return LoadingHelpCalculation(
            service_minutes=float(service_minutes),
            billed_minutes=billed_minutes,
            hourly_rate=rate,
            total=total,
        )

    def calculate_storage_charges(
        self,
        number_of_units: int,
        monthly_storage_rate: Number,
        monthly_insurance_rate: Number
    ) -> StorageChargesCalculation:
        """Calculate first-month storage and insurance for all units."""
        storage_rate = _dec(monthly_storage_rate)
        insurance_rate = _dec(monthly_insurance_rate or 0)
        return StorageChargesCalculation(
            number_of_units=number_of_units,
            monthly_storage_rate=storage_rate,
            monthly_insurance_rate=insurance_rate,
            storage_total=storage_rate * number_of_units,
            insurance_total=insurance_rate * number_of_units,
        )

    def calculate_access_charges(self, unit_count: int) -> AccessChargesCalculation:
        """Calculate the flat (non-recurring) access fee."""
        return AccessChargesCalculation(
            unit_count=unit_count,
            rate_per_unit=self.access_rate_per_unit,
            total=self.access_rate_per_unit * unit_count,
        )

    # -------------------------------------------------------------------------
    # Storage period and early termination
    # -------------------------------------------------------------------------

    def calculate_storage_period(self, usage_start_date: datetime, now: Optional[datetime] = None) -> StoragePeriod:
        """
        Work out whole days in storage against the minimum commitment.

        Partial days are floored, and a start date in the future counts as
        zero days.
        """
        now = _as_utc(now or datetime.now(timezone.utc))
        elapsed = (now - _as_utc(usage_start_date)).total_seconds()
        days_in_storage = max(0, math.floor(elapsed / SECONDS_PER_DAY))

        return StoragePeriod(
            days_in_storage=days_in_storage,
            minimum_days=self.minimum_storage_days,
            is_early_termination=days_in_storage < self.minimum_storage_days,
        )

    def calculate_early_termination_fee(
        self,
        usage_start_date: datetime,
        number_of_units: int,
        monthly_storage_rate: Number,
        monthly_insurance_rate: Number,
        now: Optional[datetime] = None
    ) -> EarlyTerminationCalculation:
        """
        Calculate the fee for ending storage before the minimum period.

        Remaining days are billed in whole 30-day months, rounded up:
        day 29 leaves 31 days (2 months), day 30 leaves 30 days (1 month).

        Args:
            usage_start_date: When storage started
            number_of_units: Units being returned
            monthly_storage_rate: Storage price per unit per month
            monthly_insurance_rate: Insurance price per unit per month
            now: Termination time (defaults to current UTC time)

        Returns:
            EarlyTerminationCalculation (total_fee is 0 when not early)
        """
        period = self.calculate_storage_period(usage_start_date, now)
        storage_rate = _dec(monthly_storage_rate)
        insurance_rate = _dec(monthly_insurance_rate or 0)

        if not period.is_early_termination:
            return EarlyTerminationCalculation(
                days_in_storage=period.days_in_storage,
                minimum_days=period.minimum_days,
                is_early_termination=False,
                remaining_days=0,
                remaining_months=0,
                number_of_units=number_of_units,
                monthly_storage_rate=storage_rate,
                monthly_insurance_rate=insurance_rate,
                storage_fee=Decimal('0'),
                insurance_fee=Decimal('0'),
            )

        remaining_days = period.minimum_days - period.days_in_storage
        remaining_months = math.ceil(remaining_days / self.month_days)

        return EarlyTerminationCalculation(
            days_in_storage=period.days_in_storage,
            minimum_days=period.minimum_days,
            is_early_termination=True,
            remaining_days=remaining_days,
            remaining_months=remaining_months,
            number_of_units=number_of_units,
            monthly_storage_rate=storage_rate,
            monthly_insurance_rate=insurance_rate,
            storage_fee=storage_rate * number_of_units * remaining_months,
            insurance_fee=insurance_rate * number_of_units * remaining_months,
        )

    # -------------------------------------------------------------------------
    # Validation
    # -------------------------------------------------------------------------

    def validate_pricing_inputs(self, pricing: PricingInputs) -> None:
        """
        Validate storage pricing, failing on the first bad field.

        Raises:
            ValidationError: If a required field is missing or out of range
        """
        if not pricing.number_of_units or pricing.number_of_units <= 0:
            raise ValidationError("Invalid number of units", field='number_of_units')

        if pricing.monthly_storage_rate is None or pricing.monthly_storage_rate <= 0:
            raise ValidationError("Invalid monthly storage rate", field='monthly_storage_rate')

        if pricing.monthly_insurance_rate is None or pricing.monthly_insurance_rate < 0:
            raise ValidationError("Invalid monthly insurance rate", field='monthly_insurance_rate')

        if pricing.loading_help_price is None or pricing.loading_help_price <= 0:
            raise ValidationError("Invalid loading help price", field='loading_help_price')

    def validate_access_inputs(self, loading_help_price: Optional[Number], unit_count: int) -> None:
        """
        Validate an access-shaped appointment.

        Raises:
            ValidationError: If loading help is not priced or no unit was requested
        """
        if loading_help_price is None or _dec(loading_help_price) <= 0:
            raise ValidationError("Invalid loading help price for access appointment", field='loading_help_price')

        if unit_count < 1:
            raise ValidationError("Access appointment has no requested storage units", field='requested_storage_units')

    def validate_service_metrics(self, service_metrics) -> None:
        """
        Validate service metrics before billing.

        Raises:
            ValidationError: If metrics are missing, negative or incomplete
        """
        if service_metrics is None:
            raise ValidationError("No service metrics provided", field='service_metrics')

        if service_metrics.service_time_minutes < 0:
            raise ValidationError("Service time cannot be negative", field='service_time_minutes')

        if not service_metrics.completion_time:
            raise ValidationError("Completion time is required", field='completion_time')

    # -------------------------------------------------------------------------
    # Status and previews
    # -------------------------------------------------------------------------

    @staticmethod
    def calculate_appointment_status(appointment_type: str) -> str:
        """Status an appointment moves to once its completion is billed."""
        parsed = AppointmentType.parse(appointment_type)
        if parsed is None:
            return AppointmentStatus.COMPLETE.value
        if parsed.is_storage:
            return AppointmentStatus.LOADING_COMPLETE.value
        if parsed == AppointmentType.END_STORAGE_TERM:
            return AppointmentStatus.STORAGE_TERM_ENDED.value
        return AppointmentStatus.ACCESS_COMPLETE.value

    def generate_billing_preview(
        self,
        appointment_type: str,
        number_of_units: int,
        monthly_storage_rate: Number,
        monthly_insurance_rate: Number,
        estimated_service_minutes: float,
        loading_help_price: Number
    ) -> BillingPreview:
        """
        Estimate the completion invoice for a quote.

        Storage appointments preview storage, insurance and loading help;
        access-shaped appointments preview the access fee and loading help,
        with number_of_units as the count of units being accessed.

        Raises:
            UnsupportedTypeError: For unknown appointment types
        """
        parsed = AppointmentType.parse(appointment_type)
        if parsed is None:
            raise UnsupportedTypeError(str(appointment_type))

        loading_help = self.calculate_loading_help(estimated_service_minutes, loading_help_price)

        if parsed.is_storage:
            storage = self.calculate_storage_charges(number_of_units, monthly_storage_rate, monthly_insurance_rate)
            breakdown = [
                BreakdownItem('Monthly Storage Rate', storage.storage_total),
                BreakdownItem('Monthly Insurance', storage.insurance_total),
                BreakdownItem('Loading Help Service', loading_help.total),
            ]
        else:
            access = self.calculate_access_charges(number_of_units)
            breakdown = [
                BreakdownItem('Storage Unit Access', access.total),
                BreakdownItem('Loading Help Service', loading_help.total),
            ]

        raw_total = sum((b.amount for b in breakdown), Decimal('0'))

        return BillingPreview(
            appointment_type=parsed.value,
            total=from_minor_units(to_minor_units(raw_total)),
            breakdown=breakdown,
        )


# Global instance
billing_calculator = BillingCalculator()


# Convenience functions
def calculate_loading_help(service_minutes: float, hourly_rate: Number) -> LoadingHelpCalculation:
    """Calculate loading help with the one hour minimum."""
    return billing_calculator.calculate_loading_help(service_minutes, hourly_rate)


def calculate_storage_charges(
    number_of_units: int,
    monthly_storage_rate: Number,
    monthly_insurance_rate: Number
) -> StorageChargesCalculation:
    """Calculate storage and insurance totals."""
    return billing_calculator.calculate_storage_charges(number_of_units, monthly_storage_rate, monthly_insurance_rate)


def calculate_access_charges(unit_count: int) -> AccessChargesCalculation:
    """Calculate the flat access fee."""
    return billing_calculator.calculate_access_charges(unit_count)


def calculate_storage_period(usage_start_date: datetime, now: Optional[datetime] = None) -> StoragePeriod:
    """Work out days in storage against the minimum commitment."""
    return billing_calculator.calculate_storage_period(usage_start_date, now)


def calculate_early_termination_fee(
    usage_start_date: datetime,
    number_of_units: int,
    monthly_storage_rate: Number,
    monthly_insurance_rate: Number,
    now: Optional[datetime] = None
) -> EarlyTerminationCalculation:
    """Calculate the early termination fee."""
    return billing_calculator.calculate_early_termination_fee(
        usage_start_date, number_of_units, monthly_storage_rate, monthly_insurance_rate, now
    )


def validate_pricing_inputs(pricing: PricingInputs) -> None:
    """Validate storage pricing inputs."""
    billing_calculator.validate_pricing_inputs(pricing)


def generate_billing_preview(
    appointment_type: str,
    number_of_units: int,
    monthly_storage_rate: Number,
    monthly_insurance_rate: Number,
    estimated_service_minutes: float,
    loading_help_price: Number
) -> BillingPreview:
    """Estimate the completion invoice for a quote."""
    return billing_calculator.generate_billing_preview(
        appointment_type,
        number_of_units,
        monthly_storage_rate,
        monthly_insurance_rate,
        estimated_service_minutes,
        loading_help_price,
    )
