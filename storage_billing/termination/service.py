"""
Early Termination Service

Ends a storage term: charges the early termination fee when the minimum
storage period has not been met, then closes the storage unit usage
records. The fee is always collected before any usage record is closed.
"""

import logging
from datetime import datetime, timezone
from decimal import Decimal
from typing import Dict, List, Optional, Tuple

from storage_billing.calculator import BillingCalculator, EarlyTerminationCalculation, billing_calculator
from storage_billing.domain import Appointment, EarlyTerminationResult, StorageUnitUsage
from storage_billing.invoices import InvoiceOrchestrator
from storage_billing.payments.interfaces import PersistenceStore
from storage_billing.shared.config import AppointmentType
from storage_billing.shared.exceptions import BillingError

logger = logging.getLogger(__name__)


class EarlyTerminationService:
    """
    Process End Storage Term appointments.

    Usage:
        service = EarlyTerminationService(invoice_orchestrator, store)
        result = await service.process_early_termination(appointment, usage, now=completed_at)
        if not result.success:
            ...  # nothing was closed
    """

    def __init__(
        self,
        invoices: InvoiceOrchestrator,
        store: PersistenceStore,
        calculator: BillingCalculator = billing_calculator
    ):
        self.invoices = invoices
        self.store = store
        self.calculator = calculator

    async def process_early_termination(
        self,
        appointment: Appointment,
        storage_usage: StorageUnitUsage,
        now: Optional[datetime] = None
    ) -> EarlyTerminationResult:
        """
        Charge the early termination fee if due, then close usage records.

        Args:
            appointment: End Storage Term appointment
            storage_usage: Active usage record the term is measured from
            now: Termination time (the completion time)

        Returns:
            EarlyTerminationResult. success is False when validation or the
            fee invoice failed, in which case no usage record was touched.
        """
        now = now or datetime.now(timezone.utc)

        error = self._validate(appointment, storage_usage)
        if error:
            logger.warning(f"[EARLY TERMINATION] Appointment {appointment.id} not processed: {error}")
            return EarlyTerminationResult(success=False, error=error, error_code='VALIDATION_ERROR')

        calculation = self.calculate_early_termination_fee(appointment, storage_usage.usage_start_date, now)

        invoice = None
        if calculation.is_early_termination:
            try:
                invoice = await self.invoices.create_early_termination_invoice(appointment, calculation)
            except BillingError as e:
                logger.error(
                    f"[EARLY TERMINATION] Fee invoice failed for appointment {appointment.id}, "
                    f"customer={appointment.stripe_customer_id}, operation=early_termination_invoice: "
                    f"{e.code} - {e.message}. Storage usage left open"
                )
                return EarlyTerminationResult(
                    success=False,
                    has_early_termination=True,
                    calculation=calculation,
                    error=e.message,
                    error_code=e.code,
                )

            logger.info(
                f"[EARLY TERMINATION] Charged {calculation.remaining_months} month(s) fee "
                f"${calculation.total_fee} for appointment {appointment.id} (invoice {invoice.invoice_id})"
            )
        else:
            logger.info(
                f"[EARLY TERMINATION] Appointment {appointment.id} met the minimum term "
                f"({calculation.days_in_storage} days), no fee"
            )

        closed, failed = await self._close_usage(appointment, now)

        return EarlyTerminationResult(
            success=True,
            has_early_termination=calculation.is_early_termination,
            calculation=calculation,
            invoice=invoice,
            storage_usage_updated=not failed,
            closed_storage_unit_ids=closed,
            error=f"Failed to close usage for units {failed}" if failed else None,
        )

    async def close_usage_records(self, appointment: Appointment, ended_at: datetime) -> List[int]:
        """
        Close the active usage record of every requested unit.

        Units are closed independently; units without an active record are
        skipped. Returns the ids of the units closed by this call.
        """
        closed, _ = await self._close_usage(appointment, ended_at)
        return closed

    async def _close_usage(self, appointment: Appointment, ended_at: datetime) -> Tuple[List[int], List[int]]:
        closed: List[int] = []
        failed: List[int] = []

        for storage_unit_id in appointment.storage_unit_ids:
            try:
                if await self.store.close_active_usage(storage_unit_id, appointment.id, ended_at):
                    closed.append(storage_unit_id)
                else:
                    logger.debug(f"[EARLY TERMINATION] Unit {storage_unit_id} has no active usage, skipping")
            except Exception as e:
                logger.error(
                    f"[EARLY TERMINATION] Failed to close usage for unit {storage_unit_id}, "
                    f"appointment {appointment.id}: {e}. Needs manual reconciliation"
                )
                failed.append(storage_unit_id)

        if closed:
            logger.info(f"[EARLY TERMINATION] Closed usage for units {closed} (appointment {appointment.id})")
        return closed, failed

    @staticmethod
    def _validate(appointment: Appointment, storage_usage: Optional[StorageUnitUsage]) -> Optional[str]:
        """Return the first validation error, or None."""
        if not appointment.stripe_customer_id:
            return "No Stripe customer ID found"
        if not appointment.number_of_units or appointment.number_of_units <= 0:
            return "Invalid number of units"
        if appointment.monthly_storage_rate is None or appointment.monthly_storage_rate <= 0:
            return "Invalid monthly storage rate"
        if appointment.monthly_insurance_rate is None or appointment.monthly_insurance_rate < 0:
            return "Invalid monthly insurance rate"
        if storage_usage is None or storage_usage.usage_start_date is None:
            return "Storage usage start date is missing"
        if not storage_usage.is_active():
            return "Storage usage has already ended"
        return None

    # =========================================================================
    # Estimates
    # =========================================================================

    def calculate_early_termination_fee(
        self,
        appointment: Appointment,
        usage_start_date: datetime,
        now: Optional[datetime] = None
    ) -> EarlyTerminationCalculation:
        return self.calculator.calculate_early_termination_fee(
            usage_start_date,
            appointment.number_of_units,
            appointment.monthly_storage_rate,
            appointment.monthly_insurance_rate or Decimal('0'),
            now,
        )

    async def get_early_termination_estimate(self, appointment_id: int, now: Optional[datetime] = None) -> Dict:
        """
        Estimate the fee a customer would pay if storage ended now.

        No gateway calls. Measured from the first requested unit's active
        usage record.

        Returns:
            Dict with has_early_termination, calculation and error
        """
        appointment = await self.store.get_appointment(appointment_id)
        if appointment is None:
            return {'has_early_termination': False, 'calculation': None, 'error': 'Appointment not found'}

        unit_ids = appointment.storage_unit_ids
        usage = await self.store.find_active_usage(unit_ids[0]) if unit_ids else None
        if usage is None or usage.usage_start_date is None:
            return {'has_early_termination': False, 'calculation': None, 'error': 'No active storage usage found'}

        if not appointment.number_of_units or appointment.monthly_storage_rate is None:
            return {'has_early_termination': False, 'calculation': None, 'error': 'Missing pricing information'}

        calculation = self.calculate_early_termination_fee(appointment, usage.usage_start_date, now)
        return {
            'has_early_termination': calculation.is_early_termination,
            'calculation': calculation,
            'error': None,
        }

    @staticmethod
    def is_early_termination_eligible(appointment_type: str) -> bool:
        """Only End Storage Term appointments can incur a termination fee."""
        return AppointmentType.parse(appointment_type) == AppointmentType.END_STORAGE_TERM
