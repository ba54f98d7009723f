"""
Appointment Billing Service

Entry point for delivery-task completion webhooks. Bills the completed
appointment and runs the follow-up side effects for its type.

Policy:
- The appointment invoice is the only step that must succeed. If it fails,
  nothing else happens and the error propagates.
- Status update, subscription creation/cancellation, early termination and
  usage closure are best effort. Their outcomes are recorded per step in
  the returned WebhookCompletionResult and never undo the invoice.
"""

import logging
from datetime import datetime, timezone
from typing import Dict, Optional

from storage_billing.calculator import BillingCalculator, BillingPreview, billing_calculator
from storage_billing.core.conf import settings
from storage_billing.domain import (
    Appointment,
    CompletionStatus,
    InvoiceResult,
    ServiceMetrics,
    StepOutcome,
    StepResult,
    TaskCompletionDetails,
    WebhookCompletionResult,
)
from storage_billing.invoices import InvoiceOrchestrator
from storage_billing.payments.interfaces import PaymentGatewayClient, PersistenceStore
from storage_billing.shared.concurrency import settle_all
from storage_billing.shared.config import (
    AppointmentStatus,
    AppointmentType,
    is_terminal_billed_status,
)
from storage_billing.shared.exceptions import BillingError, BillingInProgressError, NotFoundError
from storage_billing.shared.locks import AppointmentLock
from storage_billing.subscriptions import SubscriptionOrchestrator
from storage_billing.termination import EarlyTerminationService

logger = logging.getLogger(__name__)


def _completion_time(
    details: TaskCompletionDetails,
    completion_timestamp: Optional[datetime]
) -> datetime:
    """Pick the moment storage is considered to have ended."""
    if completion_timestamp is not None:
        if completion_timestamp.tzinfo is None:
            return completion_timestamp.replace(tzinfo=timezone.utc)
        return completion_timestamp
    if details.time:
        return datetime.fromtimestamp(details.time / 1000, tz=timezone.utc)
    return datetime.now(timezone.utc)


class AppointmentBillingService:
    """
    Bill appointment completions.

    Completions of the same appointment are serialised in process, and the
    persisted status is re-read under the lock: a retried delivery for an
    appointment that was already billed returns ALREADY_PROCESSED without
    charging. Across workers the appointment is claimed in the store before
    charging; a delivery that finds a live claim gets BillingInProgressError.

    Usage:
        service = AppointmentBillingService(gateway, store)
        result = await service.process_webhook_completion(appointment, details, completed_at)
        if result.has_failures:
            ...  # flag for reconciliation
    """

    def __init__(
        self,
        gateway: PaymentGatewayClient,
        store: PersistenceStore,
        calculator: BillingCalculator = billing_calculator,
        invoices: Optional[InvoiceOrchestrator] = None,
        subscriptions: Optional[SubscriptionOrchestrator] = None,
        termination: Optional[EarlyTerminationService] = None,
        locks: Optional[AppointmentLock] = None,
        claim_stale_after: int = settings.BILLING_CLAIM_STALE_SECONDS
    ):
        self.store = store
        self.calculator = calculator
        self.invoices = invoices or InvoiceOrchestrator(gateway, calculator)
        self.subscriptions = subscriptions or SubscriptionOrchestrator(gateway, calculator)
        self.termination = termination or EarlyTerminationService(self.invoices, store, calculator)
        self.locks = locks or AppointmentLock()
        self.claim_stale_after = claim_stale_after

    # =========================================================================
    # Webhook completion
    # =========================================================================

    async def process_webhook_completion(
        self,
        appointment: Appointment,
        task_completion_details: TaskCompletionDetails,
        completion_timestamp: Optional[datetime] = None
    ) -> WebhookCompletionResult:
        """
        Bill a completed appointment and run its side effects.

        Args:
            appointment: Appointment reported complete
            task_completion_details: Completion details from the delivery task
            completion_timestamp: When the task completed; used as "now" for
                termination fees and usage end dates

        Returns:
            WebhookCompletionResult with the invoice and per-step outcomes

        Raises:
            NotFoundError: Appointment no longer exists
            BillingInProgressError: Another worker holds a live billing claim
            ValidationError / UnsupportedTypeError: Nothing was charged
            GatewayError / PaymentDeclinedError: Appointment invoice failed
        """
        async with self.locks.hold(appointment.id):
            current = await self.store.get_appointment(appointment.id)
            if current is None:
                raise NotFoundError('appointment', appointment.id)

            if is_terminal_billed_status(current.status):
                logger.info(
                    f"[APPOINTMENT BILLING] Appointment {current.id} already billed "
                    f"(status={current.status}, invoice={current.invoice_id}), skipping"
                )
                return WebhookCompletionResult(
                    appointment_id=current.id,
                    status=CompletionStatus.ALREADY_PROCESSED,
                    new_status=current.status,
                    invoice=self._persisted_invoice(current),
                )

            claimed = await self.store.mark_billing_processing(
                current.id, datetime.now(timezone.utc), self.claim_stale_after
            )
            if not claimed:
                logger.warning(f"[APPOINTMENT BILLING] Appointment {current.id} is being billed by another worker")
                raise BillingInProgressError(current.id)

            return await self._complete(current, task_completion_details, completion_timestamp)

    async def _complete(
        self,
        appointment: Appointment,
        details: TaskCompletionDetails,
        completion_timestamp: Optional[datetime]
    ) -> WebhookCompletionResult:
        metrics = ServiceMetrics.from_completion(appointment, details)
        new_status = self.determine_appointment_status(appointment)
        completed_at = _completion_time(details, completion_timestamp)

        logger.info(
            f"[APPOINTMENT BILLING] Processing {appointment.appointment_type} appointment {appointment.id}, "
            f"service_minutes={metrics.service_time_minutes:.1f}"
        )

        try:
            invoice = await self.invoices.create_and_pay_appointment_invoice(appointment, metrics)
        except BillingError as e:
            logger.critical(
                f"[APPOINTMENT BILLING] Invoice failed for appointment {appointment.id}, "
                f"customer={appointment.stripe_customer_id}, operation=appointment_invoice: "
                f"{e.code} - {e.message} (retryable={e.retryable})"
            )
            await self._release_claim(appointment.id)
            raise

        result = WebhookCompletionResult(
            appointment_id=appointment.id,
            status=CompletionStatus.COMPLETED,
            new_status=new_status,
            invoice=invoice,
        )

        result.steps['status_update'] = await self._update_status(appointment, new_status, invoice)

        appointment_type = appointment.type
        if appointment_type.is_storage:
            result.steps['subscription_create'] = await self._create_subscription(appointment)
        elif appointment_type == AppointmentType.END_STORAGE_TERM:
            result.steps.update(await self._end_storage_term(appointment, completed_at))

        if result.has_failures:
            logger.error(
                f"[APPOINTMENT BILLING] Appointment {appointment.id} billed with failed steps "
                f"{result.failed_steps()}. Needs manual reconciliation"
            )
        else:
            logger.info(f"[APPOINTMENT BILLING] Appointment {appointment.id} completed as {new_status}")

        return result

    # =========================================================================
    # Steps
    # =========================================================================

    async def _release_claim(self, appointment_id: int) -> None:
        try:
            await self.store.mark_billing_failed(appointment_id)
        except Exception as e:
            # The claim still expires after claim_stale_after
            logger.error(f"[APPOINTMENT BILLING] Failed to release billing claim on appointment {appointment_id}: {e}")

    async def _update_status(self, appointment: Appointment, new_status: str, invoice: InvoiceResult) -> StepResult:
        try:
            updated = await self.store.update_appointment_billing(appointment.id, new_status, invoice)
        except Exception as e:
            logger.critical(
                f"[APPOINTMENT BILLING] Invoice {invoice.invoice_id} paid but status update failed "
                f"for appointment {appointment.id}: {e}. Needs manual reconciliation"
            )
            return StepResult.failed(e, detail={'invoice_id': invoice.invoice_id})

        if not updated:
            logger.warning(f"[APPOINTMENT BILLING] Appointment {appointment.id} was marked billed concurrently")
            return StepResult.skipped("Appointment already in a terminal status")

        return StepResult.succeeded({'status': new_status, 'invoice_id': invoice.invoice_id})

    async def _create_subscription(self, appointment: Appointment) -> StepResult:
        try:
            subscription = await self.subscriptions.create_storage_subscription(
                appointment.stripe_customer_id, appointment
            )
        except Exception as e:
            logger.error(
                f"[APPOINTMENT BILLING] Subscription creation failed for appointment {appointment.id}, "
                f"customer={appointment.stripe_customer_id}, operation=create_storage_subscription: {e}. "
                f"Needs manual reconciliation"
            )
            return StepResult.failed(e)

        return StepResult.succeeded({'subscription_id': subscription.id})

    async def _end_storage_term(self, appointment: Appointment, completed_at: datetime) -> Dict[str, StepResult]:
        """
        Early termination and subscription cancellation run concurrently.
        Leftover usage records are closed afterwards, unless the fee failed.
        """
        steps: Dict[str, StepResult] = {}
        customer_id = appointment.stripe_customer_id

        awaitables = {
            'subscription_cancel': self.subscriptions.cancel_all_subscriptions(customer_id),
        }

        try:
            usage = await self._find_active_usage(appointment)
        except Exception as e:
            logger.error(f"[APPOINTMENT BILLING] Failed to load storage usage for appointment {appointment.id}: {e}")
            steps['early_termination'] = StepResult.failed(e)
            usage = None
        else:
            if usage is None:
                steps['early_termination'] = StepResult.skipped("No active storage usage found")
            else:
                awaitables['early_termination'] = self.termination.process_early_termination(
                    appointment, usage, now=completed_at
                )

        outcomes = await settle_all(**awaitables)

        fee_failed = False
        if 'early_termination' in outcomes:
            steps['early_termination'] = self._termination_step(appointment, outcomes['early_termination'])
            fee_failed = self._fee_failed(outcomes['early_termination'])

        cancel_outcome = outcomes['subscription_cancel']
        if isinstance(cancel_outcome, Exception):
            logger.error(
                f"[APPOINTMENT BILLING] Subscription cancellation failed for appointment {appointment.id}, "
                f"customer={customer_id}, operation=cancel_all_subscriptions: {cancel_outcome}. "
                f"Needs manual reconciliation"
            )
            steps['subscription_cancel'] = StepResult.failed(cancel_outcome)
        else:
            steps['subscription_cancel'] = StepResult.succeeded(
                {'cancelled_subscriptions': cancel_outcome.cancelled_subscriptions}
            )

        if fee_failed:
            steps['usage_close'] = StepResult.skipped("Early termination fee not collected, storage usage left open")
            return steps

        closed = await self.termination.close_usage_records(appointment, completed_at)
        steps['usage_close'] = StepResult.succeeded({'closed_storage_unit_ids': closed})
        return steps

    async def _find_active_usage(self, appointment: Appointment):
        """First active usage record among the requested units."""
        for storage_unit_id in appointment.storage_unit_ids:
            usage = await self.store.find_active_usage(storage_unit_id)
            if usage is not None:
                return usage
        return None

    @staticmethod
    def _fee_failed(outcome) -> bool:
        """
        True when a termination fee may be owed but was not collected.

        Validation failures carry no calculation; they never charge and do
        not keep the units in use.
        """
        if isinstance(outcome, Exception):
            return True
        return not outcome.success and outcome.calculation is not None

    @staticmethod
    def _termination_step(appointment: Appointment, outcome) -> StepResult:
        if isinstance(outcome, Exception):
            logger.error(f"[APPOINTMENT BILLING] Early termination crashed for appointment {appointment.id}: {outcome}")
            return StepResult.failed(outcome)

        detail = {
            'has_early_termination': outcome.has_early_termination,
            'invoice_id': outcome.invoice.invoice_id if outcome.invoice else None,
            'fee': float(outcome.calculation.total_fee) if outcome.calculation else None,
            'closed_storage_unit_ids': outcome.closed_storage_unit_ids,
        }
        if not outcome.success:
            return StepResult(
                outcome=StepOutcome.FAILED,
                detail=detail,
                error=outcome.error,
                error_code=outcome.error_code,
            )
        return StepResult.succeeded(detail)

    @staticmethod
    def _persisted_invoice(appointment: Appointment) -> Optional[InvoiceResult]:
        if not appointment.invoice_id:
            return None
        return InvoiceResult(
            invoice_id=appointment.invoice_id,
            hosted_invoice_url=appointment.invoice_url,
            total=appointment.invoice_total,
        )

    # =========================================================================
    # Helpers
    # =========================================================================

    @staticmethod
    def determine_appointment_status(appointment: Appointment) -> str:
        """Status written once the completion invoice is paid."""
        appointment_type = appointment.type
        if appointment_type is not None and appointment_type.is_storage:
            return AppointmentStatus.LOADING_COMPLETE.value
        if appointment_type == AppointmentType.END_STORAGE_TERM:
            return AppointmentStatus.STORAGE_TERM_ENDED.value
        return AppointmentStatus.ACCESS_COMPLETE.value

    def generate_billing_preview(
        self,
        appointment_type: str,
        number_of_units: int,
        monthly_storage_rate,
        monthly_insurance_rate,
        estimated_service_minutes: float,
        loading_help_price
    ) -> BillingPreview:
        """Estimate the completion invoice without touching the gateway."""
        return self.calculator.generate_billing_preview(
            appointment_type,
            number_of_units,
            monthly_storage_rate,
            monthly_insurance_rate,
            estimated_service_minutes,
            loading_help_price,
        )
