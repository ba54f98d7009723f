"""
Invoice Orchestrator

Builds one itemized gateway invoice per appointment completion, finalizes it
and collects it from the card on file:
- Initial Pickup / Additional Storage: storage + insurance + loading help
- Access Storage / End Storage Term: access fee + loading help
- Early termination: dedicated fee invoice (storage + insurance portions)
"""

import logging
from decimal import Decimal
from typing import Dict, List

from storage_billing.calculator import (
    BillingCalculator,
    EarlyTerminationCalculation,
    PricingInputs,
    billing_calculator,
    from_minor_units,
    to_minor_units,
)
from storage_billing.domain import Appointment, InvoiceLine, InvoiceResult, ServiceMetrics
from storage_billing.external.stripe.idempotency import (
    generate_appointment_idempotency_key,
    generate_invoice_line_idempotency_key,
)
from storage_billing.payments.interfaces import PaymentGatewayClient
from storage_billing.shared.exceptions import (
    BillingError,
    MissingPaymentAccountError,
    UnsupportedTypeError,
    ValidationError,
)

logger = logging.getLogger(__name__)


def _money(amount: Decimal) -> str:
    return f"${amount.quantize(Decimal('0.01'))}"


class InvoiceOrchestrator:
    """
    Create, finalize and pay appointment invoices.

    Exactly one gateway invoice per call. Invoice creation carries a
    deterministic idempotency key per appointment, so a retried call
    resumes the same invoice instead of charging twice.

    Usage:
        orchestrator = InvoiceOrchestrator(gateway)
        result = await orchestrator.create_and_pay_appointment_invoice(appointment, metrics)
    """

    def __init__(self, gateway: PaymentGatewayClient, calculator: BillingCalculator = billing_calculator):
        self.gateway = gateway
        self.calculator = calculator

    async def create_and_pay_appointment_invoice(
        self,
        appointment: Appointment,
        service_metrics: ServiceMetrics
    ) -> InvoiceResult:
        """
        Bill a completed appointment.

        Args:
            appointment: Completed appointment
            service_metrics: Service time derived from the completion event

        Returns:
            InvoiceResult with the amount actually charged

        Raises:
            MissingPaymentAccountError: No customer payment account on file
            UnsupportedTypeError: Appointment type has no billing rules
            ValidationError: Pricing inputs missing or invalid
            GatewayError / PaymentDeclinedError: Gateway failure, nothing recorded
        """
        customer_id = appointment.stripe_customer_id
        if not customer_id:
            raise MissingPaymentAccountError(appointment.id)

        appointment_type = appointment.type
        if appointment_type is None:
            raise UnsupportedTypeError(appointment.appointment_type, appointment.id)

        if appointment_type.is_storage:
            lines = self._storage_lines(appointment, service_metrics)
        else:
            # End Storage Term bills like an access visit; its fee is a separate invoice
            lines = self._access_lines(appointment, service_metrics)

        logger.info(
            f"[INVOICE] Creating {appointment_type.value} invoice for appointment {appointment.id}, "
            f"customer={customer_id}, lines={len(lines)}"
        )

        return await self._issue_invoice(
            appointment=appointment,
            customer_id=customer_id,
            lines=lines,
            description=f"{appointment_type.value} appointment",
            metadata=self._metadata(appointment),
            operation='appointment_invoice',
        )

    async def create_early_termination_invoice(
        self,
        appointment: Appointment,
        calculation: EarlyTerminationCalculation
    ) -> InvoiceResult:
        """
        Bill the early termination fee on its own invoice.

        Each portion is billed at the monthly rate with
        quantity = units x remaining months.

        Raises:
            MissingPaymentAccountError: No customer payment account on file
            ValidationError: Calculation is not an early termination
            GatewayError / PaymentDeclinedError: Gateway failure
        """
        customer_id = appointment.stripe_customer_id
        if not customer_id:
            raise MissingPaymentAccountError(appointment.id)

        if not calculation.is_early_termination or calculation.remaining_months < 1:
            raise ValidationError(
                "Early termination invoice requested for a completed minimum term",
                field='remaining_months'
            )

        months = calculation.remaining_months
        quantity = calculation.number_of_units * months
        lines = [
            InvoiceLine(
                description=(
                    f"Early Termination Fee - Storage ({months} months remaining @ "
                    f"{_money(calculation.monthly_storage_rate)}/unit)"
                ),
                unit_amount=to_minor_units(calculation.monthly_storage_rate),
                quantity=quantity,
            ),
            InvoiceLine(
                description=(
                    f"Early Termination Fee - Insurance ({months} months remaining @ "
                    f"{_money(calculation.monthly_insurance_rate)}/unit)"
                ),
                unit_amount=to_minor_units(calculation.monthly_insurance_rate),
                quantity=quantity,
            ),
        ]

        metadata = self._metadata(appointment)
        metadata['early_termination'] = 'true'
        metadata['remaining_months'] = str(months)

        logger.info(
            f"[INVOICE] Creating early termination invoice for appointment {appointment.id}, "
            f"customer={customer_id}, months={months}, fee={_money(calculation.total_fee)}"
        )

        return await self._issue_invoice(
            appointment=appointment,
            customer_id=customer_id,
            lines=lines,
            description=f"Early Termination - {appointment.appointment_type}",
            metadata=metadata,
            operation='early_termination_invoice',
        )

    # -------------------------------------------------------------------------
    # Line builders
    # -------------------------------------------------------------------------

    def _storage_lines(self, appointment: Appointment, service_metrics: ServiceMetrics) -> List[InvoiceLine]:
        pricing = PricingInputs.from_appointment(appointment)
        self.calculator.validate_pricing_inputs(pricing)

        storage = self.calculator.calculate_storage_charges(
            pricing.number_of_units,
            pricing.monthly_storage_rate,
            pricing.monthly_insurance_rate,
        )
        loading_help = self.calculator.calculate_loading_help(
            service_metrics.service_time_minutes,
            pricing.loading_help_price,
        )

        return [
            InvoiceLine(
                description='Monthly Storage Rate',
                unit_amount=to_minor_units(storage.monthly_storage_rate),
                quantity=storage.number_of_units,
            ),
            InvoiceLine(
                description=appointment.insurance_coverage or 'Insurance',
                unit_amount=to_minor_units(storage.monthly_insurance_rate),
                quantity=storage.number_of_units,
            ),
            self._loading_help_line(loading_help),
        ]

    def _access_lines(self, appointment: Appointment, service_metrics: ServiceMetrics) -> List[InvoiceLine]:
        unit_count = len(appointment.requested_storage_units)
        self.calculator.validate_access_inputs(appointment.loading_help_price, unit_count)

        access = self.calculator.calculate_access_charges(unit_count)
        loading_help = self.calculator.calculate_loading_help(
            service_metrics.service_time_minutes,
            appointment.loading_help_price,
        )

        return [
            InvoiceLine(
                description=f"Storage Unit Access ({unit_count} units @ {_money(access.rate_per_unit)}/unit)",
                unit_amount=to_minor_units(access.total),
            ),
            self._loading_help_line(loading_help),
        ]

    @staticmethod
    def _loading_help_line(loading_help) -> InvoiceLine:
        return InvoiceLine(
            description=f"Loading Help Service ({loading_help.billed_minutes} minutes, 1 hr minimum)",
            unit_amount=to_minor_units(loading_help.total),
        )

    @staticmethod
    def _metadata(appointment: Appointment) -> Dict[str, str]:
        return {
            'appointment_id': str(appointment.id),
            'appointment_type': appointment.appointment_type,
        }

    # -------------------------------------------------------------------------
    # Gateway flow
    # -------------------------------------------------------------------------

    async def _issue_invoice(
        self,
        appointment: Appointment,
        customer_id: str,
        lines: List[InvoiceLine],
        description: str,
        metadata: Dict[str, str],
        operation: str
    ) -> InvoiceResult:
        """
        Create, itemize, finalize and pay one invoice.

        A retried call gets the same invoice back from the gateway; its current
        status decides which steps are still outstanding.
        """
        try:
            invoice = await self.gateway.create_invoice(
                customer_id=customer_id,
                metadata=metadata,
                description=description,
                idempotency_key=generate_appointment_idempotency_key(operation, appointment.id),
            )
            invoice = await self.gateway.retrieve_invoice(invoice.id)

            if invoice.status == 'draft':
                for position, line in enumerate(lines):
                    await self.gateway.add_invoice_line(
                        customer_id=customer_id,
                        invoice_id=invoice.id,
                        line=line,
                        idempotency_key=generate_invoice_line_idempotency_key(invoice.id, position),
                    )
                invoice = await self.gateway.finalize_invoice(invoice.id)
            else:
                logger.info(f"[INVOICE] Resuming invoice {invoice.id} for appointment {appointment.id} in status {invoice.status}")

            if not invoice.is_paid():
                invoice = await self.gateway.pay_invoice(invoice.id)

        except BillingError as e:
            logger.error(
                f"[INVOICE] {operation} failed for appointment {appointment.id}, "
                f"customer={customer_id}: {e.code} - {e.message}"
            )
            raise

        # Report what the gateway charged; a resumed invoice keeps its original lines
        total = from_minor_units(invoice.amount_due)
        computed = sum(line.amount for line in lines)
        if invoice.amount_due != computed:
            logger.warning(
                f"[INVOICE] Invoice {invoice.id} for appointment {appointment.id} charged {invoice.amount_due} cents, "
                f"this delivery computed {computed} cents"
            )

        logger.info(f"[INVOICE] Paid invoice {invoice.id} for appointment {appointment.id}: {_money(total)}")

        return InvoiceResult(
            invoice_id=invoice.id,
            hosted_invoice_url=invoice.hosted_invoice_url,
            total=total,
        )
