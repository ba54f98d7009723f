"""Tests for appointment and early termination invoices.

Tests cover:
- Line items per appointment type
- Validation before any gateway call
- Gateway failures and resuming a half-finished invoice
- Early termination fee invoices
"""

import pytest
from datetime import datetime, timedelta, timezone
from decimal import Decimal


def metrics(minutes: float):
    from storage_billing.domain import ServiceMetrics
    return ServiceMetrics(service_time_minutes=minutes, completion_time=1_700_000_000_000)


class TestStorageInvoice:
    """Tests for Initial Pickup and Additional Storage invoices."""

    @pytest.mark.asyncio
    async def test_storage_invoice_lines(self, gateway, make_appointment):
        """Test storage, insurance and loading help lines are billed and paid."""
        from storage_billing.invoices import InvoiceOrchestrator

        result = await InvoiceOrchestrator(gateway).create_and_pay_appointment_invoice(
            make_appointment('Initial Pickup'), metrics(10)
        )

        lines = gateway.lines_for(result.invoice_id)
        assert [(l.description, l.unit_amount, l.quantity) for l in lines] == [
            ('Monthly Storage Rate', 10000, 2),
            ('Standard Coverage ($1000)', 1500, 2),
            ('Loading Help Service (60 minutes, 1 hr minimum)', 18900, 1),
        ]
        assert result.total == Decimal('419.00')
        assert gateway.invoices[result.invoice_id].is_paid()
        assert result.hosted_invoice_url.endswith(result.invoice_id)

    @pytest.mark.asyncio
    async def test_invoice_metadata(self, gateway, make_appointment):
        """Test invoices carry the appointment id and type."""
        from storage_billing.invoices import InvoiceOrchestrator

        result = await InvoiceOrchestrator(gateway).create_and_pay_appointment_invoice(
            make_appointment('Additional Storage'), metrics(10)
        )

        assert gateway.invoices[result.invoice_id].metadata == {
            'appointment_id': '101',
            'appointment_type': 'Additional Storage',
        }

    @pytest.mark.asyncio
    async def test_insurance_label_fallback(self, gateway, make_appointment):
        """Test the insurance line falls back to a generic label."""
        from storage_billing.invoices import InvoiceOrchestrator

        result = await InvoiceOrchestrator(gateway).create_and_pay_appointment_invoice(
            make_appointment(insurance_coverage=None), metrics(10)
        )

        assert gateway.lines_for(result.invoice_id)[1].description == 'Insurance'

    @pytest.mark.asyncio
    async def test_total_rounds_each_line_once(self, gateway, make_appointment):
        """Test the total is the sum of the cents actually billed."""
        from storage_billing.invoices import InvoiceOrchestrator

        result = await InvoiceOrchestrator(gateway).create_and_pay_appointment_invoice(
            make_appointment(loading_help_price=Decimal('100')), metrics(61)
        )

        # 200 + 30 + 101.666...
        assert gateway.lines_for(result.invoice_id)[2].unit_amount == 10167
        assert result.total == Decimal('331.67')

    @pytest.mark.asyncio
    async def test_invalid_pricing_never_reaches_gateway(self, gateway, make_appointment):
        """Test validation fails before any gateway call."""
        from storage_billing.invoices import InvoiceOrchestrator
        from storage_billing.shared.exceptions import ValidationError

        with pytest.raises(ValidationError):
            await InvoiceOrchestrator(gateway).create_and_pay_appointment_invoice(
                make_appointment(monthly_storage_rate=Decimal('0')), metrics(10)
            )

        assert gateway.calls == []


class TestAccessInvoice:
    """Tests for Access Storage and End Storage Term invoices."""

    @pytest.mark.parametrize('appointment_type', ['Access Storage', 'End Storage Term'])
    @pytest.mark.asyncio
    async def test_access_lines(self, gateway, make_appointment, appointment_type):
        """Test access fee and loading help lines."""
        from storage_billing.invoices import InvoiceOrchestrator

        result = await InvoiceOrchestrator(gateway).create_and_pay_appointment_invoice(
            make_appointment(appointment_type), metrics(90)
        )

        lines = gateway.lines_for(result.invoice_id)
        assert [(l.description, l.amount) for l in lines] == [
            ('Storage Unit Access (2 units @ $50.00/unit)', 10000),
            ('Loading Help Service (90 minutes, 1 hr minimum)', 28350),
        ]
        assert result.total == Decimal('383.50')

    @pytest.mark.asyncio
    async def test_access_ignores_storage_pricing(self, gateway, make_appointment):
        """Test access appointments do not need storage rates."""
        from storage_billing.invoices import InvoiceOrchestrator

        result = await InvoiceOrchestrator(gateway).create_and_pay_appointment_invoice(
            make_appointment('Access Storage', monthly_storage_rate=None, number_of_units=None),
            metrics(10)
        )

        assert result.total == Decimal('289.00')

    @pytest.mark.asyncio
    async def test_access_without_units_rejected(self, gateway, make_appointment):
        """Test access appointments need a requested unit."""
        from storage_billing.invoices import InvoiceOrchestrator
        from storage_billing.shared.exceptions import ValidationError

        with pytest.raises(ValidationError):
            await InvoiceOrchestrator(gateway).create_and_pay_appointment_invoice(
                make_appointment('Access Storage', requested_storage_units=[]), metrics(10)
            )

        assert gateway.calls == []


class TestInvoiceFailures:
    """Tests for rejected inputs and gateway failures."""

    @pytest.mark.asyncio
    async def test_unsupported_type(self, gateway, make_appointment):
        """Test unknown appointment types are rejected without gateway calls."""
        from storage_billing.invoices import InvoiceOrchestrator
        from storage_billing.shared.exceptions import UnsupportedTypeError

        with pytest.raises(UnsupportedTypeError) as exc_info:
            await InvoiceOrchestrator(gateway).create_and_pay_appointment_invoice(
                make_appointment('Mystery Visit'), metrics(10)
            )

        assert exc_info.value.appointment_type == 'Mystery Visit'
        assert gateway.calls == []

    @pytest.mark.asyncio
    async def test_missing_payment_account(self, gateway, make_appointment):
        """Test appointments without a customer are rejected."""
        from storage_billing.invoices import InvoiceOrchestrator
        from storage_billing.shared.exceptions import MissingPaymentAccountError, ValidationError

        with pytest.raises(MissingPaymentAccountError) as exc_info:
            await InvoiceOrchestrator(gateway).create_and_pay_appointment_invoice(
                make_appointment(stripe_customer_id=None), metrics(10)
            )

        assert isinstance(exc_info.value, ValidationError)
        assert gateway.calls == []

    @pytest.mark.asyncio
    async def test_declined_payment_propagates(self, gateway, make_appointment):
        """Test a declined card surfaces as PaymentDeclinedError."""
        from storage_billing.invoices import InvoiceOrchestrator
        from storage_billing.shared.exceptions import PaymentDeclinedError

        gateway.fail_on['pay_invoice'] = PaymentDeclinedError(decline_code='insufficient_funds')

        with pytest.raises(PaymentDeclinedError):
            await InvoiceOrchestrator(gateway).create_and_pay_appointment_invoice(
                make_appointment(), metrics(10)
            )

    @pytest.mark.asyncio
    async def test_retry_resumes_same_invoice(self, gateway, make_appointment):
        """Test a retry after a failed payment pays the same invoice without new lines."""
        from storage_billing.invoices import InvoiceOrchestrator
        from storage_billing.shared.exceptions import GatewayTimeoutError

        orchestrator = InvoiceOrchestrator(gateway)
        appointment = make_appointment()

        gateway.fail_on['pay_invoice'] = GatewayTimeoutError(operation='pay_invoice')
        with pytest.raises(GatewayTimeoutError):
            await orchestrator.create_and_pay_appointment_invoice(appointment, metrics(10))

        del gateway.fail_on['pay_invoice']
        result = await orchestrator.create_and_pay_appointment_invoice(appointment, metrics(10))

        assert len(gateway.invoices) == 1
        assert len(gateway.lines_for(result.invoice_id)) == 3
        assert gateway.count('finalize_invoice') == 1
        assert gateway.invoices[result.invoice_id].is_paid()

    @pytest.mark.asyncio
    async def test_resumed_invoice_reports_charged_total(self, gateway, make_appointment):
        """Test a redelivery with a later completion time reports the original invoice amount."""
        from storage_billing.invoices import InvoiceOrchestrator
        from storage_billing.shared.exceptions import GatewayTimeoutError

        orchestrator = InvoiceOrchestrator(gateway)
        appointment = make_appointment()

        gateway.fail_on['pay_invoice'] = GatewayTimeoutError(operation='pay_invoice')
        with pytest.raises(GatewayTimeoutError):
            await orchestrator.create_and_pay_appointment_invoice(appointment, metrics(30))

        del gateway.fail_on['pay_invoice']
        result = await orchestrator.create_and_pay_appointment_invoice(appointment, metrics(120))

        invoice = gateway.invoices[result.invoice_id]
        assert len(gateway.lines_for(result.invoice_id)) == 3
        assert invoice.amount_due == 41900
        assert result.total == Decimal('419.00')


class TestEarlyTerminationInvoice:
    """Tests for the dedicated early termination invoice."""

    @pytest.mark.asyncio
    async def test_fee_invoice_lines(self, gateway, make_appointment):
        """Test storage and insurance portions are billed per unit-month."""
        from storage_billing.calculator import calculate_early_termination_fee
        from storage_billing.invoices import InvoiceOrchestrator

        now = datetime(2024, 3, 1, tzinfo=timezone.utc)
        calculation = calculate_early_termination_fee(now - timedelta(days=10), 2, 100, 15, now=now)
        appointment = make_appointment('End Storage Term')

        result = await InvoiceOrchestrator(gateway).create_early_termination_invoice(appointment, calculation)

        lines = gateway.lines_for(result.invoice_id)
        assert [(l.unit_amount, l.quantity) for l in lines] == [(10000, 4), (1500, 4)]
        assert 'Storage (2 months remaining' in lines[0].description
        assert 'Insurance (2 months remaining' in lines[1].description
        assert result.total == Decimal('460.00')
        assert gateway.invoices[result.invoice_id].metadata['early_termination'] == 'true'

    @pytest.mark.asyncio
    async def test_fee_invoice_separate_from_appointment_invoice(self, gateway, make_appointment):
        """Test the fee and the appointment invoice use different idempotency keys."""
        from storage_billing.calculator import calculate_early_termination_fee
        from storage_billing.invoices import InvoiceOrchestrator

        now = datetime(2024, 3, 1, tzinfo=timezone.utc)
        calculation = calculate_early_termination_fee(now - timedelta(days=40), 2, 100, 15, now=now)
        appointment = make_appointment('End Storage Term')
        orchestrator = InvoiceOrchestrator(gateway)

        base = await orchestrator.create_and_pay_appointment_invoice(appointment, metrics(10))
        fee = await orchestrator.create_early_termination_invoice(appointment, calculation)

        assert base.invoice_id != fee.invoice_id
        assert fee.total == Decimal('230.00')

    @pytest.mark.asyncio
    async def test_no_fee_invoice_after_minimum_term(self, gateway, make_appointment):
        """Test a calculation without a fee is rejected."""
        from storage_billing.calculator import calculate_early_termination_fee
        from storage_billing.invoices import InvoiceOrchestrator
        from storage_billing.shared.exceptions import ValidationError

        now = datetime(2024, 3, 1, tzinfo=timezone.utc)
        calculation = calculate_early_termination_fee(now - timedelta(days=60), 2, 100, 15, now=now)

        with pytest.raises(ValidationError):
            await InvoiceOrchestrator(gateway).create_early_termination_invoice(
                make_appointment('End Storage Term'), calculation
            )

        assert gateway.calls == []
