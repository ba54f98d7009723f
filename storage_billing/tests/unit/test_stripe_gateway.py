"""Tests for the Stripe integration.

Tests cover:
- Circuit breaker state transitions
- Stripe error translation
- Gateway request shapes and pagination
- Deterministic idempotency keys
"""

import asyncio
import pytest
import stripe
from unittest.mock import AsyncMock, patch


class FakeClock:
    def __init__(self):
        self.now = 1000.0

    def __call__(self):
        return self.now


@pytest.fixture
def breaker():
    from storage_billing.external.stripe import StripeCircuitBreaker
    return StripeCircuitBreaker(circuit_name='test', failure_threshold=3, recovery_timeout=30, clock=FakeClock())


@pytest.fixture
def stripe_gateway(breaker):
    from storage_billing.external.stripe import StripeGateway
    with patch.object(stripe, 'api_key', 'sk_test_123'):
        yield StripeGateway(circuit_breaker=breaker, currency='usd')


class TestCircuitBreaker:
    """Tests for StripeCircuitBreaker."""

    @pytest.mark.asyncio
    async def test_opens_after_threshold(self, breaker):
        """Test connection failures open the circuit and block further calls."""
        from storage_billing.external.stripe import CircuitState
        from storage_billing.shared.exceptions import CircuitBreakerOpenError

        failing = AsyncMock(side_effect=stripe.APIConnectionError('network down'))
        for _ in range(3):
            with pytest.raises(stripe.APIConnectionError):
                await breaker.safe_call(failing)

        assert breaker.state == CircuitState.OPEN

        call = AsyncMock(return_value='ok')
        with pytest.raises(CircuitBreakerOpenError) as exc_info:
            await breaker.safe_call(call)

        call.assert_not_called()
        assert exc_info.value.retryable is True

    @pytest.mark.asyncio
    async def test_card_errors_do_not_trip(self, breaker):
        """Test declines are not counted as outages."""
        from storage_billing.external.stripe import CircuitState

        declined = AsyncMock(side_effect=stripe.CardError('declined', None, 'card_declined'))
        for _ in range(5):
            with pytest.raises(stripe.CardError):
                await breaker.safe_call(declined)

        assert breaker.state == CircuitState.CLOSED
        assert breaker.get_status()['failure_count'] == 0

    @pytest.mark.asyncio
    async def test_half_open_trial_recovers(self, breaker):
        """Test a successful trial call after the timeout closes the circuit."""
        from storage_billing.external.stripe import CircuitState

        failing = AsyncMock(side_effect=stripe.APIError('server error'))
        for _ in range(3):
            with pytest.raises(stripe.APIError):
                await breaker.safe_call(failing)

        breaker._clock.now += 31
        result = await breaker.safe_call(AsyncMock(return_value='ok'))

        assert result == 'ok'
        assert breaker.state == CircuitState.CLOSED

    @pytest.mark.asyncio
    async def test_failed_trial_reopens(self, breaker):
        """Test a failing trial call reopens the circuit immediately."""
        from storage_billing.external.stripe import CircuitState

        failing = AsyncMock(side_effect=stripe.RateLimitError('slow down'))
        for _ in range(3):
            with pytest.raises(stripe.RateLimitError):
                await breaker.safe_call(failing)

        breaker._clock.now += 31
        with pytest.raises(stripe.RateLimitError):
            await breaker.safe_call(failing)

        assert breaker.state == CircuitState.OPEN

    @pytest.mark.asyncio
    async def test_half_open_admits_one_call(self, breaker):
        """Test concurrent requests are rejected while the trial call is in flight."""
        from storage_billing.external.stripe import CircuitState
        from storage_billing.shared.exceptions import CircuitBreakerOpenError

        failing = AsyncMock(side_effect=stripe.APIError('server error'))
        for _ in range(3):
            with pytest.raises(stripe.APIError):
                await breaker.safe_call(failing)

        breaker._clock.now += 31
        release = asyncio.Event()

        async def slow_call():
            await release.wait()
            return 'ok'

        trial = asyncio.create_task(breaker.safe_call(slow_call))
        await asyncio.sleep(0)
        assert breaker.get_status()['trial_in_flight'] is True

        blocked = AsyncMock(return_value='ok')
        with pytest.raises(CircuitBreakerOpenError):
            await breaker.safe_call(blocked)
        blocked.assert_not_called()

        release.set()
        assert await trial == 'ok'
        assert breaker.state == CircuitState.CLOSED
        assert breaker.get_status()['trial_in_flight'] is False
        assert await breaker.safe_call(AsyncMock(return_value='ok')) == 'ok'

    @pytest.mark.asyncio
    async def test_success_resets_failures(self, breaker):
        """Test failures must be consecutive to open the circuit."""
        from storage_billing.external.stripe import CircuitState

        failing = AsyncMock(side_effect=stripe.APIError('server error'))
        for _ in range(2):
            with pytest.raises(stripe.APIError):
                await breaker.safe_call(failing)
        await breaker.safe_call(AsyncMock(return_value='ok'))
        for _ in range(2):
            with pytest.raises(stripe.APIError):
                await breaker.safe_call(failing)

        assert breaker.state == CircuitState.CLOSED


class TestErrorTranslation:
    """Tests for translate_stripe_error."""

    def test_card_error(self):
        """Test card errors become PaymentDeclinedError."""
        from storage_billing.external.stripe import translate_stripe_error
        from storage_billing.shared.exceptions import PaymentDeclinedError

        error = translate_stripe_error(
            stripe.CardError('Your card was declined.', None, 'card_declined'), 'pay_invoice', invoice_id='in_1'
        )

        assert isinstance(error, PaymentDeclinedError)
        assert error.decline_code == 'card_declined'
        assert error.invoice_id == 'in_1'
        assert error.retryable is False

    def test_connection_error(self):
        """Test connection errors become retryable timeouts."""
        from storage_billing.external.stripe import translate_stripe_error
        from storage_billing.shared.exceptions import GatewayTimeoutError

        error = translate_stripe_error(stripe.APIConnectionError('timed out'), 'create_invoice')

        assert isinstance(error, GatewayTimeoutError)
        assert error.retryable is True
        assert error.operation == 'create_invoice'

    @pytest.mark.parametrize('stripe_error', [
        stripe.RateLimitError('too many requests'),
        stripe.APIError('internal error'),
    ])
    def test_retryable_gateway_errors(self, stripe_error):
        """Test rate limits and API errors are retryable."""
        from storage_billing.external.stripe import translate_stripe_error
        from storage_billing.shared.exceptions import GatewayError

        error = translate_stripe_error(stripe_error, 'create_invoice')

        assert type(error) is GatewayError
        assert error.retryable is True

    def test_resource_missing(self):
        """Test missing resources become NotFoundError."""
        from storage_billing.external.stripe import translate_stripe_error
        from storage_billing.shared.exceptions import NotFoundError

        error = translate_stripe_error(
            stripe.InvalidRequestError('No such customer', 'customer', code='resource_missing'),
            'retrieve_customer'
        )

        assert isinstance(error, NotFoundError)
        assert error.resource == 'customer'

    def test_other_errors_not_retryable(self):
        """Test invalid requests and auth failures are not retryable."""
        from storage_billing.external.stripe import translate_stripe_error
        from storage_billing.shared.exceptions import GatewayError

        invalid = translate_stripe_error(stripe.InvalidRequestError('bad param', 'quantity'), 'add_invoice_line')
        auth = translate_stripe_error(stripe.AuthenticationError('bad key'), 'create_invoice')

        assert isinstance(invalid, GatewayError) and invalid.retryable is False
        assert isinstance(auth, GatewayError) and auth.retryable is False

    def test_idempotency_conflict_is_retryable(self):
        """Test a 409 for a request still in flight under the same key is retried later."""
        from storage_billing.external.stripe import translate_stripe_error
        from storage_billing.shared.exceptions import GatewayError

        error = translate_stripe_error(
            stripe.IdempotencyError('Request in progress', http_status=409), 'create_invoice'
        )

        assert type(error) is GatewayError
        assert error.code == 'IDEMPOTENCY_CONFLICT'
        assert error.retryable is True

    def test_idempotency_key_reuse_not_retryable(self):
        """Test a key reused with different parameters is not retried."""
        from storage_billing.external.stripe import translate_stripe_error

        error = translate_stripe_error(
            stripe.IdempotencyError('Keys for idempotent requests can only be used with the same parameters', http_status=400),
            'create_invoice'
        )

        assert error.code == 'GATEWAY_ERROR'
        assert error.retryable is False


class TestStripeGateway:
    """Tests for StripeGateway request shapes."""

    @pytest.mark.asyncio
    async def test_create_invoice(self, stripe_gateway):
        """Test invoices charge automatically and carry the appointment id."""
        with patch('stripe.Invoice.create_async', new_callable=AsyncMock) as mock_create:
            mock_create.return_value = {'id': 'in_1', 'customer': 'cus_1', 'status': 'draft'}

            invoice = await stripe_gateway.create_invoice(
                'cus_1', {'appointment_id': '42'}, description='Initial Pickup appointment', idempotency_key='key_1'
            )

        kwargs = mock_create.call_args.kwargs
        assert kwargs['customer'] == 'cus_1'
        assert kwargs['auto_advance'] is True
        assert kwargs['collection_method'] == 'charge_automatically'
        assert kwargs['custom_fields'] == [{'name': 'Appointment ID', 'value': '42'}]
        assert kwargs['idempotency_key'] == 'key_1'
        assert invoice.id == 'in_1'
        assert invoice.status == 'draft'

    @pytest.mark.asyncio
    async def test_add_invoice_line(self, stripe_gateway):
        """Test lines are sent as cents with a quantity."""
        from storage_billing.domain import InvoiceLine

        with patch('stripe.InvoiceItem.create_async', new_callable=AsyncMock) as mock_create:
            await stripe_gateway.add_invoice_line('cus_1', 'in_1', InvoiceLine('Monthly Storage Rate', 10000, 2))

        kwargs = mock_create.call_args.kwargs
        assert kwargs['invoice'] == 'in_1'
        assert kwargs['unit_amount_decimal'] == '10000'
        assert kwargs['quantity'] == 2
        assert kwargs['currency'] == 'usd'

    @pytest.mark.asyncio
    async def test_pay_invoice_declined(self, stripe_gateway):
        """Test a declined payment raises PaymentDeclinedError with the invoice id."""
        from storage_billing.shared.exceptions import PaymentDeclinedError

        with patch('stripe.Invoice.pay_async', new_callable=AsyncMock) as mock_pay:
            mock_pay.side_effect = stripe.CardError('declined', None, 'card_declined')

            with pytest.raises(PaymentDeclinedError) as exc_info:
                await stripe_gateway.pay_invoice('in_1')

        assert exc_info.value.invoice_id == 'in_1'

    @pytest.mark.asyncio
    async def test_deleted_customer(self, stripe_gateway):
        """Test deleted customers are treated as missing."""
        from storage_billing.shared.exceptions import NotFoundError

        with patch('stripe.Customer.retrieve_async', new_callable=AsyncMock) as mock_retrieve:
            mock_retrieve.return_value = {'id': 'cus_1', 'deleted': True}

            with pytest.raises(NotFoundError):
                await stripe_gateway.retrieve_customer('cus_1')

    @pytest.mark.asyncio
    async def test_create_subscription(self, stripe_gateway):
        """Test subscriptions use monthly inline prices, a trial and no proration."""
        from storage_billing.domain import SubscriptionLineItem, SubscriptionStatus

        with patch('stripe.Subscription.create_async', new_callable=AsyncMock) as mock_create:
            mock_create.return_value = {
                'id': 'sub_1',
                'customer': 'cus_1',
                'status': 'trialing',
                'items': {'data': [{'id': 'si_1', 'quantity': 2}, {'id': 'si_2', 'quantity': 2}]},
                'trial_end': 1_700_000_000,
            }

            subscription = await stripe_gateway.create_subscription(
                'cus_1',
                [SubscriptionLineItem('prod_storage', 10000, 2), SubscriptionLineItem('prod_insurance', 1500, 2)],
                trial_days=30,
                metadata={'appointment_id': '42'},
            )

        kwargs = mock_create.call_args.kwargs
        assert kwargs['items'][0] == {
            'price_data': {
                'currency': 'usd',
                'product': 'prod_storage',
                'recurring': {'interval': 'month'},
                'unit_amount': 10000,
            },
            'quantity': 2,
        }
        assert kwargs['trial_period_days'] == 30
        assert kwargs['proration_behavior'] == 'none'
        assert subscription.status == SubscriptionStatus.TRIALING
        assert [i.id for i in subscription.items] == ['si_1', 'si_2']

    @pytest.mark.asyncio
    async def test_list_subscriptions_pages(self, stripe_gateway):
        """Test all pages are fetched with status=all."""
        with patch('stripe.Subscription.list_async', new_callable=AsyncMock) as mock_list:
            mock_list.side_effect = [
                {'data': [{'id': 'sub_1', 'customer': 'cus_1', 'status': 'active'}], 'has_more': True},
                {'data': [{'id': 'sub_2', 'customer': 'cus_1', 'status': 'canceled'}], 'has_more': False},
            ]

            subscriptions = await stripe_gateway.list_subscriptions('cus_1')

        assert [s.id for s in subscriptions] == ['sub_1', 'sub_2']
        assert mock_list.call_args_list[0].kwargs['status'] == 'all'
        assert mock_list.call_args_list[1].kwargs['starting_after'] == 'sub_1'

    @pytest.mark.asyncio
    async def test_update_quantities(self, stripe_gateway):
        """Test quantity updates are sent per item."""
        with patch('stripe.Subscription.modify_async', new_callable=AsyncMock) as mock_modify:
            mock_modify.return_value = {'id': 'sub_1', 'customer': 'cus_1', 'status': 'active'}

            await stripe_gateway.update_subscription_quantities('sub_1', [('si_1', 3), ('si_2', 3)])

        assert mock_modify.call_args.args == ('sub_1',)
        assert mock_modify.call_args.kwargs['items'] == [{'id': 'si_1', 'quantity': 3}, {'id': 'si_2', 'quantity': 3}]
        assert mock_modify.call_args.kwargs['proration_behavior'] == 'always_invoice'

    @pytest.mark.asyncio
    async def test_not_configured(self, breaker):
        """Test calls fail fast without an API key."""
        from storage_billing.external.stripe import StripeGateway
        from storage_billing.shared.exceptions import GatewayError

        with patch.object(stripe, 'api_key', ''):
            with pytest.raises(GatewayError) as exc_info:
                await StripeGateway(circuit_breaker=breaker).retrieve_invoice('in_1')

        assert exc_info.value.code == 'GATEWAY_NOT_CONFIGURED'


class TestIdempotencyKeys:
    """Tests for idempotency key generation."""

    def test_keys_are_deterministic(self):
        """Test the same operation and appointment always give the same key."""
        from storage_billing.external.stripe import generate_appointment_idempotency_key

        first = generate_appointment_idempotency_key('appointment_invoice', 42)
        second = generate_appointment_idempotency_key('appointment_invoice', 42)

        assert first == second
        assert len(first) == 40

    def test_keys_differ_per_operation_and_appointment(self):
        """Test keys are scoped to operation and appointment."""
        from storage_billing.external.stripe import generate_appointment_idempotency_key

        keys = {
            generate_appointment_idempotency_key('appointment_invoice', 42),
            generate_appointment_idempotency_key('early_termination_invoice', 42),
            generate_appointment_idempotency_key('appointment_invoice', 43),
        }

        assert len(keys) == 3

    def test_line_keys_differ_per_position(self):
        """Test each invoice line has its own key."""
        from storage_billing.external.stripe import generate_invoice_line_idempotency_key

        assert generate_invoice_line_idempotency_key('in_1', 0) != generate_invoice_line_idempotency_key('in_1', 1)
