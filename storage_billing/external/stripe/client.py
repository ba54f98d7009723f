"""
Stripe API Client Wrapper

Provides a safe, circuit-breaker-protected implementation of the payment
gateway on top of the Stripe API. Every Stripe call goes through
safe_stripe_call, and every Stripe exception leaves this module translated
into a BillingError.
"""

import logging
from typing import Any, Callable, Dict, List, Optional, Tuple

import stripe

from storage_billing.core.conf import settings
from storage_billing.domain import (
    Customer,
    Invoice,
    InvoiceLine,
    Subscription,
    SubscriptionLineItem,
)
from storage_billing.payments.interfaces import PaymentGatewayClient
from storage_billing.shared.config import CURRENCY
from storage_billing.shared.exceptions import (
    BillingError,
    GatewayError,
    GatewayTimeoutError,
    NotFoundError,
    PaymentDeclinedError,
)
from .circuit_breaker import StripeCircuitBreaker, stripe_circuit_breaker

logger = logging.getLogger(__name__)

stripe.api_key = settings.STRIPE_SECRET_KEY
stripe.max_network_retries = settings.STRIPE_MAX_NETWORK_RETRIES

LIST_PAGE_SIZE = 100


def _as_dict(obj: Any) -> Dict:
    """Convert a Stripe object to a plain dict."""
    if obj is None:
        return {}
    if isinstance(obj, dict) and not hasattr(obj, 'to_dict'):
        return obj
    if hasattr(obj, 'to_dict'):
        return obj.to_dict()
    return dict(obj)


def translate_stripe_error(error: Exception, operation: str, invoice_id: str = None) -> BillingError:
    """
    Map a Stripe exception onto the billing error hierarchy.

    Args:
        error: Exception raised by the Stripe SDK
        operation: Gateway operation name, kept for logs and reconciliation
        invoice_id: Invoice being paid, when relevant

    Returns:
        BillingError subclass to raise in its place
    """
    if isinstance(error, BillingError):
        return error

    message = getattr(error, 'user_message', None) or str(error) or type(error).__name__

    if isinstance(error, stripe.CardError):
        stripe_detail = getattr(error, 'error', None)
        decline_code = getattr(stripe_detail, 'decline_code', None) or getattr(error, 'code', None)
        return PaymentDeclinedError(
            message=message,
            decline_code=decline_code,
            invoice_id=invoice_id,
            operation=operation
        )

    if isinstance(error, stripe.APIConnectionError):
        return GatewayTimeoutError(message=message, operation=operation)

    if isinstance(error, (stripe.RateLimitError, stripe.APIError)):
        return GatewayError(
            message=message,
            operation=operation,
            retryable=True,
            stripe_error=type(error).__name__
        )

    # 409: a request with the same key is still in flight at Stripe
    if isinstance(error, stripe.IdempotencyError) and getattr(error, 'http_status', None) == 409:
        return GatewayError(
            message=message,
            code="IDEMPOTENCY_CONFLICT",
            operation=operation,
            retryable=True,
            stripe_error=type(error).__name__
        )

    if isinstance(error, stripe.InvalidRequestError) and getattr(error, 'code', None) == 'resource_missing':
        return NotFoundError(
            resource=getattr(error, 'param', None) or operation,
            message=message
        )

    return GatewayError(
        message=message,
        operation=operation,
        retryable=False,
        stripe_error=type(error).__name__
    )


class StripeGateway(PaymentGatewayClient):
    """
    Stripe-backed payment gateway.

    Usage:
        gateway = StripeGateway()
        invoice = await gateway.create_invoice('cus_123', {'appointment_id': '42'})

    The circuit breaker prevents cascading failures when Stripe is down.
    """

    def __init__(
        self,
        circuit_breaker: StripeCircuitBreaker = stripe_circuit_breaker,
        currency: str = CURRENCY
    ):
        self._circuit_breaker = circuit_breaker
        self.currency = currency

    @staticmethod
    def _ensure_stripe_configured():
        """Raise error if Stripe is not configured."""
        if not stripe.api_key:
            raise GatewayError(
                message="STRIPE_SECRET_KEY not configured",
                code="GATEWAY_NOT_CONFIGURED",
                retryable=False
            )

    async def safe_stripe_call(
        self,
        operation: str,
        func: Callable,
        *args,
        invoice_id: str = None,
        **kwargs
    ) -> Any:
        """
        Execute a Stripe API call with circuit breaker protection.

        Args:
            operation: Name used in logs and translated errors
            func: Async Stripe API function
            *args: Positional arguments
            invoice_id: Invoice involved, attached to declines
            **kwargs: Keyword arguments

        Returns:
            Result from Stripe API

        Raises:
            BillingError: Translated Stripe failure
        """
        self._ensure_stripe_configured()
        try:
            return await self._circuit_breaker.safe_call(func, *args, **kwargs)
        except stripe.StripeError as e:
            translated = translate_stripe_error(e, operation, invoice_id=invoice_id)
            logger.warning(f"[STRIPE] {operation} failed: {translated.code} - {translated.message}")
            raise translated from e

    def get_circuit_status(self) -> Dict:
        """Get the current circuit breaker status."""
        return self._circuit_breaker.get_status()

    # -------------------------------------------------------------------------
    # Customer Operations
    # -------------------------------------------------------------------------

    async def retrieve_customer(self, customer_id: str) -> Customer:
        """Retrieve a Stripe customer by ID. Deleted customers count as missing."""
        customer = _as_dict(await self.safe_stripe_call(
            'retrieve_customer', stripe.Customer.retrieve_async, customer_id
        ))
        if customer.get('deleted'):
            raise NotFoundError('customer', customer_id, message=f"Customer {customer_id} has been deleted")
        return Customer(
            id=customer.get('id', customer_id),
            email=customer.get('email'),
            name=customer.get('name'),
        )

    # -------------------------------------------------------------------------
    # Invoice Operations
    # -------------------------------------------------------------------------

    async def create_invoice(
        self,
        customer_id: str,
        metadata: Dict[str, str],
        description: Optional[str] = None,
        idempotency_key: Optional[str] = None
    ) -> Invoice:
        """
        Create a draft invoice charged automatically to the card on file.

        Pending invoice items are excluded so only lines added explicitly
        end up on the invoice.
        """
        params = {
            'customer': customer_id,
            'auto_advance': True,
            'collection_method': 'charge_automatically',
            'currency': self.currency,
            'pending_invoice_items_behavior': 'exclude',
            'metadata': metadata,
            'custom_fields': [
                {'name': 'Appointment ID', 'value': str(metadata.get('appointment_id', ''))},
            ],
        }
        if description:
            params['description'] = description
        if idempotency_key:
            params['idempotency_key'] = idempotency_key

        invoice = await self.safe_stripe_call('create_invoice', stripe.Invoice.create_async, **params)
        return Invoice.from_dict(_as_dict(invoice))

    async def add_invoice_line(
        self,
        customer_id: str,
        invoice_id: str,
        line: InvoiceLine,
        idempotency_key: Optional[str] = None
    ) -> None:
        """Attach one itemized line to a draft invoice."""
        params = {
            'customer': customer_id,
            'invoice': invoice_id,
            'currency': self.currency,
            'description': line.description,
            'unit_amount_decimal': str(line.unit_amount),
            'quantity': line.quantity,
        }
        if idempotency_key:
            params['idempotency_key'] = idempotency_key

        await self.safe_stripe_call('add_invoice_line', stripe.InvoiceItem.create_async, **params)

    async def finalize_invoice(self, invoice_id: str) -> Invoice:
        """Finalize a draft invoice."""
        invoice = await self.safe_stripe_call(
            'finalize_invoice', stripe.Invoice.finalize_invoice_async, invoice_id, invoice_id=invoice_id
        )
        return Invoice.from_dict(_as_dict(invoice))

    async def pay_invoice(self, invoice_id: str) -> Invoice:
        """Collect a finalized invoice from the card on file."""
        invoice = await self.safe_stripe_call(
            'pay_invoice', stripe.Invoice.pay_async, invoice_id, invoice_id=invoice_id
        )
        return Invoice.from_dict(_as_dict(invoice))

    async def retrieve_invoice(self, invoice_id: str) -> Invoice:
        """Retrieve an invoice by ID."""
        invoice = await self.safe_stripe_call('retrieve_invoice', stripe.Invoice.retrieve_async, invoice_id)
        return Invoice.from_dict(_as_dict(invoice))

    # -------------------------------------------------------------------------
    # Subscription Operations
    # -------------------------------------------------------------------------

    async def create_subscription(
        self,
        customer_id: str,
        line_items: List[SubscriptionLineItem],
        trial_days: int,
        metadata: Dict[str, str],
        idempotency_key: Optional[str] = None
    ) -> Subscription:
        """Create a monthly subscription with inline per-unit prices."""
        params = {
            'customer': customer_id,
            'items': [
                {
                    'price_data': {
                        'currency': self.currency,
                        'product': item.product_id,
                        'recurring': {'interval': 'month'},
                        'unit_amount': item.unit_amount,
                    },
                    'quantity': item.quantity,
                }
                for item in line_items
            ],
            'trial_period_days': trial_days,
            'proration_behavior': 'none',
            'metadata': metadata,
        }
        if idempotency_key:
            params['idempotency_key'] = idempotency_key

        subscription = await self.safe_stripe_call('create_subscription', stripe.Subscription.create_async, **params)
        return Subscription.from_dict(_as_dict(subscription))

    async def list_subscriptions(self, customer_id: str) -> List[Subscription]:
        """List every subscription of a customer, following pagination."""
        subscriptions: List[Subscription] = []
        starting_after = None

        while True:
            params = {'customer': customer_id, 'status': 'all', 'limit': LIST_PAGE_SIZE}
            if starting_after:
                params['starting_after'] = starting_after

            page = _as_dict(await self.safe_stripe_call(
                'list_subscriptions', stripe.Subscription.list_async, **params
            ))
            data = page.get('data') or []
            subscriptions.extend(Subscription.from_dict(_as_dict(item)) for item in data)

            if not page.get('has_more') or not data:
                break
            starting_after = data[-1]['id']

        return subscriptions

    async def retrieve_subscription(self, subscription_id: str) -> Subscription:
        """Retrieve a subscription by ID."""
        subscription = await self.safe_stripe_call(
            'retrieve_subscription', stripe.Subscription.retrieve_async, subscription_id
        )
        return Subscription.from_dict(_as_dict(subscription))

    async def update_subscription_quantities(
        self,
        subscription_id: str,
        quantities: List[Tuple[str, int]],
        proration_behavior: str = 'always_invoice'
    ) -> Subscription:
        """Set item quantities on a subscription."""
        subscription = await self.safe_stripe_call(
            'update_subscription_quantities',
            stripe.Subscription.modify_async,
            subscription_id,
            items=[{'id': item_id, 'quantity': quantity} for item_id, quantity in quantities],
            proration_behavior=proration_behavior,
        )
        return Subscription.from_dict(_as_dict(subscription))

    async def cancel_subscription(self, subscription_id: str) -> Subscription:
        """Cancel a subscription immediately."""
        subscription = await self.safe_stripe_call(
            'cancel_subscription', stripe.Subscription.cancel_async, subscription_id
        )
        return Subscription.from_dict(_as_dict(subscription))


def get_stripe_gateway() -> StripeGateway:
    """Get a Stripe gateway bound to the global circuit breaker."""
    return StripeGateway()
