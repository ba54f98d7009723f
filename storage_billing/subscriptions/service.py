"""
Subscription Orchestrator

Recurring storage subscription lifecycle:
- Creating the monthly storage + insurance subscription after a pickup
- Cancelling every subscription of a customer when storage ends
- Storage period and early termination eligibility
- Trial and quantity management
"""

import logging
from datetime import datetime
from typing import List, Optional

from storage_billing.calculator import BillingCalculator, PricingInputs, StoragePeriod, billing_calculator, to_minor_units
from storage_billing.core.conf import settings
from storage_billing.domain import (
    Appointment,
    CancellationResult,
    Subscription,
    SubscriptionLineItem,
    SubscriptionStatus,
)
from storage_billing.external.stripe.idempotency import generate_appointment_idempotency_key
from storage_billing.payments.interfaces import PaymentGatewayClient
from storage_billing.shared.concurrency import settle_all
from storage_billing.shared.config import STORAGE_SUBSCRIPTION_TRIAL_DAYS
from storage_billing.shared.exceptions import BillingError, ValidationError

logger = logging.getLogger(__name__)

# Cancelling these again fails at the provider
_ALREADY_ENDED = (SubscriptionStatus.CANCELED, SubscriptionStatus.INCOMPLETE_EXPIRED)


class SubscriptionOrchestrator:
    """
    Unified subscription management for storage customers.

    Usage:
        orchestrator = SubscriptionOrchestrator(gateway)

        # After an Initial Pickup is billed
        subscription = await orchestrator.create_storage_subscription(customer_id, appointment)

        # When storage ends
        result = await orchestrator.cancel_all_subscriptions(customer_id)
    """

    def __init__(
        self,
        gateway: PaymentGatewayClient,
        calculator: BillingCalculator = billing_calculator,
        storage_product_id: Optional[str] = None,
        insurance_product_id: Optional[str] = None,
        trial_days: int = STORAGE_SUBSCRIPTION_TRIAL_DAYS
    ):
        self.gateway = gateway
        self.calculator = calculator
        self.storage_product_id = storage_product_id or settings.STRIPE_STORAGE_PRODUCT_ID
        self.insurance_product_id = insurance_product_id or settings.STRIPE_INSURANCE_PRODUCT_ID
        self.trial_days = trial_days

    # =========================================================================
    # Subscription Creation
    # =========================================================================

    async def create_storage_subscription(self, customer_id: str, appointment: Appointment) -> Subscription:
        """
        Create the recurring storage subscription for an appointment.

        The first month is collected on the appointment invoice, so the
        subscription starts with a trial and without proration.

        Args:
            customer_id: Provider customer ID
            appointment: Billed storage appointment

        Returns:
            Created Subscription

        Raises:
            NotFoundError: Customer missing or deleted
            ValidationError: Pricing missing or products not configured
            GatewayError: Provider failure
        """
        await self.gateway.retrieve_customer(customer_id)

        pricing = PricingInputs.from_appointment(appointment)
        self.calculator.validate_pricing_inputs(pricing)

        if not self.storage_product_id or not self.insurance_product_id:
            raise ValidationError(
                "Storage and insurance products must be configured",
                code="PRODUCT_NOT_CONFIGURED",
                field='STRIPE_STORAGE_PRODUCT_ID' if not self.storage_product_id else 'STRIPE_INSURANCE_PRODUCT_ID'
            )

        # Storage first, insurance second; quantity updates rely on this order
        line_items = [
            SubscriptionLineItem(
                product_id=self.storage_product_id,
                unit_amount=to_minor_units(pricing.monthly_storage_rate),
                quantity=pricing.number_of_units,
            ),
            SubscriptionLineItem(
                product_id=self.insurance_product_id,
                unit_amount=to_minor_units(pricing.monthly_insurance_rate),
                quantity=pricing.number_of_units,
            ),
        ]

        subscription = await self.gateway.create_subscription(
            customer_id=customer_id,
            line_items=line_items,
            trial_days=self.trial_days,
            metadata={
                'appointment_id': str(appointment.id),
                'appointment_type': appointment.appointment_type,
            },
            idempotency_key=generate_appointment_idempotency_key('storage_subscription', appointment.id),
        )

        logger.info(
            f"[SUBSCRIPTION] Created storage subscription {subscription.id} for customer {customer_id}, "
            f"appointment {appointment.id}, units={pricing.number_of_units}"
        )
        return subscription

    # =========================================================================
    # Cancellation
    # =========================================================================

    async def cancel_all_subscriptions(self, customer_id: str) -> CancellationResult:
        """
        Cancel every subscription of a customer that has not ended yet.

        Safe to call repeatedly: already-cancelled subscriptions are skipped.
        All cancellations are attempted even if one fails; the first failure
        is then raised.

        Returns:
            CancellationResult with the ids cancelled by this call
        """
        subscriptions = await self.gateway.list_subscriptions(customer_id)
        pending = [s for s in subscriptions if s.status not in _ALREADY_ENDED]

        if not pending:
            logger.info(f"[SUBSCRIPTION] No subscriptions to cancel for customer {customer_id}")
            return CancellationResult(customer_id=customer_id)

        outcomes = await settle_all(**{
            subscription.id: self.gateway.cancel_subscription(subscription.id)
            for subscription in pending
        })

        result = CancellationResult(customer_id=customer_id)
        errors: List[Exception] = []
        for subscription_id, outcome in outcomes.items():
            if isinstance(outcome, Exception):
                logger.error(f"[SUBSCRIPTION] Failed to cancel {subscription_id} for customer {customer_id}: {outcome}")
                errors.append(outcome)
            else:
                result.cancelled_subscriptions.append(subscription_id)

        logger.info(f"[SUBSCRIPTION] Cancelled {len(result.cancelled_subscriptions)} subscription(s) for customer {customer_id}")

        if errors:
            raise errors[0]
        return result

    # =========================================================================
    # Storage Period
    # =========================================================================

    def compute_storage_period(self, usage_start_date: datetime, now: Optional[datetime] = None) -> StoragePeriod:
        """Days in storage against the minimum commitment."""
        return self.calculator.calculate_storage_period(usage_start_date, now)

    # =========================================================================
    # Queries & Updates
    # =========================================================================

    async def get_active_storage_subscriptions(self, customer_id: str) -> List[Subscription]:
        """Active or trialing subscriptions of a customer."""
        subscriptions = await self.gateway.list_subscriptions(customer_id)
        return [s for s in subscriptions if s.is_active()]

    async def has_trial_period_remaining(self, customer_id: str, now: Optional[datetime] = None) -> bool:
        """Check whether any subscription is still in its trial."""
        subscriptions = await self.get_active_storage_subscriptions(customer_id)
        return any(s.is_trialing(now) for s in subscriptions)

    async def update_subscription_quantity(
        self,
        subscription_id: str,
        storage_quantity: int,
        insurance_quantity: int
    ) -> Subscription:
        """
        Change the number of units billed, invoicing the proration immediately.

        Raises:
            ValidationError: Negative quantity or unexpected subscription shape
            NotFoundError / GatewayError: Provider failure
        """
        if storage_quantity < 0 or insurance_quantity < 0:
            raise ValidationError("Subscription quantities cannot be negative", field='quantity')

        subscription = await self.gateway.retrieve_subscription(subscription_id)
        if len(subscription.items) < 2:
            raise ValidationError(
                f"Subscription {subscription_id} does not have storage and insurance items",
                field='items'
            )

        storage_item, insurance_item = subscription.items[0], subscription.items[1]
        try:
            updated = await self.gateway.update_subscription_quantities(
                subscription_id,
                [(storage_item.id, storage_quantity), (insurance_item.id, insurance_quantity)],
                proration_behavior='always_invoice',
            )
        except BillingError as e:
            logger.error(f"[SUBSCRIPTION] Failed to update quantities on {subscription_id}: {e.code} - {e.message}")
            raise

        logger.info(f"[SUBSCRIPTION] Updated {subscription_id}: storage={storage_quantity}, insurance={insurance_quantity}")
        return updated
