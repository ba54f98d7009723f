"""
Payment Interfaces

Abstract definitions for the payment gateway and the billing store.
"""

from abc import ABC, abstractmethod
from datetime import datetime
from typing import Dict, List, Optional, Tuple

from storage_billing.domain import (
    Appointment,
    Customer,
    Invoice,
    InvoiceLine,
    InvoiceResult,
    StorageUnitUsage,
    Subscription,
    SubscriptionLineItem,
)


class PaymentGatewayClient(ABC):
    """
    Interface for the payment provider.

    Implementations translate provider failures into BillingError subclasses:
    NotFoundError, GatewayError, GatewayTimeoutError, PaymentDeclinedError.
    """

    # Customers

    @abstractmethod
    async def retrieve_customer(self, customer_id: str) -> Customer:
        """Fetch a customer. Missing or deleted customers raise NotFoundError."""
        pass

    # Invoices

    @abstractmethod
    async def create_invoice(
        self,
        customer_id: str,
        metadata: Dict[str, str],
        description: Optional[str] = None,
        idempotency_key: Optional[str] = None
    ) -> Invoice:
        """Create a draft invoice that charges the card on file."""
        pass

    @abstractmethod
    async def add_invoice_line(
        self,
        customer_id: str,
        invoice_id: str,
        line: InvoiceLine,
        idempotency_key: Optional[str] = None
    ) -> None:
        """Attach one itemized line to a draft invoice."""
        pass

    @abstractmethod
    async def finalize_invoice(self, invoice_id: str) -> Invoice:
        """Finalize a draft invoice."""
        pass

    @abstractmethod
    async def pay_invoice(self, invoice_id: str) -> Invoice:
        """Collect a finalized invoice. Card failures raise PaymentDeclinedError."""
        pass

    @abstractmethod
    async def retrieve_invoice(self, invoice_id: str) -> Invoice:
        pass

    # Subscriptions

    @abstractmethod
    async def create_subscription(
        self,
        customer_id: str,
        line_items: List[SubscriptionLineItem],
        trial_days: int,
        metadata: Dict[str, str],
        idempotency_key: Optional[str] = None
    ) -> Subscription:
        """Create a monthly subscription with per-unit items, without proration."""
        pass

    @abstractmethod
    async def list_subscriptions(self, customer_id: str) -> List[Subscription]:
        """List every subscription of a customer, regardless of status."""
        pass

    @abstractmethod
    async def retrieve_subscription(self, subscription_id: str) -> Subscription:
        pass

    @abstractmethod
    async def update_subscription_quantities(
        self,
        subscription_id: str,
        quantities: List[Tuple[str, int]],
        proration_behavior: str = 'always_invoice'
    ) -> Subscription:
        """Set item quantities as (item_id, quantity) pairs."""
        pass

    @abstractmethod
    async def cancel_subscription(self, subscription_id: str) -> Subscription:
        """Cancel a subscription immediately."""
        pass


class PersistenceStore(ABC):
    """Interface for appointment and storage usage persistence."""

    @abstractmethod
    async def get_appointment(self, appointment_id: int) -> Optional[Appointment]:
        pass

    @abstractmethod
    async def mark_billing_processing(
        self,
        appointment_id: int,
        claimed_at: datetime,
        stale_after_seconds: int
    ) -> bool:
        """
        Claim an appointment for billing across workers.

        Succeeds only while the row is not in a terminal billed status and
        has no claim younger than stale_after_seconds. Returns False when
        the claim was not taken.
        """
        pass

    @abstractmethod
    async def mark_billing_failed(self, appointment_id: int) -> None:
        """Drop the billing claim so the next delivery can retry at once."""
        pass

    @abstractmethod
    async def update_appointment_billing(
        self,
        appointment_id: int,
        status: str,
        invoice: InvoiceResult
    ) -> bool:
        """
        Persist the new status and invoice reference in one row update.

        The update only applies while the row is not already in a terminal
        billed status, and releases the billing claim. Returns False when
        nothing was updated.
        """
        pass

    @abstractmethod
    async def find_active_usage(self, storage_unit_id: int) -> Optional[StorageUnitUsage]:
        """Return the open usage record for a unit, if any."""
        pass

    @abstractmethod
    async def close_active_usage(
        self,
        storage_unit_id: int,
        end_appointment_id: int,
        ended_at: datetime
    ) -> bool:
        """Close the open usage record for a unit. Returns False when none was open."""
        pass
