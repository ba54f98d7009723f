"""
Invoice and Customer Domain Entities

Provider-owned billing objects, referenced by id and correlated to an
appointment through metadata.
"""

from dataclasses import dataclass, field
from typing import Dict, Optional


@dataclass(frozen=True)
class Customer:
    """Provider customer holding the card on file."""
    id: str
    email: Optional[str] = None
    name: Optional[str] = None


@dataclass(frozen=True)
class InvoiceLine:
    """
    One itemized invoice line, already converted to minor units.

    Attributes:
        description: Human readable line (embeds quantity and rate)
        unit_amount: Price per unit in cents
        quantity: Billed quantity
    """
    description: str
    unit_amount: int
    quantity: int = 1

    @property
    def amount(self) -> int:
        return self.unit_amount * self.quantity


@dataclass(frozen=True)
class SubscriptionLineItem:
    """A recurring per-unit price attached to a subscription."""
    product_id: str
    unit_amount: int  # cents per unit per month
    quantity: int


@dataclass
class Invoice:
    """
    Provider invoice.

    Attributes:
        id: Provider invoice ID
        customer_id: Provider customer ID
        status: draft, open, paid, void or uncollectible
        hosted_invoice_url: Customer-facing invoice page
        amount_due: Total in cents, as computed by the provider
        metadata: Correlation metadata
    """
    id: str
    customer_id: str
    status: str = 'draft'
    hosted_invoice_url: Optional[str] = None
    amount_due: int = 0
    metadata: Dict[str, str] = field(default_factory=dict)

    def is_paid(self) -> bool:
        return self.status == 'paid'

    @classmethod
    def from_dict(cls, data: dict) -> 'Invoice':
        """Create an Invoice from a provider payload."""
        return cls(
            id=data.get('id', ''),
            customer_id=data.get('customer', ''),
            status=data.get('status') or 'draft',
            hosted_invoice_url=data.get('hosted_invoice_url'),
            amount_due=int(data.get('amount_due') or 0),
            metadata=dict(data.get('metadata') or {}),
        )
