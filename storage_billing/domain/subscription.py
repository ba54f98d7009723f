"""
Subscription Domain Entity

Represents a customer's recurring storage subscription as held by the
payment provider.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Dict, List, Optional


class SubscriptionStatus(Enum):
    """Possible subscription statuses."""
    ACTIVE = "active"
    CANCELED = "canceled"
    PAST_DUE = "past_due"
    INCOMPLETE = "incomplete"
    INCOMPLETE_EXPIRED = "incomplete_expired"
    TRIALING = "trialing"
    UNPAID = "unpaid"
    PAUSED = "paused"


@dataclass(frozen=True)
class SubscriptionItem:
    """One priced line of a subscription (storage or insurance)."""
    id: str
    quantity: int


@dataclass
class Subscription:
    """
    Represents a provider subscription.

    Attributes:
        id: Provider subscription ID
        customer_id: Provider customer ID
        status: Current subscription status
        items: Subscription items, storage first then insurance
        trial_end: End of trial period (if any)
        metadata: Correlation metadata (appointment id and type)
    """
    id: str
    customer_id: str
    status: SubscriptionStatus
    items: List[SubscriptionItem] = field(default_factory=list)
    trial_end: Optional[datetime] = None
    metadata: Dict[str, str] = field(default_factory=dict)

    def is_active(self) -> bool:
        """Check if subscription is currently active."""
        return self.status in (SubscriptionStatus.ACTIVE, SubscriptionStatus.TRIALING)

    def is_canceled(self) -> bool:
        """Check if subscription has been canceled."""
        return self.status == SubscriptionStatus.CANCELED

    def is_trialing(self, now: Optional[datetime] = None) -> bool:
        """Check if subscription is in a trial period that has not ended yet."""
        if self.status != SubscriptionStatus.TRIALING or self.trial_end is None:
            return False
        now = now or datetime.now(timezone.utc)
        return self.trial_end > now

    @classmethod
    def from_dict(cls, data: dict) -> 'Subscription':
        """
        Create a Subscription from a provider payload.

        Args:
            data: Dictionary (or Stripe object) with subscription fields

        Returns:
            Subscription instance
        """
        def parse_datetime(value) -> Optional[datetime]:
            if value is None:
                return None
            if isinstance(value, datetime):
                return value
            if isinstance(value, (int, float)):  # Unix timestamp
                return datetime.fromtimestamp(value, tz=timezone.utc)
            try:
                return datetime.fromisoformat(value.replace('Z', '+00:00'))
            except (ValueError, AttributeError):
                return None

        def parse_status(value) -> SubscriptionStatus:
            if isinstance(value, SubscriptionStatus):
                return value
            try:
                return SubscriptionStatus(value)
            except ValueError:
                return SubscriptionStatus.INCOMPLETE

        raw_items = data.get('items') or {}
        if isinstance(raw_items, dict) or hasattr(raw_items, 'get'):
            raw_items = raw_items.get('data', []) or []

        return cls(
            id=data.get('id', ''),
            customer_id=data.get('customer', data.get('customer_id', '')),
            status=parse_status(data.get('status', 'incomplete')),
            items=[
                SubscriptionItem(id=item.get('id', ''), quantity=int(item.get('quantity') or 0))
                for item in raw_items
            ],
            trial_end=parse_datetime(data.get('trial_end')),
            metadata=dict(data.get('metadata') or {}),
        )
