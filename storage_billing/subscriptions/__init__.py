"""
Subscriptions Module

Recurring storage subscription lifecycle.
"""

from .service import SubscriptionOrchestrator

__all__ = [
    'SubscriptionOrchestrator',
]
