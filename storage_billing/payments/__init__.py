"""
Payments Module

Gateway and store interfaces the billing services depend on.
"""

from .interfaces import PaymentGatewayClient, PersistenceStore

__all__ = [
    'PaymentGatewayClient',
    'PersistenceStore',
]
