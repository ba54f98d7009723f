"""
Invoices Module

Per-appointment invoice creation and collection.
"""

from .service import InvoiceOrchestrator

__all__ = [
    'InvoiceOrchestrator',
]
