"""
Stripe Idempotency Key Generation

Generates deterministic idempotency keys for Stripe API calls so that a
retried appointment completion collapses onto the first request at Stripe
instead of creating a second invoice or subscription.
"""

import hashlib
import logging

logger = logging.getLogger(__name__)


class StripeIdempotencyManager:
    """
    Generates deterministic idempotency keys for Stripe operations.

    Keys depend only on the operation and its identifying arguments. There
    is no time bucket: a delivery retried hours later must still map to
    the same key.

    Usage:
        key = stripe_idempotency_manager.generate_appointment_key('appointment_invoice', appointment.id)
        invoice = await stripe.Invoice.create_async(idempotency_key=key, ...)
    """

    def generate_key(self, operation: str, resource_id, *args, **kwargs) -> str:
        """
        Generate an idempotency key.

        Args:
            operation: Operation type (e.g., 'appointment_invoice')
            resource_id: Identifier the operation is scoped to
            *args: Additional positional arguments to include in key
            **kwargs: Additional keyword arguments to include in key

        Returns:
            40-character hex idempotency key
        """
        # Sort kwargs for deterministic ordering
        sorted_kwargs = sorted(kwargs.items())

        components = [
            operation,
            str(resource_id),
            *[str(arg) for arg in args],
            *[f"{k}={v}" for k, v in sorted_kwargs],
        ]

        idempotency_base = "_".join(components)
        key = hashlib.sha256(idempotency_base.encode()).hexdigest()[:40]
        logger.debug(f"[IDEMPOTENCY] {operation} on {resource_id} -> {key}")
        return key

    def generate_appointment_key(self, operation: str, appointment_id: int, *args) -> str:
        """Generate a key scoped to one appointment completion."""
        return self.generate_key(operation, f"appointment:{appointment_id}", *args)

    def generate_invoice_line_key(self, invoice_id: str, position: int) -> str:
        """Generate a key for the n-th line added to a draft invoice."""
        return self.generate_key('invoice_line', invoice_id, position)


# Global instance
stripe_idempotency_manager = StripeIdempotencyManager()


# Convenience functions
def generate_idempotency_key(operation: str, resource_id, *args, **kwargs) -> str:
    """Generate a generic idempotency key."""
    return stripe_idempotency_manager.generate_key(operation, resource_id, *args, **kwargs)


def generate_appointment_idempotency_key(operation: str, appointment_id: int, *args) -> str:
    """Generate idempotency key for an appointment-scoped operation."""
    return stripe_idempotency_manager.generate_appointment_key(operation, appointment_id, *args)


def generate_invoice_line_idempotency_key(invoice_id: str, position: int) -> str:
    """Generate idempotency key for an invoice line."""
    return stripe_idempotency_manager.generate_invoice_line_key(invoice_id, position)
