"""
Stripe Integration Module

Provides the Stripe implementation of the payment gateway:
- Circuit breaker for API resilience
- Async gateway with error translation
- Deterministic idempotency key generation

Usage:
    from storage_billing.external.stripe import (
        get_stripe_gateway,
        generate_appointment_idempotency_key,
    )

    gateway = get_stripe_gateway()
    invoice = await gateway.create_invoice(
        customer_id='cus_123',
        metadata={'appointment_id': '42'},
        idempotency_key=generate_appointment_idempotency_key('appointment_invoice', 42),
    )
"""

from .circuit_breaker import (
    CircuitState,
    StripeCircuitBreaker,
    stripe_circuit_breaker,
)

from .client import (
    StripeGateway,
    get_stripe_gateway,
    translate_stripe_error,
)

from .idempotency import (
    StripeIdempotencyManager,
    stripe_idempotency_manager,
    generate_idempotency_key,
    generate_appointment_idempotency_key,
    generate_invoice_line_idempotency_key,
)

__all__ = [
    # Circuit Breaker
    'CircuitState',
    'StripeCircuitBreaker',
    'stripe_circuit_breaker',
    # Gateway
    'StripeGateway',
    'get_stripe_gateway',
    'translate_stripe_error',
    # Idempotency
    'StripeIdempotencyManager',
    'stripe_idempotency_manager',
    'generate_idempotency_key',
    'generate_appointment_idempotency_key',
    'generate_invoice_line_idempotency_key',
]
