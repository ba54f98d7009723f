"""
Billing Exceptions

Custom exception classes for appointment billing errors.
These provide structured error handling across the billing engine and let
callers tell retryable gateway trouble apart from problems that need a
person (bad data, declined cards).
"""


class BillingError(Exception):
    """
    Base exception for all billing-related errors.

    All billing exceptions inherit from this class, allowing for
    broad exception handling when needed.
    """

    retryable: bool = False

    def __init__(self, message: str, code: str = "BILLING_ERROR", details: dict = None):
        self.message = message
        self.code = code
        self.details = details or {}
        super().__init__(self.message)

    def to_dict(self) -> dict:
        """Convert exception to dictionary for API responses."""
        return {
            'error': self.code,
            'message': self.message,
            'retryable': self.retryable,
            'details': self.details
        }


class ValidationError(BillingError):
    """
    Raised when billing inputs are missing or invalid.

    Validation always happens before any gateway call, so this error
    guarantees that nothing was charged.

    Attributes:
        field: Name of the offending input, when known
    """

    def __init__(
        self,
        message: str = "Invalid billing input",
        code: str = "VALIDATION_ERROR",
        field: str = None,
        details: dict = None
    ):
        merged = dict(details or {})
        if field:
            merged['field'] = field
        super().__init__(message=message, code=code, details=merged)
        self.field = field


class MissingPaymentAccountError(ValidationError):
    """Raised when an appointment has no customer payment account on file."""

    def __init__(self, appointment_id: int = None):
        super().__init__(
            message="No Stripe customer ID found for appointment",
            code="MISSING_PAYMENT_ACCOUNT",
            field='stripe_customer_id',
            details={'appointment_id': appointment_id} if appointment_id is not None else None
        )
        self.appointment_id = appointment_id


class UnsupportedTypeError(BillingError):
    """Raised when an appointment type has no billing rules."""

    def __init__(self, appointment_type: str, appointment_id: int = None):
        details = {'appointment_type': appointment_type}
        if appointment_id is not None:
            details['appointment_id'] = appointment_id
        super().__init__(
            message=f"Unsupported appointment type: {appointment_type}",
            code="UNSUPPORTED_APPOINTMENT_TYPE",
            details=details
        )
        self.appointment_type = appointment_type


class NotFoundError(BillingError):
    """
    Raised when a referenced record does not exist.

    Examples:
        - Stripe customer deleted or never created
        - Appointment missing from the store
        - No active storage unit usage
    """

    def __init__(self, resource: str, resource_id=None, message: str = None):
        super().__init__(
            message=message or f"{resource} '{resource_id}' not found",
            code="NOT_FOUND",
            details={'resource': resource, 'resource_id': resource_id}
        )
        self.resource = resource
        self.resource_id = resource_id


class GatewayError(BillingError):
    """
    Raised when the payment provider call fails for non-card reasons.

    Examples:
        - Provider API error or rate limit (retryable)
        - Invalid request / authentication problem (not retryable)
    """

    def __init__(
        self,
        message: str = "Payment gateway error",
        code: str = "GATEWAY_ERROR",
        operation: str = None,
        retryable: bool = True,
        stripe_error: str = None
    ):
        details = {}
        if operation:
            details['operation'] = operation
        if stripe_error:
            details['stripe_error'] = stripe_error
        super().__init__(message=message, code=code, details=details)
        self.operation = operation
        self.retryable = retryable
        self.stripe_error = stripe_error


class GatewayTimeoutError(GatewayError):
    """Raised when the provider could not be reached or did not answer in time."""

    def __init__(self, message: str = "Payment gateway timed out", operation: str = None):
        super().__init__(
            message=message,
            code="GATEWAY_TIMEOUT",
            operation=operation,
            retryable=True
        )


class CircuitBreakerOpenError(GatewayError):
    """Raised when the circuit breaker is open and preventing calls."""

    def __init__(
        self,
        message: str = "Circuit breaker is open. Service temporarily unavailable.",
        service_name: str = "stripe",
        reset_time: float = None
    ):
        super().__init__(
            message=message,
            code="CIRCUIT_BREAKER_OPEN",
            retryable=True
        )
        self.details.update({
            'service_name': service_name,
            'reset_time': reset_time
        })
        self.service_name = service_name
        self.reset_time = reset_time


class BillingInProgressError(BillingError):
    """
    Raised when another worker is already billing the same appointment.

    Retryable: a later delivery either finds the appointment billed or,
    once the claim has gone stale, takes it over.
    """

    retryable = True

    def __init__(self, appointment_id: int):
        super().__init__(
            message=f"Appointment {appointment_id} is already being billed",
            code="BILLING_IN_PROGRESS",
            details={'appointment_id': appointment_id}
        )
        self.appointment_id = appointment_id


class PaymentDeclinedError(BillingError):
    """
    Raised when the customer's card on file is declined.

    Not retryable until the customer updates their payment method.
    """

    def __init__(
        self,
        message: str = "Payment was declined",
        decline_code: str = None,
        invoice_id: str = None,
        operation: str = None
    ):
        details = {}
        if decline_code:
            details['decline_code'] = decline_code
        if invoice_id:
            details['invoice_id'] = invoice_id
        if operation:
            details['operation'] = operation

        super().__init__(
            message=message,
            code="PAYMENT_DECLINED",
            details=details
        )
        self.decline_code = decline_code
        self.invoice_id = invoice_id
        self.operation = operation
