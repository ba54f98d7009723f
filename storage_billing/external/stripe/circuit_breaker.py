"""
Stripe Circuit Breaker

Implements the circuit breaker pattern for Stripe API calls to prevent
cascading failures when Stripe is experiencing issues.

States:
- CLOSED: Normal operation, requests pass through
- OPEN: Stripe is failing, block requests to prevent overload
- HALF_OPEN: Testing if Stripe has recovered

State is kept per process.
"""

import asyncio
import logging
import time
from enum import Enum
from typing import Any, Callable, Dict, Optional

import stripe

from storage_billing.core.conf import settings
from storage_billing.shared.exceptions import CircuitBreakerOpenError

logger = logging.getLogger(__name__)

# Failures that say nothing about Stripe's health
NON_TRIPPING_ERRORS = (
    stripe.CardError,
    stripe.InvalidRequestError,
    stripe.AuthenticationError,
    stripe.PermissionError,
    stripe.IdempotencyError,
)


class CircuitState(Enum):
    """Circuit breaker states."""
    CLOSED = "closed"  # Normal operation
    OPEN = "open"  # Blocking requests
    HALF_OPEN = "half_open"  # Testing recovery


class StripeCircuitBreaker:
    """
    Circuit breaker for Stripe API calls.

    Only outages count as failures: connection errors, rate limits and
    5xx API errors. A declined card or a bad request is the caller's
    problem and never opens the circuit.

    Usage:
        breaker = StripeCircuitBreaker()
        result = await breaker.safe_call(stripe.Invoice.create_async, customer="cus_...")
    """

    def __init__(
        self,
        circuit_name: str = "stripe_api",
        failure_threshold: int = settings.STRIPE_CIRCUIT_FAILURE_THRESHOLD,
        recovery_timeout: int = settings.STRIPE_CIRCUIT_RECOVERY_TIMEOUT,
        clock: Callable[[], float] = time.monotonic
    ):
        """
        Initialize the circuit breaker.

        Args:
            circuit_name: Name used in logs and status
            failure_threshold: Number of consecutive failures before opening circuit
            recovery_timeout: Seconds to wait before testing recovery
            clock: Monotonic time source
        """
        self.circuit_name = circuit_name
        self.failure_threshold = failure_threshold
        self.recovery_timeout = recovery_timeout
        self._clock = clock
        self._lock = asyncio.Lock()

        self._state = CircuitState.CLOSED
        self._failure_count = 0
        self._success_count = 0
        self._opened_at: Optional[float] = None
        self._trial_in_flight = False

    @property
    def state(self) -> CircuitState:
        return self._state

    async def safe_call(self, func: Callable, *args, **kwargs) -> Any:
        """
        Execute a Stripe API call with circuit breaker protection.

        The lock only guards state transitions; calls themselves run
        concurrently, except that a half-open circuit lets a single trial
        call through and rejects the rest until it settles.

        Args:
            func: Async Stripe API function to call
            *args: Positional arguments for the function
            **kwargs: Keyword arguments for the function

        Returns:
            Result from the Stripe API call

        Raises:
            CircuitBreakerOpenError: If the circuit is open
            stripe.StripeError: If the API call fails
        """
        async with self._lock:
            if not self._should_allow_request():
                reset_time = self._opened_at + self.recovery_timeout if self._opened_at is not None else None
                logger.warning(f"[CIRCUIT BREAKER] Request blocked - circuit {self.circuit_name} is {self._state.value}")
                raise CircuitBreakerOpenError(
                    message=f"Circuit breaker is {self._state.value} - blocking request to Stripe API",
                    reset_time=reset_time
                )
            # A half-open circuit admits one trial request at a time
            is_trial = self._state == CircuitState.HALF_OPEN
            if is_trial:
                self._trial_in_flight = True

        try:
            result = await func(*args, **kwargs)
        except NON_TRIPPING_ERRORS:
            async with self._lock:
                self._record_success()
            raise
        except stripe.StripeError as e:
            async with self._lock:
                self._record_failure(str(e))
            raise
        except Exception as e:
            logger.error(f"[CIRCUIT BREAKER] Unexpected error in {getattr(func, '__name__', func)}: {e}")
            raise
        else:
            async with self._lock:
                self._record_success()
            return result
        finally:
            if is_trial:
                self._trial_in_flight = False

    def get_status(self) -> Dict:
        """
        Get current circuit breaker status.

        Returns:
            Dictionary with circuit state and metrics
        """
        return {
            'circuit_name': self.circuit_name,
            'state': self._state.value,
            'failure_count': self._failure_count,
            'success_count': self._success_count,
            'trial_in_flight': self._trial_in_flight,
            'failure_threshold': self.failure_threshold,
            'recovery_timeout': self.recovery_timeout,
        }

    def reset(self) -> None:
        """Force the circuit closed."""
        self._state = CircuitState.CLOSED
        self._failure_count = 0
        self._opened_at = None
        self._trial_in_flight = False

    def _should_allow_request(self) -> bool:
        """Determine if a request should be allowed based on circuit state."""
        if self._state == CircuitState.CLOSED:
            return True
        elif self._state == CircuitState.OPEN:
            if self._opened_at is not None and self._clock() - self._opened_at >= self.recovery_timeout:
                self._transition_to_half_open()
                return True
            return False
        elif self._state == CircuitState.HALF_OPEN:
            return not self._trial_in_flight

        return False

    def _record_success(self):
        """Record a successful API call - reset circuit to closed."""
        if self._state != CircuitState.CLOSED:
            logger.info(f"[CIRCUIT BREAKER] {self.circuit_name} recovered, closing circuit")
        self._state = CircuitState.CLOSED
        self._failure_count = 0
        self._opened_at = None
        self._success_count += 1

    def _record_failure(self, error_message: str):
        """Record a failed API call - may open circuit if threshold reached."""
        self._failure_count += 1

        # A failed trial request reopens immediately
        if self._state == CircuitState.HALF_OPEN or self._failure_count >= self.failure_threshold:
            self._state = CircuitState.OPEN
            self._opened_at = self._clock()
            logger.warning(f"[CIRCUIT BREAKER] Circuit opened due to {self._failure_count} failures: {error_message}")
        else:
            logger.debug(f"[CIRCUIT BREAKER] Recorded failure #{self._failure_count} for {self.circuit_name}")

    def _transition_to_half_open(self):
        """Transition circuit to half-open state for testing."""
        self._state = CircuitState.HALF_OPEN
        logger.info(f"[CIRCUIT BREAKER] Transitioned {self.circuit_name} to half-open")


# Global circuit breaker instance
stripe_circuit_breaker = StripeCircuitBreaker()
