"""
Billing Result Objects

Outcome types returned by the orchestrators. The webhook path records one
StepResult per side effect so partial failures stay auditable instead of being
reduced to booleans.
"""

from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, List, Optional

from storage_billing.shared.exceptions import BillingError


class StepOutcome(Enum):
    """Outcome of one billing step."""
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    SKIPPED = "skipped"


@dataclass
class StepResult:
    """
    Outcome of a single step in a completion workflow.

    Attributes:
        outcome: SUCCEEDED / FAILED / SKIPPED
        detail: Step-specific payload (ids, counts, calculations)
        error: Error message when FAILED, reason when SKIPPED
        error_code: BillingError code when available
        retryable: Whether a FAILED step can be retried as-is
    """
    outcome: StepOutcome
    detail: Any = None
    error: Optional[str] = None
    error_code: Optional[str] = None
    retryable: bool = False

    @classmethod
    def succeeded(cls, detail: Any = None) -> 'StepResult':
        return cls(outcome=StepOutcome.SUCCEEDED, detail=detail)

    @classmethod
    def skipped(cls, reason: str) -> 'StepResult':
        return cls(outcome=StepOutcome.SKIPPED, error=reason)

    @classmethod
    def failed(cls, error: Exception, detail: Any = None) -> 'StepResult':
        if isinstance(error, BillingError):
            return cls(
                outcome=StepOutcome.FAILED,
                detail=detail,
                error=error.message,
                error_code=error.code,
                retryable=error.retryable,
            )
        return cls(outcome=StepOutcome.FAILED, detail=detail, error=str(error) or type(error).__name__)

    @property
    def ok(self) -> bool:
        return self.outcome == StepOutcome.SUCCEEDED

    def to_dict(self) -> Dict:
        data = {'outcome': self.outcome.value}
        if self.error:
            data['error'] = self.error
        if self.error_code:
            data['error_code'] = self.error_code
            data['retryable'] = self.retryable
        return data


@dataclass(frozen=True)
class InvoiceResult:
    """A finalized and paid invoice."""
    invoice_id: str
    hosted_invoice_url: Optional[str]
    total: Decimal


@dataclass
class CancellationResult:
    """Subscriptions cancelled for a customer."""
    customer_id: str
    cancelled_subscriptions: List[str] = field(default_factory=list)


@dataclass
class EarlyTerminationResult:
    """
    Outcome of an End Storage Term termination.

    success is False when validation or the fee invoice failed; in both cases
    no usage record was closed.
    """
    success: bool
    has_early_termination: bool = False
    calculation: Any = None
    invoice: Optional[InvoiceResult] = None
    storage_usage_updated: bool = False
    closed_storage_unit_ids: List[int] = field(default_factory=list)
    error: Optional[str] = None
    error_code: Optional[str] = None


class CompletionStatus(Enum):
    """Overall result of a webhook completion."""
    COMPLETED = "completed"
    ALREADY_PROCESSED = "already_processed"


@dataclass
class WebhookCompletionResult:
    """
    Aggregated outcome of processing one appointment completion.

    The invoice is always present for COMPLETED results; every other side
    effect is recorded in `steps` keyed by step name.
    """
    appointment_id: int
    status: CompletionStatus
    new_status: Optional[str] = None
    invoice: Optional[InvoiceResult] = None
    steps: Dict[str, StepResult] = field(default_factory=dict)

    @property
    def already_processed(self) -> bool:
        return self.status == CompletionStatus.ALREADY_PROCESSED

    @property
    def has_failures(self) -> bool:
        """True when any best-effort step failed and needs reconciliation."""
        return any(step.outcome == StepOutcome.FAILED for step in self.steps.values())

    def failed_steps(self) -> List[str]:
        return [name for name, step in self.steps.items() if step.outcome == StepOutcome.FAILED]

    def to_dict(self) -> Dict:
        return {
            'appointment_id': self.appointment_id,
            'status': self.status.value,
            'new_status': self.new_status,
            'invoice_id': self.invoice.invoice_id if self.invoice else None,
            'invoice_url': self.invoice.hosted_invoice_url if self.invoice else None,
            'invoice_total': float(self.invoice.total) if self.invoice else None,
            'steps': {name: step.to_dict() for name, step in self.steps.items()},
        }
