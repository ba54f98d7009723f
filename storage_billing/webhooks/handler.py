"""
Task Completed Webhook Handler

Receives delivery-task completion events and hands them to the appointment
billing service. The response is always a dict: 'success' once the
appointment invoice is paid (or was already paid), 'error' when nothing
could be billed.
"""

import logging
from typing import Any, Dict, Optional

from pydantic import ValidationError as PydanticValidationError

from storage_billing.appointments import AppointmentBillingService
from storage_billing.payments.interfaces import PersistenceStore
from storage_billing.shared.exceptions import BillingError
from .schema import TaskCompletedPayload

logger = logging.getLogger(__name__)


class TaskCompletedWebhookHandler:
    """
    Entry point for task completion webhooks.

    Usage:
        handler = TaskCompletedWebhookHandler(billing_service, store)
        response = await handler.handle(payload)
    """

    def __init__(self, billing_service: AppointmentBillingService, store: PersistenceStore):
        self.billing_service = billing_service
        self.store = store

    async def handle(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        """
        Process one task completion event.

        Best-effort failures still return 'success' and are listed under
        failed_steps for reconciliation. 'retryable' on an error response
        tells the sender whether redelivery can help.
        """
        try:
            event = TaskCompletedPayload.model_validate(payload)
        except PydanticValidationError as e:
            logger.warning(f"[WEBHOOK] Invalid task completed payload: {e.error_count()} error(s)")
            return {
                'status': 'error',
                'error': 'INVALID_PAYLOAD',
                'message': 'Invalid task completed payload',
                'retryable': False,
            }

        appointment = await self.store.get_appointment(event.appointment_id)
        if appointment is None:
            logger.warning(f"[WEBHOOK] Appointment {event.appointment_id} not found")
            return {
                'status': 'error',
                'error': 'NOT_FOUND',
                'message': f"Appointment {event.appointment_id} not found",
                'retryable': False,
            }

        try:
            result = await self.billing_service.process_webhook_completion(
                appointment,
                event.task_completion_details.to_domain(),
                event.completion_timestamp,
            )
        except BillingError as e:
            logger.error(f"[WEBHOOK] Billing failed for appointment {appointment.id}: {e.code} - {e.message}")
            return {'status': 'error', **e.to_dict(), 'appointment_id': appointment.id}

        logger.info(f"[WEBHOOK] Appointment {appointment.id} processed: {result.status.value}")

        return {
            'status': 'success',
            'appointment_id': appointment.id,
            'result': result.status.value,
            'new_status': result.new_status,
            'invoice_id': result.invoice.invoice_id if result.invoice else None,
            'failed_steps': result.failed_steps(),
            'steps': {name: step.to_dict() for name, step in result.steps.items()},
        }


_handler: Optional[TaskCompletedWebhookHandler] = None


def get_task_completed_handler() -> TaskCompletedWebhookHandler:
    """Handler wired to Stripe and the database, created on first use."""
    global _handler
    if _handler is None:
        from storage_billing.external.stripe import get_stripe_gateway
        from storage_billing.persistence import SqlAlchemyBillingStore, get_session_factory

        store = SqlAlchemyBillingStore(get_session_factory())
        _handler = TaskCompletedWebhookHandler(
            AppointmentBillingService(get_stripe_gateway(), store),
            store,
        )
    return _handler
