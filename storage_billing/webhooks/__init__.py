"""
Webhooks Module

Delivery-task completion webhook entry point.
"""

from .handler import TaskCompletedWebhookHandler, get_task_completed_handler
from .schema import TaskCompletedPayload, TaskCompletionDetailsSchema

__all__ = [
    'TaskCompletedWebhookHandler',
    'get_task_completed_handler',
    'TaskCompletedPayload',
    'TaskCompletionDetailsSchema',
]
