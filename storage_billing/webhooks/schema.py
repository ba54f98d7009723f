from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from storage_billing.domain import TaskCompletionDetails


class TaskCompletionDetailsSchema(BaseModel):
    """Completion details sent by the delivery-task provider"""

    model_config = ConfigDict(extra='ignore')

    time: Optional[int] = Field(None, description='Completion time, epoch milliseconds')
    success: bool = True

    def to_domain(self) -> TaskCompletionDetails:
        return TaskCompletionDetails(time=self.time, success=self.success)


class TaskCompletedPayload(BaseModel):
    """Task completed webhook body"""

    model_config = ConfigDict(populate_by_name=True, extra='ignore')

    appointment_id: int = Field(alias='appointmentId', gt=0)
    task_completion_details: TaskCompletionDetailsSchema = Field(
        default_factory=TaskCompletionDetailsSchema, alias='taskCompletionDetails'
    )
    completion_timestamp: Optional[datetime] = Field(None, alias='completionTimestamp')
