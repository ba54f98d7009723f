"""
Storage Unit Usage Domain Entity

Records which physical unit is assigned to a customer and for how long.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Optional


@dataclass
class StorageUnitUsage:
    """
    A customer's use of one storage unit.

    Attributes:
        storage_unit_id: Physical unit
        usage_start_date: When the unit was first loaded
        usage_end_date: When storage ended (None while active)
        end_appointment_id: Appointment that closed this record
        id: Store primary key, when persisted
    """
    storage_unit_id: int
    usage_start_date: Optional[datetime]
    usage_end_date: Optional[datetime] = None
    end_appointment_id: Optional[int] = None
    id: Optional[int] = None

    def is_active(self) -> bool:
        """Check if the unit is still in use."""
        return self.usage_end_date is None

    def close(self, ended_at: datetime, appointment_id: int) -> None:
        """Mark storage as ended by the given appointment."""
        self.usage_end_date = ended_at
        self.end_appointment_id = appointment_id
