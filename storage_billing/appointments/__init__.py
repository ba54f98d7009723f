"""
Appointments Module

Completion billing for field appointments.
"""

from .service import AppointmentBillingService

__all__ = [
    'AppointmentBillingService',
]
