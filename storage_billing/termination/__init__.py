"""
Termination Module

End Storage Term processing and early termination fees.
"""

from .service import EarlyTerminationService

__all__ = [
    'EarlyTerminationService',
]
