"""
Appointment Lock

Serialises completion processing per appointment so a retried webhook
delivery that arrives while the first one is still running waits, then sees
the persisted terminal status and becomes a no-op.
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator, Dict

logger = logging.getLogger(__name__)


class AppointmentLock:
    """
    Keyed asyncio locks, one per appointment id.

    Locks are created lazily and dropped once nobody holds or waits on them,
    so the registry does not grow with the number of appointments ever billed.

    Usage:
        lock = AppointmentLock()
        async with lock.hold(appointment.id):
            ...
    """

    def __init__(self):
        self._locks: Dict[int, asyncio.Lock] = {}
        self._waiters: Dict[int, int] = {}

    @asynccontextmanager
    async def hold(self, appointment_id: int) -> AsyncIterator[None]:
        lock = self._locks.setdefault(appointment_id, asyncio.Lock())
        self._waiters[appointment_id] = self._waiters.get(appointment_id, 0) + 1

        if lock.locked():
            logger.debug(f"[APPOINTMENT LOCK] Waiting for in-flight completion of appointment {appointment_id}")

        try:
            async with lock:
                yield
        finally:
            self._waiters[appointment_id] -= 1
            if self._waiters[appointment_id] == 0:
                del self._waiters[appointment_id]
                self._locks.pop(appointment_id, None)

    def is_locked(self, appointment_id: int) -> bool:
        lock = self._locks.get(appointment_id)
        return lock is not None and lock.locked()
