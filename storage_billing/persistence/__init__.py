"""
Persistence Module

SQLAlchemy tables and the billing store.
"""

from .db import create_async_engine_and_session, get_session_factory
from .model import AppointmentModel, Base, RequestedStorageUnitModel, StorageUnitUsageModel
from .store import SqlAlchemyBillingStore

__all__ = [
    'create_async_engine_and_session',
    'get_session_factory',
    'AppointmentModel',
    'Base',
    'RequestedStorageUnitModel',
    'StorageUnitUsageModel',
    'SqlAlchemyBillingStore',
]
