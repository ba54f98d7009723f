"""SQLAlchemy implementation of the billing store."""

import logging
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy import or_, select, update
from sqlalchemy.ext.asyncio import async_sessionmaker

from storage_billing.domain import Appointment, InvoiceResult, StorageUnitUsage
from storage_billing.payments.interfaces import PersistenceStore
from storage_billing.shared.config import TERMINAL_BILLED_STATUSES
from .model import AppointmentModel, StorageUnitUsageModel

logger = logging.getLogger(__name__)


def _not_billed():
    return or_(
        AppointmentModel.status.is_(None),
        AppointmentModel.status.not_in(sorted(TERMINAL_BILLED_STATUSES)),
    )


class SqlAlchemyBillingStore(PersistenceStore):
    """
    Billing store on the async ORM.

    Writes are single conditional UPDATE statements, so two workers racing
    on the same appointment or unit cannot both win.
    """

    def __init__(self, session_factory: async_sessionmaker):
        self._session_factory = session_factory

    async def get_appointment(self, appointment_id: int) -> Optional[Appointment]:
        async with self._session_factory() as session:
            result = await session.execute(
                select(AppointmentModel).where(AppointmentModel.id == appointment_id)
            )
            row = result.scalar_one_or_none()
            return row.to_domain() if row else None

    async def mark_billing_processing(self, appointment_id: int, claimed_at: datetime, stale_after_seconds: int) -> bool:
        """
        Claim the appointment unless it is billed or claimed recently.

        A claim older than stale_after_seconds belongs to a worker that died
        mid-completion and is taken over.
        """
        stale_before = claimed_at - timedelta(seconds=stale_after_seconds)
        async with self._session_factory() as session:
            result = await session.execute(
                update(AppointmentModel)
                .where(
                    AppointmentModel.id == appointment_id,
                    _not_billed(),
                    or_(
                        AppointmentModel.billing_claimed_at.is_(None),
                        AppointmentModel.billing_claimed_at < stale_before,
                    ),
                )
                .values(billing_claimed_at=claimed_at)
                .execution_options(synchronize_session=False)
            )
            await session.commit()

        claimed = result.rowcount > 0
        logger.debug(f"[STORE] Billing claim on appointment {appointment_id}: claimed={claimed}")
        return claimed

    async def mark_billing_failed(self, appointment_id: int) -> None:
        async with self._session_factory() as session:
            await session.execute(
                update(AppointmentModel)
                .where(AppointmentModel.id == appointment_id)
                .values(billing_claimed_at=None)
                .execution_options(synchronize_session=False)
            )
            await session.commit()

    async def update_appointment_billing(self, appointment_id: int, status: str, invoice: InvoiceResult) -> bool:
        """
        Write status and invoice reference unless the row is already billed.

        :return: True if the row was updated
        """
        async with self._session_factory() as session:
            result = await session.execute(
                update(AppointmentModel)
                .where(AppointmentModel.id == appointment_id, _not_billed())
                .values(
                    status=status,
                    invoice_id=invoice.invoice_id,
                    invoice_url=invoice.hosted_invoice_url,
                    invoice_total=invoice.total,
                    billing_claimed_at=None,
                )
                .execution_options(synchronize_session=False)
            )
            await session.commit()

        updated = result.rowcount > 0
        logger.debug(f"[STORE] Appointment {appointment_id} -> {status}: updated={updated}")
        return updated

    async def find_active_usage(self, storage_unit_id: int) -> Optional[StorageUnitUsage]:
        async with self._session_factory() as session:
            result = await session.execute(
                select(StorageUnitUsageModel)
                .where(
                    StorageUnitUsageModel.storage_unit_id == storage_unit_id,
                    StorageUnitUsageModel.usage_end_date.is_(None),
                )
                .order_by(StorageUnitUsageModel.usage_start_date.desc())
                .limit(1)
            )
            row = result.scalar_one_or_none()
            return row.to_domain() if row else None

    async def close_active_usage(self, storage_unit_id: int, end_appointment_id: int, ended_at: datetime) -> bool:
        """
        Close the open usage record of a unit.

        :return: False if the unit had no open record
        """
        async with self._session_factory() as session:
            result = await session.execute(
                update(StorageUnitUsageModel)
                .where(
                    StorageUnitUsageModel.storage_unit_id == storage_unit_id,
                    StorageUnitUsageModel.usage_end_date.is_(None),
                )
                .values(usage_end_date=ended_at, end_appointment_id=end_appointment_id)
                .execution_options(synchronize_session=False)
            )
            await session.commit()

        return result.rowcount > 0
