"""Billing tables: appointments, requested storage units and storage unit usage."""

from datetime import datetime
from decimal import Decimal

import sqlalchemy as sa
from sqlalchemy.orm import DeclarativeBase, Mapped, MappedAsDataclass, mapped_column, relationship

from storage_billing.domain import Appointment, RequestedStorageUnit, StorageUnitUsage

TimeZone = sa.DateTime(timezone=True)
Money = sa.Numeric(10, 2)
# SQLite only autoincrements INTEGER PRIMARY KEY
BigIntId = sa.BigInteger().with_variant(sa.Integer(), 'sqlite')


class Base(MappedAsDataclass, DeclarativeBase):
    """Declarative base for billing tables."""


class AppointmentModel(Base):
    """Appointment row, as far as billing reads and writes it."""

    __tablename__ = 'appointments'

    id: Mapped[int] = mapped_column(BigIntId, primary_key=True, comment='Appointment ID')
    appointment_type: Mapped[str] = mapped_column(sa.String(64), comment='Initial Pickup, Access Storage, ...')
    status: Mapped[str | None] = mapped_column(sa.String(64), default=None, index=True)

    # Pricing
    monthly_storage_rate: Mapped[Decimal | None] = mapped_column(Money, default=None)
    monthly_insurance_rate: Mapped[Decimal | None] = mapped_column(Money, default=None)
    loading_help_price: Mapped[Decimal | None] = mapped_column(Money, default=None, comment='Hourly rate')
    number_of_units: Mapped[int | None] = mapped_column(default=None)
    insurance_coverage: Mapped[str | None] = mapped_column(sa.String(128), default=None)

    # Customer payment account
    stripe_customer_id: Mapped[str | None] = mapped_column(sa.String(64), default=None, index=True)

    # Service start, epoch milliseconds
    service_start_time: Mapped[int | None] = mapped_column(sa.BigInteger, default=None)

    # Invoice reference, written once per completion
    invoice_id: Mapped[str | None] = mapped_column(sa.String(128), default=None)
    invoice_url: Mapped[str | None] = mapped_column(sa.Text, default=None)
    invoice_total: Mapped[Decimal | None] = mapped_column(Money, default=None)

    # Set while a worker is billing this appointment
    billing_claimed_at: Mapped[datetime | None] = mapped_column(TimeZone, default=None)

    updated_at: Mapped[datetime | None] = mapped_column(TimeZone, default=None, onupdate=sa.func.now())

    requested_storage_units: Mapped[list['RequestedStorageUnitModel']] = relationship(
        default_factory=list, lazy='selectin'
    )

    def to_domain(self) -> Appointment:
        return Appointment(
            id=self.id,
            appointment_type=self.appointment_type,
            status=self.status,
            monthly_storage_rate=self.monthly_storage_rate,
            monthly_insurance_rate=self.monthly_insurance_rate,
            loading_help_price=self.loading_help_price,
            number_of_units=self.number_of_units,
            insurance_coverage=self.insurance_coverage,
            requested_storage_units=[
                RequestedStorageUnit(unit.storage_unit_id) for unit in self.requested_storage_units
            ],
            stripe_customer_id=self.stripe_customer_id,
            service_start_time=self.service_start_time,
            invoice_id=self.invoice_id,
            invoice_url=self.invoice_url,
            invoice_total=self.invoice_total,
        )


class RequestedStorageUnitModel(Base):
    """Storage unit requested for an appointment."""

    __tablename__ = 'requested_storage_units'

    id: Mapped[int] = mapped_column(BigIntId, primary_key=True, init=False)
    appointment_id: Mapped[int] = mapped_column(sa.BigInteger, sa.ForeignKey('appointments.id'), index=True)
    storage_unit_id: Mapped[int] = mapped_column(sa.BigInteger, index=True)


class StorageUnitUsageModel(Base):
    """A customer's use of one storage unit. Open while usage_end_date is null."""

    __tablename__ = 'storage_unit_usages'

    id: Mapped[int] = mapped_column(BigIntId, primary_key=True, init=False)
    storage_unit_id: Mapped[int] = mapped_column(sa.BigInteger, index=True)
    usage_start_date: Mapped[datetime | None] = mapped_column(TimeZone, default=None)
    usage_end_date: Mapped[datetime | None] = mapped_column(TimeZone, default=None)
    end_appointment_id: Mapped[int | None] = mapped_column(
        sa.BigInteger, sa.ForeignKey('appointments.id'), default=None, comment='Appointment that ended storage'
    )

    def to_domain(self) -> StorageUnitUsage:
        return StorageUnitUsage(
            id=self.id,
            storage_unit_id=self.storage_unit_id,
            usage_start_date=self.usage_start_date,
            usage_end_date=self.usage_end_date,
            end_appointment_id=self.end_appointment_id,
        )
