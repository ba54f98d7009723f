"""
Appointment Domain Entity

A scheduled field visit (pickup, additional storage, access or termination)
whose completion triggers billing.
"""

from dataclasses import dataclass, field
from decimal import Decimal
from typing import List, Optional

from storage_billing.shared.config import AppointmentType


def _to_decimal(value) -> Optional[Decimal]:
    if value is None:
        return None
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


@dataclass(frozen=True)
class RequestedStorageUnit:
    """A physical storage unit requested for an appointment."""
    storage_unit_id: int


@dataclass
class Appointment:
    """
    Represents an appointment as the billing engine sees it.

    Attributes:
        id: Appointment ID
        appointment_type: Raw type string ('Initial Pickup', ...). Unknown values
            are kept so billing can reject them explicitly.
        status: Current persisted status
        monthly_storage_rate: Monthly storage price per unit
        monthly_insurance_rate: Monthly insurance price per unit (may be 0)
        loading_help_price: Hourly loading help rate
        number_of_units: Units covered by the storage plan
        insurance_coverage: Insurance plan label shown on invoices
        requested_storage_units: Units involved in this visit
        stripe_customer_id: Customer payment account (card on file)
        service_start_time: Service start, epoch milliseconds
        invoice_id: Gateway invoice created for this completion
        invoice_url: Hosted invoice URL
        invoice_total: Invoice total in dollars
    """
    id: int
    appointment_type: str
    status: Optional[str] = None
    monthly_storage_rate: Optional[Decimal] = None
    monthly_insurance_rate: Optional[Decimal] = None
    loading_help_price: Optional[Decimal] = None
    number_of_units: Optional[int] = None
    insurance_coverage: Optional[str] = None
    requested_storage_units: List[RequestedStorageUnit] = field(default_factory=list)
    stripe_customer_id: Optional[str] = None
    service_start_time: Optional[int] = None
    invoice_id: Optional[str] = None
    invoice_url: Optional[str] = None
    invoice_total: Optional[Decimal] = None

    def __post_init__(self):
        self.monthly_storage_rate = _to_decimal(self.monthly_storage_rate)
        self.monthly_insurance_rate = _to_decimal(self.monthly_insurance_rate)
        self.loading_help_price = _to_decimal(self.loading_help_price)
        self.invoice_total = _to_decimal(self.invoice_total)
        if isinstance(self.appointment_type, AppointmentType):
            self.appointment_type = self.appointment_type.value

    @property
    def type(self) -> Optional[AppointmentType]:
        """Parsed appointment type, or None when unsupported."""
        return AppointmentType.parse(self.appointment_type)

    @property
    def storage_unit_ids(self) -> List[int]:
        return [unit.storage_unit_id for unit in self.requested_storage_units]

    @classmethod
    def from_dict(cls, data: dict) -> 'Appointment':
        """
        Create an Appointment from a dictionary.

        Accepts both snake_case keys and the camelCase keys used by the
        delivery-task webhook payloads.

        Args:
            data: Dictionary with appointment fields

        Returns:
            Appointment instance
        """
        def pick(*keys, default=None):
            for key in keys:
                if key in data and data[key] is not None:
                    return data[key]
            return default

        units = pick('requested_storage_units', 'requestedStorageUnits', default=[])
        user = data.get('user') or {}

        start = pick('service_start_time', 'serviceStartTime')
        if isinstance(start, str):
            start = int(start) if start.strip() else None

        return cls(
            id=int(pick('id')),
            appointment_type=pick('appointment_type', 'appointmentType', default=''),
            status=pick('status'),
            monthly_storage_rate=pick('monthly_storage_rate', 'monthlyStorageRate'),
            monthly_insurance_rate=pick('monthly_insurance_rate', 'monthlyInsuranceRate'),
            loading_help_price=pick('loading_help_price', 'loadingHelpPrice'),
            number_of_units=pick('number_of_units', 'numberOfUnits'),
            insurance_coverage=pick('insurance_coverage', 'insuranceCoverage'),
            requested_storage_units=[
                unit if isinstance(unit, RequestedStorageUnit)
                else RequestedStorageUnit(int(unit.get('storage_unit_id', unit.get('storageUnitId'))))
                for unit in units
            ],
            stripe_customer_id=pick('stripe_customer_id', 'stripeCustomerId',
                                    default=user.get('stripeCustomerId') or user.get('stripe_customer_id')),
            service_start_time=start,
            invoice_id=pick('invoice_id', 'invoiceId'),
            invoice_url=pick('invoice_url', 'invoiceUrl'),
            invoice_total=pick('invoice_total', 'invoiceTotal'),
        )


@dataclass(frozen=True)
class TaskCompletionDetails:
    """Completion details reported by the delivery-task webhook."""
    time: Optional[int] = None  # epoch milliseconds
    success: bool = True


@dataclass(frozen=True)
class ServiceMetrics:
    """Service time derived from a completion event. Never persisted."""
    service_time_minutes: float
    completion_time: int

    @classmethod
    def from_completion(
        cls,
        appointment: Appointment,
        details: TaskCompletionDetails
    ) -> 'ServiceMetrics':
        """
        Derive service metrics for a completed appointment.

        Service time is clamped at zero so clock skew between the field app and
        the server never produces a negative charge.
        """
        completed_at = details.time or 0
        started_at = appointment.service_start_time or 0

        minutes = 0.0
        if completed_at and started_at:
            minutes = max(0.0, (completed_at - started_at) / (60 * 1000))

        return cls(service_time_minutes=minutes, completion_time=completed_at)
