"""
Shared fixtures: an in-memory payment gateway and billing store.

Both fakes record every call and can be told to fail a named operation,
so the billing services are exercised end to end without Stripe or a
database.
"""

import itertools
from datetime import datetime, timezone
from decimal import Decimal

import pytest

from storage_billing.domain import (
    Appointment,
    Customer,
    Invoice,
    RequestedStorageUnit,
    StorageUnitUsage,
    Subscription,
    SubscriptionItem,
    SubscriptionStatus,
)
from storage_billing.payments.interfaces import PaymentGatewayClient, PersistenceStore
from storage_billing.shared.config import is_terminal_billed_status
from storage_billing.shared.exceptions import NotFoundError


class InMemoryGateway(PaymentGatewayClient):
    """Payment gateway double that honours idempotency keys."""

    def __init__(self):
        self.customers = {}
        self.invoices = {}
        self.invoice_lines = {}
        self.subscriptions = {}
        self.calls = []
        self.fail_on = {}
        self._idempotent = {}
        self._ids = itertools.count(1)

    def add_customer(self, customer_id: str, deleted: bool = False):
        if not deleted:
            self.customers[customer_id] = Customer(id=customer_id, email=f"{customer_id}@example.com")

    def add_subscription(self, customer_id: str, status: SubscriptionStatus = SubscriptionStatus.ACTIVE, **kwargs):
        subscription = Subscription(
            id=f"sub_{next(self._ids)}",
            customer_id=customer_id,
            status=status,
            items=kwargs.pop('items', [SubscriptionItem('si_storage', 1), SubscriptionItem('si_insurance', 1)]),
            **kwargs,
        )
        self.subscriptions[subscription.id] = subscription
        return subscription

    def _record(self, operation: str, **kwargs):
        self.calls.append((operation, kwargs))
        error = self.fail_on.get(operation)
        if error is not None:
            raise error

    def count(self, operation: str) -> int:
        return sum(1 for name, _ in self.calls if name == operation)

    def lines_for(self, invoice_id: str):
        return self.invoice_lines.get(invoice_id, [])

    async def retrieve_customer(self, customer_id):
        self._record('retrieve_customer', customer_id=customer_id)
        if customer_id not in self.customers:
            raise NotFoundError('customer', customer_id)
        return self.customers[customer_id]

    async def create_invoice(self, customer_id, metadata, description=None, idempotency_key=None):
        self._record('create_invoice', customer_id=customer_id, metadata=metadata, idempotency_key=idempotency_key)
        if idempotency_key and idempotency_key in self._idempotent:
            return self._idempotent[idempotency_key]
        invoice = Invoice(id=f"in_{next(self._ids)}", customer_id=customer_id, metadata=dict(metadata))
        self.invoices[invoice.id] = invoice
        self.invoice_lines[invoice.id] = []
        if idempotency_key:
            self._idempotent[idempotency_key] = Invoice(id=invoice.id, customer_id=customer_id, metadata=dict(metadata))
        return invoice

    async def add_invoice_line(self, customer_id, invoice_id, line, idempotency_key=None):
        self._record('add_invoice_line', invoice_id=invoice_id, line=line)
        if idempotency_key and idempotency_key in self._idempotent:
            return None
        self.invoice_lines[invoice_id].append(line)
        if idempotency_key:
            self._idempotent[idempotency_key] = line

    async def finalize_invoice(self, invoice_id):
        self._record('finalize_invoice', invoice_id=invoice_id)
        invoice = self.invoices[invoice_id]
        invoice.status = 'open'
        invoice.amount_due = sum(line.amount for line in self.invoice_lines[invoice_id])
        invoice.hosted_invoice_url = f"https://invoice.example.com/{invoice_id}"
        return invoice

    async def pay_invoice(self, invoice_id):
        self._record('pay_invoice', invoice_id=invoice_id)
        invoice = self.invoices[invoice_id]
        invoice.status = 'paid'
        return invoice

    async def retrieve_invoice(self, invoice_id):
        self._record('retrieve_invoice', invoice_id=invoice_id)
        if invoice_id not in self.invoices:
            raise NotFoundError('invoice', invoice_id)
        return self.invoices[invoice_id]

    async def create_subscription(self, customer_id, line_items, trial_days, metadata, idempotency_key=None):
        self._record(
            'create_subscription',
            customer_id=customer_id,
            line_items=line_items,
            trial_days=trial_days,
            metadata=metadata,
            idempotency_key=idempotency_key,
        )
        if idempotency_key and idempotency_key in self._idempotent:
            return self._idempotent[idempotency_key]
        subscription = self.add_subscription(
            customer_id,
            status=SubscriptionStatus.TRIALING,
            items=[SubscriptionItem(f"si_{next(self._ids)}", item.quantity) for item in line_items],
            metadata=dict(metadata),
        )
        if idempotency_key:
            self._idempotent[idempotency_key] = subscription
        return subscription

    async def list_subscriptions(self, customer_id):
        self._record('list_subscriptions', customer_id=customer_id)
        return [s for s in self.subscriptions.values() if s.customer_id == customer_id]

    async def retrieve_subscription(self, subscription_id):
        self._record('retrieve_subscription', subscription_id=subscription_id)
        if subscription_id not in self.subscriptions:
            raise NotFoundError('subscription', subscription_id)
        return self.subscriptions[subscription_id]

    async def update_subscription_quantities(self, subscription_id, quantities, proration_behavior='always_invoice'):
        self._record(
            'update_subscription_quantities',
            subscription_id=subscription_id,
            quantities=quantities,
            proration_behavior=proration_behavior,
        )
        subscription = self.subscriptions[subscription_id]
        subscription.items = [SubscriptionItem(item_id, quantity) for item_id, quantity in quantities]
        return subscription

    async def cancel_subscription(self, subscription_id):
        self._record('cancel_subscription', subscription_id=subscription_id)
        subscription = self.subscriptions[subscription_id]
        subscription.status = SubscriptionStatus.CANCELED
        return subscription


class InMemoryStore(PersistenceStore):
    """Billing store double with the same conditional-write rules as the SQL store."""

    def __init__(self):
        self.appointments = {}
        self.usages = []
        self.calls = []
        self.fail_on = {}
        self.claims = {}

    def _record(self, operation: str, **kwargs):
        self.calls.append((operation, kwargs))
        error = self.fail_on.get(operation)
        if error is not None:
            raise error

    def add_appointment(self, appointment: Appointment) -> Appointment:
        self.appointments[appointment.id] = appointment
        return appointment

    def add_usage(self, storage_unit_id: int, usage_start_date: datetime, usage_end_date: datetime = None):
        usage = StorageUnitUsage(
            id=len(self.usages) + 1,
            storage_unit_id=storage_unit_id,
            usage_start_date=usage_start_date,
            usage_end_date=usage_end_date,
        )
        self.usages.append(usage)
        return usage

    def usage_for(self, storage_unit_id: int):
        return [u for u in self.usages if u.storage_unit_id == storage_unit_id]

    async def get_appointment(self, appointment_id):
        self._record('get_appointment', appointment_id=appointment_id)
        return self.appointments.get(appointment_id)

    async def mark_billing_processing(self, appointment_id, claimed_at, stale_after_seconds):
        self._record('mark_billing_processing', appointment_id=appointment_id)
        appointment = self.appointments.get(appointment_id)
        if appointment is None or is_terminal_billed_status(appointment.status):
            return False
        previous = self.claims.get(appointment_id)
        if previous is not None and (claimed_at - previous).total_seconds() <= stale_after_seconds:
            return False
        self.claims[appointment_id] = claimed_at
        return True

    async def mark_billing_failed(self, appointment_id):
        self._record('mark_billing_failed', appointment_id=appointment_id)
        self.claims.pop(appointment_id, None)

    async def update_appointment_billing(self, appointment_id, status, invoice):
        self._record('update_appointment_billing', appointment_id=appointment_id, status=status)
        appointment = self.appointments[appointment_id]
        if is_terminal_billed_status(appointment.status):
            return False
        appointment.status = status
        appointment.invoice_id = invoice.invoice_id
        appointment.invoice_url = invoice.hosted_invoice_url
        appointment.invoice_total = invoice.total
        self.claims.pop(appointment_id, None)
        return True

    async def find_active_usage(self, storage_unit_id):
        self._record('find_active_usage', storage_unit_id=storage_unit_id)
        for usage in self.usage_for(storage_unit_id):
            if usage.is_active():
                return usage
        return None

    async def close_active_usage(self, storage_unit_id, end_appointment_id, ended_at):
        self._record('close_active_usage', storage_unit_id=storage_unit_id)
        for usage in self.usage_for(storage_unit_id):
            if usage.is_active():
                usage.close(ended_at, end_appointment_id)
                return True
        return False


@pytest.fixture
def gateway():
    gateway = InMemoryGateway()
    gateway.add_customer('cus_test')
    return gateway


@pytest.fixture
def store():
    return InMemoryStore()


@pytest.fixture
def make_appointment():
    """Factory for appointments with sensible storage pricing."""

    def _make(appointment_type='Initial Pickup', **overrides):
        fields = {
            'id': 101,
            'appointment_type': appointment_type,
            'status': 'Scheduled',
            'monthly_storage_rate': Decimal('100'),
            'monthly_insurance_rate': Decimal('15'),
            'loading_help_price': Decimal('189'),
            'number_of_units': 2,
            'insurance_coverage': 'Standard Coverage ($1000)',
            'requested_storage_units': [RequestedStorageUnit(11), RequestedStorageUnit(12)],
            'stripe_customer_id': 'cus_test',
            'service_start_time': 1_700_000_000_000,
        }
        fields.update(overrides)
        return Appointment(**fields)

    return _make


@pytest.fixture
def completed_at():
    return datetime(2024, 3, 1, 12, 0, tzinfo=timezone.utc)
