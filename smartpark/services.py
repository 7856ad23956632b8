"""
CRUD helpers and dashboard statistics built on the EntityStore.
"""
import logging
import math

from sqlalchemy import or_

from smartpark.errors import ConflictError, NotFoundError, ValidationError
from smartpark.models import (
    Car,
    ParkingRecord,
    ParkingSlot,
    Payment,
    PAYMENT_COMPLETED,
    PAYMENT_METHODS,
    PAYMENT_STATUSES,
    RECORD_ACTIVE,
    RECORD_COMPLETED,
    SLOT_OCCUPIED,
    SLOT_STATUSES,
)
from smartpark.utils import clean_text, day_bounds, normalize_plate, utcnow

logger = logging.getLogger(__name__)


class Page:
    def __init__(self, items, total, page, limit):
        self.items = items
        self.total = total
        self.page = page
        self.limit = limit

    @property
    def total_pages(self):
        return math.ceil(self.total / self.limit) if self.limit else 0

    def to_dict(self, key):
        return {
            key: [item.to_dict() for item in self.items],
            "totalPages": self.total_pages,
            "currentPage": self.page,
            "total": self.total,
        }


def _paginate(store, model, criteria, order_by, page, limit):
    page = max(page or 1, 1)
    limit = max(limit or 1, 1)
    items = store.find(model, *criteria, order_by=order_by,
                       offset=(page - 1) * limit, limit=limit)
    return Page(items, store.count(model, *criteria), page, limit)


def date_range(column, start, end):
    criteria = []
    if start is not None:
        criteria.append(column >= start)
    if end is not None:
        criteria.append(column <= end)
    return criteria


# ----------------------------------------------------------
# CARS
# ----------------------------------------------------------
def list_cars(store, search=None, page=1, limit=50):
    criteria = [Car.is_active.is_(True)]
    if search:
        pattern = f"%{search.strip()}%"
        criteria.append(or_(
            Car.plate_number.ilike(pattern),
            Car.driver_name.ilike(pattern),
            Car.phone_number.ilike(pattern),
        ))
    return _paginate(store, Car, criteria, Car.created_at.desc(), page, limit)


def get_car(store, car_id):
    car = store.get(Car, car_id)
    if car is None or not car.is_active:
        raise NotFoundError("Car not found")
    return car


def get_car_by_plate(store, plate_number):
    car = store.find_one(Car, plate_number=normalize_plate(plate_number), is_active=True)
    if car is None:
        raise NotFoundError("Car not found")
    return car


# ----------------------------------------------------------
# PARKING SLOTS
# ----------------------------------------------------------
def list_slots(store, status=None, page=1, limit=50):
    criteria = [ParkingSlot.is_active.is_(True)]
    if status:
        criteria.append(ParkingSlot.status == status)
    return _paginate(store, ParkingSlot, criteria, ParkingSlot.slot_number.asc(), page, limit)


def get_slot(store, slot_id):
    slot = store.get(ParkingSlot, slot_id)
    if slot is None or not slot.is_active:
        raise NotFoundError("Parking slot not found")
    return slot


def _active_record_count(store, slot):
    return store.count(ParkingRecord, parking_slot_id=slot.id, status=RECORD_ACTIVE)


def create_slot(store, slot_number, location=None):
    slot_number = clean_text(slot_number)
    if not slot_number:
        raise ValidationError("Slot number is required")
    # soft-deleted slots still hold their number
    if store.find_one(ParkingSlot, slot_number=slot_number) is not None:
        raise ConflictError("Slot number already exists")

    with store.transaction():
        slot = store.insert(ParkingSlot(
            slot_number=slot_number,
            location=clean_text(location),
        ))
    logger.info("Created parking slot %s", slot_number)
    return slot


def update_slot(store, slot_id, slot_number=None, status=None, location=None, clear_location=False):
    slot = get_slot(store, slot_id)

    slot_number = clean_text(slot_number)
    if slot_number and slot_number != slot.slot_number:
        if store.find_one(ParkingSlot, slot_number=slot_number) is not None:
            raise ConflictError("Slot number already exists")

    if status and status != slot.status:
        if status not in SLOT_STATUSES:
            raise ValidationError(f"Invalid slot status: {status}")
        holding = _active_record_count(store, slot)
        if holding and status != SLOT_OCCUPIED:
            raise ConflictError("Parking slot has an active parking record")
        if not holding and status == SLOT_OCCUPIED:
            raise ConflictError("Slots become occupied only through car entry")

    with store.transaction():
        if slot_number:
            slot.slot_number = slot_number
        if status:
            slot.status = status
        if location is not None or clear_location:
            slot.location = clean_text(location)
        store.update(slot)
    return slot


def delete_slot(store, slot_id):
    slot = get_slot(store, slot_id)
    if _active_record_count(store, slot):
        raise ConflictError("Cannot delete a slot with an active parking record")

    with store.transaction():
        slot.is_active = False
        store.update(slot)
    logger.info("Deactivated parking slot %s", slot.slot_number)


def slot_summary(store):
    summary = {"total": 0}
    summary.update({status: 0 for status in SLOT_STATUSES})
    for status, count in store.group_totals(ParkingSlot, ParkingSlot.status, is_active=True):
        summary[status] = count
        summary["total"] += count
    return summary


def find_occupancy_mismatches(store):
    """
    Active slots whose status disagrees with their active records, as
    ``(slot, active_record_count)`` pairs.
    """
    held = dict(store.group_totals(ParkingRecord, ParkingRecord.parking_slot_id, status=RECORD_ACTIVE))
    mismatches = []
    for slot in store.find(ParkingSlot, is_active=True, order_by=ParkingSlot.slot_number.asc()):
        count = held.get(slot.id, 0)
        if slot.status == SLOT_OCCUPIED:
            ok = count == 1
        else:
            ok = count == 0
        if not ok:
            mismatches.append((slot, count))
    return mismatches


# ----------------------------------------------------------
# PARKING RECORDS
# ----------------------------------------------------------
def list_records(store, status=None, start=None, end=None, page=1, limit=20):
    criteria = date_range(ParkingRecord.entry_time, start, end)
    if status:
        criteria.append(ParkingRecord.status == status)
    return _paginate(store, ParkingRecord, criteria, ParkingRecord.entry_time.desc(), page, limit)


def get_record(store, record_id):
    record = store.get(ParkingRecord, record_id)
    if record is None:
        raise NotFoundError("Parking record not found")
    return record


def update_record(store, record_id, changes):
    """
    Plain field patch of ``entry_time``, ``exit_time`` and ``notes``.
    Billing and status are left as they are.
    """
    record = get_record(store, record_id)
    with store.transaction():
        if changes.get("entry_time"):
            record.entry_time = changes["entry_time"]
        if "exit_time" in changes:
            record.exit_time = changes["exit_time"]
        if "notes" in changes:
            record.notes = changes["notes"]
        store.update(record)
    return record


def record_summary(store, now=None):
    start, end = day_bounds(now or utcnow())
    today_records = store.count(ParkingRecord, ParkingRecord.entry_time >= start,
                                ParkingRecord.entry_time < end)
    _, total_revenue = store.total(ParkingRecord, ParkingRecord.total_amount,
                                   status=RECORD_COMPLETED, is_paid=True)
    _, today_revenue = store.total(ParkingRecord, ParkingRecord.total_amount,
                                   ParkingRecord.exit_time >= start,
                                   ParkingRecord.exit_time < end,
                                   status=RECORD_COMPLETED, is_paid=True)
    return {
        "todayRecords": today_records,
        "activeRecords": store.count(ParkingRecord, status=RECORD_ACTIVE),
        "totalRevenue": total_revenue,
        "todayRevenue": today_revenue,
    }


# ----------------------------------------------------------
# PAYMENTS
# ----------------------------------------------------------
def list_payments(store, status=None, method=None, start=None, end=None, page=1, limit=20):
    criteria = date_range(Payment.payment_date, start, end)
    if status:
        criteria.append(Payment.status == status)
    if method:
        criteria.append(Payment.payment_method == method)
    return _paginate(store, Payment, criteria, Payment.payment_date.desc(), page, limit)


def get_payment(store, payment_id):
    payment = store.get(Payment, payment_id)
    if payment is None:
        raise NotFoundError("Payment not found")
    return payment


def update_payment(store, payment_id, changes):
    payment = get_payment(store, payment_id)

    method = changes.get("payment_method")
    if method and method not in PAYMENT_METHODS:
        raise ValidationError(f"Invalid payment method: {method}")
    status = changes.get("status")
    if status and status not in PAYMENT_STATUSES:
        raise ValidationError(f"Invalid payment status: {status}")
    amount = changes.get("amount_paid")
    if amount is not None and (not math.isfinite(amount) or amount < 0):
        raise ValidationError("Amount paid must be a non-negative number")

    with store.transaction():
        if amount is not None:
            payment.amount_paid = amount
        if method:
            payment.payment_method = method
        if "transaction_id" in changes:
            payment.transaction_id = clean_text(changes["transaction_id"])
        if status:
            payment.status = status
        if "notes" in changes:
            payment.notes = clean_text(changes["notes"])
        store.update(payment)
    return payment


def payment_summary(store, now=None):
    start, end = day_bounds(now or utcnow())
    today_count, today_total = store.total(Payment, Payment.amount_paid,
                                           Payment.payment_date >= start,
                                           Payment.payment_date < end,
                                           status=PAYMENT_COMPLETED)
    count, total = store.total(Payment, Payment.amount_paid, status=PAYMENT_COMPLETED)
    methods = store.group_totals(Payment, Payment.payment_method,
                                 sum_column=Payment.amount_paid, status=PAYMENT_COMPLETED)
    return {
        "todayPayments": {"count": today_count, "total": today_total},
        "totalPayments": {"count": count, "total": total},
        "paymentMethods": [
            {"method": method, "count": n, "total": amount}
            for method, n, amount in methods
        ],
    }
