"""
Parking session lifecycle: check-in, check-out, deletion and settlement.

Every public operation runs inside one ``store.transaction()``. Preconditions
are checked before anything is written; a failure raised after the first
write rolls the whole operation back.
"""
import logging
import math

from smartpark.billing import compute_billing
from smartpark.errors import ConflictError, NotFoundError, ValidationError
from smartpark.models import (
    Car,
    ParkingRecord,
    ParkingSlot,
    Payment,
    PAYMENT_COMPLETED,
    PAYMENT_METHODS,
    RECORD_ACTIVE,
    RECORD_COMPLETED,
    SLOT_AVAILABLE,
    SLOT_OCCUPIED,
)
from smartpark.utils import clean_text, normalize_plate, utcnow

logger = logging.getLogger(__name__)


def complete_session(record, exit_time):
    """Close an active session and bill it. The only active -> completed transition."""
    if record.status != RECORD_ACTIVE:
        raise ConflictError("Parking record is not active")

    try:
        duration, amount = compute_billing(record.entry_time, exit_time)
    except ValueError as e:
        raise ValidationError(str(e))

    record.exit_time = exit_time
    record.duration = duration
    record.total_amount = amount
    record.status = RECORD_COMPLETED
    return record


def upsert_car(store, plate_number, driver_name, phone_number, car_model=None, car_color=None):
    plate = normalize_plate(plate_number)
    car = store.find_one(Car, plate_number=plate)
    if car is None:
        car = Car(
            plate_number=plate,
            driver_name=driver_name,
            phone_number=phone_number,
            car_model=car_model,
            car_color=car_color,
        )
        return store.insert(car)

    car.driver_name = driver_name
    car.phone_number = phone_number
    # never clear a stored model/color by omission
    if car_model:
        car.car_model = car_model
    if car_color:
        car.car_color = car_color
    return store.update(car)


def check_in(store, plate_number, driver_name, phone_number, slot_number,
             car_model=None, car_color=None, notes=None):
    plate = normalize_plate(plate_number)
    driver_name = clean_text(driver_name)
    phone_number = clean_text(phone_number)
    slot_number = clean_text(slot_number)
    if not plate or not driver_name or not phone_number or not slot_number:
        raise ValidationError("Plate number, driver name, phone number, and slot number are required")

    with store.transaction():
        car = upsert_car(store, plate, driver_name, phone_number,
                         clean_text(car_model), clean_text(car_color))

        slot = store.find_one(ParkingSlot, slot_number=slot_number, is_active=True)
        if slot is None:
            raise NotFoundError("Parking slot not found")
        if slot.status != SLOT_AVAILABLE:
            raise ConflictError("Parking slot is not available")

        if store.find_one(ParkingRecord, car_id=car.id, status=RECORD_ACTIVE) is not None:
            raise ConflictError("Car is already parked")

        record = store.insert(ParkingRecord(
            car_id=car.id,
            parking_slot_id=slot.id,
            entry_time=utcnow(),
            status=RECORD_ACTIVE,
            duration=0,
            total_amount=0,
            is_paid=False,
            notes=clean_text(notes),
        ))

        slot.status = SLOT_OCCUPIED
        store.update(slot)

    logger.info("Checked in %s at slot %s (record %s)", plate, slot_number, record.id)
    return record


def check_out(store, record_id, exit_time=None, notes=None):
    record = store.get(ParkingRecord, record_id)
    if record is None:
        raise NotFoundError("Parking record not found")
    if record.status != RECORD_ACTIVE:
        raise ConflictError("Parking record is not active")

    with store.transaction():
        if notes:
            record.notes = notes
        complete_session(record, exit_time or utcnow())
        store.update(record)

        slot = store.get(ParkingSlot, record.parking_slot_id)
        if slot is not None:
            slot.status = SLOT_AVAILABLE
            store.update(slot)

    logger.info("Checked out record %s: %s min, %s due",
                record.id, record.duration, record.total_amount)
    return record


def delete_record(store, record_id):
    record = store.get(ParkingRecord, record_id)
    if record is None:
        raise NotFoundError("Parking record not found")

    with store.transaction():
        if record.status == RECORD_ACTIVE:
            slot = store.get(ParkingSlot, record.parking_slot_id)
            if slot is not None:
                slot.status = SLOT_AVAILABLE
                store.update(slot)

        removed = store.delete_where(Payment, Payment.parking_record_id == record.id)
        store.delete(record)

    logger.info("Deleted record %s and %s payment(s)", record_id, removed)


def record_payment(store, record_id, amount_paid, payment_method=None,
                   transaction_id=None, notes=None):
    """
    Settle a completed record. The amount is stored as given and is not
    reconciled against the record's total.
    """
    payment_method = payment_method or "cash"
    if payment_method not in PAYMENT_METHODS:
        raise ValidationError(f"Invalid payment method: {payment_method}")
    if amount_paid is None or not math.isfinite(amount_paid) or amount_paid < 0:
        raise ValidationError("Amount paid must be a non-negative number")

    record = store.get(ParkingRecord, record_id)
    if record is None:
        raise NotFoundError("Parking record not found")
    if record.status != RECORD_COMPLETED:
        raise ConflictError("Parking record must be completed before payment")
    if record.is_paid:
        raise ConflictError("Parking record is already paid")

    with store.transaction():
        payment = store.insert(Payment(
            parking_record_id=record.id,
            amount_paid=amount_paid,
            payment_date=utcnow(),
            payment_method=payment_method,
            transaction_id=clean_text(transaction_id),
            status=PAYMENT_COMPLETED,
            notes=clean_text(notes),
        ))
        record.is_paid = True
        store.update(record)

    logger.info("Recorded %s payment of %s for record %s", payment_method, amount_paid, record.id)
    return payment
