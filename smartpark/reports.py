import csv
import os

from smartpark import services
from smartpark.models import ParkingRecord
from smartpark.utils import day_bounds, isoformat, utcnow

CSV_HEADER = [
    "ID", "Plate", "Driver", "Phone", "Slot", "Entry", "Exit",
    "Duration (min)", "Amount", "Status", "Paid",
]


def write_records_csv(store, path, status=None, start=None, end=None):
    """Write matching parking records to ``path``. Returns the row count."""
    criteria = services.date_range(ParkingRecord.entry_time, start, end)
    if status:
        criteria.append(ParkingRecord.status == status)
    records = store.find(ParkingRecord, *criteria, order_by=ParkingRecord.entry_time.asc())

    os.makedirs(os.path.dirname(path) or ".", exist_ok=True)
    with open(path, "w", newline="", encoding="utf-8") as f:
        writer = csv.writer(f)
        writer.writerow(CSV_HEADER)
        for r in records:
            writer.writerow([
                r.id,
                r.car.plate_number,
                r.car.driver_name,
                r.car.phone_number,
                r.parking_slot.slot_number,
                isoformat(r.entry_time),
                isoformat(r.exit_time) or "",
                r.duration,
                r.total_amount,
                r.status,
                "yes" if r.is_paid else "no",
            ])
    return len(records)


def build_daily_summary(store, now=None):
    now = now or utcnow()
    day, _ = day_bounds(now)
    records = services.record_summary(store, now)
    slots = services.slot_summary(store)
    payments = services.payment_summary(store, now)

    lines = [
        f"SmartPark daily summary for {day.date().isoformat()}",
        "",
        f"Cars entered today: {records['todayRecords']}",
        f"Cars currently parked: {records['activeRecords']}",
        f"Slots: {slots['available']} available, {slots['occupied']} occupied, "
        f"{slots['maintenance']} in maintenance ({slots['total']} total)",
        f"Revenue today: {records['todayRevenue']} RWF",
        f"Payments today: {payments['todayPayments']['count']} "
        f"totalling {payments['todayPayments']['total']:g} RWF",
    ]
    for entry in payments["paymentMethods"]:
        lines.append(f"  {entry['method']}: {entry['count']} payment(s), {entry['total']:g} RWF")
    return "\n".join(lines) + "\n"
