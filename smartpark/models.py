# smartpark/models.py
from app_factory import db
from smartpark.utils import utcnow, isoformat

SLOT_AVAILABLE = "available"
SLOT_OCCUPIED = "occupied"
SLOT_MAINTENANCE = "maintenance"
SLOT_STATUSES = (SLOT_AVAILABLE, SLOT_OCCUPIED, SLOT_MAINTENANCE)

RECORD_ACTIVE = "active"
RECORD_COMPLETED = "completed"
RECORD_STATUSES = (RECORD_ACTIVE, RECORD_COMPLETED)

PAYMENT_METHODS = ("cash", "mobile_money", "card")
PAYMENT_PENDING = "pending"
PAYMENT_COMPLETED = "completed"
PAYMENT_FAILED = "failed"
PAYMENT_STATUSES = (PAYMENT_PENDING, PAYMENT_COMPLETED, PAYMENT_FAILED)


class TimestampMixin:
    created_at = db.Column(db.DateTime, default=utcnow, nullable=False)
    updated_at = db.Column(db.DateTime, default=utcnow, onupdate=utcnow, nullable=False)


class User(TimestampMixin, db.Model):
    __tablename__ = "users"

    id = db.Column(db.Integer, primary_key=True)
    username = db.Column(db.String(80), unique=True, nullable=False)
    password_hash = db.Column(db.String(255), nullable=False)
    role = db.Column(db.String(20), nullable=False, default="user")
    is_active = db.Column(db.Boolean, nullable=False, default=True)

    def set_password(self, pwd):
        from werkzeug.security import generate_password_hash
        self.password_hash = generate_password_hash(pwd)

    def check_password(self, pwd):
        from werkzeug.security import check_password_hash
        return check_password_hash(self.password_hash, pwd or "")

    def to_dict(self):
        return {"id": self.id, "username": self.username, "role": self.role}


class Car(TimestampMixin, db.Model):
    __tablename__ = "cars"

    id = db.Column(db.Integer, primary_key=True)
    plate_number = db.Column(db.String(20), unique=True, nullable=False, index=True)
    driver_name = db.Column(db.String(120), nullable=False)
    phone_number = db.Column(db.String(30), nullable=False, index=True)
    car_model = db.Column(db.String(80))
    car_color = db.Column(db.String(40))
    is_active = db.Column(db.Boolean, nullable=False, default=True)

    def summary(self):
        return {
            "id": self.id,
            "plateNumber": self.plate_number,
            "driverName": self.driver_name,
            "phoneNumber": self.phone_number,
            "carModel": self.car_model,
            "carColor": self.car_color,
        }

    def to_dict(self):
        data = self.summary()
        data.update({
            "isActive": self.is_active,
            "createdAt": isoformat(self.created_at),
            "updatedAt": isoformat(self.updated_at),
        })
        return data

    def __repr__(self):
        return f"<Car {self.plate_number}>"


class ParkingSlot(TimestampMixin, db.Model):
    __tablename__ = "parking_slots"

    id = db.Column(db.Integer, primary_key=True)
    slot_number = db.Column(db.String(20), unique=True, nullable=False, index=True)
    status = db.Column(db.String(20), nullable=False, default=SLOT_AVAILABLE, index=True)
    location = db.Column(db.String(120))
    is_active = db.Column(db.Boolean, nullable=False, default=True)

    def summary(self):
        return {"id": self.id, "slotNumber": self.slot_number, "location": self.location}

    def to_dict(self):
        return {
            "id": self.id,
            "slotNumber": self.slot_number,
            "slotStatus": self.status,
            "location": self.location,
            "isActive": self.is_active,
            "createdAt": isoformat(self.created_at),
            "updatedAt": isoformat(self.updated_at),
        }

    def __repr__(self):
        return f"<ParkingSlot {self.slot_number} - {self.status}>"


class ParkingRecord(TimestampMixin, db.Model):
    __tablename__ = "parking_records"

    id = db.Column(db.Integer, primary_key=True)
    car_id = db.Column(db.Integer, db.ForeignKey("cars.id"), nullable=False, index=True)
    parking_slot_id = db.Column(db.Integer, db.ForeignKey("parking_slots.id"), nullable=False, index=True)
    entry_time = db.Column(db.DateTime, nullable=False, default=utcnow, index=True)
    exit_time = db.Column(db.DateTime, nullable=True)
    duration = db.Column(db.Integer, nullable=False, default=0)  # minutes
    total_amount = db.Column(db.Integer, nullable=False, default=0)
    status = db.Column(db.String(20), nullable=False, default=RECORD_ACTIVE, index=True)
    is_paid = db.Column(db.Boolean, nullable=False, default=False)
    notes = db.Column(db.Text)

    car = db.relationship("Car", lazy="joined")
    parking_slot = db.relationship("ParkingSlot", lazy="joined")

    def summary(self):
        return {
            "id": self.id,
            "entryTime": isoformat(self.entry_time),
            "exitTime": isoformat(self.exit_time),
            "duration": self.duration,
            "totalAmount": self.total_amount,
            "status": self.status,
            "isPaid": self.is_paid,
        }

    def to_dict(self):
        data = self.summary()
        data.update({
            "notes": self.notes,
            "car": self.car.summary() if self.car else None,
            "parkingSlot": self.parking_slot.summary() if self.parking_slot else None,
            "createdAt": isoformat(self.created_at),
            "updatedAt": isoformat(self.updated_at),
        })
        return data

    def __repr__(self):
        return f"<ParkingRecord {self.id} ({self.status})>"


class Payment(TimestampMixin, db.Model):
    __tablename__ = "payments"

    id = db.Column(db.Integer, primary_key=True)
    parking_record_id = db.Column(db.Integer, db.ForeignKey("parking_records.id"), nullable=False, index=True)
    amount_paid = db.Column(db.Float, nullable=False)
    payment_date = db.Column(db.DateTime, nullable=False, default=utcnow, index=True)
    payment_method = db.Column(db.String(20), nullable=False, default="cash")
    transaction_id = db.Column(db.String(120))
    status = db.Column(db.String(20), nullable=False, default=PAYMENT_COMPLETED, index=True)
    notes = db.Column(db.Text)

    parking_record = db.relationship("ParkingRecord")

    def to_dict(self):
        record = self.parking_record
        return {
            "id": self.id,
            "amountPaid": self.amount_paid,
            "paymentDate": isoformat(self.payment_date),
            "paymentMethod": self.payment_method,
            "transactionId": self.transaction_id,
            "status": self.status,
            "notes": self.notes,
            "parkingRecord": record.to_dict() if record else None,
            "createdAt": isoformat(self.created_at),
            "updatedAt": isoformat(self.updated_at),
        }
