from flask import Blueprint, request, jsonify, current_app, send_from_directory, g
from functools import wraps
from datetime import datetime, timedelta, timezone
import logging
import math
import jwt
from celery.result import AsyncResult
from app_factory import db, cache
from smartpark import lifecycle, services
from werkzeug.exceptions import NotFound
from smartpark.errors import NotFoundError, ValidationError
from smartpark.models import User
from smartpark.store import EntityStore
from smartpark.utils import clean_text, parse_datetime, utcnow, isoformat

bp = Blueprint("smartpark", __name__, url_prefix="/api")
logger = logging.getLogger(__name__)

STATS_KEYS = ("stats:slots", "stats:records", "stats:payments")


def get_store():
    if "store" not in g:
        g.store = EntityStore(db.session)
    return g.store


def invalidate_stats():
    cache.delete_many(*STATS_KEYS)


# --------------------
# JWT HELPERS
# --------------------
def create_token(user):
    payload = {
        "user_id": user.id,
        "username": user.username,
        "role": user.role,
        "exp": datetime.now(timezone.utc) + timedelta(hours=current_app.config["JWT_EXPIRES_HOURS"])
    }
    return jwt.encode(payload, current_app.config["SECRET_KEY"], algorithm="HS256")


def token_required(f):
    @wraps(f)
    def decorator(*args, **kwargs):
        auth = request.headers.get("Authorization", "")
        token = auth.split(" ")[1] if " " in auth else None

        if not token:
            return jsonify({"error": "Token missing"}), 401

        try:
            data = jwt.decode(token, current_app.config["SECRET_KEY"], algorithms=["HS256"])
        except jwt.InvalidTokenError:
            return jsonify({"error": "Invalid or expired token"}), 401

        user_id = data.get("user_id")
        current_user = db.session.get(User, user_id) if user_id is not None else None
        if not current_user or not current_user.is_active:
            return jsonify({"error": "Invalid user"}), 401

        return f(current_user, *args, **kwargs)
    return decorator


def admin_required(f):
    @wraps(f)
    def wrapper(current_user, *args, **kwargs):
        if current_user.role != "admin":
            return jsonify({"error": "Admin required"}), 403
        return f(current_user, *args, **kwargs)
    return wrapper


# --------------------
# REQUEST HELPERS
# --------------------
def json_body():
    return request.get_json(silent=True) or {}


def page_args(default_limit):
    page = request.args.get("page", 1, type=int)
    limit = request.args.get("limit", default_limit, type=int)
    return page, limit


def optional_date(value, field):
    if value in (None, ""):
        return None
    return parse_datetime(value, field)


def parse_amount(value):
    if value is None or value == "" or isinstance(value, bool):
        return None
    try:
        amount = float(value)
    except (TypeError, ValueError):
        raise ValidationError("Amount paid must be numeric")
    if not math.isfinite(amount):
        raise ValidationError("Amount paid must be a finite number")
    return amount


# --------------------
# AUTO-CREATE ADMIN
# --------------------
def seed_admin():
    """
    Create the default admin account. Returns the new user, or None when an
    admin with that username already exists.
    """
    username = current_app.config["ADMIN_USERNAME"]
    if User.query.filter_by(username=username).first():
        logger.info("Admin user %r already exists", username)
        return None

    admin = User(username=username, role="admin")
    admin.set_password(current_app.config["ADMIN_PASSWORD"])
    db.session.add(admin)
    db.session.commit()
    logger.info("Admin user %r created", username)
    return admin


@bp.before_app_request
def create_admin():
    """
    Ensure DB tables exist and a default admin user is present.
    """
    app = current_app
    if app.extensions.get("smartpark_initialized"):
        return

    db.create_all()
    if app.config["SEED_ADMIN"]:
        seed_admin()

    app.extensions["smartpark_initialized"] = True


# ----------------------------------------------------------
# AUTH ROUTES
# ----------------------------------------------------------
@bp.route("/auth/login", methods=["POST"])
def login():
    data = json_body()
    username = (data.get("username") or "").strip()
    password = data.get("password") or ""

    if not username or not password:
        return jsonify({"error": "Please provide username and password"}), 400

    user = User.query.filter_by(username=username, is_active=True).first()
    if not user or not user.check_password(password):
        return jsonify({"error": "Invalid credentials"}), 401

    return jsonify({"token": create_token(user), "user": user.to_dict()})


@bp.route("/auth/me", methods=["GET"])
@token_required
def me(current_user):
    return jsonify({"user": current_user.to_dict()})


@bp.route("/auth/init", methods=["POST"])
def init_admin():
    if seed_admin() is None:
        return jsonify({"error": "Admin user already exists"}), 400
    return jsonify({"message": "Admin user created successfully"})


# ----------------------------------------------------------
# CARS (read-only, created through parking records)
# ----------------------------------------------------------
@bp.route("/cars", methods=["GET"])
@token_required
def list_cars(current_user):
    page, limit = page_args(50)
    result = services.list_cars(get_store(), request.args.get("search"), page, limit)
    return jsonify(result.to_dict("cars"))


@bp.route("/cars/<int:car_id>", methods=["GET"])
@token_required
def get_car(current_user, car_id):
    return jsonify(services.get_car(get_store(), car_id).to_dict())


@bp.route("/cars/plate/<plate_number>", methods=["GET"])
@token_required
def get_car_by_plate(current_user, plate_number):
    return jsonify(services.get_car_by_plate(get_store(), plate_number).to_dict())


# ----------------------------------------------------------
# PARKING SLOTS
# ----------------------------------------------------------
@bp.route("/parking-slots", methods=["GET"])
@token_required
def list_slots(current_user):
    page, limit = page_args(50)
    result = services.list_slots(get_store(), request.args.get("status"), page, limit)
    return jsonify(result.to_dict("slots"))


@bp.route("/parking-slots/stats/summary", methods=["GET"])
@token_required
@cache.cached(key_prefix="stats:slots")
def slot_stats(current_user):
    return services.slot_summary(get_store())


@bp.route("/parking-slots/<int:slot_id>", methods=["GET"])
@token_required
def get_slot(current_user, slot_id):
    return jsonify(services.get_slot(get_store(), slot_id).to_dict())


@bp.route("/parking-slots", methods=["POST"])
@token_required
@admin_required
def create_slot(current_user):
    data = json_body()
    slot = services.create_slot(get_store(), data.get("slotNumber"), data.get("location"))
    invalidate_stats()
    return jsonify(slot.to_dict()), 201


@bp.route("/parking-slots/<int:slot_id>", methods=["PUT"])
@token_required
@admin_required
def update_slot(current_user, slot_id):
    data = json_body()
    slot = services.update_slot(
        get_store(),
        slot_id,
        slot_number=data.get("slotNumber"),
        status=data.get("slotStatus"),
        location=data.get("location"),
        clear_location="location" in data and data["location"] is None,
    )
    invalidate_stats()
    return jsonify(slot.to_dict())


@bp.route("/parking-slots/<int:slot_id>", methods=["DELETE"])
@token_required
@admin_required
def delete_slot(current_user, slot_id):
    services.delete_slot(get_store(), slot_id)
    invalidate_stats()
    return jsonify({"message": "Parking slot deleted successfully"})


# ----------------------------------------------------------
# PARKING RECORDS
# ----------------------------------------------------------
@bp.route("/parking-records", methods=["GET"])
@token_required
def list_records(current_user):
    page, limit = page_args(20)
    result = services.list_records(
        get_store(),
        status=request.args.get("status"),
        start=optional_date(request.args.get("startDate"), "startDate"),
        end=optional_date(request.args.get("endDate"), "endDate"),
        page=page,
        limit=limit,
    )
    return jsonify(result.to_dict("records"))


@bp.route("/parking-records/stats/summary", methods=["GET"])
@token_required
@cache.cached(key_prefix="stats:records")
def record_stats(current_user):
    return services.record_summary(get_store())


@bp.route("/parking-records/<int:record_id>", methods=["GET"])
@token_required
def get_record(current_user, record_id):
    return jsonify(services.get_record(get_store(), record_id).to_dict())


@bp.route("/parking-records", methods=["POST"])
@token_required
def car_entry(current_user):
    data = json_body()
    record = lifecycle.check_in(
        get_store(),
        plate_number=data.get("plateNumber"),
        driver_name=data.get("driverName"),
        phone_number=data.get("phoneNumber"),
        slot_number=data.get("slotNumber"),
        car_model=data.get("carModel"),
        car_color=data.get("carColor"),
        notes=data.get("notes"),
    )
    invalidate_stats()
    return jsonify(record.to_dict()), 201


@bp.route("/parking-records/<int:record_id>/exit", methods=["PUT"])
@token_required
def car_exit(current_user, record_id):
    data = json_body()
    record = lifecycle.check_out(
        get_store(),
        record_id,
        exit_time=optional_date(data.get("exitTime"), "exitTime"),
        notes=clean_text(data.get("notes")),
    )
    invalidate_stats()
    return jsonify(record.to_dict())


@bp.route("/parking-records/<int:record_id>", methods=["PUT"])
@token_required
def update_record(current_user, record_id):
    data = json_body()
    changes = {}
    if data.get("entryTime"):
        changes["entry_time"] = parse_datetime(data["entryTime"], "entryTime")
    if "exitTime" in data:
        changes["exit_time"] = optional_date(data["exitTime"], "exitTime")
    if "notes" in data:
        changes["notes"] = clean_text(data["notes"])

    record = services.update_record(get_store(), record_id, changes)
    invalidate_stats()
    return jsonify(record.to_dict())


@bp.route("/parking-records/<int:record_id>", methods=["DELETE"])
@token_required
def delete_record(current_user, record_id):
    lifecycle.delete_record(get_store(), record_id)
    invalidate_stats()
    return jsonify({"message": "Parking record deleted successfully"})


# --------------------
# EXPORT CSV
# --------------------
@bp.route("/parking-records/export", methods=["POST"])
@token_required
@admin_required
def export_records(current_user):
    from tasks import export_records_csv
    data = json_body()
    start = optional_date(data.get("startDate"), "startDate")
    end = optional_date(data.get("endDate"), "endDate")
    task = export_records_csv.delay(
        status=data.get("status"),
        start_date=isoformat(start),
        end_date=isoformat(end),
    )
    return jsonify({"task_id": task.id, "status": "started"}), 202


@bp.route("/parking-records/export/<task_id>", methods=["GET"])
@token_required
def export_status(current_user, task_id):
    result = AsyncResult(task_id)
    if result.state == "SUCCESS":
        return jsonify({
            "status": "completed",
            "filename": result.result["filename"],
            "rows": result.result["rows"],
            "download": f"/api/exports/{result.result['filename']}",
        })
    return jsonify({"status": result.state})


@bp.route("/exports/<filename>", methods=["GET"])
@token_required
def serve_export(current_user, filename):
    try:
        return send_from_directory(current_app.config["EXPORT_FOLDER"], filename, as_attachment=True)
    except NotFound:
        raise NotFoundError("Export not found")


# ----------------------------------------------------------
# PAYMENTS
# ----------------------------------------------------------
@bp.route("/payments", methods=["GET"])
@token_required
def list_payments(current_user):
    page, limit = page_args(20)
    result = services.list_payments(
        get_store(),
        status=request.args.get("status"),
        method=request.args.get("method"),
        start=optional_date(request.args.get("startDate"), "startDate"),
        end=optional_date(request.args.get("endDate"), "endDate"),
        page=page,
        limit=limit,
    )
    return jsonify(result.to_dict("payments"))


@bp.route("/payments/stats/summary", methods=["GET"])
@token_required
@cache.cached(key_prefix="stats:payments")
def payment_stats(current_user):
    return services.payment_summary(get_store())


@bp.route("/payments/<int:payment_id>", methods=["GET"])
@token_required
def get_payment(current_user, payment_id):
    return jsonify(services.get_payment(get_store(), payment_id).to_dict())


@bp.route("/payments", methods=["POST"])
@token_required
def create_payment(current_user):
    data = json_body()
    record_id = data.get("parkingRecordId")
    amount = parse_amount(data.get("amountPaid"))
    if not record_id or amount is None:
        return jsonify({"error": "Parking record ID and amount paid are required"}), 400

    try:
        record_id = int(record_id)
    except (TypeError, ValueError):
        return jsonify({"error": "Invalid parking record ID"}), 400

    payment = lifecycle.record_payment(
        get_store(),
        record_id,
        amount,
        payment_method=data.get("paymentMethod"),
        transaction_id=data.get("transactionId"),
        notes=data.get("notes"),
    )
    invalidate_stats()
    return jsonify(payment.to_dict()), 201


@bp.route("/payments/<int:payment_id>", methods=["PUT"])
@token_required
def update_payment(current_user, payment_id):
    data = json_body()
    changes = {}
    if "amountPaid" in data:
        changes["amount_paid"] = parse_amount(data["amountPaid"])
    for field, key in (("paymentMethod", "payment_method"), ("status", "status")):
        if data.get(field):
            changes[key] = data[field]
    for field, key in (("transactionId", "transaction_id"), ("notes", "notes")):
        if field in data:
            changes[key] = data[field]

    payment = services.update_payment(get_store(), payment_id, changes)
    invalidate_stats()
    return jsonify(payment.to_dict())


# ----------------------------------------------------------
# HEALTH
# ----------------------------------------------------------
@bp.route("/health", methods=["GET"])
def health():
    return jsonify({
        "message": "SmartPark API is running",
        "timestamp": isoformat(utcnow()),
    })
