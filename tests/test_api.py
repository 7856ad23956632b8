import os
from datetime import datetime, timedelta, timezone

import jwt

from smartpark.models import ParkingSlot


def check_in(client, headers, plate="rad 123a", slot="A01", **extra):
    body = {
        "plateNumber": plate,
        "driverName": "Jean Bosco",
        "phoneNumber": "0788000000",
        "slotNumber": slot,
    }
    body.update(extra)
    return client.post("/api/parking-records", json=body, headers=headers)


def parse(value):
    return datetime.fromisoformat(value)


# --------------------
# AUTH & PLUMBING
# --------------------
def test_health_is_public(client):
    response = client.get("/api/health")
    assert response.status_code == 200
    assert response.get_json()["message"] == "SmartPark API is running"


def test_login_and_me(client, admin_headers):
    response = client.get("/api/auth/me", headers=admin_headers)
    assert response.status_code == 200
    assert response.get_json()["user"]["username"] == "admin"
    assert response.get_json()["user"]["role"] == "admin"


def test_login_errors(client):
    assert client.post("/api/auth/login", json={"username": "admin"}).status_code == 400
    response = client.post("/api/auth/login", json={"username": "admin", "password": "nope"})
    assert response.status_code == 401
    assert response.get_json()["error"] == "Invalid credentials"


def test_protected_routes_need_a_token(client, app):
    assert client.get("/api/cars").status_code == 401

    headers = {"Authorization": "Bearer not-a-token"}
    assert client.get("/api/cars", headers=headers).status_code == 401

    expired = jwt.encode(
        {"user_id": 1, "role": "admin", "exp": datetime.now(timezone.utc) - timedelta(minutes=1)},
        app.config["SECRET_KEY"], algorithm="HS256",
    )
    assert client.get("/api/cars", headers={"Authorization": f"Bearer {expired}"}).status_code == 401


def test_init_admin_reports_existing_admin(client):
    response = client.post("/api/auth/init")
    assert response.status_code == 400
    assert response.get_json()["error"] == "Admin user already exists"


def test_unknown_route(client):
    response = client.get("/api/nowhere")
    assert response.status_code == 404
    assert response.get_json()["error"] == "Route not found"


# --------------------
# SLOTS
# --------------------
def test_slot_management_is_admin_only(client, user_headers):
    response = client.post("/api/parking-slots", json={"slotNumber": "B01"}, headers=user_headers)
    assert response.status_code == 403
    assert client.get("/api/parking-slots", headers=user_headers).status_code == 200


def test_slot_crud(client, admin_headers, slots):
    response = client.post("/api/parking-slots", json={"slotNumber": "B01", "location": "Basement"},
                           headers=admin_headers)
    assert response.status_code == 201
    slot = response.get_json()
    assert slot["slotStatus"] == "available"

    duplicate = client.post("/api/parking-slots", json={"slotNumber": "B01"}, headers=admin_headers)
    assert duplicate.status_code == 400
    assert client.post("/api/parking-slots", json={}, headers=admin_headers).status_code == 400

    response = client.put(f"/api/parking-slots/{slot['id']}", json={"slotStatus": "maintenance"},
                          headers=admin_headers)
    assert response.get_json()["slotStatus"] == "maintenance"

    response = client.get("/api/parking-slots?status=maintenance", headers=admin_headers)
    assert [s["slotNumber"] for s in response.get_json()["slots"]] == ["B01"]

    assert client.delete(f"/api/parking-slots/{slot['id']}", headers=admin_headers).status_code == 200
    assert client.get(f"/api/parking-slots/{slot['id']}", headers=admin_headers).status_code == 404
    assert client.delete(f"/api/parking-slots/{slot['id']}", headers=admin_headers).status_code == 404


def test_slot_stats(client, admin_headers, slots):
    check_in(client, admin_headers)
    response = client.get("/api/parking-slots/stats/summary", headers=admin_headers)
    assert response.get_json() == {"total": 3, "available": 2, "occupied": 1, "maintenance": 0}


# --------------------
# PARKING RECORDS
# --------------------
def test_check_in_and_out_over_http(client, admin_headers, store, slots):
    response = check_in(client, admin_headers, carModel="Corolla", notes="VIP")
    assert response.status_code == 201
    record = response.get_json()
    assert record["status"] == "active"
    assert record["car"]["plateNumber"] == "RAD 123A"
    assert record["car"]["carModel"] == "Corolla"
    assert record["parkingSlot"]["slotNumber"] == "A01"
    assert store.get(ParkingSlot, slots[0].id).status == "occupied"

    exit_time = parse(record["entryTime"]) + timedelta(minutes=61)
    response = client.put(f"/api/parking-records/{record['id']}/exit",
                          json={"exitTime": exit_time.isoformat()}, headers=admin_headers)
    assert response.status_code == 200
    closed = response.get_json()
    assert closed["status"] == "completed"
    assert closed["duration"] == 61
    assert closed["totalAmount"] == 2000
    assert store.get(ParkingSlot, slots[0].id).status == "available"

    again = client.put(f"/api/parking-records/{record['id']}/exit", json={}, headers=admin_headers)
    assert again.status_code == 400
    assert again.get_json()["error"] == "Parking record is not active"

    fetched = client.get(f"/api/parking-records/{record['id']}", headers=admin_headers).get_json()
    assert fetched["exitTime"] == closed["exitTime"]


def test_check_in_errors(client, admin_headers, slots):
    response = client.post("/api/parking-records", json={"plateNumber": "RAD 1"}, headers=admin_headers)
    assert response.status_code == 400

    assert check_in(client, admin_headers, slot="Z99").status_code == 404

    assert check_in(client, admin_headers).status_code == 201
    response = check_in(client, admin_headers, plate="RAD 123A", slot="A02")
    assert response.status_code == 400
    assert response.get_json()["error"] == "Car is already parked"

    response = check_in(client, admin_headers, plate="RAE 999B", slot="A01")
    assert response.status_code == 400
    assert response.get_json()["error"] == "Parking slot is not available"


def test_car_lookup_by_plate(client, admin_headers, slots):
    record = check_in(client, admin_headers, plate="rad 123a").get_json()

    by_plate = client.get("/api/cars/plate/rad%20123a", headers=admin_headers)
    assert by_plate.status_code == 200
    assert by_plate.get_json()["id"] == record["car"]["id"]

    by_id = client.get(f"/api/cars/{record['car']['id']}", headers=admin_headers)
    assert by_id.get_json()["plateNumber"] == "RAD 123A"

    assert client.get("/api/cars/plate/NOPE", headers=admin_headers).status_code == 404
    listing = client.get("/api/cars?search=123", headers=admin_headers).get_json()
    assert listing["total"] == 1


def test_exit_time_before_entry_is_a_bad_request(client, admin_headers, slots):
    record = check_in(client, admin_headers).get_json()
    before = parse(record["entryTime"]) - timedelta(hours=1)

    response = client.put(f"/api/parking-records/{record['id']}/exit",
                          json={"exitTime": before.isoformat()}, headers=admin_headers)
    assert response.status_code == 400

    response = client.put(f"/api/parking-records/{record['id']}/exit",
                          json={"exitTime": "yesterday"}, headers=admin_headers)
    assert response.status_code == 400


def test_patch_record(client, admin_headers, slots):
    record = check_in(client, admin_headers).get_json()

    response = client.put(f"/api/parking-records/{record['id']}",
                          json={"notes": "moved", "exitTime": None}, headers=admin_headers)
    assert response.status_code == 200
    assert response.get_json()["notes"] == "moved"
    assert response.get_json()["status"] == "active"

    assert client.put("/api/parking-records/999", json={}, headers=admin_headers).status_code == 404


def test_delete_active_record_frees_slot(client, admin_headers, store, slots):
    record = check_in(client, admin_headers).get_json()

    response = client.delete(f"/api/parking-records/{record['id']}", headers=admin_headers)
    assert response.status_code == 200
    assert store.get(ParkingSlot, slots[0].id).status == "available"
    assert client.get(f"/api/parking-records/{record['id']}", headers=admin_headers).status_code == 404


def test_record_listing_and_stats(client, admin_headers, slots):
    first = check_in(client, admin_headers).get_json()
    check_in(client, admin_headers, plate="RAE 999B", slot="A02")
    client.put(f"/api/parking-records/{first['id']}/exit", json={}, headers=admin_headers)
    client.post("/api/payments", json={"parkingRecordId": first["id"], "amountPaid": 1000},
                headers=admin_headers)

    listing = client.get("/api/parking-records?status=active", headers=admin_headers).get_json()
    assert listing["total"] == 1
    assert listing["records"][0]["car"]["plateNumber"] == "RAE 999B"

    stats = client.get("/api/parking-records/stats/summary", headers=admin_headers).get_json()
    assert stats == {"todayRecords": 2, "activeRecords": 1, "totalRevenue": 1000, "todayRevenue": 1000}


# --------------------
# PAYMENTS
# --------------------
def test_payment_flow(client, admin_headers, slots):
    record = check_in(client, admin_headers).get_json()

    early = client.post("/api/payments", json={"parkingRecordId": record["id"], "amountPaid": 1000},
                        headers=admin_headers)
    assert early.status_code == 400

    client.put(f"/api/parking-records/{record['id']}/exit", json={}, headers=admin_headers)
    response = client.post("/api/payments", json={
        "parkingRecordId": record["id"],
        "amountPaid": 1000,
        "paymentMethod": "mobile_money",
        "transactionId": "MM-77",
    }, headers=admin_headers)
    assert response.status_code == 201
    payment = response.get_json()
    assert payment["status"] == "completed"
    assert payment["parkingRecord"]["isPaid"] is True
    assert payment["parkingRecord"]["car"]["plateNumber"] == "RAD 123A"

    second = client.post("/api/payments", json={"parkingRecordId": record["id"], "amountPaid": 1000},
                         headers=admin_headers)
    assert second.status_code == 400
    assert second.get_json()["error"] == "Parking record is already paid"

    updated = client.put(f"/api/payments/{payment['id']}", json={"notes": "receipt 12"},
                         headers=admin_headers)
    assert updated.get_json()["notes"] == "receipt 12"

    listing = client.get("/api/payments?method=mobile_money", headers=admin_headers).get_json()
    assert listing["total"] == 1

    stats = client.get("/api/payments/stats/summary", headers=admin_headers).get_json()
    assert stats["totalPayments"] == {"count": 1, "total": 1000}
    assert stats["paymentMethods"][0]["method"] == "mobile_money"


def test_payment_request_validation(client, admin_headers):
    response = client.post("/api/payments", json={"amountPaid": 100}, headers=admin_headers)
    assert response.status_code == 400
    response = client.post("/api/payments", json={"parkingRecordId": 1, "amountPaid": "lots"},
                           headers=admin_headers)
    assert response.status_code == 400
    response = client.post("/api/payments", json={"parkingRecordId": 999, "amountPaid": 100},
                           headers=admin_headers)
    assert response.status_code == 404
    assert client.get("/api/payments/999", headers=admin_headers).status_code == 404


def test_delete_record_cascades_payments(client, admin_headers, slots):
    record = check_in(client, admin_headers).get_json()
    client.put(f"/api/parking-records/{record['id']}/exit", json={}, headers=admin_headers)
    payment = client.post("/api/payments", json={"parkingRecordId": record["id"], "amountPaid": 1000},
                          headers=admin_headers).get_json()

    client.delete(f"/api/parking-records/{record['id']}", headers=admin_headers)

    assert client.get(f"/api/payments/{payment['id']}", headers=admin_headers).status_code == 404
    assert client.get("/api/payments", headers=admin_headers).get_json()["total"] == 0


# --------------------
# EXPORT
# --------------------
def test_export_status(client, admin_headers, monkeypatch):
    class FinishedResult:
        state = "SUCCESS"
        result = {"filename": "parking_records_1.csv", "path": "/tmp/x.csv", "rows": 4}

        def __init__(self, task_id):
            self.task_id = task_id

    monkeypatch.setattr("smartpark.routes.AsyncResult", FinishedResult)

    response = client.get("/api/parking-records/export/abc", headers=admin_headers)
    assert response.get_json() == {
        "status": "completed",
        "filename": "parking_records_1.csv",
        "rows": 4,
        "download": "/api/exports/parking_records_1.csv",
    }


def test_export_requires_admin(client, user_headers):
    assert client.post("/api/parking-records/export", json={}, headers=user_headers).status_code == 403


def test_export_runs_and_file_is_served(client, admin_headers, app, slots, monkeypatch):
    from celery_app import celery
    monkeypatch.setitem(celery.conf, "task_always_eager", True)

    record = check_in(client, admin_headers).get_json()
    client.put(f"/api/parking-records/{record['id']}/exit", json={}, headers=admin_headers)
    yesterday = (datetime.now(timezone.utc) - timedelta(days=1)).isoformat()

    response = client.post("/api/parking-records/export",
                           json={"status": "completed", "startDate": yesterday},
                           headers=admin_headers)
    assert response.status_code == 202
    assert response.get_json()["status"] == "started"

    exported = os.listdir(app.config["EXPORT_FOLDER"])
    assert len(exported) == 1
    download = client.get(f"/api/exports/{exported[0]}", headers=admin_headers)
    assert download.status_code == 200
    assert b"RAD 123A" in download.data


def test_missing_export_file(client, admin_headers):
    response = client.get("/api/exports/nothing.csv", headers=admin_headers)
    assert response.status_code == 404
    assert response.get_json() == {"error": "Export not found"}


# --------------------
# MALFORMED INPUT
# --------------------
def test_non_string_plate_is_a_bad_request(client, admin_headers, slots):
    response = check_in(client, admin_headers, plate=123)
    assert response.status_code == 400
    assert response.get_json()["error"] == "Plate number must be a string"


def test_non_finite_amounts_are_rejected(client, admin_headers, slots):
    record = check_in(client, admin_headers).get_json()
    client.put(f"/api/parking-records/{record['id']}/exit", json={}, headers=admin_headers)

    for value in ("NaN", "Infinity", "-inf"):
        response = client.post("/api/payments", json={"parkingRecordId": record["id"], "amountPaid": value},
                               headers=admin_headers)
        assert response.status_code == 400

    payment = client.post("/api/payments", json={"parkingRecordId": record["id"], "amountPaid": 1000},
                          headers=admin_headers).get_json()
    response = client.put(f"/api/payments/{payment['id']}", json={"amountPaid": "nan"}, headers=admin_headers)
    assert response.status_code == 400
    assert client.get(f"/api/payments/{payment['id']}", headers=admin_headers).get_json()["amountPaid"] == 1000


def test_zero_amount_payment_is_accepted(client, admin_headers, slots):
    record = check_in(client, admin_headers).get_json()
    client.put(f"/api/parking-records/{record['id']}/exit", json={}, headers=admin_headers)

    response = client.post("/api/payments", json={"parkingRecordId": record["id"], "amountPaid": 0},
                           headers=admin_headers)
    assert response.status_code == 201
    assert response.get_json()["amountPaid"] == 0
