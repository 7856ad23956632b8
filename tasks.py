# tasks.py

from celery_app import celery
from flask import current_app
from app_factory import db
from mail_helper import send_email
from smartpark.reports import build_daily_summary, write_records_csv
from smartpark.store import EntityStore
from smartpark.utils import parse_datetime, utcnow
import logging
import os

logger = logging.getLogger(__name__)


# ======================
# 1️⃣ DAILY SUMMARY JOB
# ======================
@celery.task
def send_daily_summary():
    """
    E-mail the day's occupancy and revenue summary to the report recipient.
    """
    recipient = current_app.config.get("REPORT_RECIPIENT")
    if not recipient:
        logger.info("REPORT_RECIPIENT not set, daily summary skipped")
        return "Daily summary skipped: no recipient configured"

    now = utcnow()
    body = build_daily_summary(EntityStore(db.session), now)
    send_email(recipient, f"SmartPark summary for {now.date().isoformat()}", body)
    return f"Daily summary sent to {recipient}"


# ======================
# 2️⃣ CSV EXPORT JOB
# ======================
@celery.task
def export_records_csv(status=None, start_date=None, end_date=None):
    """
    Export parking records (optionally filtered) to a CSV file in the export folder.
    """
    folder = current_app.config["EXPORT_FOLDER"]
    os.makedirs(folder, exist_ok=True)

    filename = f"parking_records_{utcnow():%Y%m%d_%H%M%S}.csv"
    path = os.path.join(folder, filename)

    rows = write_records_csv(
        EntityStore(db.session),
        path,
        status=status,
        start=parse_datetime(start_date) if start_date else None,
        end=parse_datetime(end_date) if end_date else None,
    )
    logger.info("Exported %s parking record(s) to %s", rows, path)
    return {"filename": filename, "path": path, "rows": rows}
