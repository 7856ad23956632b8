from datetime import datetime, timedelta, timezone

from smartpark.errors import ValidationError


def utcnow():
    """Current time as a naive UTC datetime, the form stored in the database."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def isoformat(value):
    if value is None:
        return None
    return value.replace(tzinfo=timezone.utc).isoformat()


def parse_datetime(value, field="date"):
    """
    Parse an ISO-8601 string from a request into a naive UTC datetime.
    Offsets are converted to UTC; values without an offset are taken as UTC.
    """
    if isinstance(value, datetime):
        parsed = value
    else:
        text = str(value).strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError:
            raise ValidationError(f"Invalid {field}: {value}")

    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(timezone.utc).replace(tzinfo=None)
    return parsed


def day_bounds(moment):
    """[start, end) of the UTC calendar day containing ``moment``."""
    start = moment.replace(hour=0, minute=0, second=0, microsecond=0)
    return start, start + timedelta(days=1)


def normalize_plate(plate_number):
    if plate_number is None:
        return ""
    if not isinstance(plate_number, str):
        raise ValidationError("Plate number must be a string")
    return plate_number.strip().upper()


def clean_text(value):
    if value is None:
        return None
    value = str(value).strip()
    return value or None
