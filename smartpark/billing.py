from datetime import timedelta

RATE_PER_HOUR = 1000  # RWF

MINUTE = timedelta(minutes=1)


def _to_millis(moment):
    return moment.replace(microsecond=moment.microsecond // 1000 * 1000)


def compute_billing(entry_time, exit_time):
    """
    Duration in whole minutes and amount due for a stay.

    Both times are truncated to the millisecond. Partial minutes count as full
    minutes, partial hours as full hours, and every stay is billed at least
    one hour. Raises ValueError when the exit is before the entry.
    """
    elapsed = _to_millis(exit_time) - _to_millis(entry_time)
    if elapsed < timedelta(0):
        raise ValueError("Exit time cannot be before entry time")

    minutes, remainder = divmod(elapsed, MINUTE)
    if remainder:
        minutes += 1

    hours, rest = divmod(minutes, 60)
    if rest:
        hours += 1

    return minutes, max(hours, 1) * RATE_PER_HOUR
