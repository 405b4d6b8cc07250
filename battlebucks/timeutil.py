# battlebucks/timeutil.py - Time helpers. All tournament times are entered and shown in IST.

import traceback
from datetime import datetime, timedelta, timezone

# Define IST timezone explicitly for consistency
IST_TIMEZONE = timezone(timedelta(hours=5, minutes=30))

# A tournament is treated as finished this long after its start time.
MATCH_DURATION = timedelta(hours=1)


def now_ist():
    return datetime.now(IST_TIMEZONE)


def format_timestamp(timestamp_obj):
    """
    Formats a Firestore Timestamp object or datetime object into a readable string (IST).
    Naive datetimes are assumed to be UTC.
    """
    if timestamp_obj is None:
        return "N/A"
    if isinstance(timestamp_obj, datetime):
        if timestamp_obj.tzinfo is None:
            timestamp_obj = timestamp_obj.replace(tzinfo=timezone.utc)
        return timestamp_obj.astimezone(IST_TIMEZONE).strftime('%Y-%m-%d %H:%M:%S')
    elif hasattr(timestamp_obj, 'to_datetime'): # For google.cloud.firestore.Timestamp objects
        return timestamp_obj.to_datetime().astimezone(IST_TIMEZONE).strftime('%Y-%m-%d %H:%M:%S')
    return str(timestamp_obj) # Fallback for other types


def format_time_to_12hr_ist(time_24hr_str):
    """Converts a 'HH:MM' string to 'hh:mm AM/PM' format."""
    try:
        return datetime.strptime(time_24hr_str, '%H:%M').strftime('%I:%M %p')
    except (TypeError, ValueError):
        print(f"Warning: Could not parse 24-hour time '{time_24hr_str}'.")
        return time_24hr_str


def tournament_start_ist(date_str, time_str):
    """Returns the tournament's start as an aware IST datetime, or None if the schedule can't be parsed."""
    try:
        naive = datetime.strptime(f"{date_str} {time_str}", '%Y-%m-%d %H:%M')
    except (TypeError, ValueError):
        print(f"Warning: Could not parse tournament schedule '{date_str} {time_str}'.")
        return None
    return naive.replace(tzinfo=IST_TIMEZONE)


def expected_tournament_status(date_str, time_str, current_status, at=None):
    """
    Works out where a tournament should be in its Upcoming -> Ongoing -> Completed
    lifecycle at time `at`. Statuses only move forward.
    """
    order = ('Upcoming', 'Ongoing', 'Completed')
    try:
        start = tournament_start_ist(date_str, time_str)
        if start is None or current_status not in order:
            return current_status

        at = at or now_ist()
        if at >= start + MATCH_DURATION:
            expected = 'Completed'
        elif at >= start:
            expected = 'Ongoing'
        else:
            expected = 'Upcoming'

        if order.index(expected) > order.index(current_status):
            return expected
        return current_status
    except Exception as e:
        print(f"Error checking tournament status for '{date_str} {time_str}': {e}")
        traceback.print_exc()
        return current_status
