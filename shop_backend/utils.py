import datetime


def utc_now():
    return datetime.datetime.now(datetime.timezone.utc)


def now_iso():
    return utc_now().isoformat()


def parse_datetime_param(value):
    """
    Parses an ISO-8601 date or datetime query parameter into an aware UTC datetime.

    Returns None for empty values and raises ValueError for malformed ones.
    """
    if not value:
        return None
    parsed = datetime.datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=datetime.timezone.utc)
    return parsed.astimezone(datetime.timezone.utc)
