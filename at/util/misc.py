from datetime import datetime, timezone
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError


# Simply returns the current local time as an ISO8601 string with timezone offset.
def now_iso():
    return datetime.now().astimezone().isoformat()

# Current time as an aware UTC datetime. Everything that ticks takes its `now` from here (or from a test clock).
def now_utc():
    return datetime.now(timezone.utc)

# Resolves the configured app timezone, falling back to UTC for unknown names.
def app_timezone(name):
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError, TypeError):
        return timezone.utc

# Parses a backend timestamp into an aware datetime. The backend sends naive ISO strings in the app timezone, and
# sometimes a trailing Z.
def parse_timestamp(value, tz=timezone.utc):
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        parsed = value
    else:
        text = str(value).strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        parsed = datetime.fromisoformat(text.replace(" ", "T", 1))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=tz)
    return parsed
