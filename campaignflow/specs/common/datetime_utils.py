from datetime import datetime, timezone
from typing import Optional

ISO_FORMAT = "%Y-%m-%dT%H:%M:%S.%fZ"

def utc_now() -> datetime:
    return datetime.now(timezone.utc)

def parse_iso_datetime(dt_str: str) -> Optional[datetime]:
    """Parse an ISO-8601 string; naive values are taken as UTC."""
    try:
        parsed = datetime.fromisoformat(dt_str.replace("Z", "+00:00"))
    except (TypeError, ValueError):
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed

def format_iso_datetime(dt: datetime) -> str:
    if dt.tzinfo is not None:
        dt = dt.astimezone(timezone.utc)
    return dt.strftime(ISO_FORMAT)
