"""SQLite type hooks: datetimes go in as UTC ISO-8601 text and come back aware."""

from datetime import datetime, timezone

from focusflare import utils


def adapt_timestamp(x: datetime) -> str:
    return utils.datetime_to_iso_8601(x)


def convert_date(x: bytes | None):
    if x is None:
        return None
    parsed = datetime.fromisoformat(x.decode())
    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)
