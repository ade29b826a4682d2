from __future__ import annotations

from datetime import date, datetime, timezone
from typing import Optional


def utcnow() -> datetime:
    """Timestamp for recorded_at / confirmed_at columns (UTC, tzinfo stripped)."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def today() -> date:
    """Business date used when a caller does not supply one."""
    return utcnow().date()


def parse_iso_date(value: Optional[str]) -> Optional[date]:
    """
    Parse a business date.

    - None / "" -> None
    - "YYYY-MM-DD" -> that date
    - A full ISO timestamp ("...T...", optional Z or offset) is converted to
      UTC first, then truncated to its date
    """
    if value is None:
        return None
    text = value.strip()
    if not text:
        return None
    if len(text) == 10:
        return date.fromisoformat(text)

    moment = datetime.fromisoformat(text[:-1] + "+00:00" if text.endswith("Z") else text)
    if moment.tzinfo is not None:
        moment = moment.astimezone(timezone.utc)
    return moment.date()


def to_utc_z(moment: Optional[datetime]) -> Optional[str]:
    """Render a stored timestamp as ISO-8601 seconds with a trailing 'Z'."""
    if moment is None:
        return None
    if moment.tzinfo is not None:
        moment = moment.astimezone(timezone.utc).replace(tzinfo=None)
    return moment.replace(microsecond=0).isoformat() + "Z"


def to_iso_date(d: Optional[date]) -> Optional[str]:
    return d.isoformat() if d is not None else None
