from datetime import date, datetime, timedelta
from typing import Optional, Union
import pytz

UTC = pytz.utc

def utcnow() -> datetime:
    return datetime.now(UTC)

def today(tz_name: Optional[str] = None) -> date:
    tz = pytz.timezone(tz_name) if tz_name else UTC
    return datetime.now(tz).date()

def format_date(value: Union[date, datetime], fmt: str = "%Y-%m-%d") -> str:
    return value.strftime(fmt)

def parse_date(date_str: str) -> date:
    # Accepts plain dates and full timestamps
    return date.fromisoformat(date_str[:10])

def parse_timestamp(value: str) -> datetime:
    parsed = datetime.fromisoformat(value.replace('Z', '+00:00'))
    if parsed.tzinfo is None:
        parsed = UTC.localize(parsed)
    return parsed

def previous_day(day: date) -> date:
    return day - timedelta(days=1)
