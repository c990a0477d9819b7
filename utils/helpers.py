import base64
import binascii
import re
from datetime import date, datetime, timezone
from typing import Any, Optional, Tuple

from utils.exceptions import PayloadValidationError

EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)

_DATA_URL_RE = re.compile(r"^data:(?P<mime>[\w.+-]+/[\w.+-]+)?(?P<params>(;[\w-]+=[^;,]*)*)(?P<b64>;base64)?,(?P<body>.*)$",
                          re.DOTALL)

_EXTENSIONS = {
    "image/jpeg": "jpg",
    "image/png": "png",
    "image/gif": "gif",
    "image/webp": "webp",
    "audio/webm": "webm",
}


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def to_datetime(value: Any, default: Optional[datetime] = None) -> Optional[datetime]:
    """Normalize a stored timestamp.

    Firestore hands back timezone-aware datetimes, but the web client also writes
    epoch milliseconds and ISO strings, so all three are accepted.
    """
    if value is None:
        return default
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    if isinstance(value, (int, float)):
        return datetime.fromtimestamp(value / 1000.0, tz=timezone.utc)
    if isinstance(value, str):
        try:
            parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
        except ValueError:
            return default
        return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)
    return default


def to_millis(value: datetime) -> int:
    return int(value.timestamp() * 1000)


def calculate_age(birth_date: str, today: Optional[date] = None) -> int:
    """Age in whole years for a YYYY-MM-DD birth date."""
    today = today or utcnow().date()
    try:
        born = date.fromisoformat(birth_date[:10])
    except (TypeError, ValueError):
        raise PayloadValidationError(f"Invalid birth date: {birth_date!r}")
    age = today.year - born.year
    if (today.month, today.day) < (born.month, born.day):
        age -= 1
    return age


def is_data_url(value: Any) -> bool:
    return isinstance(value, str) and value.startswith("data:")


def decode_data_url(value: str) -> Tuple[bytes, str]:
    """Split a base64 data URL into raw bytes and its content type."""
    match = _DATA_URL_RE.match(value)
    if not match or not match.group("b64"):
        raise PayloadValidationError("Inline image must be a base64 data URL")
    try:
        data = base64.b64decode(match.group("body"), validate=True)
    except (binascii.Error, ValueError):
        raise PayloadValidationError("Inline image is not valid base64")
    return data, match.group("mime") or "application/octet-stream"


def extension_for(content_type: str) -> str:
    return _EXTENSIONS.get(content_type, "bin")
