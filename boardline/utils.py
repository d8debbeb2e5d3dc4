import uuid
from datetime import datetime, timezone
from typing import Optional

from .errors import InvalidIdentifier


def new_uuid() -> str:
    return str(uuid.uuid4())


def now_utc() -> datetime:
    return datetime.now(tz=timezone.utc)


def is_valid_id(value: Optional[str]) -> bool:
    if not value or not isinstance(value, str):
        return False
    try:
        parsed = uuid.UUID(value)
    except ValueError:
        return False
    # Only the canonical lower-case hyphenated form matches stored ids.
    return str(parsed) == value


def require_ids(**ids: Optional[str]) -> None:
    """Raise ``InvalidIdentifier`` naming the first malformed id."""
    for name, value in ids.items():
        if not is_valid_id(value):
            raise InvalidIdentifier(f"{name} is invalid", {"field": name})
