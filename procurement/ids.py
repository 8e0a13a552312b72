import uuid
from typing import Any

from procurement.errors import InvalidInputError


def parse_uuid(value: Any, field_name: str) -> uuid.UUID:
    """Coerce a request id to UUID, raising InvalidInputError when blank or malformed."""
    if isinstance(value, uuid.UUID):
        return value
    if value is None or not str(value).strip():
        raise InvalidInputError(f"{field_name} is required")
    try:
        return uuid.UUID(str(value).strip())
    except (ValueError, TypeError):
        raise InvalidInputError(f"{field_name} must be a valid id")
