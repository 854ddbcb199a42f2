import math
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, List, Optional

from bson import ObjectId, errors as bson_errors

from marketplace.core.errors import ValidationError


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def to_object_id(value: Any, label: str = "id") -> ObjectId:
    if isinstance(value, ObjectId):
        return value
    try:
        return ObjectId(str(value))
    except (bson_errors.InvalidId, TypeError):
        raise ValidationError(f"Invalid {label} format: '{value}'")


def serialize(value: Any) -> Any:
    """Make a Mongo document JSON friendly (ObjectId -> str), recursively."""
    if isinstance(value, ObjectId):
        return str(value)
    if isinstance(value, dict):
        return {k: serialize(v) for k, v in value.items()}
    if isinstance(value, list):
        return [serialize(v) for v in value]
    return value


def public_user(user: Dict[str, Any]) -> Dict[str, Any]:
    doc = {k: v for k, v in user.items() if k != "password"}
    return serialize(doc)


def pagination(page: int, limit: int, total: int) -> Dict[str, int]:
    return {
        "currentPage": page,
        "totalPages": math.ceil(total / limit) if limit else 0,
        "total": total,
    }


def page_window(page: int, limit: int) -> int:
    """Number of documents to skip for a 1-based page."""
    return (max(page, 1) - 1) * limit


def ids_of(docs: List[Dict[str, Any]]) -> List[ObjectId]:
    return [d["_id"] for d in docs]


def to_decimal(value: Any) -> Optional[Decimal]:
    if value is None or isinstance(value, bool) or value == "":
        return None
    try:
        number = Decimal(str(value).strip())
    except (InvalidOperation, ValueError):
        return None
    return number if number.is_finite() else None


def has_money_format(number: Decimal) -> bool:
    """At most two fraction digits."""
    return number.normalize().as_tuple().exponent >= -2
