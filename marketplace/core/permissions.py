from enum import Enum
from typing import Iterable, Optional


class UserRole(str, Enum):
    USER = "user"
    SELLER = "seller"
    ADMIN = "admin"


def has_role(user_role: Optional[str], allowed_roles: Iterable[str]) -> bool:
    if not user_role:
        return False
    allowed = {r.value if isinstance(r, UserRole) else r for r in allowed_roles}
    return user_role in allowed


def is_admin(user: dict) -> bool:
    return has_role(user.get("role"), [UserRole.ADMIN])
