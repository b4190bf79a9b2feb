"""
Acting principal, as forwarded by the upstream auth gateway.
"""
from dataclasses import dataclass, field
from typing import FrozenSet, Optional

from fastapi import Depends, Header

from errors import PermissionDeniedError

ADMIN_ROLE = "Admin"
CUSTOMER_ROLE = "Customer"


@dataclass(frozen=True)
class Principal:
    user_id: int
    user_name: str = "System"
    roles: FrozenSet[str] = field(default_factory=frozenset)

    @property
    def is_admin(self) -> bool:
        return ADMIN_ROLE in self.roles

    def can_act_on(self, customer_id: int) -> bool:
        """Admins act on any order, customers only on their own."""
        return self.is_admin or self.user_id == customer_id


def parse_roles(raw: Optional[str]) -> FrozenSet[str]:
    if not raw:
        return frozenset()
    return frozenset(role.strip() for role in raw.split(",") if role.strip())


async def get_principal(
    x_user_id: Optional[str] = Header(None),
    x_user_name: Optional[str] = Header(None),
    x_user_roles: Optional[str] = Header(None),
) -> Principal:
    if not x_user_id:
        raise PermissionDeniedError("Authentication required")
    try:
        user_id = int(x_user_id)
    except ValueError:
        raise PermissionDeniedError(f"Invalid user id header: {x_user_id}")
    return Principal(
        user_id=user_id,
        user_name=x_user_name or f"user-{user_id}",
        roles=parse_roles(x_user_roles),
    )


async def require_admin(principal: Principal = Depends(get_principal)) -> Principal:
    if not principal.is_admin:
        raise PermissionDeniedError("Admin role required")
    return principal
