from dataclasses import dataclass

from fastapi import Depends, HTTPException, Request, status

from rm_portal.models import PrincipalRole as Role


@dataclass
class Principal:
    id: str
    username: str
    role: Role
    full_name: str | None = None

    @property
    def display_name(self) -> str:
        return self.full_name or self.username or 'User'


def get_current_principal(request: Request) -> Principal:
    principal = getattr(request.state, 'principal', None)
    if not principal:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED)
    return principal


def is_admin_role(role: Role) -> bool:
    return role == Role.ADMIN


def require_role(*allowed: Role):
    def _dep(principal: Principal = Depends(get_current_principal)) -> Principal:
        if principal.role not in allowed:
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN)
        return principal

    return _dep


def assert_table_scope(principal: Principal, owner_id: str) -> None:
    if is_admin_role(principal.role):
        return
    if principal.id != owner_id:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN)
