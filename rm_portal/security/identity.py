from __future__ import annotations

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from rm_portal.auth import Principal, Role

USER_ID_HEADER = 'x-user-id'
USER_NAME_HEADER = 'x-user-name'
USER_ROLE_HEADER = 'x-user-role'
USER_FULL_NAME_HEADER = 'x-user-full-name'

AUTH_EXEMPT_PATHS = {'/health', '/robots.txt', '/docs', '/openapi.json'}


def load_principal_from_headers(headers) -> Principal | None:
    """Identity is asserted by the upstream gateway; a request without a user id is anonymous."""
    user_id = (headers.get(USER_ID_HEADER) or '').strip()
    if not user_id:
        return None
    raw_role = (headers.get(USER_ROLE_HEADER) or '').strip().lower()
    try:
        role = Role(raw_role)
    except ValueError:
        role = Role.USER
    return Principal(
        id=user_id,
        username=(headers.get(USER_NAME_HEADER) or '').strip() or user_id,
        role=role,
        full_name=(headers.get(USER_FULL_NAME_HEADER) or '').strip() or None,
    )


def install_identity_middleware(app: FastAPI) -> None:
    @app.middleware('http')
    async def identity_middleware(request: Request, call_next):
        request.state.principal = load_principal_from_headers(request.headers)
        if request.url.path not in AUTH_EXEMPT_PATHS and request.state.principal is None:
            return JSONResponse({'detail': 'Missing gateway identity'}, status_code=401)
        return await call_next(request)
