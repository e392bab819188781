from fastapi import Depends, HTTPException
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from cadastraqui.auth import jwt_handler
from cadastraqui.core.errors import ForbiddenError
from cadastraqui.scheduling.access_policy import Principal, Role

security = HTTPBearer()


def get_current_principal(
    credentials: HTTPAuthorizationCredentials = Depends(security),
) -> Principal:
    token = credentials.credentials
    try:
        payload = jwt_handler.decode_access_token(token)
    except Exception as exc:
        raise HTTPException(status_code=401, detail="Invalid token") from exc

    subject = payload.get("sub")
    if not subject or not str(subject).isdigit():
        raise HTTPException(status_code=401, detail="Invalid token subject")

    return Principal(
        user_id=int(subject),
        role=Role.from_claim(payload.get("role")),
        tenant_id=payload.get("instituicaoId"),
        email=payload.get("email"),
    )


def require_roles(*roles: Role):
    allowed = frozenset(roles)

    def dependency(principal: Principal = Depends(get_current_principal)) -> Principal:
        if principal.role not in allowed:
            raise ForbiddenError(f"Role {principal.role.value} cannot use this endpoint.")
        return principal

    return dependency
