from fastapi import Depends, HTTPException
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials

from .rbac import Principal
from .security import decode_token

bearer = HTTPBearer(auto_error=False)


def get_current_principal(
    creds: HTTPAuthorizationCredentials = Depends(bearer),
) -> Principal:
    if not creds:
        raise HTTPException(status_code=401, detail="Not authenticated")

    try:
        payload = decode_token(creds.credentials)
        user_id = int(payload["sub"])
        email = str(payload["email"])
    except Exception:
        raise HTTPException(status_code=401, detail="Invalid token")

    roles = payload.get("roles") or []
    if not isinstance(roles, list):
        raise HTTPException(status_code=401, detail="Invalid token")
    return Principal(user_id=user_id, email=email, roles=[str(r) for r in roles])
