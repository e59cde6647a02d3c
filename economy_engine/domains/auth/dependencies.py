from typing import Any, Dict

from fastapi import Depends, HTTPException, Security
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from economy_engine.shared.utils.security import decode_token

bearer_scheme = HTTPBearer(auto_error=False)


async def get_current_user(
    creds: HTTPAuthorizationCredentials = Security(bearer_scheme),
) -> Dict[str, Any]:
    if not creds or creds.scheme.lower() != "bearer":
        raise HTTPException(status_code=401, detail="Invalid auth header")
    payload = decode_token(creds.credentials)
    if not payload or not payload.get("sub"):
        raise HTTPException(status_code=401, detail="Invalid or expired token")
    return {
        "id": str(payload["sub"]),
        "is_admin": bool(payload.get("is_admin", False)),
        "roles": list(payload.get("roles") or []),
    }


async def require_admin(user: Dict[str, Any] = Depends(get_current_user)) -> Dict[str, Any]:
    if not user["is_admin"]:
        raise HTTPException(status_code=403, detail="Admin access required")
    return user


async def require_service_or_admin(
    user: Dict[str, Any] = Depends(get_current_user),
) -> Dict[str, Any]:
    """Trusted collaborators (activity modules, identity layer) or admins."""
    if not user["is_admin"] and "service" not in user["roles"]:
        raise HTTPException(status_code=403, detail="Service access required")
    return user
