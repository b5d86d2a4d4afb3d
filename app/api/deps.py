import hmac

from fastapi import Depends, Header, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from app.core.config import settings
from app.core.security import decode_access_token

security = HTTPBearer(auto_error=False)


def get_current_user_id(
    credentials: HTTPAuthorizationCredentials | None = Depends(security),
) -> str:
    """Authenticated user id from the bearer token's `sub` claim."""
    if not credentials:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Authentication required.",
            headers={"WWW-Authenticate": "Bearer"},
        )
    payload = decode_access_token(credentials.credentials)
    if not payload or not payload.get("sub"):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired token.",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return str(payload["sub"])


def require_admin(
    x_admin_secret: str | None = Header(None, alias="X-Admin-Secret"),
) -> None:
    """Operator endpoints: X-Admin-Secret header, constant-time compare."""
    expected = (settings.admin_secret or "").strip()
    if not expected:
        raise HTTPException(status_code=503, detail="Admin access is not configured (ADMIN_SECRET missing).")
    if not hmac.compare_digest((x_admin_secret or "").encode("utf-8"), expected.encode("utf-8")):
        raise HTTPException(status_code=403, detail="Forbidden.")
