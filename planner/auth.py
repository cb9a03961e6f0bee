from typing import Optional

from fastapi import Header, HTTPException, status
from jose import JWTError, jwt

from .constants import JWT_ALGORITHM, JWT_SECRET
from .models import UserPublic


def _extract_bearer_token(authorization: Optional[str]) -> Optional[str]:
    if not authorization:
        return None
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer" or not token:
        return None
    return token.strip()


def _get_current_user(authorization: Optional[str] = Header(default=None)) -> UserPublic:
    if not authorization:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Missing token.")
    token = _extract_bearer_token(authorization)
    if not token:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token.")
    try:
        payload = jwt.decode(token, JWT_SECRET, algorithms=[JWT_ALGORITHM])
    except JWTError as exc:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid token.",
        ) from exc
    user_id = payload.get("sub")
    if not user_id:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token.")
    if payload.get("active") is False:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="User disabled.")
    role = payload.get("role") or "manager"
    if role not in ("admin", "manager", "worker"):
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Unknown role.")
    return UserPublic(userId=user_id, role=role, active=True)
