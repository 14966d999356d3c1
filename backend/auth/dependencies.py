from dataclasses import dataclass

import jwt
from fastapi import Depends, HTTPException
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from backend.auth import jwt_handler
from backend.core import config

security = HTTPBearer()


@dataclass(frozen=True)
class StaffMember:
    email: str
    role: str


def get_current_staff(
    credentials: HTTPAuthorizationCredentials = Depends(security),
) -> StaffMember:
    token = credentials.credentials
    try:
        payload = jwt_handler.decode_access_token(token)
    except jwt.PyJWTError as exc:
        raise HTTPException(status_code=401, detail="Invalid token") from exc

    email = payload.get("sub")
    if not email:
        raise HTTPException(status_code=401, detail="Invalid token subject")

    role = (payload.get("role") or "").strip().lower()
    if role not in config.STAFF_ROLES:
        raise HTTPException(status_code=403, detail="Only clinic staff can perform this action.")

    return StaffMember(email=email, role=role)
