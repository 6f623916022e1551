from dataclasses import dataclass
from typing import Optional
from jose import JWTError, jwt
from fastapi import Depends, HTTPException
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials

from farfield.models.user import User
from farfield.db.session import get_db
from farfield.core.config import settings

security = HTTPBearer(auto_error=False)

PRIVY_ALGORITHM = "ES256"

@dataclass
class AuthenticatedUser:
    privy_id: str
    session_id: Optional[str]
    app_id: str

def verify_privy_token(
    token: str,
    verification_key: Optional[str] = None,
    app_id: Optional[str] = None,
) -> AuthenticatedUser:
    """Verify a Privy access token and return the identity it carries.

    Raises HTTPException(401) when the token is malformed, expired, signed by
    another key or issued for another app.
    """
    key = verification_key or settings.PRIVY_VERIFICATION_KEY
    audience = app_id or settings.PRIVY_APP_ID
    try:
        payload = jwt.decode(
            token,
            key,
            algorithms=[PRIVY_ALGORITHM],
            audience=audience,
            issuer=settings.PRIVY_ISSUER,
        )
    except JWTError:
        raise HTTPException(status_code=401, detail="Invalid or expired token")

    privy_id = payload.get("sub")
    if not privy_id:
        raise HTTPException(status_code=401, detail="Invalid or expired token")

    return AuthenticatedUser(
        privy_id=privy_id,
        session_id=payload.get("sid"),
        app_id=audience,
    )

async def get_current_user(credentials: Optional[HTTPAuthorizationCredentials] = Depends(security)) -> AuthenticatedUser:
    if credentials is None:
        raise HTTPException(status_code=401, detail="Authentication token required")
    return verify_privy_token(credentials.credentials)

async def get_current_user_optional(credentials: Optional[HTTPAuthorizationCredentials] = Depends(security)) -> Optional[AuthenticatedUser]:
    if credentials is None:
        return None
    try:
        return verify_privy_token(credentials.credentials)
    except HTTPException:
        return None

async def get_current_account(
    identity: AuthenticatedUser = Depends(get_current_user),
    db=Depends(get_db),
) -> User:
    """Resolve the marketplace account behind the authenticated Privy identity"""
    user = await db.users.find_one({"privy_id": identity.privy_id})
    if user is None:
        raise HTTPException(status_code=404, detail="User not found")
    return User(**user)

async def get_current_account_optional(
    identity: Optional[AuthenticatedUser] = Depends(get_current_user_optional),
    db=Depends(get_db),
) -> Optional[User]:
    if identity is None:
        return None
    user = await db.users.find_one({"privy_id": identity.privy_id})
    if user is None:
        return None
    return User(**user)
