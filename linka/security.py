# security.py
from typing import Annotated, Optional

import jwt
from fastapi import Depends, HTTPException, status
from fastapi.security import OAuth2PasswordBearer
from jwt.exceptions import InvalidTokenError
from pydantic import BaseModel

from linka.config import Settings, get_settings
from linka.errors import SESSION_UNAUTHORIZED_DETAIL

# Session tokens are issued by the external auth provider; this service only verifies them
oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/token", auto_error=False)


# ─────────────────────────────────────────────────────────────────────────────
# Models
# ─────────────────────────────────────────────────────────────────────────────
class TokenData(BaseModel):
    user_id: Optional[str] = None
    role: Optional[str] = None


# ─────────────────────────────────────────────────────────────────────────────
# Utilities
# ─────────────────────────────────────────────────────────────────────────────
def decode_session_token(token: str, settings: Settings) -> TokenData:
    """Verify signature/expiry and extract the user id. Raises InvalidTokenError."""
    options = {"verify_aud": settings.jwt_audience is not None}
    payload = jwt.decode(
        token,
        settings.jwt_secret,
        algorithms=[settings.jwt_algorithm],
        audience=settings.jwt_audience,
        options=options,
    )
    user_id = payload.get("sub")
    if not user_id:
        raise InvalidTokenError("Token has no subject")
    return TokenData(user_id=str(user_id), role=payload.get("role"))


# ─────────────────────────────────────────────────────────────────────────────
# Dependencies
# ─────────────────────────────────────────────────────────────────────────────
async def get_current_user(
    token: Annotated[Optional[str], Depends(oauth2_scheme)],
    settings: Annotated[Settings, Depends(get_settings)],
) -> TokenData:
    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=SESSION_UNAUTHORIZED_DETAIL,
        headers={"WWW-Authenticate": "Bearer"},
    )
    if not token:
        raise credentials_exception
    try:
        return decode_session_token(token, settings)
    except InvalidTokenError:
        raise credentials_exception
