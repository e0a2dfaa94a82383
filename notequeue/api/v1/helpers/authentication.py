"""
Bearer JWT authentication.

The token's "sub" claim is the user id. Accounts, sessions and OAuth live in
the surrounding application; this service only needs to know who is asking.
"""

from datetime import datetime, timedelta, timezone
import logging

from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError, jwt
from pydantic import BaseModel

from notequeue.config import settings
from notequeue.api.v1.helpers.responses import unauthorized_response

logger = logging.getLogger(__name__)

ALGORITHM = "HS256"
ACCESS_TOKEN_EXPIRE_MINUTES = 30
bearer_scheme = HTTPBearer(auto_error=False)


class AuthenticatedUser(BaseModel):
    user_id: str


def create_access_token(data: dict, expires_delta: timedelta | None = None) -> str:
    to_encode = data.copy()
    expire = datetime.now(timezone.utc) + (
        expires_delta or timedelta(minutes=ACCESS_TOKEN_EXPIRE_MINUTES)
    )
    to_encode.update({"exp": expire})
    return jwt.encode(to_encode, settings.secret_key, algorithm=ALGORITHM)


def decode_access_token(token: str) -> AuthenticatedUser:
    try:
        payload = jwt.decode(token, settings.secret_key, algorithms=[ALGORITHM])
    except JWTError as e:
        logger.debug(f"Rejected token: {e}")
        raise unauthorized_response("Invalid or expired token")

    user_id = payload.get("sub")
    if not user_id:
        raise unauthorized_response("No user id found in token")
    return AuthenticatedUser(user_id=str(user_id))


async def get_current_user(
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
) -> AuthenticatedUser:
    if credentials is None or not credentials.credentials:
        raise unauthorized_response()
    return decode_access_token(credentials.credentials)
