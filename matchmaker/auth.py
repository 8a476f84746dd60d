from datetime import datetime, timedelta, timezone
from typing import Optional
from fastapi import Request, HTTPException, status
from jose import JWTError, jwt
from matchmaker.config import get_settings

settings = get_settings()

ALGORITHM = "HS256"
TOKEN_EXPIRE_DAYS = 30
COOKIE_NAME = "session_token"


def create_session_token(user_id: str) -> str:
    expire = datetime.now(timezone.utc) + timedelta(days=TOKEN_EXPIRE_DAYS)
    to_encode = {"exp": expire, "sub": user_id}
    return jwt.encode(to_encode, settings.secret_key, algorithm=ALGORITHM)


def verify_session_token(token: str) -> Optional[str]:
    """Return the profile id carried by a session token, or None if invalid."""
    try:
        payload = jwt.decode(token, settings.secret_key, algorithms=[ALGORITHM])
    except JWTError:
        return None
    user_id = payload.get("sub")
    return user_id if isinstance(user_id, str) and user_id else None


def _request_token(request: Request) -> Optional[str]:
    token = request.cookies.get(COOKIE_NAME)
    if token:
        return token
    authorization = request.headers.get("Authorization", "")
    scheme, _, credentials = authorization.partition(" ")
    if scheme.lower() == "bearer" and credentials:
        return credentials.strip()
    return None


async def get_current_user(request: Request) -> str:
    token = _request_token(request)
    user_id = verify_session_token(token) if token else None
    if not user_id:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
        )
    return user_id
