"""Password hashing (bcrypt) and bearer tokens (python-jose, HS256) for the demo backend."""
from datetime import datetime, timedelta
from typing import Dict, Optional

import bcrypt
from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError, jwt

from eventfeed.api.errors import ApiError

ALGORITHM = "HS256"

bearer_scheme = HTTPBearer(auto_error=False)


def hash_password(password: str, rounds: int = 12) -> str:
    return bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt(rounds)).decode("utf-8")


def verify_password(plain_password: str, hashed_password: str) -> bool:
    try:
        return bcrypt.checkpw(plain_password.encode("utf-8"), hashed_password.encode("utf-8"))
    except ValueError:
        return False


def create_access_token(user_id: str, username: str, secret: str, ttl_minutes: int) -> str:
    expire = datetime.utcnow() + timedelta(minutes=ttl_minutes)
    claims = {"sub": user_id, "username": username, "exp": expire, "type": "access"}
    return jwt.encode(claims, secret, algorithm=ALGORITHM)


def decode_access_token(token: str, secret: str) -> Dict:
    """
    Validate signature, expiry and token type.

    Raises:
        ApiError(401): anything wrong with the token.
    """
    try:
        payload = jwt.decode(token, secret, algorithms=[ALGORITHM])
    except JWTError as exc:
        raise ApiError(401, "Invalid token", str(exc)) from exc
    if payload.get("type") != "access" or not payload.get("sub"):
        raise ApiError(401, "Invalid token", "Token is not an access token")
    return payload


def get_current_user(
    request: Request,
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
):
    """FastAPI dependency: the DemoUser behind the bearer token, or 401."""
    if credentials is None:
        raise ApiError(401, "Unauthorized", "Authorization header with a Bearer token is required")

    payload = decode_access_token(credentials.credentials, request.app.state.settings.backend_jwt_secret)
    user = request.app.state.store.get_user_by_id(payload["sub"])
    if user is None:
        raise ApiError(401, "Invalid token", "User no longer exists")
    return user
