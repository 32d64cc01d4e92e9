"""Login route."""
import logging

from fastapi import APIRouter, Request

from eventfeed.api.errors import ApiError
from eventfeed.api.security import create_access_token, verify_password
from eventfeed.remote.schemas import ApiUser, LoginRequest, LoginResponse

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post("/login", response_model=LoginResponse)
def login(body: LoginRequest, request: Request):
    """Exchange username/password for a bearer token."""
    user = request.app.state.store.get_user_by_username(body.username)
    if user is None or not verify_password(body.password, user.password_hash):
        logger.info("Login failed - username: %s", body.username)
        raise ApiError(401, "Invalid credentials", "Username or password is incorrect")

    settings = request.app.state.settings
    token = create_access_token(
        user.id,
        user.username,
        secret=settings.backend_jwt_secret,
        ttl_minutes=settings.backend_token_ttl_minutes,
    )
    logger.info("Login successful - username: %s", user.username)
    return LoginResponse(token=token, user=ApiUser.from_user(user))
