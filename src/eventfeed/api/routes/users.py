"""User profile route. A user may only read their own profile."""
from fastapi import APIRouter, Depends, Request

from eventfeed.api.errors import ApiError
from eventfeed.api.security import get_current_user
from eventfeed.remote.schemas import ApiUser

router = APIRouter()


@router.get("/{user_id}", response_model=ApiUser)
def get_user_profile(user_id: str, request: Request, current_user=Depends(get_current_user)):
    if user_id != current_user.id:
        raise ApiError(403, "Forbidden", "You can only access your own profile")
    user = request.app.state.store.get_user_by_id(user_id)
    if user is None:
        raise ApiError(404, "User not found", "The requested user does not exist")
    return ApiUser.from_user(user)
