from fastapi import APIRouter, Depends

from app.features.auth.dependencies.auth import get_current_user
from app.features.auth.models.user import User
from app.features.auth.schemas.auth import UserResponse
from app.platform.response import api_response

router = APIRouter(prefix="/users", tags=["Users"])


@router.get("/me", response_model=dict, summary="Current user profile")
async def get_me(current_user: User = Depends(get_current_user)):
    return api_response(
        data={"user": UserResponse.model_validate(current_user)},
        message="User profile retrieved successfully",
    )
