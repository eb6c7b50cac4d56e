from fastapi import APIRouter, Depends

from boltstore.core.auth import get_current_user
from boltstore.models.schemas import UserResponse

router = APIRouter()


@router.get("/me", response_model=UserResponse)
async def me(current_user: dict = Depends(get_current_user)) -> UserResponse:
    return UserResponse(**current_user)
