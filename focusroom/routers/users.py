from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from focusroom.database import get_db
from focusroom.dependencies import get_current_user
from focusroom.models.user import User
from focusroom.schemas.stats import UserLookupResponse, UserProfileResponse
from focusroom.services import auth_service, stats_service

router = APIRouter(prefix="/users", tags=["users"])


@router.get("/me", response_model=UserProfileResponse)
async def get_me(
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Profile with lifetime stats, re-read so recent credits are visible."""
    return await stats_service.get_profile(db, user.id)


@router.get("/lookup", response_model=UserLookupResponse)
async def lookup_user(
    email: str = Query(min_length=3, max_length=255),
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Find a user to invite by email."""
    found = await auth_service.get_user_by_email(db, email)
    if found is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="User not found")
    return found
