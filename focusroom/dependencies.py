from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.ext.asyncio import AsyncSession

from focusroom.database import get_db
from focusroom.models.user import User
from focusroom.services import auth_service

bearer_scheme = HTTPBearer(auto_error=False)


async def user_from_token(db: AsyncSession, token: str) -> User:
    """Resolve an access token into the calling user, or raise ValueError."""
    user_id = auth_service.decode_token(token, "access")
    user = await db.get(User, user_id)
    if user is None:
        raise ValueError("User no longer exists")
    return user


async def get_current_user(
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
    db: AsyncSession = Depends(get_db),
) -> User:
    if credentials is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
            headers={"WWW-Authenticate": "Bearer"},
        )
    try:
        return await user_from_token(db, credentials.credentials)
    except ValueError as e:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=str(e),
            headers={"WWW-Authenticate": "Bearer"},
        )
