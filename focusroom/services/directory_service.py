import uuid

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from focusroom.config import settings
from focusroom.models.session import FocusSession, SessionStatus
from focusroom.models.session_participant import SessionParticipant
from focusroom.services import room_code_service


def _sessions_for(user_id: uuid.UUID):
    return (
        select(FocusSession)
        .join(SessionParticipant, SessionParticipant.session_id == FocusSession.id)
        .where(SessionParticipant.user_id == user_id)
        .options(
            selectinload(FocusSession.participant_links),
            selectinload(FocusSession.violations),
        )
        .execution_options(populate_existing=True)
    )


async def list_user_sessions(
    db: AsyncSession,
    user_id: uuid.UUID,
    limit: int | None = None,
    offset: int = 0,
) -> list[FocusSession]:
    """Sessions the user participates in, newest first."""
    query = (
        _sessions_for(user_id)
        .order_by(FocusSession.created_at.desc())
        .limit(limit or settings.SESSION_HISTORY_LIMIT)
        .offset(offset)
    )
    result = await db.execute(query)
    return list(result.scalars().all())


async def get_open_session(db: AsyncSession, user_id: uuid.UUID) -> FocusSession | None:
    """The user's pending or active session, if any."""
    query = (
        _sessions_for(user_id)
        .where(FocusSession.status.in_([SessionStatus.PENDING, SessionStatus.ACTIVE]))
        .order_by(FocusSession.created_at.desc())
        .limit(1)
    )
    result = await db.execute(query)
    return result.scalars().first()


async def resolve_room_code(db: AsyncSession, code: str) -> uuid.UUID:
    return await room_code_service.resolve(db, code)
