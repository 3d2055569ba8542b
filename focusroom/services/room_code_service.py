import logging
import re
import secrets
import uuid

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from focusroom.config import settings
from focusroom.errors import AllocationExhausted, InvalidRoomCode, SessionNotFound
from focusroom.models.session import FocusSession, SessionStatus

logger = logging.getLogger(__name__)

ROOM_CODE_LENGTH = 6
_ROOM_CODE_RE = re.compile(r"^\d{6}$")


def generate_code() -> str:
    """Random zero-padded 6-digit code, "000000" through "999999"."""
    return f"{secrets.randbelow(10 ** ROOM_CODE_LENGTH):0{ROOM_CODE_LENGTH}d}"


def normalize(code: str) -> str:
    """Strip whitespace and the "123 456" display separator, then validate."""
    cleaned = re.sub(r"[\s-]", "", code or "")
    if not _ROOM_CODE_RE.match(cleaned):
        raise InvalidRoomCode()
    return cleaned


async def is_available(db: AsyncSession, code: str) -> bool:
    """A code is taken only while its session is still pending."""
    result = await db.execute(
        select(FocusSession.id).where(
            FocusSession.room_code == code,
            FocusSession.status == SessionStatus.PENDING,
        )
    )
    return result.first() is None


async def allocate(db: AsyncSession, max_attempts: int | None = None) -> str:
    attempts = max_attempts or settings.ROOM_CODE_MAX_ATTEMPTS
    for attempt in range(1, attempts + 1):
        code = generate_code()
        if await is_available(db, code):
            return code
        logger.warning("Room code collision on attempt %d/%d", attempt, attempts)

    raise AllocationExhausted()


async def resolve(db: AsyncSession, code: str) -> uuid.UUID:
    """Find the session a room code points at.

    The pending owner wins; otherwise the most recent session that used the
    code, so a late join against a started or closed session is reported as
    such rather than as an unknown code.
    """
    code = normalize(code)
    result = await db.execute(
        select(FocusSession.id, FocusSession.status)
        .where(FocusSession.room_code == code)
        .order_by(FocusSession.created_at.desc())
    )
    rows = result.all()
    if not rows:
        raise SessionNotFound(f"No session found for room code {code}")

    for row in rows:
        if row.status == SessionStatus.PENDING:
            return row.id
    return rows[0].id
