import logging
import uuid
from collections.abc import Callable
from datetime import datetime, timezone

from sqlalchemy import delete, select, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from focusroom.config import settings
from focusroom.errors import (
    ConcurrentModification,
    IllegalTransition,
    InvalidDuration,
    PermissionDenied,
    SessionClosed,
    SessionNotFound,
    SessionNotJoinable,
    UserNotFound,
    ValidationError,
)
from focusroom.models.session import FocusSession, SessionOutcome, SessionStatus
from focusroom.models.session_participant import SessionParticipant
from focusroom.models.user import User
from focusroom.models.violation import Violation
from focusroom.services import room_code_service
from focusroom.services.violation_classifier import (
    ViolationCategory,
    classify,
    failure_reason,
)

logger = logging.getLogger(__name__)

EARLY_END_REASON = "Session ended early"
MAX_DURATION_MINUTES = 24 * 60
# Upper bound of the integer columns holding durations
MAX_VIOLATION_SECONDS = 2**31 - 1
MAX_REASON_LENGTH = 255

# Returns the column values to write, or None when the operation is a no-op
Decision = Callable[[FocusSession], dict | None]


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: datetime) -> datetime:
    """SQLite returns naive datetimes; they are stored as UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


async def get_session(db: AsyncSession, session_id: uuid.UUID) -> FocusSession:
    result = await db.execute(
        select(FocusSession)
        .where(FocusSession.id == session_id)
        .options(
            selectinload(FocusSession.participant_links),
            selectinload(FocusSession.violations),
        )
        .execution_options(populate_existing=True)
    )
    session = result.scalar_one_or_none()
    if session is None:
        raise SessionNotFound()
    return session


def require_participant(session: FocusSession, user_id: uuid.UUID) -> None:
    if user_id not in session.participants:
        raise PermissionDenied("Not a participant of this session")


def require_host(session: FocusSession, user_id: uuid.UUID) -> None:
    if session.host_id != user_id:
        raise PermissionDenied("Only the host can do this")


def elapsed_seconds(session: FocusSession, now: datetime | None = None) -> float:
    """Tracked time since start, frozen at end_time once the session ended."""
    if session.start_time is None:
        return 0.0
    until = session.end_time or now or utcnow()
    return max(0.0, (as_utc(until) - as_utc(session.start_time)).total_seconds())


def target_reached(session: FocusSession, now: datetime | None = None) -> bool:
    return elapsed_seconds(session, now) >= session.duration * 60


def _ensure_open(session: FocusSession) -> None:
    if session.is_closed:
        raise SessionClosed(f"Session is already {session.status}")


def _ensure_active(session: FocusSession) -> None:
    _ensure_open(session)
    if session.status != SessionStatus.ACTIVE:
        raise IllegalTransition("Session is not active")


def _not_before(now: datetime, earlier: datetime | None) -> datetime:
    if earlier is not None and as_utc(earlier) > now:
        return as_utc(earlier)
    return now


async def _compare_and_set(db: AsyncSession, session: FocusSession, values: dict) -> bool:
    result = await db.execute(
        update(FocusSession)
        .where(FocusSession.id == session.id, FocusSession.version == session.version)
        .values(version=session.version + 1, **values)
        .execution_options(synchronize_session=False)
    )
    return result.rowcount == 1


async def _apply(
    db: AsyncSession,
    session_id: uuid.UUID,
    decide: Decision,
    *,
    retry: bool = True,
    expected_version: int | None = None,
) -> tuple[FocusSession, bool]:
    """Atomic read-modify-write of a single session row.

    ``decide`` validates the snapshot and returns the columns to write. The
    write only lands if the row still carries the version the decision was
    made on; re-evaluable operations re-read and try again, host decisions
    (``retry=False``) fail with ConcurrentModification instead.

    Returns the snapshot the decision was made on and whether a write landed.
    """
    attempts = settings.TRANSITION_MAX_ATTEMPTS if retry else 1
    for attempt in range(1, attempts + 1):
        session = await get_session(db, session_id)
        if expected_version is not None and session.version != expected_version:
            _ensure_open(session)
            raise ConcurrentModification()

        values = decide(session)
        if values is None:
            return session, False
        if await _compare_and_set(db, session, values):
            return session, True

        logger.warning(
            "Version conflict on session %s (attempt %d/%d)", session_id, attempt, attempts
        )

    raise ConcurrentModification()


async def _ensure_users_exist(db: AsyncSession, user_ids: list[uuid.UUID]) -> None:
    result = await db.execute(select(User.id).where(User.id.in_(user_ids)))
    found = set(result.scalars().all())
    missing = [uid for uid in user_ids if uid not in found]
    if missing:
        raise UserNotFound(f"User not found: {missing[0]}")


def _next_position(session: FocusSession) -> int:
    return max((link.position for link in session.participant_links), default=-1) + 1


def _ended(session: FocusSession, now: datetime, outcome: str, fail_reason: str | None) -> dict:
    return {
        "status": SessionStatus.ENDED,
        "outcome": outcome,
        "fail_reason": fail_reason if outcome == SessionOutcome.FAILED else None,
        "end_time": _not_before(now, session.start_time),
    }


# --- Formation ---


async def create_session(
    db: AsyncSession,
    host_id: uuid.UUID,
    participant_ids: list[uuid.UUID],
    duration: int,
) -> FocusSession:
    if (
        isinstance(duration, bool)
        or not isinstance(duration, int)
        or not 0 < duration <= MAX_DURATION_MINUTES
    ):
        raise InvalidDuration()

    members = [host_id]
    for user_id in participant_ids:
        if user_id not in members:
            members.append(user_id)
    await _ensure_users_exist(db, members)

    code = await room_code_service.allocate(db)
    now = utcnow()
    session = FocusSession(
        id=uuid.uuid4(),
        room_code=code,
        host_id=host_id,
        status=SessionStatus.PENDING,
        duration=duration,
        version=1,
        violation_seq=0,
        created_at=now,
    )
    db.add(session)
    for position, user_id in enumerate(members):
        db.add(SessionParticipant(
            session_id=session.id,
            user_id=user_id,
            position=position,
            joined_at=now,
        ))
    await db.flush()

    logger.info("Session %s created by %s with room code %s", session.id, host_id, code)
    return await get_session(db, session.id)


async def _add_member(
    db: AsyncSession, session_id: uuid.UUID, user_id: uuid.UUID, host_id: uuid.UUID | None = None
) -> FocusSession:
    def decide(session: FocusSession) -> dict | None:
        _ensure_open(session)
        if host_id is not None:
            require_host(session, host_id)
        if session.status != SessionStatus.PENDING:
            raise SessionNotJoinable()
        if user_id in session.participants:
            return None
        return {}

    session, changed = await _apply(db, session_id, decide)
    if changed:
        db.add(SessionParticipant(
            session_id=session.id,
            user_id=user_id,
            position=_next_position(session),
            joined_at=utcnow(),
        ))
        await db.flush()
        logger.info("User %s joined session %s", user_id, session_id)

    return await get_session(db, session_id)


async def join_session(db: AsyncSession, code: str, user_id: uuid.UUID) -> FocusSession:
    session_id = await room_code_service.resolve(db, code)
    return await _add_member(db, session_id, user_id)


async def add_participant(
    db: AsyncSession, session_id: uuid.UUID, host_id: uuid.UUID, user_id: uuid.UUID
) -> FocusSession:
    """Direct invite by the host, same rules as joining by code."""
    await _ensure_users_exist(db, [user_id])
    return await _add_member(db, session_id, user_id, host_id=host_id)


async def leave_session(
    db: AsyncSession, session_id: uuid.UUID, user_id: uuid.UUID
) -> FocusSession:
    def decide(session: FocusSession) -> dict | None:
        _ensure_open(session)
        if user_id == session.host_id:
            raise PermissionDenied("The host cannot leave, cancel the session instead")
        if session.status != SessionStatus.PENDING:
            raise IllegalTransition("Cannot leave a session that has already started")
        if user_id not in session.participants:
            return None
        return {}

    session, changed = await _apply(db, session_id, decide)
    if changed:
        await db.execute(
            delete(SessionParticipant).where(
                SessionParticipant.session_id == session_id,
                SessionParticipant.user_id == user_id,
            )
        )
        logger.info("User %s left session %s", user_id, session_id)

    return await get_session(db, session_id)


async def cancel_session(
    db: AsyncSession,
    session_id: uuid.UUID,
    user_id: uuid.UUID,
    expected_version: int | None = None,
) -> FocusSession:
    def decide(session: FocusSession) -> dict:
        _ensure_open(session)
        require_host(session, user_id)
        if session.status != SessionStatus.PENDING:
            raise IllegalTransition("Only a pending session can be cancelled")
        return {"status": SessionStatus.CANCELLED}

    await _apply(db, session_id, decide, retry=False, expected_version=expected_version)
    logger.info("Session %s cancelled by host", session_id)
    return await get_session(db, session_id)


async def start_session(
    db: AsyncSession,
    session_id: uuid.UUID,
    user_id: uuid.UUID,
    expected_version: int | None = None,
) -> FocusSession:
    def decide(session: FocusSession) -> dict:
        _ensure_open(session)
        require_host(session, user_id)
        if session.status != SessionStatus.PENDING:
            raise IllegalTransition("Only a pending session can be started")
        return {
            "status": SessionStatus.ACTIVE,
            "start_time": _not_before(utcnow(), session.created_at),
        }

    await _apply(db, session_id, decide, retry=False, expected_version=expected_version)
    logger.info("Session %s started", session_id)
    return await get_session(db, session_id)


# --- Tracking ---


async def record_violation(
    db: AsyncSession,
    session_id: uuid.UUID,
    user_id: uuid.UUID,
    duration_seconds: int,
    violation_type: str,
) -> tuple[Violation, bool]:
    """Append a violation and report whether it was catastrophic.

    Never ends the session itself; the caller follows up with
    terminate_session when the result is catastrophic.
    """
    category = classify(duration_seconds)
    if duration_seconds > MAX_VIOLATION_SECONDS:
        raise ValidationError("Violation duration is out of range")

    def decide(session: FocusSession) -> dict:
        _ensure_active(session)
        require_participant(session, user_id)
        return {"violation_seq": session.violation_seq + 1}

    session, _ = await _apply(db, session_id, decide)
    violation = Violation(
        session_id=session.id,
        user_id=user_id,
        seq=session.violation_seq + 1,
        timestamp=utcnow(),
        type=violation_type,
        duration_seconds=duration_seconds,
    )
    db.add(violation)
    await db.flush()

    catastrophic = category is ViolationCategory.CATASTROPHIC
    if catastrophic:
        logger.warning(
            "Catastrophic violation in session %s by %s (%ds away)",
            session_id, user_id, duration_seconds,
        )
    return violation, catastrophic


# --- Terminal transitions ---


async def end_session_early(
    db: AsyncSession,
    session_id: uuid.UUID,
    user_id: uuid.UUID,
    reason: str | None = None,
    now: datetime | None = None,
) -> FocusSession:
    if reason is not None and len(reason) > MAX_REASON_LENGTH:
        raise ValidationError(f"Reason exceeds {MAX_REASON_LENGTH} characters")
    now = now or utcnow()

    def decide(session: FocusSession) -> dict:
        _ensure_active(session)
        require_participant(session, user_id)
        if not target_reached(session, now):
            return _ended(session, now, SessionOutcome.FAILED, reason or EARLY_END_REASON)
        budget_reason = failure_reason(session.violations)
        if budget_reason is None:
            return _ended(session, now, SessionOutcome.SUCCESSFUL, None)
        return _ended(session, now, SessionOutcome.FAILED, reason or budget_reason)

    await _apply(db, session_id, decide)
    session = await get_session(db, session_id)
    logger.info("Session %s ended by %s: %s", session_id, user_id, session.outcome)
    return session


async def auto_complete(
    db: AsyncSession, session_id: uuid.UUID, now: datetime | None = None
) -> FocusSession:
    now = now or utcnow()

    def decide(session: FocusSession) -> dict:
        _ensure_active(session)
        if not target_reached(session, now):
            raise IllegalTransition("Target duration has not been reached yet")
        budget_reason = failure_reason(session.violations)
        if budget_reason is None:
            return _ended(session, now, SessionOutcome.SUCCESSFUL, None)
        return _ended(session, now, SessionOutcome.FAILED, budget_reason)

    await _apply(db, session_id, decide)
    session = await get_session(db, session_id)
    logger.info("Session %s completed: %s", session_id, session.outcome)
    return session


async def terminate_session(
    db: AsyncSession, session_id: uuid.UUID, cause: str
) -> FocusSession:
    """Force a failed end, overriding any success computation."""
    cause = (cause or "").strip()
    if not cause:
        raise ValidationError("A termination cause is required")
    if len(cause) > MAX_REASON_LENGTH:
        raise ValidationError(f"Termination cause exceeds {MAX_REASON_LENGTH} characters")

    def decide(session: FocusSession) -> dict:
        _ensure_active(session)
        return _ended(session, utcnow(), SessionOutcome.FAILED, cause)

    await _apply(db, session_id, decide)
    logger.warning("Session %s terminated: %s", session_id, cause)
    return await get_session(db, session_id)
