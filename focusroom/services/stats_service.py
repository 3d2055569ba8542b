import logging
import uuid

from sqlalchemy import select, update
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.ext.asyncio import AsyncSession

from focusroom.errors import IllegalTransition, UserNotFound
from focusroom.models.session import FocusSession, SessionOutcome, SessionStatus
from focusroom.models.stats_credit import StatsCredit
from focusroom.models.user import User
from focusroom.services.session_service import (
    elapsed_seconds,
    require_participant,
    utcnow,
)
from focusroom.services.violation_classifier import (
    summarize_by_participant,
    total_violation_seconds,
)

logger = logging.getLogger(__name__)


async def get_profile(db: AsyncSession, user_id: uuid.UUID) -> User:
    result = await db.execute(
        select(User).where(User.id == user_id).execution_options(populate_existing=True)
    )
    user = result.scalar_one_or_none()
    if user is None:
        raise UserNotFound()
    return user


async def is_applied(db: AsyncSession, user_id: uuid.UUID, session_id: uuid.UUID) -> bool:
    result = await db.execute(
        select(StatsCredit.id).where(
            StatsCredit.user_id == user_id,
            StatsCredit.session_id == session_id,
        )
    )
    return result.first() is not None


def _insert_for(db: AsyncSession):
    """Dialect insert construct, for ON CONFLICT support."""
    if db.get_bind().dialect.name == "postgresql":
        return postgresql.insert
    return sqlite.insert


async def apply_outcome(db: AsyncSession, user_id: uuid.UUID, session: FocusSession) -> bool:
    """Fold a finalized session into one user's lifetime stats.

    Idempotent per (user, session): the StatsCredit row is the applied marker,
    inserted with ON CONFLICT DO NOTHING so that of two concurrent calls only
    one lands; the other is a no-op and returns False. Totals are bumped with
    column-relative updates rather than read-then-write.
    """
    if session.status != SessionStatus.ENDED:
        raise IllegalTransition("Stats are only applied to ended sessions")

    successful = session.outcome == SessionOutcome.SUCCESSFUL
    violation_count = sum(1 for v in session.violations if v.user_id == user_id)
    hours = session.duration / 60 if successful else 0.0

    credit = await db.execute(
        _insert_for(db)(StatsCredit.__table__)
        .values(
            id=uuid.uuid4(),
            user_id=user_id,
            session_id=session.id,
            outcome=session.outcome,
            violations=violation_count,
            hours=hours,
            applied_at=utcnow(),
        )
        .on_conflict_do_nothing(index_elements=["user_id", "session_id"])
    )
    if credit.rowcount != 1:
        return False

    values = {"violations": User.violations + violation_count}
    if successful:
        values["total_hours"] = User.total_hours + hours
        values["sessions_completed"] = User.sessions_completed + 1

    result = await db.execute(
        update(User)
        .where(User.id == user_id)
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        raise UserNotFound()

    logger.info(
        "Applied %s outcome of session %s to user %s (%d violations)",
        session.outcome, session.id, user_id, violation_count,
    )
    return True


async def finalize_session(db: AsyncSession, session: FocusSession) -> int:
    """Apply the outcome for every participant. Returns how many were credited now."""
    credited = 0
    for user_id in session.participants:
        if await apply_outcome(db, user_id, session):
            credited += 1
    return credited


async def build_report(db: AsyncSession, session: FocusSession, viewer_id: uuid.UUID) -> dict:
    require_participant(session, viewer_id)
    if session.status != SessionStatus.ENDED:
        raise IllegalTransition("Reports are only available for ended sessions")

    credited = await apply_outcome(db, viewer_id, session)
    breakdown = summarize_by_participant(session.violations)

    return {
        "session_id": session.id,
        "status": session.status,
        "outcome": session.outcome,
        "fail_reason": session.fail_reason,
        "duration": session.duration,
        "elapsed_seconds": int(elapsed_seconds(session)),
        "total_violations": len(session.violations),
        "total_violation_seconds": total_violation_seconds(session.violations),
        "participants": breakdown,
        "mvp_user_id": breakdown[0]["user_id"] if breakdown else None,
        "credited": credited,
    }
