import asyncio
import logging
import uuid

from fastapi import APIRouter, Depends, Query, Request, WebSocket, WebSocketDisconnect, status
from sqlalchemy.ext.asyncio import AsyncSession

from focusroom import database
from focusroom.database import get_db
from focusroom.dependencies import get_current_user, user_from_token
from focusroom.errors import FocusRoomError
from focusroom.models.session import FocusSession, SessionStatus
from focusroom.models.user import User
from focusroom.schemas.session import (
    EndRequest,
    HostTransition,
    JoinRequest,
    ParticipantAdd,
    RoomCodeLookup,
    SessionCreate,
    SessionResponse,
    TerminateRequest,
    ViolationCreate,
    ViolationRecorded,
)
from focusroom.schemas.stats import SessionReport
from focusroom.services import directory_service, session_feed, session_service, stats_service

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/sessions", tags=["sessions"])


def _snapshot(session: FocusSession) -> dict:
    return SessionResponse.model_validate(session).model_dump(mode="json")


async def _commit_and_publish(req: Request, db: AsyncSession, session: FocusSession) -> FocusSession:
    """Finalize stats on ended sessions, commit, then push the new snapshot."""
    if session.status == SessionStatus.ENDED:
        await stats_service.finalize_session(db, session)
    await db.commit()

    redis_client = getattr(req.app.state, "redis", None)
    if redis_client is not None:
        await session_feed.publish(redis_client, _snapshot(session))
    return session


async def _participant_session(
    db: AsyncSession, session_id: uuid.UUID, user: User
) -> FocusSession:
    session = await session_service.get_session(db, session_id)
    session_service.require_participant(session, user.id)
    return session


@router.post("", response_model=SessionResponse, status_code=201)
async def create_session(
    data: SessionCreate,
    req: Request,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    session = await session_service.create_session(
        db, user.id, data.participant_ids, data.duration
    )
    return await _commit_and_publish(req, db, session)


@router.get("", response_model=list[SessionResponse])
async def list_sessions(
    limit: int = Query(default=50, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    return await directory_service.list_user_sessions(db, user.id, limit=limit, offset=offset)


@router.get("/current", response_model=SessionResponse | None)
async def current_session(
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    return await directory_service.get_open_session(db, user.id)


@router.get("/lookup/{room_code}", response_model=RoomCodeLookup)
async def lookup_room_code(
    room_code: str,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    session_id = await directory_service.resolve_room_code(db, room_code)
    return RoomCodeLookup(session_id=session_id)


@router.post("/join", response_model=SessionResponse)
async def join_session(
    data: JoinRequest,
    req: Request,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    session = await session_service.join_session(db, data.room_code, user.id)
    return await _commit_and_publish(req, db, session)


@router.get("/{session_id}", response_model=SessionResponse)
async def get_session(
    session_id: uuid.UUID,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    return await _participant_session(db, session_id, user)


@router.post("/{session_id}/participants", response_model=SessionResponse)
async def add_participant(
    session_id: uuid.UUID,
    data: ParticipantAdd,
    req: Request,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    session = await session_service.add_participant(db, session_id, user.id, data.user_id)
    return await _commit_and_publish(req, db, session)


@router.post("/{session_id}/leave", response_model=SessionResponse)
async def leave_session(
    session_id: uuid.UUID,
    req: Request,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    session = await session_service.leave_session(db, session_id, user.id)
    return await _commit_and_publish(req, db, session)


@router.post("/{session_id}/cancel", response_model=SessionResponse)
async def cancel_session(
    session_id: uuid.UUID,
    req: Request,
    data: HostTransition | None = None,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    session = await session_service.cancel_session(
        db, session_id, user.id,
        expected_version=data.expected_version if data else None,
    )
    return await _commit_and_publish(req, db, session)


@router.post("/{session_id}/start", response_model=SessionResponse)
async def start_session(
    session_id: uuid.UUID,
    req: Request,
    data: HostTransition | None = None,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    session = await session_service.start_session(
        db, session_id, user.id,
        expected_version=data.expected_version if data else None,
    )
    return await _commit_and_publish(req, db, session)


@router.post("/{session_id}/violations", response_model=ViolationRecorded, status_code=201)
async def record_violation(
    session_id: uuid.UUID,
    data: ViolationCreate,
    req: Request,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    violation, catastrophic = await session_service.record_violation(
        db, session_id, user.id, data.duration_seconds, data.type
    )
    if catastrophic and data.auto_terminate:
        minutes = data.duration_seconds // 60
        await session_service.terminate_session(
            db, session_id,
            f"Catastrophic violation by {user.username} ({minutes} minutes away)",
        )

    session = await session_service.get_session(db, session_id)
    await _commit_and_publish(req, db, session)
    return {"violation": violation, "catastrophic": catastrophic, "session": session}


@router.post("/{session_id}/end", response_model=SessionResponse)
async def end_session(
    session_id: uuid.UUID,
    req: Request,
    data: EndRequest | None = None,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    session = await session_service.end_session_early(
        db, session_id, user.id, reason=data.reason if data else None
    )
    return await _commit_and_publish(req, db, session)


@router.post("/{session_id}/complete", response_model=SessionResponse)
async def complete_session(
    session_id: uuid.UUID,
    req: Request,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    await _participant_session(db, session_id, user)
    session = await session_service.auto_complete(db, session_id)
    return await _commit_and_publish(req, db, session)


@router.post("/{session_id}/terminate", response_model=SessionResponse)
async def terminate_session(
    session_id: uuid.UUID,
    data: TerminateRequest,
    req: Request,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    await _participant_session(db, session_id, user)
    session = await session_service.terminate_session(db, session_id, data.cause)
    return await _commit_and_publish(req, db, session)


@router.get("/{session_id}/report", response_model=SessionReport)
async def session_report(
    session_id: uuid.UUID,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    session = await session_service.get_session(db, session_id)
    return await stats_service.build_report(db, session, user.id)


async def _forward(websocket: WebSocket, feed: session_feed.SessionSubscription) -> None:
    """Send snapshots until the session reaches a closed state."""
    async for snapshot in feed:
        await websocket.send_json(snapshot)
        if snapshot["status"] in SessionStatus.CLOSED:
            return


async def _wait_for_disconnect(websocket: WebSocket) -> None:
    # Clients only listen; anything they send is ignored
    while True:
        message = await websocket.receive()
        if message["type"] == "websocket.disconnect":
            return


@router.websocket("/{session_id}/live")
async def live_session(
    websocket: WebSocket,
    session_id: uuid.UUID,
    token: str = Query(...),
):
    """Push the session snapshot on connect and after every mutation.

    The feed ends when the client hangs up or once a closed snapshot has been
    sent. Database sessions are only held while authenticating and loading a
    snapshot, never for the lifetime of the connection.
    """
    try:
        async with database.async_session() as db:
            user = await user_from_token(db, token)
            await _participant_session(db, session_id, user)
    except (ValueError, FocusRoomError):
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
        return

    await websocket.accept()

    async def load_snapshot() -> dict:
        async with database.async_session() as db:
            return _snapshot(await session_service.get_session(db, session_id))

    async with session_feed.SessionSubscription(
        websocket.app.state.redis, session_id, load_snapshot
    ) as feed:
        forward = asyncio.create_task(_forward(websocket, feed))
        hang_up = asyncio.create_task(_wait_for_disconnect(websocket))
        done, pending = await asyncio.wait(
            {forward, hang_up}, return_when=asyncio.FIRST_COMPLETED
        )
        for task in pending:
            task.cancel()
        await asyncio.gather(*pending, return_exceptions=True)

    client_left = hang_up in done
    if forward in done:
        try:
            forward.result()
        except WebSocketDisconnect:
            client_left = True
    if client_left:
        logger.info("Live feed for session %s closed by client", session_id)
        return
    await websocket.close(code=status.WS_1000_NORMAL_CLOSURE)
