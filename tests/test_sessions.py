import json
import uuid
from datetime import datetime, timedelta

import pytest

from focusroom.services import session_service
from focusroom.services.session_feed import channel_for


async def _create(client, duration=25, participant_ids=()):
    response = await client.post("/sessions", json={
        "duration": duration,
        "participant_ids": [str(pid) for pid in participant_ids],
    })
    assert response.status_code == 201
    return response.json()


async def _active(client, **kwargs):
    session = await _create(client, **kwargs)
    response = await client.post(f"/sessions/{session['id']}/start")
    assert response.status_code == 200
    return response.json()


@pytest.mark.asyncio
async def test_create_session(client, test_user):
    data = await _create(client)

    assert data["status"] == "pending"
    assert data["host_id"] == str(test_user.id)
    assert data["participants"] == [str(test_user.id)]
    assert data["violations"] == []
    assert data["outcome"] is None
    assert data["version"] == 1
    assert len(data["room_code"]) == 6


@pytest.mark.asyncio
async def test_create_session_invalid_duration(client):
    response = await client.post("/sessions", json={"duration": 0})
    assert response.status_code == 400
    assert response.json()["type"] == "InvalidDuration"


@pytest.mark.asyncio
async def test_create_session_oversized_duration(client):
    response = await client.post("/sessions", json={"duration": 100000})
    assert response.status_code == 400
    assert response.json()["type"] == "InvalidDuration"


@pytest.mark.asyncio
async def test_create_session_unknown_participant(client):
    response = await client.post("/sessions", json={
        "duration": 25,
        "participant_ids": [str(uuid.uuid4())],
    })
    assert response.status_code == 404


@pytest.mark.asyncio
async def test_create_publishes_snapshot(client, fake_redis):
    data = await _create(client)

    channel, message = fake_redis.published[-1]
    assert channel == channel_for(data["id"])
    assert json.loads(message)["room_code"] == data["room_code"]


@pytest.mark.asyncio
async def test_join_by_room_code(client, act_as, second_user):
    session = await _create(client)

    act_as(second_user)
    response = await client.post("/sessions/join", json={"room_code": session["room_code"]})

    assert response.status_code == 200
    assert response.json()["participants"] == [session["host_id"], str(second_user.id)]


@pytest.mark.asyncio
async def test_join_accepts_formatted_code(client, act_as, second_user):
    session = await _create(client)
    code = session["room_code"]

    act_as(second_user)
    response = await client.post("/sessions/join", json={"room_code": f"{code[:3]} {code[3:]}"})
    assert response.status_code == 200


@pytest.mark.asyncio
async def test_join_malformed_code(client):
    response = await client.post("/sessions/join", json={"room_code": "12ab"})
    assert response.status_code == 400


@pytest.mark.asyncio
async def test_join_unknown_code(client):
    response = await client.post("/sessions/join", json={"room_code": "000000"})
    assert response.status_code == 404


@pytest.mark.asyncio
async def test_join_started_session(client, act_as, second_user):
    session = await _active(client)

    act_as(second_user)
    response = await client.post("/sessions/join", json={"room_code": session["room_code"]})
    assert response.status_code == 409
    assert response.json()["type"] == "SessionNotJoinable"


@pytest.mark.asyncio
async def test_lookup_room_code(client):
    session = await _create(client)

    response = await client.get(f"/sessions/lookup/{session['room_code']}")
    assert response.status_code == 200
    assert response.json()["session_id"] == session["id"]


@pytest.mark.asyncio
async def test_get_session_requires_membership(client, act_as, second_user):
    session = await _create(client)

    act_as(second_user)
    response = await client.get(f"/sessions/{session['id']}")
    assert response.status_code == 403


@pytest.mark.asyncio
async def test_get_nonexistent_session(client):
    response = await client.get(f"/sessions/{uuid.uuid4()}")
    assert response.status_code == 404


@pytest.mark.asyncio
async def test_host_adds_participant(client, second_user):
    session = await _create(client)

    response = await client.post(
        f"/sessions/{session['id']}/participants", json={"user_id": str(second_user.id)}
    )
    assert response.status_code == 200
    assert str(second_user.id) in response.json()["participants"]


@pytest.mark.asyncio
async def test_leave_pending_session(client, act_as, second_user):
    session = await _create(client, participant_ids=[second_user.id])

    act_as(second_user)
    response = await client.post(f"/sessions/{session['id']}/leave")
    assert response.status_code == 200
    assert response.json()["participants"] == [session["host_id"]]


@pytest.mark.asyncio
async def test_host_cannot_leave(client):
    session = await _create(client)

    response = await client.post(f"/sessions/{session['id']}/leave")
    assert response.status_code == 403


@pytest.mark.asyncio
async def test_cancel_session(client):
    session = await _create(client)

    response = await client.post(f"/sessions/{session['id']}/cancel")
    assert response.status_code == 200
    assert response.json()["status"] == "cancelled"


@pytest.mark.asyncio
async def test_cancel_with_stale_version(client, act_as, test_user, second_user):
    session = await _create(client)

    act_as(second_user)
    await client.post("/sessions/join", json={"room_code": session["room_code"]})

    act_as(test_user)
    response = await client.post(
        f"/sessions/{session['id']}/cancel", json={"expected_version": session["version"]}
    )
    assert response.status_code == 409
    assert response.json()["type"] == "ConcurrentModification"


@pytest.mark.asyncio
async def test_only_host_starts(client, act_as, second_user):
    session = await _create(client, participant_ids=[second_user.id])

    act_as(second_user)
    response = await client.post(f"/sessions/{session['id']}/start")
    assert response.status_code == 403


@pytest.mark.asyncio
async def test_start_twice(client):
    session = await _active(client)

    response = await client.post(f"/sessions/{session['id']}/start")
    assert response.status_code == 409


@pytest.mark.asyncio
async def test_record_violation(client):
    session = await _active(client)

    response = await client.post(
        f"/sessions/{session['id']}/violations", json={"duration_seconds": 45}
    )
    assert response.status_code == 201
    data = response.json()
    assert data["catastrophic"] is False
    assert data["violation"]["category"] == "medium"
    assert data["violation"]["type"] == "left app"
    assert data["session"]["status"] == "active"
    assert len(data["session"]["violations"]) == 1


@pytest.mark.asyncio
async def test_negative_violation_rejected(client):
    session = await _active(client)

    response = await client.post(
        f"/sessions/{session['id']}/violations", json={"duration_seconds": -3}
    )
    assert response.status_code == 400


@pytest.mark.asyncio
async def test_oversized_violation_rejected(client):
    session = await _active(client)

    response = await client.post(
        f"/sessions/{session['id']}/violations", json={"duration_seconds": 2**31}
    )
    assert response.status_code == 400


@pytest.mark.asyncio
async def test_violation_on_pending_session(client):
    session = await _create(client)

    response = await client.post(
        f"/sessions/{session['id']}/violations", json={"duration_seconds": 10}
    )
    assert response.status_code == 409


@pytest.mark.asyncio
async def test_catastrophic_violation_terminates(client):
    session = await _active(client)

    response = await client.post(
        f"/sessions/{session['id']}/violations", json={"duration_seconds": 310}
    )
    assert response.status_code == 201
    data = response.json()
    assert data["catastrophic"] is True
    assert data["session"]["status"] == "ended"
    assert data["session"]["outcome"] == "failed"
    assert data["session"]["fail_reason"] == "Catastrophic violation by host (5 minutes away)"

    again = await client.post(
        f"/sessions/{session['id']}/violations", json={"duration_seconds": 5}
    )
    assert again.status_code == 409
    assert again.json()["type"] == "SessionClosed"


@pytest.mark.asyncio
async def test_catastrophic_violation_without_auto_terminate(client):
    session = await _active(client)

    response = await client.post(
        f"/sessions/{session['id']}/violations",
        json={"duration_seconds": 400, "auto_terminate": False},
    )
    data = response.json()
    assert data["catastrophic"] is True
    assert data["session"]["status"] == "active"


@pytest.mark.asyncio
async def test_end_session_early(client):
    session = await _active(client)

    response = await client.post(f"/sessions/{session['id']}/end", json={"reason": "Meeting"})
    assert response.status_code == 200
    data = response.json()
    assert data["status"] == "ended"
    assert data["outcome"] == "failed"
    assert data["fail_reason"] == "Meeting"


@pytest.mark.asyncio
async def test_complete_before_target(client):
    session = await _active(client)

    response = await client.post(f"/sessions/{session['id']}/complete")
    assert response.status_code == 409


@pytest.mark.asyncio
async def test_complete_after_target(client, monkeypatch):
    session = await _active(client, duration=25)
    start = session_service.as_utc(datetime.fromisoformat(session["start_time"]))
    monkeypatch.setattr(session_service, "utcnow", lambda: start + timedelta(minutes=25))

    response = await client.post(f"/sessions/{session['id']}/complete")
    assert response.status_code == 200
    data = response.json()
    assert data["status"] == "ended"
    assert data["outcome"] == "successful"
    assert data["fail_reason"] is None


@pytest.mark.asyncio
async def test_terminate_session(client):
    session = await _active(client)

    response = await client.post(
        f"/sessions/{session['id']}/terminate", json={"cause": "Lost connection"}
    )
    assert response.status_code == 200
    assert response.json()["fail_reason"] == "Lost connection"


@pytest.mark.asyncio
async def test_list_sessions_newest_first(client):
    first = await _create(client)
    await client.post(f"/sessions/{first['id']}/cancel")
    second = await _create(client)

    response = await client.get("/sessions")
    assert response.status_code == 200
    assert [s["id"] for s in response.json()] == [second["id"], first["id"]]


@pytest.mark.asyncio
async def test_list_sessions_pagination(client):
    for _ in range(3):
        session = await _create(client)
        await client.post(f"/sessions/{session['id']}/cancel")

    response = await client.get("/sessions?limit=2&offset=0")
    assert response.status_code == 200
    assert len(response.json()) == 2


@pytest.mark.asyncio
async def test_current_session(client):
    response = await client.get("/sessions/current")
    assert response.status_code == 200
    assert response.json() is None

    session = await _active(client)
    response = await client.get("/sessions/current")
    assert response.json()["id"] == session["id"]
