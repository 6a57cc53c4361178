import pytest
from fastapi.testclient import TestClient
from starlette.websockets import WebSocket, WebSocketDisconnect

from app.core.exceptions import ForbiddenError
from app.core.realtime import RealtimeHub, conversation_channel
from app.schemas.chat import RealtimeEvent
from app.schemas.user import UserRole
from tests.conftest import as_user


async def test_publish_reaches_subscribers():
    hub = RealtimeHub()
    queue = hub.subscribe("conversation-1")

    delivered = await hub.publish("conversation-1", RealtimeEvent.MESSAGE_CREATED, {"id": "m1"})
    assert delivered == 1
    assert queue.get_nowait() == {
        "event": "message_created",
        "channel": "conversation-1",
        "payload": {"id": "m1"},
    }


async def test_publish_without_subscribers():
    hub = RealtimeHub()
    assert await hub.publish("conversation-2", RealtimeEvent.MESSAGE_CREATED, {}) == 0


async def test_full_queue_drops_event():
    hub = RealtimeHub(queue_size=1)
    queue = hub.subscribe("conversation-3")

    assert await hub.publish("conversation-3", RealtimeEvent.MESSAGE_CREATED, {"n": 1}) == 1
    assert await hub.publish("conversation-3", RealtimeEvent.MESSAGE_CREATED, {"n": 2}) == 0
    assert queue.qsize() == 1


async def test_unsubscribe():
    hub = RealtimeHub()
    queue = hub.subscribe("conversation-4")
    hub.unsubscribe("conversation-4", queue)

    assert hub.subscriber_count("conversation-4") == 0
    assert await hub.publish("conversation-4", RealtimeEvent.MESSAGE_CREATED, {}) == 0


async def test_send_message_publishes_event(conversations, hub, accepted_request, student, alumni):
    conversation = await conversations.get_or_create_direct(student, alumni.id)
    queue = hub.subscribe(conversation_channel(conversation.id))

    message = await conversations.send_message(conversation.id, student, "Realtime hello")

    event = queue.get_nowait()
    assert event["event"] == "message_created"
    assert event["channel"] == f"conversation-{conversation.id}"
    assert event["payload"]["id"] == str(message.id)
    assert event["payload"]["content"] == "Realtime hello"
    assert event["payload"]["sender_name"] == "Sam Student"


async def test_publish_failure_does_not_fail_send(
    conversations, hub, accepted_request, student, alumni, monkeypatch
):
    async def broken_publish(*args, **kwargs):
        raise RuntimeError("channel down")

    monkeypatch.setattr(hub, "publish", broken_publish)
    conversation = await conversations.get_or_create_direct(student, alumni.id)

    message = await conversations.send_message(conversation.id, student, "Still delivered")
    assert message.content == "Still delivered"

    history, _ = await conversations.list_messages(conversation.id, alumni)
    assert [m.content for m in history] == ["Still delivered"]


async def test_authorize_channel(conversations, make_user, accepted_request, student, alumni):
    conversation = await conversations.get_or_create_direct(student, alumni.id)
    await conversations.authorize_channel(conversation.id, alumni)

    outsider = await make_user(UserRole.STUDENT)
    with pytest.raises(ForbiddenError):
        await conversations.authorize_channel(conversation.id, outsider)


# ==================================================================
# Websocket
# ==================================================================


async def test_websocket_streams_messages(
    overrides, conversations, accepted_request, student, alumni
):
    conversation = await conversations.get_or_create_direct(student, alumni.id)

    with TestClient(overrides) as tc:
        with tc.websocket_connect(
            f"/api/v1/chats/{conversation.id}/ws?token={student.id}"
        ) as ws:
            r = tc.post(
                f"/api/v1/chats/{conversation.id}/messages",
                json={"content": "Over the wire"},
                headers=as_user(alumni),
            )
            assert r.status_code == 201

            event = ws.receive_json()
            assert event["event"] == "message_created"
            assert event["payload"]["content"] == "Over the wire"
            assert event["payload"]["sender_id"] == str(alumni.id)


async def test_websocket_rejects_outsiders(
    overrides, conversations, make_user, accepted_request, student, alumni
):
    conversation = await conversations.get_or_create_direct(student, alumni.id)
    outsider = await make_user(UserRole.ALUMNI)

    with TestClient(overrides) as tc:
        with pytest.raises(WebSocketDisconnect) as exc:
            with tc.websocket_connect(
                f"/api/v1/chats/{conversation.id}/ws?token={outsider.id}"
            ):
                pass
        assert exc.value.code == 4003

        with pytest.raises(WebSocketDisconnect) as exc:
            with tc.websocket_connect(f"/api/v1/chats/{conversation.id}/ws?token=bogus"):
                pass
        assert exc.value.code == 4001


async def test_websocket_closes_when_stream_fails(
    overrides, conversations, accepted_request, student, alumni, monkeypatch
):
    async def broken_send_json(self, data, mode="text"):
        raise RuntimeError("socket gone")

    monkeypatch.setattr(WebSocket, "send_json", broken_send_json)
    conversation = await conversations.get_or_create_direct(student, alumni.id)

    with TestClient(overrides) as tc:
        with tc.websocket_connect(
            f"/api/v1/chats/{conversation.id}/ws?token={student.id}"
        ) as ws:
            r = tc.post(
                f"/api/v1/chats/{conversation.id}/messages",
                json={"content": "Nobody will see this"},
                headers=as_user(alumni),
            )
            assert r.status_code == 201

            with pytest.raises(WebSocketDisconnect) as exc:
                ws.receive_json()
            assert exc.value.code == 1011
