import logging

import pytest
from sqlalchemy import select

from matchday import config
from matchday.models import PushSubscription
from matchday.services import notifications
from matchday.services.invites import create_invite
from matchday.services.notifications import (
    InviteReceivedEvent,
    MatchCreatedEvent,
    NullDispatcher,
    WebPushDispatcher,
    chunk,
    delete_push_subscriptions,
    emit,
    register_push_subscription,
)

from helpers import GROUP, add_members

pytestmark = pytest.mark.anyio


@pytest.fixture
def vapid(monkeypatch):
    monkeypatch.setattr(config, "VAPID_PUBLIC_KEY", "public")
    monkeypatch.setattr(config, "VAPID_PRIVATE_KEY", "private")


@pytest.fixture
def sent(monkeypatch):
    """Capture pushes instead of calling the push service."""

    deliveries = []

    async def fake_send(subscription, payload):
        if subscription.endpoint.endswith("/gone"):
            raise notifications._InvalidSubscriptionError()
        deliveries.append((subscription.endpoint, payload))
        return True

    monkeypatch.setattr(notifications, "_send_push", fake_send)
    return deliveries


async def _subscribe(session, user_id, endpoint, email=None):
    return await register_push_subscription(
        session, user_id, endpoint=endpoint, p256dh="key", auth="secret", email=email
    )


def test_chunk_splits_evenly():
    assert chunk([1, 2, 3, 4, 5], 2) == [[1, 2], [3, 4], [5]]
    assert chunk([1, 2], 0) == [[1, 2]]


async def test_null_dispatcher_records_events(session):
    dispatcher = NullDispatcher()
    event = MatchCreatedEvent(match_id="m1", group_id=GROUP)

    await emit(dispatcher, session, event)
    await emit(None, session, event)

    assert dispatcher.events == [event]


async def test_emit_logs_dispatch_errors(session, caplog):
    class Broken:
        async def dispatch(self, session, event):
            raise RuntimeError("nope")

    with caplog.at_level(logging.ERROR):
        await emit(Broken(), session, InviteReceivedEvent(invite_id="i1"))

    assert "Failed to dispatch invite-received notification" in caplog.text


async def test_register_subscription_upserts_by_endpoint(session):
    await _subscribe(session, "u1", "https://push.example/1", email="Ana@Example.com")
    updated = await _subscribe(session, "u2", "https://push.example/1")

    rows = (await session.execute(select(PushSubscription))).scalars().all()
    assert len(rows) == 1
    assert updated.user_id == "u2"
    assert updated.email is None
    assert await _subscribe(session, "u1", "") is None


async def test_register_subscription_normalizes_email(session):
    subscription = await _subscribe(session, "u1", "https://push.example/1", email=" Ana@Example.com ")
    assert subscription.email == "ana@example.com"


async def test_delete_subscriptions_for_user(session):
    await _subscribe(session, "u1", "https://push.example/1")
    await _subscribe(session, "u1", "https://push.example/2")
    await _subscribe(session, "u2", "https://push.example/3")

    await delete_push_subscriptions(session, "u1")

    rows = (await session.execute(select(PushSubscription.user_id))).scalars().all()
    assert rows == ["u2"]


async def test_match_created_without_vapid_keys_sends_nothing(session, sent, monkeypatch):
    monkeypatch.setattr(config, "VAPID_PRIVATE_KEY", None)
    await add_members(session, "a", user_ids={"a": "u1"})
    await _subscribe(session, "u1", "https://push.example/1")

    await WebPushDispatcher().dispatch(session, MatchCreatedEvent(match_id="m1", group_id=GROUP))

    assert sent == []


async def test_match_created_reaches_linked_group_users(session, vapid, sent):
    await add_members(session, "a", "b", "guest", user_ids={"a": "u1", "b": "u2"})
    await add_members(session, "x", group_id="g2", user_ids={"x": "u3"})
    await _subscribe(session, "u1", "https://push.example/1")
    await _subscribe(session, "u2", "https://push.example/2")
    await _subscribe(session, "u3", "https://push.example/3")

    await WebPushDispatcher().dispatch(session, MatchCreatedEvent(match_id="m1", group_id=GROUP))

    endpoints = sorted(endpoint for endpoint, _ in sent)
    assert endpoints == ["https://push.example/1", "https://push.example/2"]
    payload = sent[0][1]
    assert payload["data"] == {"matchId": "m1", "groupId": GROUP, "type": "match-created"}


async def test_gone_subscriptions_are_pruned(session, vapid, sent):
    await add_members(session, "a", user_ids={"a": "u1"})
    await _subscribe(session, "u1", "https://push.example/ok")
    await _subscribe(session, "u1", "https://push.example/gone")

    await WebPushDispatcher().dispatch(session, MatchCreatedEvent(match_id="m1", group_id=GROUP))

    endpoints = (await session.execute(select(PushSubscription.endpoint))).scalars().all()
    assert endpoints == ["https://push.example/ok"]
    assert len(sent) == 1


async def test_invite_push_targets_invited_email(session, vapid, sent):
    await add_members(session, "guest")
    await _subscribe(session, "u1", "https://push.example/ana", email="ana@example.com")
    await _subscribe(session, "u2", "https://push.example/beto", email="beto@example.com")

    await create_invite(
        session,
        group_member_id="guest",
        email="ANA@example.com",
        invited_by_id="u9",
        invited_by_name="Luis",
        dispatcher=WebPushDispatcher(),
    )

    assert [endpoint for endpoint, _ in sent] == ["https://push.example/ana"]
    payload = sent[0][1]
    assert payload["body"] == "Luis invited you to join a group."
    assert payload["data"]["groupId"] == GROUP


async def test_missing_invite_is_skipped(session, vapid, sent, caplog):
    with caplog.at_level(logging.WARNING):
        await WebPushDispatcher().dispatch(session, InviteReceivedEvent(invite_id="nope"))

    assert sent == []
    assert "Invite nope not found" in caplog.text
