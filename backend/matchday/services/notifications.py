"""Push fan-out for "match created" and "invite received" events."""

from __future__ import annotations

import asyncio
import json
import logging
import uuid
from dataclasses import dataclass
from typing import Protocol, Sequence, Union

from pywebpush import WebPushException, webpush
from sqlalchemy import delete, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from .. import config
from ..models import Invite, PushSubscription
from .identity import GroupMemberRepository


LOGGER = logging.getLogger(__name__)

MAX_TARGETS_PER_BATCH = 500


@dataclass(frozen=True)
class MatchCreatedEvent:
    match_id: str
    group_id: str
    type: str = "match-created"


@dataclass(frozen=True)
class InviteReceivedEvent:
    invite_id: str
    type: str = "invite-received"


Event = Union[MatchCreatedEvent, InviteReceivedEvent]


class NotificationDispatcher(Protocol):
    async def dispatch(self, session: AsyncSession, event: Event) -> None:
        ...


class NullDispatcher:
    """Dispatcher that only records the events it was given."""

    def __init__(self) -> None:
        self.events: list[Event] = []

    async def dispatch(self, session: AsyncSession, event: Event) -> None:
        self.events.append(event)


async def emit(
    dispatcher: NotificationDispatcher | None, session: AsyncSession, event: Event
) -> None:
    """Hand ``event`` to ``dispatcher``; delivery problems are logged, not raised."""

    if dispatcher is None:
        return
    try:
        await dispatcher.dispatch(session, event)
    except Exception:
        LOGGER.exception("Failed to dispatch %s notification", event.type)


def chunk(items: Sequence, size: int) -> list[Sequence]:
    if size <= 0:
        return [items]
    return [items[i : i + size] for i in range(0, len(items), size)]


class WebPushDispatcher:
    """Delivers events to stored web-push subscriptions."""

    async def dispatch(self, session: AsyncSession, event: Event) -> None:
        if isinstance(event, MatchCreatedEvent):
            await self._notify_group(session, event)
        elif isinstance(event, InviteReceivedEvent):
            await self._notify_invitee(session, event)

    async def _notify_group(self, session: AsyncSession, event: MatchCreatedEvent) -> None:
        user_ids = await GroupMemberRepository(session).user_ids_for_group(event.group_id)
        if not user_ids:
            LOGGER.info(
                "No linked users for group %s; skipping match %s notification",
                event.group_id,
                event.match_id,
            )
            return

        subscriptions = await _list_subscriptions(
            session, PushSubscription.user_id.in_(user_ids)
        )
        payload = {
            "title": "New match",
            "body": "A match was added to your group.",
            "data": {
                "matchId": event.match_id,
                "groupId": event.group_id,
                "type": event.type,
            },
        }
        sent = await _deliver_all(session, subscriptions, payload)
        LOGGER.info(
            "Match notification sent match=%s group=%s sent=%d",
            event.match_id,
            event.group_id,
            sent,
        )

    async def _notify_invitee(self, session: AsyncSession, event: InviteReceivedEvent) -> None:
        invite = await session.get(Invite, event.invite_id)
        if invite is None:
            LOGGER.warning("Invite %s not found; skipping notification", event.invite_id)
            return

        subscriptions = await _list_subscriptions(
            session, PushSubscription.email == invite.email.strip().lower()
        )
        payload = {
            "title": "New invitation",
            "body": f"{invite.invited_by_name or 'Someone'} invited you to join a group.",
            "data": {
                "inviteId": invite.id,
                "groupId": invite.group_id,
                "type": event.type,
            },
        }
        sent = await _deliver_all(session, subscriptions, payload)
        LOGGER.info("Invite notification sent invite=%s sent=%d", invite.id, sent)


def get_dispatcher() -> NotificationDispatcher:
    """FastAPI dependency returning the delivery backend for domain events."""

    return WebPushDispatcher()


async def _list_subscriptions(session: AsyncSession, condition) -> list[PushSubscription]:
    rows = await session.execute(select(PushSubscription).where(condition))
    # One delivery per endpoint even if the same device is registered twice.
    unique: dict[str, PushSubscription] = {}
    for subscription in rows.scalars():
        unique.setdefault(subscription.endpoint, subscription)
    return list(unique.values())


async def _deliver_all(
    session: AsyncSession, subscriptions: list[PushSubscription], payload: dict
) -> int:
    if not subscriptions or not _push_available():
        return 0

    sent = 0
    invalid_ids: list[str] = []
    for batch in chunk(subscriptions, MAX_TARGETS_PER_BATCH):
        results = await asyncio.gather(
            *(_send_push(subscription, payload) for subscription in batch),
            return_exceptions=True,
        )
        failures = 0
        for subscription, result in zip(batch, results):
            if isinstance(result, _InvalidSubscriptionError):
                invalid_ids.append(subscription.id)
            elif isinstance(result, BaseException):
                failures += 1
            elif result:
                sent += 1
        if failures:
            LOGGER.warning("Some notifications failed: %d of %d", failures, len(batch))

    if invalid_ids:
        await _prune_subscriptions(session, invalid_ids)
    return sent


async def _prune_subscriptions(session: AsyncSession, subscription_ids: list[str]) -> None:
    try:
        await session.execute(
            delete(PushSubscription).where(PushSubscription.id.in_(subscription_ids))
        )
        await session.commit()
    except SQLAlchemyError:  # pragma: no cover
        await session.rollback()
        LOGGER.warning(
            "Failed to prune %d expired push subscriptions", len(subscription_ids), exc_info=True
        )
        return
    LOGGER.info("Pruned %d expired push subscriptions", len(subscription_ids))


def _push_available() -> bool:
    return bool(config.VAPID_PRIVATE_KEY and config.VAPID_PUBLIC_KEY)


class _InvalidSubscriptionError(Exception):
    """Raised when a push subscription is no longer valid."""


async def _send_push(subscription: PushSubscription, payload: dict) -> bool:
    subscription_info = {
        "endpoint": subscription.endpoint,
        "keys": {"p256dh": subscription.p256dh, "auth": subscription.auth},
    }
    try:
        await asyncio.to_thread(
            webpush,
            subscription_info=subscription_info,
            data=json.dumps(payload),
            vapid_private_key=config.VAPID_PRIVATE_KEY,
            vapid_claims={"sub": config.VAPID_SUBJECT},
            content_encoding=subscription.content_encoding,
        )
    except WebPushException as exc:  # pragma: no cover - depends on external service
        status = getattr(getattr(exc, "response", None), "status_code", None)
        if status in {404, 410}:
            raise _InvalidSubscriptionError from exc
        LOGGER.warning("Web push delivery failed: %s", exc)
        return False
    return True


async def register_push_subscription(
    session: AsyncSession,
    user_id: str,
    *,
    endpoint: str,
    p256dh: str,
    auth: str,
    email: str | None = None,
    content_encoding: str | None = None,
) -> PushSubscription | None:
    if not endpoint:
        return None

    encoding = content_encoding or "aes128gcm"
    normalized_email = email.strip().lower() if email else None

    existing = (
        await session.execute(
            select(PushSubscription).where(PushSubscription.endpoint == endpoint)
        )
    ).scalar_one_or_none()

    if existing:
        existing.user_id = user_id
        existing.email = normalized_email
        existing.p256dh = p256dh
        existing.auth = auth
        existing.content_encoding = encoding
        await session.commit()
        await session.refresh(existing)
        return existing

    subscription = PushSubscription(
        id=uuid.uuid4().hex,
        user_id=user_id,
        email=normalized_email,
        endpoint=endpoint,
        p256dh=p256dh,
        auth=auth,
        content_encoding=encoding,
    )
    session.add(subscription)
    await session.commit()
    await session.refresh(subscription)
    return subscription


async def delete_push_subscriptions(session: AsyncSession, user_id: str) -> None:
    await session.execute(
        delete(PushSubscription).where(PushSubscription.user_id == user_id)
    )
    await session.commit()
