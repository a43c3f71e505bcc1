"""Web-push subscription endpoints."""

from __future__ import annotations

from fastapi import APIRouter, Depends, Response
from sqlalchemy.ext.asyncio import AsyncSession

from ..db import get_session
from ..exceptions import http_problem
from ..schemas import PushSubscriptionCreate, PushSubscriptionOut
from ..services.notifications import (
    delete_push_subscriptions,
    register_push_subscription,
)
from ..time_utils import coerce_utc
from .auth import AuthUser, get_current_user


router = APIRouter(
    prefix="/notifications",
    tags=["notifications"],
)


@router.post(
    "/subscriptions",
    response_model=PushSubscriptionOut,
    status_code=201,
)
async def create_push_subscription(
    body: PushSubscriptionCreate,
    session: AsyncSession = Depends(get_session),
    user: AuthUser = Depends(get_current_user),
):
    subscription = await register_push_subscription(
        session,
        user.id,
        endpoint=body.endpoint,
        p256dh=body.keys.p256dh,
        auth=body.keys.auth,
        email=user.email,
        content_encoding=body.content_encoding,
    )
    if not subscription:
        raise http_problem(
            status_code=422,
            detail="push subscription endpoint is required",
            code="push_subscription_invalid",
        )

    return PushSubscriptionOut(
        id=subscription.id,
        endpoint=subscription.endpoint,
        createdAt=coerce_utc(subscription.created_at),
    )


@router.delete("/subscriptions", status_code=204)
async def remove_push_subscriptions(
    session: AsyncSession = Depends(get_session),
    user: AuthUser = Depends(get_current_user),
):
    await delete_push_subscriptions(session, user.id)
    return Response(status_code=204)
