"""
Webhook 路径：RevenueCat 事件 -> 用户订阅状态

处理流程：
1. 标准化载荷并分类（只分类一次）
2. 幂等：event_id 已存在则直接返回当时的处理结果，不产生任何副作用
3. 匹配用户；匹配不到时仍然写审计记录，但不修改任何状态，也不要求 provider 重试
4. 审计记录和状态修改在同一个事务里提交，任一失败都整体回滚，
   由调用方返回非 2xx 让 provider 重新投递
"""
from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime
from typing import Any

from sqlmodel import Session

from entitlements import crud
from entitlements.core.config import settings
from entitlements.enums import EventClass
from entitlements.models import User, utc_now
from entitlements.services import transitions
from entitlements.services.config_service import get_config
from entitlements.services.event_normalizer import NormalizedEvent, normalize_event
from entitlements.services.transitions import SubscriptionState, ensure_utc
from entitlements.services.user_matcher import match_user

logger = logging.getLogger(__name__)

USER_NOT_FOUND = "user not found"


@dataclass(frozen=True)
class HandleResult:
    processed_newly: bool
    user_id: str | None
    error: str | None = None


def _transition_for(
    event: NormalizedEvent, now: datetime
) -> Callable[[SubscriptionState], SubscriptionState] | None:
    if event.event_class == EventClass.activation:

        def _activate(state: SubscriptionState) -> SubscriptionState:
            state = transitions.activate(
                state,
                product_id=event.product_id,
                store=event.mapped_store,
                expires_at=event.expires_at,
                now=now,
            )
            state = transitions.merge_external_ids(
                state,
                external_user_id=event.external_user_id,
                original_transaction_id=event.original_transaction_id,
            )
            return transitions.note_event_time(state, event.event_timestamp)

        return _activate

    if event.event_class == EventClass.deactivation:

        def _deactivate(state: SubscriptionState) -> SubscriptionState:
            return transitions.note_event_time(transitions.deactivate(state), event.event_timestamp)

        return _deactivate

    if event.event_class == EventClass.billing_issue:

        def _billing_issue(state: SubscriptionState) -> SubscriptionState:
            state = transitions.flag_billing_issue(state)
            state = transitions.merge_external_ids(
                state,
                external_user_id=event.external_user_id,
                original_transaction_id=event.original_transaction_id,
            )
            return transitions.note_event_time(state, event.event_timestamp)

        return _billing_issue

    # TEST, CANCELLATION, TRANSFER 等只记录审计
    return None


def _is_out_of_order(event: NormalizedEvent, user: User) -> bool:
    applied = ensure_utc(user.subscription_event_at)
    if event.event_timestamp is None or applied is None:
        return False
    return event.event_timestamp < applied


def handle(*, session: Session, payload: Any, now: datetime | None = None) -> HandleResult:
    """
    处理一条 webhook

    Raises:
        AppError: 载荷格式错误（400）或订阅状态并发冲突（409）
        SQLAlchemyError: 持久化失败
    """
    event = normalize_event(payload, get_config())

    existing = crud.get_webhook_event(session=session, event_id=event.event_id)
    if existing:
        logger.info("Webhook event %s already processed, skipping", event.event_id)
        return HandleResult(processed_newly=False, user_id=existing.resolved_user_id)

    user = match_user(session=session, external_user_id=event.external_user_id)

    try:
        crud.record_webhook_event(
            session=session, event=event, resolved_user_id=user.id if user else None
        )
    except crud.DuplicateEventError:
        # 同一事件的并发投递，另一个请求已经插入
        logger.warning("Webhook event %s recorded concurrently, treating as duplicate", event.event_id)
        existing = crud.get_webhook_event(session=session, event_id=event.event_id)
        return HandleResult(
            processed_newly=False, user_id=existing.resolved_user_id if existing else None
        )

    if user is None:
        session.commit()
        logger.warning(
            "Webhook event %s (%s): no user for app_user_id %s",
            event.event_id,
            event.event_type,
            event.external_user_id,
        )
        return HandleResult(processed_newly=True, user_id=None, error=USER_NOT_FOUND)

    transform = _transition_for(event, now or utc_now())
    if transform is None:
        session.commit()
        logger.info("Webhook event %s (%s) recorded for audit only", event.event_id, event.event_type)
        return HandleResult(processed_newly=True, user_id=user.id)

    if settings.SUBSCRIPTION_ENFORCE_EVENT_ORDER and _is_out_of_order(event, user):
        session.commit()
        logger.info(
            "Webhook event %s (%s) is older than the applied state of user %s, not applied",
            event.event_id,
            event.event_type,
            user.id,
        )
        return HandleResult(processed_newly=True, user_id=user.id)

    crud.apply_subscription_state(session=session, user=user, transform=transform, commit=False)
    session.commit()
    logger.info(
        "Webhook event %s (%s) applied to user %s",
        event.event_id,
        event.event_class.value,
        user.id,
    )
    return HandleResult(processed_newly=True, user_id=user.id)
