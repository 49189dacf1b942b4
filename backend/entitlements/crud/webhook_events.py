"""Webhook 事件审计表 CRUD 操作（只追加）"""
from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, select

from entitlements.models import WebhookEvent
from entitlements.services.event_normalizer import NormalizedEvent


class DuplicateEventError(Exception):
    """并发投递时另一个请求先插入了同一个 event_id"""

    def __init__(self, event_id: str) -> None:
        super().__init__(event_id)
        self.event_id = event_id


def get_event(*, session: Session, event_id: str) -> WebhookEvent | None:
    """按 event_id 查询（幂等判断）"""
    return session.get(WebhookEvent, event_id)


def record_event(
    *, session: Session, event: NormalizedEvent, resolved_user_id: str | None
) -> WebhookEvent:
    """
    写入事件记录（flush，不提交）

    调用方在同一事务里继续修改用户状态后统一提交。
    主键冲突时回滚并抛出 DuplicateEventError。
    """
    row = WebhookEvent(
        event_id=event.event_id,
        event_type=event.event_type,
        resolved_user_id=resolved_user_id,
        external_user_id=event.external_user_id,
        original_external_user_id=event.original_external_user_id,
        product_id=event.product_id,
        store=event.store,
        environment=event.environment,
        price_cents=event.price_cents,
        currency=event.currency,
        original_transaction_id=event.original_transaction_id,
        expires_at=event.expires_at,
        purchased_at=event.purchased_at,
        event_timestamp=event.event_timestamp,
        raw_payload=event.raw_payload,
    )
    try:
        session.add(row)
        session.flush()
    except IntegrityError:
        session.rollback()
        raise DuplicateEventError(event.event_id)
    return row


def list_for_external_user(
    *, session: Session, external_user_id: str, limit: int = 10
) -> list[WebhookEvent]:
    """查询某个 app_user_id 最近的事件（排查账号关联问题用）"""
    stmt = (
        select(WebhookEvent)
        .where(WebhookEvent.external_user_id == external_user_id)
        .order_by(WebhookEvent.received_at.desc())  # type: ignore[union-attr]
        .limit(limit)
    )
    return list(session.exec(stmt).all())
