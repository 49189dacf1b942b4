"""
订阅状态转换

两条写入路径（webhook、客户端同步）共用的纯函数：输入旧状态快照，
返回新状态快照，不访问数据库。持久化由 crud.user.apply_subscription_state 负责。
"""
from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import datetime, timezone

from entitlements.enums import Plan, SubscriptionStatus
from entitlements.models import User


@dataclass(frozen=True)
class SubscriptionState:
    """用户表上订阅相关字段的快照"""
    plan: str
    status: str
    started_at: datetime | None = None
    expires_at: datetime | None = None
    product_id: str | None = None
    store: str | None = None
    external_user_id: str | None = None
    original_transaction_id: str | None = None
    event_at: datetime | None = None

    @classmethod
    def from_user(cls, user: User) -> SubscriptionState:
        return cls(
            plan=Plan(user.plan).value,
            status=SubscriptionStatus(user.subscription_status).value,
            started_at=ensure_utc(user.subscription_started_at),
            expires_at=ensure_utc(user.subscription_expires_at),
            product_id=user.subscription_product_id,
            store=user.subscription_store,
            external_user_id=user.revenuecat_app_user_id,
            original_transaction_id=user.revenuecat_original_transaction_id,
            event_at=ensure_utc(user.subscription_event_at),
        )

    def column_values(self) -> dict[str, object]:
        """转换为 users 表的列名 -> 值"""
        return {
            "plan": self.plan,
            "subscription_status": self.status,
            "subscription_started_at": self.started_at,
            "subscription_expires_at": self.expires_at,
            "subscription_product_id": self.product_id,
            "subscription_store": self.store,
            "revenuecat_app_user_id": self.external_user_id,
            "revenuecat_original_transaction_id": self.original_transaction_id,
            "subscription_event_at": self.event_at,
        }


def activate(
    state: SubscriptionState,
    *,
    product_id: str | None,
    store: str | None,
    expires_at: datetime | None,
    now: datetime,
) -> SubscriptionState:
    """激活事件：premium/active，产品、商店、到期时间取事件的值"""
    return replace(
        state,
        plan=Plan.premium.value,
        status=SubscriptionStatus.active.value,
        product_id=product_id,
        store=store,
        expires_at=expires_at,
        started_at=state.started_at or now,
    )


def deactivate(state: SubscriptionState) -> SubscriptionState:
    """停用事件：无宽限期，直接回到 free/expired。开始时间和到期时间保持不变"""
    return replace(state, plan=Plan.free.value, status=SubscriptionStatus.expired.value)


def flag_billing_issue(state: SubscriptionState) -> SubscriptionState:
    """扣款异常：套餐不变，状态标记为 canceled（用户仍可使用）"""
    return replace(state, status=SubscriptionStatus.canceled.value)


def grant_from_client(
    state: SubscriptionState,
    *,
    will_renew: bool,
    product_id: str | None,
    store: str | None,
    expires_at: datetime | None,
    now: datetime,
) -> SubscriptionState:
    """
    客户端同步检测到付费权益

    产品和商店取命中信号的值（可能为空，不沿用上一次购买的来源）；
    到期时间缺失时保留原值。
    """
    return replace(
        state,
        plan=Plan.premium.value,
        status=(SubscriptionStatus.active if will_renew else SubscriptionStatus.canceled).value,
        product_id=product_id,
        store=store,
        expires_at=expires_at or state.expires_at,
        started_at=state.started_at or now,
    )


def expire_from_client(state: SubscriptionState) -> SubscriptionState:
    """
    客户端同步未检测到付费权益

    只有原来是 premium 才标记 expired；套餐本身留给 webhook 停用事件去改，
    因为客户端"没有信号"比 provider 明确的停用事件证据更弱。
    """
    if state.plan != Plan.premium.value:
        return state
    return replace(state, status=SubscriptionStatus.expired.value)


def merge_external_ids(
    state: SubscriptionState,
    *,
    external_user_id: str | None,
    original_transaction_id: str | None = None,
) -> SubscriptionState:
    """新值非空才覆盖，空值永远不会抹掉已有的关联"""
    return replace(
        state,
        external_user_id=external_user_id or state.external_user_id,
        original_transaction_id=original_transaction_id or state.original_transaction_id,
    )


def ensure_utc(value: datetime | None) -> datetime | None:
    """数据库（如 SQLite）可能返回不带时区的时间，统一视为 UTC"""
    if value is None or value.tzinfo is not None:
        return value
    return value.replace(tzinfo=timezone.utc)


def note_event_time(state: SubscriptionState, event_at: datetime | None) -> SubscriptionState:
    """记录已应用的最新 provider 事件时间（只前进不后退）"""
    event_at = ensure_utc(event_at)
    current = ensure_utc(state.event_at)
    if event_at is None or (current is not None and current >= event_at):
        return state
    return replace(state, event_at=event_at)
