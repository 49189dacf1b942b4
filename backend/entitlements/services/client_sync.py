"""
客户端同步路径：App 购买/恢复购买完成后上报 CustomerInfo

SDK 返回的字段在不同平台、沙盒和模拟器下经常不全，
所以按优先级依次尝试以下信号，第一个命中的生效：

  1. 配置的 entitlement（REVENUECAT_ENTITLEMENT_ID）在 entitlements.active 中且 isActive
  2. entitlements.active 中任意一个 isActive
  3. activeSubscriptions 包含已知产品 ID
  4. allPurchasedProductIdentifiers 包含已知产品 ID（最弱，StoreKit 模拟器常见）

每个信号都是独立的纯函数，顺序由 SIGNAL_CHAIN 决定。
"""
from __future__ import annotations

import logging
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from datetime import datetime

from sqlmodel import Session

from entitlements import crud
from entitlements.api.errors import AppError
from entitlements.api.schemas import CustomerInfo, EntitlementRecord
from entitlements.core.config import settings
from entitlements.models import utc_now
from entitlements.services import transitions
from entitlements.services.config_service import get_config
from entitlements.services.event_normalizer import map_store
from entitlements.services.transitions import SubscriptionState

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SyncContext:
    entitlement_id: str
    known_products: frozenset[str]


@dataclass(frozen=True)
class Signal:
    source: str
    product_id: str | None = None
    store: str | None = None
    expires_at: datetime | None = None
    will_renew: bool | None = None


@dataclass(frozen=True)
class Detection:
    is_premium: bool
    will_renew: bool = False
    product_id: str | None = None
    signal: Signal | None = None


@dataclass(frozen=True)
class SyncResult:
    plan: str
    status: str
    expires_at: datetime | None


def _from_entitlement(source: str, ent: EntitlementRecord) -> Signal:
    return Signal(
        source=source,
        product_id=ent.product_identifier,
        store=ent.store,
        expires_at=ent.expiration_date,
        will_renew=ent.will_renew,
    )


def _first_known(product_ids: Iterable[str], ctx: SyncContext) -> str | None:
    return next((pid for pid in product_ids if pid in ctx.known_products), None)


def configured_entitlement(info: CustomerInfo, ctx: SyncContext) -> Signal | None:
    ent = info.entitlements.active.get(ctx.entitlement_id)
    if ent is not None and ent.is_active:
        return _from_entitlement("configured_entitlement", ent)
    return None


def any_active_entitlement(info: CustomerInfo, ctx: SyncContext) -> Signal | None:
    for ent in info.entitlements.active.values():
        if ent.is_active:
            return _from_entitlement("any_active_entitlement", ent)
    return None


def known_active_subscription(info: CustomerInfo, ctx: SyncContext) -> Signal | None:
    product_id = _first_known(info.active_subscriptions, ctx)
    if product_id:
        return Signal(source="active_subscription", product_id=product_id)
    return None


def known_purchased_product(info: CustomerInfo, ctx: SyncContext) -> Signal | None:
    product_id = _first_known(info.all_purchased_product_identifiers, ctx)
    if product_id:
        return Signal(source="purchased_product", product_id=product_id)
    return None


SignalFn = Callable[[CustomerInfo, SyncContext], Signal | None]

# 顺序即优先级
SIGNAL_CHAIN: tuple[SignalFn, ...] = (
    configured_entitlement,
    any_active_entitlement,
    known_active_subscription,
    known_purchased_product,
)


def detect_entitlement(info: CustomerInfo, ctx: SyncContext) -> Detection:
    signal = None
    for fn in SIGNAL_CHAIN:
        signal = fn(info, ctx)
        if signal is not None:
            break
    if signal is None:
        return Detection(is_premium=False)

    fallback_product = _first_known(info.active_subscriptions, ctx) or _first_known(
        info.all_purchased_product_identifiers, ctx
    )
    if signal.will_renew is not None:
        will_renew = signal.will_renew
    else:
        # 没有明确的取消标记时按"仍在续费"处理，避免误降级
        will_renew = fallback_product is not None

    return Detection(
        is_premium=True,
        will_renew=will_renew,
        product_id=signal.product_id or fallback_product,
        signal=signal,
    )


def reconcile(
    *, session: Session, user_id: str, info: CustomerInfo, now: datetime | None = None
) -> SyncResult:
    """
    根据客户端上报推断订阅状态并写入

    Raises:
        AppError: 用户不存在（404001）或并发冲突重试耗尽（409001）
    """
    user = crud.get_user(session=session, user_id=user_id)
    if not user:
        raise AppError(code=404001, message="User not found", status_code=404)

    cfg = get_config()
    ctx = SyncContext(
        entitlement_id=settings.REVENUECAT_ENTITLEMENT_ID,
        known_products=frozenset(cfg.get("known_products", [])),
    )
    detection = detect_entitlement(info, ctx)
    logger.info(
        "Subscription sync detection: user=%s premium=%s source=%s product=%s will_renew=%s",
        user_id,
        detection.is_premium,
        detection.signal.source if detection.signal else None,
        detection.product_id,
        detection.will_renew,
    )

    now = now or utc_now()

    def _transform(state: SubscriptionState) -> SubscriptionState:
        if detection.is_premium and detection.signal is not None:
            state = transitions.grant_from_client(
                state,
                will_renew=detection.will_renew,
                product_id=detection.product_id,
                store=map_store(detection.signal.store),
                expires_at=detection.signal.expires_at,
                now=now,
            )
        else:
            state = transitions.expire_from_client(state)
        return transitions.merge_external_ids(state, external_user_id=info.original_app_user_id)

    user = crud.apply_subscription_state(session=session, user=user, transform=_transform)
    return SyncResult(
        plan=user.plan,
        status=user.subscription_status,
        expires_at=user.subscription_expires_at,
    )
