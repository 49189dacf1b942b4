"""
RevenueCat webhook 事件标准化

把 provider 的原始 JSON 转成内部统一的事件记录，并只在这里做一次事件分类。

文档: https://www.revenuecat.com/docs/integrations/webhooks
"""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any

from entitlements.api.errors import AppError
from entitlements.enums import EventClass, Store

# RevenueCat / SDK 的商店名 -> 库里的值
_STORE_MAP = {
    "APP_STORE": Store.app_store,
    "APPLE": Store.app_store,
    "MAC_APP_STORE": Store.app_store,
    "PLAY_STORE": Store.play_store,
    "GOOGLE": Store.play_store,
    "STRIPE": Store.stripe,
    "PROMOTIONAL": Store.promotional,
}

# webhook_events.price_cents 是 32 位 INTEGER
_MAX_CENTS = 2**31 - 1


@dataclass(frozen=True)
class NormalizedEvent:
    event_id: str
    event_type: str
    event_class: EventClass
    external_user_id: str | None
    original_external_user_id: str | None
    product_id: str | None
    store: str | None  # provider 原始值，审计用
    environment: str | None
    price_cents: int | None
    currency: str | None
    expires_at: datetime | None
    purchased_at: datetime | None
    event_timestamp: datetime | None
    original_transaction_id: str | None
    raw_payload: dict[str, Any]

    @property
    def mapped_store(self) -> str | None:
        return map_store(self.store)


def map_store(store: str | None) -> str | None:
    if not store:
        return None
    mapped = _STORE_MAP.get(store.upper())
    return mapped.value if mapped else None


def parse_ms(ms: Any) -> datetime | None:
    if ms is None:
        return None
    try:
        return datetime.fromtimestamp(int(ms) / 1000, tz=timezone.utc)
    except (TypeError, ValueError, OverflowError, OSError):
        return None


def _price_cents(price: Any) -> int | None:
    # 超出 INTEGER 列范围或非有限值时不落这一列，原始值仍在 raw_payload 里
    if price is None:
        return None
    try:
        cents = round(float(price) * 100)
    except (TypeError, ValueError, OverflowError):
        return None
    if abs(cents) > _MAX_CENTS:
        return None
    return cents


def _opt_str(value: Any) -> str | None:
    if value is None or value == "":
        return None
    return str(value)


def classify(event_type: str, cfg: dict[str, Any]) -> EventClass:
    if event_type in cfg.get("activate_events", []):
        return EventClass.activation
    if event_type in cfg.get("deactivate_events", []):
        return EventClass.deactivation
    if event_type == cfg.get("billing_issue_event"):
        return EventClass.billing_issue
    return EventClass.other


def normalize_event(payload: Any, cfg: dict[str, Any]) -> NormalizedEvent:
    """
    标准化 webhook 载荷

    Raises:
        AppError: 载荷不是 {"event": {...}} 或缺少 event.id / event.type
    """
    event = payload.get("event") if isinstance(payload, dict) else None
    if not isinstance(event, dict):
        raise AppError(code=400001, message="Invalid webhook payload", status_code=400)

    event_id = str(event.get("id") or "")
    event_type = str(event.get("type") or "")
    if not event_id or not event_type:
        raise AppError(code=400002, message="Missing event id/type", status_code=400)

    return NormalizedEvent(
        event_id=event_id,
        event_type=event_type,
        event_class=classify(event_type, cfg),
        external_user_id=_opt_str(event.get("app_user_id")),
        original_external_user_id=_opt_str(event.get("original_app_user_id")),
        product_id=_opt_str(event.get("product_id")),
        store=_opt_str(event.get("store")),
        environment=_opt_str(event.get("environment")),
        price_cents=_price_cents(event.get("price_in_purchased_currency")),
        currency=_opt_str(event.get("currency")),
        expires_at=parse_ms(event.get("expiration_at_ms")),
        purchased_at=parse_ms(event.get("purchased_at_ms")),
        event_timestamp=parse_ms(event.get("event_timestamp_ms")),
        original_transaction_id=_opt_str(event.get("original_transaction_id")),
        raw_payload=payload,
    )
