"""
订阅路由模块

- GET  /subscription/status   当前套餐状态
- POST /subscription/webhook  RevenueCat webhook
- GET  /subscription/webhook  webhook 端点探活
- POST /subscription/sync     App 购买/恢复后同步
- GET  /subscription/quota    本月配额用量
"""
from __future__ import annotations

import json
import logging
import math
from typing import Any

from fastapi import APIRouter, Depends, Header, Request
from sqlalchemy.exc import SQLAlchemyError

from entitlements.api.deps import CurrentUser, SessionDep
from entitlements.api.errors import AppError
from entitlements.api.schemas import (
    ApiEnvelope,
    FeatureUsage,
    QuotaUsageData,
    SubscriptionStatusData,
    SubscriptionSyncData,
    SubscriptionSyncRequest,
    WebhookAckData,
)
from entitlements.core.config import settings
from entitlements.models import utc_now
from entitlements.services import client_sync, entitlement_resolver, quota_ledger

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/subscription", tags=["subscription"])


@router.get("/status", response_model=ApiEnvelope)
def status(current_user: CurrentUser) -> ApiEnvelope:
    return ApiEnvelope(
        data=SubscriptionStatusData(
            plan=current_user.plan,
            status=current_user.subscription_status,
            started_at=current_user.subscription_started_at,
            expires_at=current_user.subscription_expires_at,
            product_id=current_user.subscription_product_id,
            store=current_user.subscription_store,
        )
    )


def _json_number(value: str) -> float | str:
    # 溢出为 inf 的数字保留原文，PostgreSQL 的 json 类型不接受 Infinity/NaN
    number = float(value)
    return number if math.isfinite(number) else value


async def _webhook_payload(request: Request) -> Any:
    # 自行解析 JSON：格式错误返回 400，而不是 FastAPI 默认的 422
    try:
        return json.loads(await request.body(), parse_float=_json_number, parse_constant=str)
    except ValueError:
        raise AppError(code=400001, message="Invalid webhook payload", status_code=400)


def _verify_webhook_auth(authorization: str | None = Header(default=None)) -> None:
    secret = settings.REVENUECAT_WEBHOOK_SECRET
    if not secret:
        # 未配置密钥时拒绝所有请求，否则任何人都能伪造购买事件
        logger.error("REVENUECAT_WEBHOOK_SECRET not configured, rejecting webhook")
        raise AppError(code=500003, message="Webhook not configured", status_code=500)
    # RevenueCat allows configuring an arbitrary Authorization header value.
    # Accept either the raw secret or a Bearer token with that secret.
    if authorization not in (secret, f"Bearer {secret}"):
        logger.warning("Rejected RevenueCat webhook with invalid authorization")
        raise AppError(code=401001, message="Unauthorized", status_code=401)


@router.post("/webhook", response_model=ApiEnvelope, dependencies=[Depends(_verify_webhook_auth)])
def webhook(session: SessionDep, payload: Any = Depends(_webhook_payload)) -> ApiEnvelope:
    """
    RevenueCat webhook

    重复事件和找不到用户都返回 2xx（provider 重试也没有意义），
    只有持久化失败才返回非 2xx，让 provider 重新投递。
    """
    try:
        result = entitlement_resolver.handle(session=session, payload=payload)
    except SQLAlchemyError:
        session.rollback()
        logger.exception("Failed to persist RevenueCat webhook")
        raise AppError(code=500001, message="Webhook persistence failed", status_code=500)
    except AppError:
        session.rollback()
        raise

    return ApiEnvelope(
        data=WebhookAckData(
            duplicate=not result.processed_newly,
            user_found=result.user_id is not None,
        )
    )


@router.get("/webhook", response_model=ApiEnvelope)
def webhook_health() -> ApiEnvelope:
    return ApiEnvelope(data={"status": "ok", "endpoint": "revenuecat-webhook", "timestamp": utc_now()})


@router.post("/sync", response_model=ApiEnvelope)
def sync(session: SessionDep, current_user: CurrentUser, body: SubscriptionSyncRequest) -> ApiEnvelope:
    """
    App 购买/恢复购买完成后同步订阅状态

    请求路径: POST /api/v1/subscription/sync
    Body: {"customerInfo": {...}}（RevenueCat SDK 的 CustomerInfo）
    """
    try:
        result = client_sync.reconcile(
            session=session, user_id=current_user.id, info=body.customer_info
        )
    except SQLAlchemyError:
        session.rollback()
        logger.exception("Failed to persist subscription sync for user %s", current_user.id)
        raise AppError(code=500002, message="Subscription sync failed", status_code=500)

    return ApiEnvelope(
        data=SubscriptionSyncData(
            plan=result.plan,
            status=result.status,
            expires_at=result.expires_at,
        )
    )


@router.get("/quota", response_model=ApiEnvelope)
def quota(session: SessionDep, current_user: CurrentUser) -> ApiEnvelope:
    summary = quota_ledger.usage_summary(
        session=session,
        user_id=current_user.id,
        tenant_id=current_user.tenant_id,
        plan=current_user.plan,
    )
    return ApiEnvelope(
        data=QuotaUsageData(
            month=summary.month,
            plan=current_user.plan,
            reset_at=summary.reset_at,
            features={
                feature: FeatureUsage(used=usage.used, limit=usage.limit, remaining=usage.remaining)
                for feature, usage in summary.features.items()
            },
        )
    )
