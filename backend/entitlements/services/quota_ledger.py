"""
月度功能配额

调用约定（每个被计量的功能都要遵守）：
    1. check，不允许则直接返回配额已用完
    2. 执行昂贵操作（AI 调用等）
    3. 只有成功后才 increment，失败不消耗配额

check 和 increment 是两条独立语句，并发时可能短暂超出上限一两次（软限制）。
开启 QUOTA_STRICT 时 increment 改为单条条件 UPDATE，计数永远不会超过上限。
"""
from __future__ import annotations

import logging
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime, timezone

from sqlmodel import Session

from entitlements import crud
from entitlements.api.errors import quota_exceeded
from entitlements.core.config import settings
from entitlements.enums import FeatureType, Plan
from entitlements.models import User, utc_now
from entitlements.services.config_service import get_config, plan_limit

logger = logging.getLogger(__name__)

# unlimited 套餐对外展示的上限
UNLIMITED_LIMIT = 999999


@dataclass(frozen=True)
class QuotaCheck:
    allowed: bool
    used: int
    limit: int

    @property
    def remaining(self) -> int:
        return max(0, self.limit - self.used)


@dataclass(frozen=True)
class FeatureUsage:
    used: int
    limit: int

    @property
    def remaining(self) -> int:
        return max(0, self.limit - self.used)


@dataclass
class MeteredUsage:
    """
    metered 代码块的计量结果

    代码块结束后 counted 表示本次是否真的计入；used 为计入后的已用次数，
    严格模式下被拒绝时为上限（说明并发请求已经用满）。
    """
    used: int
    limit: int
    counted: bool = False


@dataclass(frozen=True)
class UsageSummary:
    month: str
    reset_at: datetime
    features: dict[FeatureType, FeatureUsage]


def _utc(now: datetime | None) -> datetime:
    now = now or utc_now()
    if now.tzinfo is None:
        return now.replace(tzinfo=timezone.utc)
    return now.astimezone(timezone.utc)


def month_key(now: datetime | None = None) -> str:
    """当前 UTC 月份，格式 YYYY-MM"""
    return _utc(now).strftime("%Y-%m")


def next_reset(now: datetime | None = None) -> datetime:
    """下一次重置时间：下个 UTC 月第一天 00:00"""
    now = _utc(now)
    if now.month == 12:
        return datetime(now.year + 1, 1, 1, tzinfo=timezone.utc)
    return datetime(now.year, now.month + 1, 1, tzinfo=timezone.utc)


def limit_for(plan: Plan | str, feature_type: FeatureType | str) -> int:
    plan = Plan(plan)
    if plan == Plan.unlimited:
        return UNLIMITED_LIMIT
    return plan_limit(get_config(), plan.value, FeatureType(feature_type).value)


def check(
    *,
    session: Session,
    user_id: str,
    tenant_id: str,
    plan: Plan | str,
    feature_type: FeatureType | str,
    now: datetime | None = None,
) -> QuotaCheck:
    """检查本月是否还能使用某个功能（unlimited 套餐不访问存储）"""
    if Plan(plan) == Plan.unlimited:
        return QuotaCheck(allowed=True, used=0, limit=UNLIMITED_LIMIT)

    feature = FeatureType(feature_type)
    limit = limit_for(plan, feature)
    counter = crud.get_or_create_quota_counter(
        session=session,
        user_id=user_id,
        tenant_id=tenant_id,
        feature_type=feature.value,
        period_month=month_key(now),
    )
    return QuotaCheck(allowed=counter.used_count < limit, used=counter.used_count, limit=limit)


def increment(
    *,
    session: Session,
    user_id: str,
    tenant_id: str,
    feature_type: FeatureType | str,
    now: datetime | None = None,
    limit: int | None = None,
) -> bool:
    """
    本月计数 +1，只能在被计量的操作成功之后调用

    传入 limit 时只有 used_count < limit 才会加（严格模式），返回是否加上。
    """
    return crud.increment_quota_counter(
        session=session,
        user_id=user_id,
        tenant_id=tenant_id,
        feature_type=FeatureType(feature_type).value,
        period_month=month_key(now),
        limit=limit,
    )


@contextmanager
def metered(
    *,
    session: Session,
    user: User,
    feature_type: FeatureType,
    now: datetime | None = None,
) -> Iterator[MeteredUsage]:
    """
    被计量操作的包装：进入时 check，代码块正常结束才 increment

    代码块抛异常时不计数，异常原样抛出。
    yield 出的 MeteredUsage 在代码块结束后更新为实际计数结果。

    Raises:
        AppError: 配额已用完（429001）
    """
    result = check(
        session=session,
        user_id=user.id,
        tenant_id=user.tenant_id,
        plan=user.plan,
        feature_type=feature_type,
        now=now,
    )
    if not result.allowed:
        logger.info(
            "Quota exceeded: user=%s feature=%s used=%d limit=%d",
            user.id,
            feature_type.value,
            result.used,
            result.limit,
        )
        raise quota_exceeded(
            feature_type=feature_type.value,
            used=result.used,
            limit=result.limit,
            reset_at=next_reset(now),
        )

    usage = MeteredUsage(used=result.used, limit=result.limit)
    yield usage

    if Plan(user.plan) == Plan.unlimited:
        return
    counted = increment(
        session=session,
        user_id=user.id,
        tenant_id=user.tenant_id,
        feature_type=feature_type,
        now=now,
        limit=result.limit if settings.QUOTA_STRICT else None,
    )
    usage.counted = counted
    if counted:
        usage.used += 1
        return
    usage.used = result.limit
    logger.warning(
        "Quota increment refused at limit: user=%s feature=%s limit=%d",
        user.id,
        feature_type.value,
        result.limit,
    )


def usage_summary(
    *,
    session: Session,
    user_id: str,
    tenant_id: str,
    plan: Plan | str,
    now: datetime | None = None,
) -> UsageSummary:
    """本月各功能的用量（只读，不创建计数记录）"""
    month = month_key(now)
    counters = crud.list_quota_counters(
        session=session, user_id=user_id, tenant_id=tenant_id, period_month=month
    )
    used = {c.feature_type: c.used_count for c in counters}
    features = {
        feature: FeatureUsage(used=used.get(feature.value, 0), limit=limit_for(plan, feature))
        for feature in FeatureType
    }
    return UsageSummary(month=month, reset_at=next_reset(now), features=features)
