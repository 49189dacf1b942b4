"""
定时任务逻辑

每月 1 日 00:00 UTC 为付费用户预先建好当月每个功能的计数记录（used_count=0）。
计数本身按月份惰性创建，这个任务不是必需的，只是避免月初第一批请求并发建行。
"""

import logging
from datetime import datetime, timezone
from uuid import uuid4

from sqlmodel import Session, select

from entitlements import crud
from entitlements.core.db import engine
from entitlements.core.redis import acquire_lock, get_redis, release_lock
from entitlements.enums import FeatureType, Plan
from entitlements.models import User
from entitlements.services.quota_ledger import month_key

logger = logging.getLogger(__name__)

PRIME_LOCK_KEY = "quota:monthly_prime:lock"
PRIME_LOCK_TTL_SECONDS = 60 * 30


def prime_monthly_quotas(now: datetime | None = None) -> int:
    """
    为 premium 用户创建当月计数记录，返回处理的用户数

    多实例同时运行时由 Redis 锁保证只执行一次，拿不到锁直接跳过。
    """
    now = now or datetime.now(timezone.utc)
    period_month = month_key(now)

    redis_client = get_redis()
    lock_value = str(uuid4())
    if not acquire_lock(redis_client, PRIME_LOCK_KEY, lock_value, expire_seconds=PRIME_LOCK_TTL_SECONDS):
        logger.info("Monthly quota priming already running, skip this run.")
        return 0

    try:
        with Session(engine) as session:
            users = session.exec(select(User).where(User.plan == Plan.premium.value)).all()
            if not users:
                logger.info("No premium users found for %s.", period_month)
                return 0

            primed = 0
            for user in users:
                try:
                    for feature in FeatureType:
                        crud.get_or_create_quota_counter(
                            session=session,
                            user_id=user.id,
                            tenant_id=user.tenant_id,
                            feature_type=feature.value,
                            period_month=period_month,
                        )
                    primed += 1
                except Exception as exc:
                    session.rollback()
                    logger.error("Failed to prime quotas for user %s: %s", user.id, exc)

            logger.info("Monthly quotas primed: month=%s users=%d", period_month, primed)
            return primed
    finally:
        release_lock(redis_client, PRIME_LOCK_KEY, lock_value)
