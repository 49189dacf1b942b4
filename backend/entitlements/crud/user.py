"""用户 CRUD 操作"""
import logging
from collections.abc import Callable

from sqlalchemy import update
from sqlmodel import Session, select

from entitlements.api.errors import AppError
from entitlements.core.config import settings
from entitlements.models import User, utc_now
from entitlements.services.transitions import SubscriptionState

logger = logging.getLogger(__name__)


def get(*, session: Session, user_id: str) -> User | None:
    return session.get(User, user_id)


def get_by_device_id(*, session: Session, device_id: str) -> User | None:
    """根据设备 ID 查询用户"""
    statement = select(User).where(User.device_id == device_id)
    return session.exec(statement).first()


def get_by_revenuecat_id(*, session: Session, app_user_id: str) -> User | None:
    """根据已关联的 RevenueCat app_user_id 查询用户"""
    statement = select(User).where(User.revenuecat_app_user_id == app_user_id)
    return session.exec(statement).first()


def create(*, session: Session, device_id: str, tenant_id: str | None = None) -> User:
    """创建新用户（注册即 free 套餐）"""
    user = User(device_id=device_id, tenant_id=tenant_id or settings.DEFAULT_TENANT_ID)
    session.add(user)
    session.commit()
    session.refresh(user)
    return user


def get_or_create_by_device_id(
    *, session: Session, device_id: str, tenant_id: str | None = None
) -> User:
    """根据设备 ID 获取或创建用户"""
    user = get_by_device_id(session=session, device_id=device_id)
    if user:
        return user
    return create(session=session, device_id=device_id, tenant_id=tenant_id)


def apply_subscription_state(
    *,
    session: Session,
    user: User,
    transform: Callable[[SubscriptionState], SubscriptionState],
    commit: bool = True,
) -> User:
    """
    写入订阅状态（两条写入路径的唯一入口）

    读取当前快照 -> transform 计算新状态 -> 带版本号条件 UPDATE。
    版本号不匹配说明另一条路径刚写过，重新读取后在最新状态上再算一遍，
    这样 started_at、外部 ID 之类的合并字段不会被并发写覆盖丢失。

    Raises:
        AppError: 重试次数用完仍然冲突（409001）
    """
    for attempt in range(1, settings.SUBSCRIPTION_UPDATE_MAX_RETRIES + 1):
        version = user.subscription_version
        current = SubscriptionState.from_user(user)
        new_state = transform(current)
        if new_state == current:
            return user

        stmt = (
            update(User)
            .where(User.id == user.id, User.subscription_version == version)  # type: ignore[arg-type]
            .values(
                **new_state.column_values(),
                subscription_version=version + 1,
                updated_at=utc_now(),
            )
            .execution_options(synchronize_session=False)
        )
        result = session.exec(stmt)  # type: ignore[call-overload]
        if result.rowcount == 1:
            if commit:
                session.commit()
            session.refresh(user)
            logger.info(
                "Subscription state updated: user=%s plan=%s->%s status=%s->%s version=%d",
                user.id,
                current.plan,
                new_state.plan,
                current.status,
                new_state.status,
                version + 1,
            )
            return user

        logger.warning(
            "Subscription version conflict for user %s (attempt %d, version %d)",
            user.id,
            attempt,
            version,
        )
        session.refresh(user)

    raise AppError(code=409001, message="Concurrent subscription update, retry later", status_code=409)
