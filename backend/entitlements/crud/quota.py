"""配额计数 CRUD 操作"""
from sqlalchemy import update
from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, select

from entitlements.models import QuotaCounter, utc_now


def get_counter(
    *, session: Session, user_id: str, tenant_id: str, feature_type: str, period_month: str
) -> QuotaCounter | None:
    stmt = select(QuotaCounter).where(
        QuotaCounter.user_id == user_id,
        QuotaCounter.tenant_id == tenant_id,
        QuotaCounter.feature_type == feature_type,
        QuotaCounter.period_month == period_month,
    )
    return session.exec(stmt).first()


def get_or_create_counter(
    *, session: Session, user_id: str, tenant_id: str, feature_type: str, period_month: str
) -> QuotaCounter:
    """获取当月计数，不存在则创建（used_count=0）"""
    counter = get_counter(
        session=session,
        user_id=user_id,
        tenant_id=tenant_id,
        feature_type=feature_type,
        period_month=period_month,
    )
    if counter:
        return counter

    counter = QuotaCounter(
        user_id=user_id,
        tenant_id=tenant_id,
        feature_type=feature_type,
        period_month=period_month,
        used_count=0,
    )
    try:
        session.add(counter)
        session.commit()
    except IntegrityError:
        # 并发请求先创建了同一行
        session.rollback()
        existing = get_counter(
            session=session,
            user_id=user_id,
            tenant_id=tenant_id,
            feature_type=feature_type,
            period_month=period_month,
        )
        if existing is None:
            raise
        return existing
    session.refresh(counter)
    return counter


def increment_counter(
    *,
    session: Session,
    user_id: str,
    tenant_id: str,
    feature_type: str,
    period_month: str,
    limit: int | None = None,
) -> bool:
    """
    计数 +1

    传入 limit 时是单条条件 UPDATE（used_count < limit 才加），由数据库保证不超额。
    返回是否真的加上了。
    """
    get_or_create_counter(
        session=session,
        user_id=user_id,
        tenant_id=tenant_id,
        feature_type=feature_type,
        period_month=period_month,
    )
    stmt = (
        update(QuotaCounter)
        .where(
            QuotaCounter.user_id == user_id,  # type: ignore[arg-type]
            QuotaCounter.tenant_id == tenant_id,  # type: ignore[arg-type]
            QuotaCounter.feature_type == feature_type,  # type: ignore[arg-type]
            QuotaCounter.period_month == period_month,  # type: ignore[arg-type]
        )
        .values(used_count=QuotaCounter.used_count + 1, updated_at=utc_now())
        .execution_options(synchronize_session=False)
    )
    if limit is not None:
        stmt = stmt.where(QuotaCounter.used_count < limit)  # type: ignore[arg-type]
    result = session.exec(stmt)  # type: ignore[call-overload]
    session.commit()
    return result.rowcount == 1


def list_counters(
    *, session: Session, user_id: str, tenant_id: str, period_month: str
) -> list[QuotaCounter]:
    """只读查询某月所有功能的计数，不会创建记录"""
    stmt = select(QuotaCounter).where(
        QuotaCounter.user_id == user_id,
        QuotaCounter.tenant_id == tenant_id,
        QuotaCounter.period_month == period_month,
    )
    return list(session.exec(stmt).all())
