"""
配额计数模型模块
"""
from datetime import datetime

from sqlalchemy import Column, DateTime, Integer, String, UniqueConstraint
from sqlmodel import Field, SQLModel

from .base import new_id, utc_now


class QuotaCounter(SQLModel, table=True):
    """
    月度功能使用计数

    每个 (用户, 租户, 功能, 月份) 一行，月份为 UTC 的 "YYYY-MM"。
    新月份第一次检查或计数时才创建，旧月份的记录保留但不再读取。
    """
    __tablename__ = "quota_counters"
    __table_args__ = (
        UniqueConstraint(
            "user_id",
            "tenant_id",
            "feature_type",
            "period_month",
            name="uq_quota_counters_user_feature_month",
        ),
    )

    id: str = Field(
        default_factory=new_id,
        sa_column=Column(String(36), primary_key=True),
    )
    user_id: str = Field(sa_column=Column(String(36), index=True, nullable=False))
    tenant_id: str = Field(sa_column=Column(String(64), nullable=False))
    feature_type: str = Field(sa_column=Column(String(16), nullable=False))
    period_month: str = Field(sa_column=Column(String(7), nullable=False))
    used_count: int = Field(default=0, sa_column=Column(Integer, nullable=False, default=0))

    created_at: datetime = Field(
        default_factory=utc_now,
        sa_column=Column(DateTime(timezone=True), nullable=False),
    )
    updated_at: datetime = Field(
        default_factory=utc_now,
        sa_column=Column(DateTime(timezone=True), nullable=False),
    )
