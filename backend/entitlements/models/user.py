"""
用户模型模块

用户表内嵌订阅状态字段。webhook 和客户端同步两条路径都写这些字段，
统一通过 crud.user.apply_subscription_state 写入。
"""
from datetime import datetime

from sqlalchemy import Column, DateTime, Integer, String
from sqlmodel import Field, SQLModel

from entitlements.enums import Plan, SubscriptionStatus

from .base import new_id, utc_now


class User(SQLModel, table=True):
    """
    用户模型

    字段说明：
    - id: 主键（UUID 字符串），也可以直接作为 RevenueCat 的 app_user_id
    - tenant_id: 租户 ID
    - device_id: 设备唯一标识，用于登录
    - plan: 套餐（注册时为 free）
    - subscription_status: 订阅状态
    - subscription_started_at: 首次成为付费用户的时间（设置后不再覆盖）
    - subscription_expires_at: 当前订阅到期时间（仅 premium 有意义）
    - subscription_product_id / subscription_store: 最近一次生效的产品和商店
    - revenuecat_app_user_id: RevenueCat 侧的用户标识（只会被非空值覆盖）
    - revenuecat_original_transaction_id: 原始交易 ID（同上）
    - subscription_version: 订阅字段的版本号，每次写入 +1，用于乐观并发控制
    - subscription_event_at: 已应用的最新 provider 事件时间
    """
    __tablename__ = "users"

    id: str = Field(
        default_factory=new_id,
        sa_column=Column(String(36), primary_key=True),
    )
    tenant_id: str = Field(sa_column=Column(String(64), index=True, nullable=False))
    device_id: str = Field(
        max_length=128,
        sa_column=Column(String(128), unique=True, index=True, nullable=False),
    )

    plan: Plan = Field(
        default=Plan.free, sa_column=Column(String(16), nullable=False, default=Plan.free.value)
    )
    subscription_status: SubscriptionStatus = Field(
        default=SubscriptionStatus.active,
        sa_column=Column(String(16), nullable=False, default=SubscriptionStatus.active.value),
    )
    subscription_started_at: datetime | None = Field(
        default=None, sa_column=Column(DateTime(timezone=True), nullable=True)
    )
    subscription_expires_at: datetime | None = Field(
        default=None, sa_column=Column(DateTime(timezone=True), nullable=True)
    )
    subscription_product_id: str | None = Field(
        default=None, sa_column=Column(String(128), nullable=True)
    )
    subscription_store: str | None = Field(
        default=None, sa_column=Column(String(32), nullable=True)
    )
    revenuecat_app_user_id: str | None = Field(
        default=None, sa_column=Column(String(128), index=True, nullable=True)
    )
    revenuecat_original_transaction_id: str | None = Field(
        default=None, sa_column=Column(String(128), nullable=True)
    )
    subscription_version: int = Field(
        default=0, sa_column=Column(Integer, nullable=False, default=0)
    )
    subscription_event_at: datetime | None = Field(
        default=None, sa_column=Column(DateTime(timezone=True), nullable=True)
    )

    created_at: datetime = Field(
        default_factory=utc_now,
        sa_column=Column(DateTime(timezone=True), nullable=False),
    )
    updated_at: datetime = Field(
        default_factory=utc_now,
        sa_column=Column(DateTime(timezone=True), nullable=False),
    )
