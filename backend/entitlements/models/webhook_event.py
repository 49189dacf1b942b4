"""
Webhook 事件模型模块

RevenueCat 推送的每个事件都原样落库，用于去重和审计。
"""
from datetime import datetime

from sqlalchemy import JSON, Column, DateTime, Integer, String
from sqlmodel import Field, SQLModel

from .base import utc_now


class WebhookEvent(SQLModel, table=True):
    """
    Webhook 事件记录模型

    以 provider 的 event_id 作为主键，数据库唯一约束保证同一事件只处理一次。
    记录只追加，不更新也不删除。

    字段说明：
    - event_id: RevenueCat 事件 ID（主键，幂等键）
    - event_type: 事件类型（如 "INITIAL_PURCHASE", "EXPIRATION"）
    - resolved_user_id: 处理时匹配到的用户 ID，为空表示未找到用户
    - external_user_id / original_external_user_id: 事件中的 app_user_id / original_app_user_id
    - price_cents: 以购买币种计的价格（分）
    - raw_payload: 完整原始数据，用于事后排查和重放
    - received_at: 接收时间
    """
    __tablename__ = "webhook_events"

    event_id: str = Field(sa_column=Column(String(128), primary_key=True))
    event_type: str = Field(sa_column=Column(String(64), nullable=False))
    resolved_user_id: str | None = Field(
        default=None, sa_column=Column(String(36), index=True, nullable=True)
    )
    external_user_id: str | None = Field(
        default=None, sa_column=Column(String(128), index=True, nullable=True)
    )
    original_external_user_id: str | None = Field(
        default=None, sa_column=Column(String(128), nullable=True)
    )
    product_id: str | None = Field(default=None, sa_column=Column(String(128), nullable=True))
    store: str | None = Field(default=None, sa_column=Column(String(32), nullable=True))
    environment: str | None = Field(default=None, sa_column=Column(String(32), nullable=True))
    price_cents: int | None = Field(default=None, sa_column=Column(Integer, nullable=True))
    currency: str | None = Field(default=None, sa_column=Column(String(8), nullable=True))
    original_transaction_id: str | None = Field(
        default=None, sa_column=Column(String(128), nullable=True)
    )
    expires_at: datetime | None = Field(
        default=None, sa_column=Column(DateTime(timezone=True), nullable=True)
    )
    purchased_at: datetime | None = Field(
        default=None, sa_column=Column(DateTime(timezone=True), nullable=True)
    )
    event_timestamp: datetime | None = Field(
        default=None, sa_column=Column(DateTime(timezone=True), nullable=True)
    )
    raw_payload: dict | None = Field(default=None, sa_column=Column(JSON))
    received_at: datetime = Field(
        default_factory=utc_now,
        sa_column=Column(DateTime(timezone=True), nullable=False),
    )
