"""
API 请求/响应数据模型（Schema）

使用 Pydantic 进行数据验证和序列化，这些模型不是数据库表。
"""
from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from entitlements.enums import FeatureType, Plan, SubscriptionStatus

# ============================================================
# 通用响应模型
# ============================================================


class TokenPayload(BaseModel):
    """JWT Token 载荷，sub 为用户 ID"""
    sub: str | None = None


class ApiEnvelope(BaseModel):
    """
    API 统一响应格式

    示例响应：
        {"code": 0, "message": "success", "data": {...}}
        {"code": 429001, "message": "Monthly photo quota of 10 reached", "data": {...}}
    """
    code: int = 0
    message: str = "success"
    data: Any | None = None


# ============================================================
# 认证
# ============================================================


class AuthLoginRequest(BaseModel):
    """设备登录请求，设备 ID 不存在时自动注册"""
    device_id: str = Field(min_length=1, max_length=128)
    tenant_id: str | None = Field(default=None, min_length=1, max_length=64)


class UserProfile(BaseModel):
    id: str
    tenant_id: str
    device_id: str
    plan: Plan
    subscription_status: SubscriptionStatus


class AuthLoginData(BaseModel):
    access_token: str
    expires_in: int  # 秒
    user: UserProfile


# ============================================================
# 订阅
# ============================================================


class _CamelModel(BaseModel):
    # RevenueCat SDK 的 CustomerInfo 是 camelCase，且不同平台字段不全
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")


class EntitlementRecord(_CamelModel):
    """CustomerInfo.entitlements.active 里的单个 entitlement"""
    identifier: str | None = None
    is_active: bool = False
    will_renew: bool | None = None  # 部分 SDK 不返回
    period_type: str | None = None
    latest_purchase_date: datetime | None = None
    original_purchase_date: datetime | None = None
    expiration_date: datetime | None = None
    product_identifier: str | None = None
    store: str | None = None


class EntitlementsInfo(_CamelModel):
    active: dict[str, EntitlementRecord] = Field(default_factory=dict)
    all: dict[str, Any] = Field(default_factory=dict)

    @field_validator("active", "all", mode="before")
    @classmethod
    def _null_as_empty_map(cls, v: Any) -> Any:
        return {} if v is None else v


class CustomerInfo(_CamelModel):
    """
    RevenueCat SDK 的 CustomerInfo（只取用到的字段）

    Ref: https://www.revenuecat.com/docs/api-reference/customer-info
    """
    entitlements: EntitlementsInfo = Field(default_factory=EntitlementsInfo)
    active_subscriptions: list[str] = Field(default_factory=list)
    all_purchased_product_identifiers: list[str] = Field(default_factory=list)
    original_app_user_id: str | None = None
    management_url: str | None = Field(default=None, alias="managementURL")

    @field_validator("active_subscriptions", "all_purchased_product_identifiers", mode="before")
    @classmethod
    def _null_as_empty_list(cls, v: Any) -> Any:
        return [] if v is None else v

    @field_validator("entitlements", mode="before")
    @classmethod
    def _null_as_empty_entitlements(cls, v: Any) -> Any:
        return {} if v is None else v


class SubscriptionSyncRequest(_CamelModel):
    """客户端购买/恢复购买完成后上报的数据"""
    customer_info: CustomerInfo


class SubscriptionSyncData(BaseModel):
    synced: bool = True
    plan: Plan
    status: SubscriptionStatus
    expires_at: datetime | None = None


class SubscriptionStatusData(BaseModel):
    plan: Plan
    status: SubscriptionStatus
    started_at: datetime | None = None
    expires_at: datetime | None = None
    product_id: str | None = None
    store: str | None = None


class WebhookAckData(BaseModel):
    received: bool = True
    duplicate: bool = False
    user_found: bool = True


# ============================================================
# 配额
# ============================================================


class FeatureUsage(BaseModel):
    used: int
    limit: int
    remaining: int


class QuotaUsageData(BaseModel):
    month: str  # YYYY-MM（UTC）
    plan: Plan
    reset_at: datetime  # 下个 UTC 月第一天
    features: dict[FeatureType, FeatureUsage]


class AnalysisRequest(BaseModel):
    """AI 分析请求，图片类功能传 image_url，文本类功能传 text"""
    image_url: str | None = Field(default=None, min_length=1, max_length=1024)
    text: str | None = Field(default=None, min_length=1, max_length=4000)


class AnalysisData(BaseModel):
    feature_type: FeatureType
    result: dict[str, Any]
    used: int  # 本次计入后的已用次数
    limit: int
