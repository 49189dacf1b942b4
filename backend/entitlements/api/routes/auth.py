"""
认证路由模块

设备登录：设备 ID 不存在时自动注册（新用户为 free 套餐）。
"""
from __future__ import annotations

from datetime import timedelta

from fastapi import APIRouter

from entitlements import crud
from entitlements.api.deps import SessionDep
from entitlements.api.schemas import ApiEnvelope, AuthLoginData, AuthLoginRequest, UserProfile
from entitlements.core import security
from entitlements.core.config import settings

router = APIRouter(prefix="/auth", tags=["auth"])


@router.post("/login", response_model=ApiEnvelope)
def login(session: SessionDep, body: AuthLoginRequest) -> ApiEnvelope:
    """
    用户登录接口

    请求路径: POST /api/v1/auth/login
    """
    user = crud.get_or_create_user_by_device_id(
        session=session, device_id=body.device_id, tenant_id=body.tenant_id
    )

    access_token_expires = timedelta(days=settings.ACCESS_TOKEN_EXPIRE_DAYS)
    token = security.create_access_token(user.id, expires_delta=access_token_expires)

    profile = UserProfile(
        id=user.id,
        tenant_id=user.tenant_id,
        device_id=user.device_id,
        plan=user.plan,
        subscription_status=user.subscription_status,
    )
    data = AuthLoginData(
        access_token=token,
        expires_in=int(access_token_expires.total_seconds()),
        user=profile,
    )
    return ApiEnvelope(data=data)
