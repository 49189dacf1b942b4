"""
RevenueCat app_user_id -> 内部用户

1. 先按已关联的 revenuecat_app_user_id 查
2. 查不到时，如果 app_user_id 本身是合法 UUID，就当作内部用户主键再查一次
   （App 用内部用户 ID 登录 RevenueCat、但还没同步过的新账号）
"""
from __future__ import annotations

import logging
import uuid

from sqlmodel import Session

from entitlements import crud
from entitlements.models import User

logger = logging.getLogger(__name__)


def _as_user_id(value: str) -> str | None:
    try:
        return str(uuid.UUID(value))
    except ValueError:
        return None


def match_user(*, session: Session, external_user_id: str | None) -> User | None:
    if not external_user_id:
        return None

    user = crud.get_user_by_revenuecat_id(session=session, app_user_id=external_user_id)
    if user:
        return user

    user_id = _as_user_id(external_user_id)
    if user_id is None:
        return None
    user = crud.get_user(session=session, user_id=user_id)
    if user:
        logger.info("Matched app_user_id %s by primary key fallback", external_user_id)
    return user
