"""
数据库模型定义模块

模型按功能拆分：
- user.py: 用户及内嵌的订阅状态
- webhook_event.py: RevenueCat webhook 事件审计
- quota.py: 月度功能使用计数
"""
from sqlmodel import SQLModel

from .base import new_id, utc_now
from .quota import QuotaCounter
from .user import User
from .webhook_event import WebhookEvent

__all__ = [
    "SQLModel",
    "utc_now",
    "new_id",
    "User",
    "WebhookEvent",
    "QuotaCounter",
]
