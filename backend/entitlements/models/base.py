"""
基础模型模块

定义所有模型共用的工具函数。
"""
import uuid
from datetime import datetime, timezone

from sqlmodel import SQLModel


def utc_now() -> datetime:
    """获取当前 UTC 时间"""
    return datetime.now(timezone.utc)


def new_id() -> str:
    """生成字符串形式的 UUID 主键"""
    return str(uuid.uuid4())


__all__ = ["SQLModel", "utc_now", "new_id"]
