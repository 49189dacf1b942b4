"""
自定义异常模块

所有业务异常都继承自 AppError，在 main.py 中有统一的异常处理器。
"""
from __future__ import annotations

from datetime import datetime
from typing import Any


class AppError(Exception):
    """
    应用自定义异常类

    - code: 业务错误码（用于前端区分不同错误）
    - message: 错误消息
    - status_code: HTTP 状态码
    - data: 附加数据（可选），原样放进响应的 data 字段

    使用示例：
        raise AppError(code=400001, message="Invalid webhook payload", status_code=400)
    """

    def __init__(
        self,
        *,
        code: int,
        message: str,
        status_code: int = 400,
        data: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message)
        self.code = code
        self.message = message
        self.status_code = status_code
        self.data = data


def quota_exceeded(*, feature_type: str, used: int, limit: int, reset_at: datetime) -> AppError:
    """
    创建"配额已用完"异常（便捷函数）

    响应里带上已用次数、上限和下次重置时间（下个 UTC 月的第一天）。
    """
    return AppError(
        code=429001,
        message=f"Monthly {feature_type} quota of {limit} reached",
        status_code=429,
        data={
            "feature_type": feature_type,
            "used": used,
            "limit": limit,
            "remaining": 0,
            "reset_at": reset_at.isoformat(),
        },
    )
