"""
枚举类型定义模块

所有枚举都继承自 str 和 Enum，既可以直接当字符串存库，又有枚举的类型约束。
"""
from enum import Enum


class Plan(str, Enum):
    """
    套餐枚举

    - free: 免费（注册时的默认值）
    - premium: 付费订阅
    - unlimited: 内部账号（管理员等），不受配额限制
    """
    free = "free"
    premium = "premium"
    unlimited = "unlimited"


class SubscriptionStatus(str, Enum):
    """
    订阅状态枚举

    - active: 正常
    - canceled: 已取消续费或扣款异常（仍保留权益，仅作标记）
    - expired: 已过期
    """
    active = "active"
    canceled = "canceled"
    expired = "expired"


class EventClass(str, Enum):
    """
    Webhook 事件分类

    每个事件在标准化时只分类一次，后续处理只看这个分类。
    """
    activation = "activation"
    deactivation = "deactivation"
    billing_issue = "billing_issue"
    other = "other"


class FeatureType(str, Enum):
    """
    计量功能类型（每种功能独立计数）

    - photo: 拍照识别餐食
    - ocr: 营养标签/小票识别
    - text: 文本描述分析
    - report: AI 报告
    """
    photo = "photo"
    ocr = "ocr"
    text = "text"
    report = "report"


class Store(str, Enum):
    """购买来源商店"""
    app_store = "app_store"
    play_store = "play_store"
    stripe = "stripe"
    promotional = "promotional"
