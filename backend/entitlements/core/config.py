"""
应用配置模块

使用 Pydantic Settings 管理环境变量配置。
配置从项目根目录的 .env 文件读取，支持类型验证和默认值。

产品相关的配置（事件类型集合、套餐配额表、已知产品 ID）不在这里，
见 entitlements/services/config_service.py。
"""
import secrets  # 用于生成安全的随机字符串
import warnings  # 用于发出警告
from typing import Annotated, Any, Literal

from pydantic import (
    AnyUrl,
    BeforeValidator,
    HttpUrl,
    PostgresDsn,
    computed_field,
    model_validator,
)
from pydantic_settings import BaseSettings, SettingsConfigDict
from typing_extensions import Self


def parse_cors(v: Any) -> list[str] | str:
    """
    解析 CORS 配置值

    支持逗号分隔的字符串或列表两种格式。

    Raises:
        ValueError: 当输入格式不正确时
    """
    if isinstance(v, str) and not v.startswith("["):
        return [i.strip() for i in v.split(",") if i.strip()]
    elif isinstance(v, list | str):
        return v
    raise ValueError(v)


class Settings(BaseSettings):
    """
    应用配置类

    配置来源优先级：
    1. 环境变量（最高优先级）
    2. .env 文件
    3. 代码中的默认值（最低优先级）
    """
    model_config = SettingsConfigDict(
        env_file="../.env",
        env_ignore_empty=True,
        extra="ignore",
    )
    API_V1_STR: str = "/api/v1"
    SECRET_KEY: str = secrets.token_urlsafe(32)  # JWT 签名密钥（默认随机生成）
    ACCESS_TOKEN_EXPIRE_DAYS: int = 7
    ENVIRONMENT: Literal["local", "staging", "production"] = "local"

    BACKEND_CORS_ORIGINS: Annotated[
        list[AnyUrl] | str, BeforeValidator(parse_cors)
    ] = []

    @computed_field  # type: ignore[prop-decorator]
    @property
    def all_cors_origins(self) -> list[str]:
        return [str(origin).rstrip("/") for origin in self.BACKEND_CORS_ORIGINS]

    PROJECT_NAME: str
    SENTRY_DSN: HttpUrl | None = None

    # 多租户：未显式指定租户的用户归属默认租户
    DEFAULT_TENANT_ID: str = "default"

    POSTGRES_SERVER: str
    POSTGRES_PORT: int = 5432
    POSTGRES_USER: str
    POSTGRES_PASSWORD: str = ""
    POSTGRES_DB: str = ""

    @computed_field  # type: ignore[prop-decorator]
    @property
    def SQLALCHEMY_DATABASE_URI(self) -> PostgresDsn:
        return PostgresDsn.build(
            scheme="postgresql+psycopg",
            username=self.POSTGRES_USER,
            password=self.POSTGRES_PASSWORD,
            host=self.POSTGRES_SERVER,
            port=self.POSTGRES_PORT,
            path=self.POSTGRES_DB,
        )

    # Redis 配置（定时任务分布式锁）
    REDIS_HOST: str = "localhost"
    REDIS_PORT: int = 6379
    REDIS_DB: int = 0
    REDIS_PASSWORD: str | None = None

    # RevenueCat 配置（iOS/Android 订阅管理）
    REVENUECAT_WEBHOOK_SECRET: str | None = None  # Webhook Authorization 头部的值
    REVENUECAT_ENTITLEMENT_ID: str = "premium"  # 客户端同步时优先匹配的 entitlement

    # 订阅状态写入
    # 开启后，provider 时间戳早于已应用事件的 webhook 只记录审计，不修改状态
    SUBSCRIPTION_ENFORCE_EVENT_ORDER: bool = False
    SUBSCRIPTION_UPDATE_MAX_RETRIES: int = 3  # 版本号冲突时的最大重试次数

    # 配额：开启后 increment 使用单条条件 UPDATE，严格不超额
    QUOTA_STRICT: bool = False

    # AI 分析服务（被配额计量的昂贵操作）
    AI_MOCK: bool = True  # 本地开发/测试使用模拟结果
    AI_BASE_URL: str = "https://ai.example.com"
    AI_API_KEY: str | None = None
    AI_TIMEOUT_SECONDS: float = 60.0

    def _check_default_secret(self, var_name: str, value: str | None) -> None:
        """
        检查敏感配置是否使用了默认值 "changethis"

        本地环境只警告，其他环境直接报错。
        """
        if value == "changethis":
            message = (
                f'The value of {var_name} is "changethis", '
                "for security, please change it, at least for deployments."
            )
            if self.ENVIRONMENT == "local":
                warnings.warn(message, stacklevel=1)
            else:
                raise ValueError(message)

    @model_validator(mode="after")
    def _enforce_non_default_secrets(self) -> Self:
        self._check_default_secret("SECRET_KEY", self.SECRET_KEY)
        self._check_default_secret("POSTGRES_PASSWORD", self.POSTGRES_PASSWORD)
        self._check_default_secret("REVENUECAT_WEBHOOK_SECRET", self.REVENUECAT_WEBHOOK_SECRET)

        return self


# 全局配置实例，整个应用共享
settings = Settings()  # type: ignore
