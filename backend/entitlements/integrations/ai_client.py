"""
AI 分析服务集成模块

被配额计量的昂贵操作：餐食照片识别、标签/小票 OCR、文本描述分析、AI 报告。
所有功能走同一个 HTTP 接口，按 feature 区分模型。

支持模拟模式（AI_MOCK），本地开发和测试时不调用真实服务。
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Any

import httpx

from entitlements.api.errors import AppError
from entitlements.core.config import settings
from entitlements.enums import FeatureType

_ANALYZE_PATH = "/v1/analyze"

# 需要图片输入的功能
_IMAGE_FEATURES = {FeatureType.photo, FeatureType.ocr}


@dataclass(frozen=True)
class AnalysisResult:
    feature_type: FeatureType
    output: dict[str, Any]
    request_id: str | None = None
    raw: dict[str, Any] | None = None


class AIClient:
    def __init__(self) -> None:
        self._mock = settings.AI_MOCK
        self._base_url = settings.AI_BASE_URL.rstrip("/")
        self._api_key = settings.AI_API_KEY
        self._timeout = settings.AI_TIMEOUT_SECONDS

    def _headers(self) -> dict[str, str]:
        if not self._api_key:
            raise AppError(code=500101, message="AI_API_KEY not configured", status_code=500)
        return {
            "Authorization": f"Bearer {self._api_key}",
            "Content-Type": "application/json",
        }

    def analyze(
        self,
        *,
        feature_type: FeatureType,
        image_url: str | None = None,
        text: str | None = None,
    ) -> AnalysisResult:
        """
        调用 AI 分析

        Raises:
            AppError: 输入缺失（400）、服务未配置（500）、上游失败或返回格式不对（502）
        """
        if feature_type in _IMAGE_FEATURES and not image_url:
            raise AppError(code=400201, message="image_url is required", status_code=400)
        if feature_type not in _IMAGE_FEATURES and not (text or image_url):
            raise AppError(code=400202, message="text or image_url is required", status_code=400)

        if self._mock:
            return AnalysisResult(
                feature_type=feature_type,
                output={"summary": f"mock {feature_type.value} analysis", "items": []},
                raw={"mock": True},
            )

        payload: dict[str, Any] = {"feature": feature_type.value, "input": {}}
        if image_url:
            payload["input"]["image_url"] = image_url
        if text:
            payload["input"]["text"] = text

        try:
            with httpx.Client(timeout=self._timeout) as client:
                r = client.post(f"{self._base_url}{_ANALYZE_PATH}", json=payload, headers=self._headers())
                r.raise_for_status()
                data = r.json()
        except httpx.HTTPError as e:
            raise AppError(code=502201, message=f"AI analyze error: {e}", status_code=502)

        output = data.get("output") if isinstance(data, dict) else None
        if not isinstance(output, dict):
            raise AppError(code=502202, message="AI analyze invalid response", status_code=502)

        return AnalysisResult(
            feature_type=feature_type,
            output=output,
            request_id=str(data.get("request_id")) if data.get("request_id") is not None else None,
            raw=data,
        )


# 全局客户端实例
ai_client = AIClient()
