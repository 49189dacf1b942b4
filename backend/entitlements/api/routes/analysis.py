"""
AI 分析路由模块

所有被配额计量的功能入口：先检查配额，调用 AI，成功后才计数。
AI 调用失败时不消耗配额。
"""
from __future__ import annotations

from fastapi import APIRouter

from entitlements.api.deps import CurrentUser, SessionDep
from entitlements.api.schemas import AnalysisData, AnalysisRequest, ApiEnvelope
from entitlements.enums import FeatureType
from entitlements.integrations.ai_client import ai_client
from entitlements.services import quota_ledger

router = APIRouter(prefix="/analysis", tags=["analysis"])


@router.post("/{feature_type}", response_model=ApiEnvelope)
def analyze(
    session: SessionDep,
    current_user: CurrentUser,
    feature_type: FeatureType,
    body: AnalysisRequest,
) -> ApiEnvelope:
    """
    请求路径: POST /api/v1/analysis/{photo|ocr|text|report}

    Raises:
        AppError: 配额已用完（429001，data 中带 used/limit/reset_at）或 AI 调用失败
    """
    with quota_ledger.metered(session=session, user=current_user, feature_type=feature_type) as quota:
        result = ai_client.analyze(
            feature_type=feature_type, image_url=body.image_url, text=body.text
        )

    # 退出 with 后 quota.used 才是计入后的值
    return ApiEnvelope(
        data=AnalysisData(
            feature_type=feature_type,
            result=result.output,
            used=quota.used,
            limit=quota.limit,
        )
    )
