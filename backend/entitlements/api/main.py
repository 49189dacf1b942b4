"""
API 路由聚合模块

- auth: 设备登录
- subscription: 订阅状态、RevenueCat webhook、客户端同步、配额用量
- analysis: 被配额计量的 AI 功能
"""
from fastapi import APIRouter

from entitlements.api.routes import analysis, auth, subscription

api_router = APIRouter()

api_router.include_router(auth.router)  # /auth/*
api_router.include_router(subscription.router)  # /subscription/*
api_router.include_router(analysis.router)  # /analysis/*
