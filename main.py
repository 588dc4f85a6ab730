#!/usr/bin/env python
# -*- coding: utf-8 -*-
"""
AC'SCENT IDENTITY - メインアプリケーション
ショップ・マイページ・管理画面の全APIを統合
"""

import logging
from datetime import datetime

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from core.config import Config
from core.database import Database
from core.utils import get_timezone

from api.auth_api import router as auth_router
from api.cart import router as cart_router
from api.checkout import router as checkout_router
from api.coupons import router as coupons_router
from api.orders import router as orders_router
from api.payments import router as payments_router
from api.referral import router as referral_router
from api.user_data import router as user_router
from api.qr import router as qr_router
from api.admin_analysis import router as admin_analysis_router
from api.admin_orders import router as admin_orders_router
from api.admin_members import router as admin_members_router
from api.admin_qr import router as admin_qr_router
from analytics.dashboard_api import router as dashboard_router
from analytics.visitors_api import router as visitors_router
from analytics.datacenter_api import router as datacenter_router
from analytics.inventory_api import router as inventory_router

# ログ設定
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

# FastAPIアプリケーションの作成
app = FastAPI(
    title=Config.APP_NAME,
    version=Config.APP_VERSION,
    description="AI 맞춤 향수 쇼핑몰 및 관리자 API"
)

# CORS設定
app.add_middleware(
    CORSMiddleware,
    allow_origins=Config.get_cors_origins(),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    """エラーレスポンスを {"error": ...} 形式に統一"""
    if isinstance(exc.detail, dict):
        content = exc.detail
    else:
        content = {"error": exc.detail}
    return JSONResponse(status_code=exc.status_code, content=content, headers=getattr(exc, 'headers', None))

for router in (
    auth_router, cart_router, checkout_router, coupons_router, orders_router,
    payments_router, referral_router, user_router, qr_router,
    admin_analysis_router, admin_orders_router, admin_members_router, admin_qr_router,
    dashboard_router, visitors_router, datacenter_router, inventory_router,
):
    app.include_router(router)

@app.on_event("startup")
async def startup_event():
    """アプリケーション起動時の処理"""
    logger.info(f"{Config.APP_NAME} を起動中...")
    if Database.get_client():
        logger.info("Supabaseクライアントは初期化済みです")
    else:
        logger.warning("Supabaseクライアントの初期化に失敗しました")
    if not Config.is_payment_available():
        logger.warning("PORTONE_API_SECRETが未設定のため決済検証は利用できません")
    if not Config.get_session_secret():
        logger.warning("SESSION_SECRETが未設定のためカカオログインのセッションは無効です")

@app.get("/")
async def root():
    """エンドポイント一覧"""
    return {
        "message": Config.APP_NAME,
        "version": Config.APP_VERSION,
        "status": "running",
        "endpoints": {
            "cart": "/api/cart",
            "orders": "/api/orders",
            "checkout": "/api/checkout/quote",
            "coupons": "/api/coupons",
            "my_page": "/api/user/data",
            "admin_dashboard": "/api/admin/analytics",
            "visitors": "/api/admin/analytics/visitors",
            "datacenter": "/api/admin/datacenter",
            "health": "/health",
            "docs": "/docs"
        }
    }

@app.get("/health")
async def health_check():
    """ヘルスチェック"""
    try:
        db_status = "connected" if Database.test_connection() else "disconnected"
        return {
            "status": "healthy",
            "database": db_status,
            "timestamp": datetime.now(get_timezone()).isoformat(),
            "version": Config.APP_VERSION
        }
    except Exception as e:
        return {
            "status": "unhealthy",
            "error": str(e),
            "timestamp": datetime.now(get_timezone()).isoformat()
        }

if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8080)
