#!/usr/bin/env python
# -*- coding: utf-8 -*-
"""
セッション照会・ログアウトAPI
"""

import logging

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse

from core.auth import get_current_user
from core.config import Config

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/auth", tags=["auth"])

@router.get("/session")
async def get_session(request: Request):
    """現在のセッション"""
    user = get_current_user(request)
    if not user:
        return {"user": None, "provider": None}
    return {
        "user": {
            "id": user.get('id'),
            "email": user.get('email'),
            "name": user.get('name'),
            "avatar_url": user.get('avatar_url'),
            "provider": user.get('provider'),
        },
        "provider": user.get('provider'),
    }

@router.post("/logout")
async def logout():
    """セッションCookieを削除"""
    response = JSONResponse({"success": True})
    response.delete_cookie(Config.SESSION_COOKIE_NAME, path='/')
    return response
