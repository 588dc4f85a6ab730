#!/usr/bin/env python
# -*- coding: utf-8 -*-
"""
認証ヘルパー
カスタムセッションCookie（カカオログイン）とSupabase Authの両方に対応
"""

import base64
import hashlib
import hmac
import json
import logging
import time
from typing import Optional, Dict

from fastapi import HTTPException, Request

from .config import Config
from .database import Database

logger = logging.getLogger(__name__)

SESSION_DURATION_MS = Config.SESSION_MAX_AGE_DAYS * 24 * 60 * 60 * 1000

def _sign(payload: str, secret: str) -> str:
    return hmac.new(secret.encode('utf-8'), payload.encode('utf-8'), hashlib.sha256).hexdigest()

def encode_session(user: Dict, now_ms: Optional[int] = None) -> str:
    """セッションCookieの値を生成（UTF-8 JSON → Base64 + 署名）"""
    secret = Config.get_session_secret()
    if not secret:
        raise ValueError("SESSION_SECRET is not set")

    now_ms = now_ms if now_ms is not None else int(time.time() * 1000)
    payload = {"user": user, "expiresAt": now_ms + SESSION_DURATION_MS}
    raw = json.dumps(payload, ensure_ascii=False).encode('utf-8')
    encoded = base64.b64encode(raw).decode('ascii')
    return f"{encoded}.{_sign(encoded, secret)}"

def decode_session(value: str) -> Optional[Dict]:
    """Cookie値を検証してデコード。署名不一致・期限切れ・不正な値はNone"""
    if not value:
        return None

    secret = Config.get_session_secret()
    if not secret:
        logger.warning("SESSION_SECRETが未設定のためセッションCookieを無視します")
        return None

    encoded, _, signature = value.rpartition('.')
    if not encoded or not hmac.compare_digest(signature.encode('utf-8'), _sign(encoded, secret).encode('utf-8')):
        logger.warning("セッションCookieの署名が一致しません")
        return None

    try:
        data = json.loads(base64.b64decode(encoded).decode('utf-8'))
    except (ValueError, UnicodeDecodeError) as e:
        logger.warning(f"セッションCookieの解析に失敗しました: {e}")
        return None

    if not isinstance(data, dict) or not isinstance(data.get('user'), dict):
        return None
    expires_at = data.get('expiresAt')
    if isinstance(expires_at, bool) or not isinstance(expires_at, (int, float)):
        return None
    if expires_at < int(time.time() * 1000):
        return None
    return data

def _user_from_supabase(request: Request) -> Optional[Dict]:
    header = request.headers.get('authorization', '')
    if not header.lower().startswith('bearer '):
        return None
    token = header[7:].strip()
    client = Database.get_client()
    if not token or client is None:
        return None

    try:
        response = client.auth.get_user(token)
    except Exception as e:
        logger.warning(f"Supabase Authの検証に失敗しました: {e}")
        return None

    user = getattr(response, 'user', None)
    if user is None:
        return None
    metadata = getattr(user, 'user_metadata', None) or {}
    app_metadata = getattr(user, 'app_metadata', None) or {}
    return {
        "id": user.id,
        "email": user.email,
        "name": metadata.get('name') or metadata.get('full_name'),
        "avatar_url": metadata.get('avatar_url') or metadata.get('picture'),
        "provider": app_metadata.get('provider', 'google'),
    }

def get_current_user(request: Request) -> Optional[Dict]:
    """ログイン中のユーザー（未ログインならNone）"""
    session = decode_session(request.cookies.get(Config.SESSION_COOKIE_NAME, ''))
    if session:
        user = dict(session['user'])
        user.setdefault('provider', 'kakao')
        return user
    return _user_from_supabase(request)

def require_user(request: Request) -> Dict:
    user = get_current_user(request)
    if not user or not user.get('id'):
        raise HTTPException(status_code=401, detail="로그인이 필요합니다")
    return user

def is_admin_email(email: Optional[str]) -> bool:
    if not email:
        return False
    return email.lower() in Config.get_admin_emails()

def require_admin(request: Request) -> Dict:
    """管理者のみ許可"""
    user = get_current_user(request)
    if not user or not is_admin_email(user.get('email')):
        raise HTTPException(status_code=403, detail="관리자 권한이 필요합니다")
    return user
