#!/usr/bin/env python
# -*- coding: utf-8 -*-
"""
設定管理モジュール
環境変数の読み込みと設定値の管理
"""

import os
import logging
from dotenv import load_dotenv

# 環境変数の読み込み
load_dotenv()

logger = logging.getLogger(__name__)

class Config:
    """アプリケーション設定"""

    # Supabase設定（動的に環境変数を取得）
    @classmethod
    def get_supabase_url(cls):
        return os.getenv('SUPABASE_URL')

    @classmethod
    def get_supabase_key(cls):
        return os.getenv('SUPABASE_KEY')

    @classmethod
    def get_admin_emails(cls):
        """管理者メール一覧（小文字）"""
        raw = os.getenv('ADMIN_EMAILS', '')
        return [e.strip().lower() for e in raw.split(',') if e.strip()]

    # PortOne決済設定
    @classmethod
    def get_portone_api_secret(cls):
        return os.getenv('PORTONE_API_SECRET')

    @classmethod
    def get_portone_store_id(cls):
        return os.getenv('PORTONE_STORE_ID')

    @classmethod
    def get_channel_key(cls, payment_method=None):
        """決済手段ごとのチャネルキー"""
        default = os.getenv('PORTONE_CHANNEL_KEY')
        if payment_method == 'kakao_pay':
            return os.getenv('PORTONE_CHANNEL_KEY_KAKAOPAY') or default
        if payment_method == 'naver_pay':
            return os.getenv('PORTONE_CHANNEL_KEY_NAVERPAY') or default
        return default

    @classmethod
    def get_session_secret(cls):
        """セッションCookieの署名キー"""
        return os.getenv('SESSION_SECRET')

    @classmethod
    def get_timezone_name(cls):
        return os.getenv('APP_TIMEZONE', 'Asia/Seoul')

    @classmethod
    def get_cors_origins(cls):
        raw = os.getenv('CORS_ORIGINS', '*')
        return [o.strip() for o in raw.split(',') if o.strip()]

    @classmethod
    def get_realtime_refresh_seconds(cls):
        return int(os.getenv('REALTIME_REFRESH_SECONDS', '30'))

    @classmethod
    def get_healthcheck_url(cls):
        """スケジューラーが定期的に叩く外部URL（任意）"""
        return os.getenv('HEALTHCHECK_URL')

    PORTONE_API_BASE = "https://api.portone.io"
    SESSION_COOKIE_NAME = "acscent_session_v2"
    SESSION_MAX_AGE_DAYS = 7

    # アプリケーション設定
    APP_NAME = "AC'SCENT IDENTITY API"
    APP_VERSION = "1.0.0"

    @classmethod
    def validate_required_env(cls):
        """必須環境変数の検証"""
        required = {
            'SUPABASE_URL': cls.get_supabase_url(),
            'SUPABASE_KEY': cls.get_supabase_key(),
            'ADMIN_EMAILS': os.getenv('ADMIN_EMAILS'),
            'SESSION_SECRET': cls.get_session_secret(),
            'PORTONE_API_SECRET': cls.get_portone_api_secret(),
        }

        missing = [key for key, value in required.items() if not value]

        if missing:
            error_msg = f"必須の環境変数が設定されていません: {', '.join(missing)}"
            logger.error(error_msg)
            raise ValueError(error_msg)

        return True

    @classmethod
    def is_payment_available(cls):
        """PortOne連携が利用可能かチェック"""
        return bool(cls.get_portone_api_secret())
