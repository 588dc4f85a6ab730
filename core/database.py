#!/usr/bin/env python
# -*- coding: utf-8 -*-
"""
データベース接続管理モジュール
Supabaseクライアントの初期化と接続管理
"""

import logging
from typing import Optional
from fastapi import HTTPException
from supabase import create_client, Client
from .config import Config

logger = logging.getLogger(__name__)

# PostgRESTのエラーコード
TABLE_NOT_FOUND = '42P01'
UNIQUE_VIOLATION = '23505'

class Database:
    """データベース接続管理クラス"""

    _instance: Optional[Client] = None

    @classmethod
    def get_client(cls) -> Optional[Client]:
        """Supabaseクライアントを取得"""
        if cls._instance is None:
            cls._instance = cls._initialize_client()
        return cls._instance

    @classmethod
    def set_client(cls, client) -> None:
        cls._instance = client

    @classmethod
    def reset_client(cls) -> None:
        """環境変数の変更を反映するためクライアントを破棄"""
        cls._instance = None

    @classmethod
    def _initialize_client(cls) -> Optional[Client]:
        """Supabaseクライアントを初期化"""
        url = Config.get_supabase_url()
        key = Config.get_supabase_key()
        if not url or not key:
            logger.warning("Supabase認証情報が設定されていません")
            return None

        try:
            client = create_client(url, key)
            logger.info("Supabaseクライアントを正常に初期化しました")
            return client
        except Exception as e:
            logger.error(f"Supabaseクライアントの初期化に失敗しました: {e}")
            return None

    @classmethod
    def test_connection(cls) -> bool:
        """データベース接続をテスト"""
        client = cls.get_client()
        if not client:
            return False

        try:
            client.table("analysis_results").select("id").limit(1).execute()
            return True
        except Exception as e:
            logger.error(f"データベース接続テストに失敗しました: {e}")
            return False

def get_supabase():
    """リクエスト処理用のクライアント（未設定なら503）"""
    client = Database.get_client()
    if client is None:
        raise HTTPException(status_code=503, detail="데이터베이스에 연결할 수 없습니다")
    return client