#!/usr/bin/env python
# -*- coding: utf-8 -*-
"""
PortOne V2 決済APIモジュール
決済情報の照会とキャンセル（返金）
"""

import logging
from typing import Dict, Optional
from urllib.parse import quote

import httpx

from .config import Config

logger = logging.getLogger(__name__)

class PortOneError(Exception):
    """PortOne APIの呼び出し失敗"""

class PortOneAPI:
    """PortOne APIクライアント"""

    def __init__(self, api_secret: Optional[str] = None, transport=None):
        self.api_secret = api_secret or Config.get_portone_api_secret()

        if not self.api_secret:
            raise ValueError("PortOne API認証情報が設定されていません")

        self.headers = {
            'Authorization': f'PortOne {self.api_secret}',
            'Content-Type': 'application/json',
        }
        self.base_url = Config.PORTONE_API_BASE
        self.transport = transport

    def _client(self) -> httpx.Client:
        return httpx.Client(base_url=self.base_url, headers=self.headers,
                            timeout=30.0, transport=self.transport)

    @staticmethod
    def _error_message(response: httpx.Response) -> str:
        try:
            return response.json().get('message') or response.reason_phrase
        except ValueError:
            return response.reason_phrase

    def get_payment(self, payment_id: str) -> Dict:
        """決済情報を取得"""
        with self._client() as client:
            response = client.get(f"/payments/{quote(payment_id, safe='')}")

        if response.is_error:
            message = self._error_message(response)
            logger.error(f"PortOne決済照会エラー {payment_id}: {message}")
            raise PortOneError(f"PortOne API error: {message}")
        return response.json()

    def cancel_payment(self, payment_id: str, reason: str, amount: Optional[int] = None) -> Dict:
        """決済をキャンセル（amount省略時は全額返金）"""
        body = {'reason': reason}
        if amount is not None:
            body['amount'] = amount

        with self._client() as client:
            response = client.post(f"/payments/{quote(payment_id, safe='')}/cancel", json=body)

        if response.is_error:
            message = self._error_message(response)
            logger.error(f"PortOne決済キャンセルエラー {payment_id}: {message}")
            raise PortOneError(f"PortOne cancel error: {message}")
        return response.json()
