#!/usr/bin/env python
# -*- coding: utf-8 -*-
"""
決済API（PortOne V2）
決済検証・Webhook・決済画面の設定値
"""

import logging
from typing import Optional

from fastapi import APIRouter, HTTPException, Query, Request
from pydantic import BaseModel

from core.auth import require_user
from core.config import Config
from core.database import get_supabase
from core.inventory import InventoryDeduction
from core.portone import PortOneAPI, PortOneError
from core.utils import now_iso

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/payments", tags=["payments"])

PAID_EVENTS = ('Transaction.Paid', 'Payment.Paid')
CANCEL_EVENTS = (
    'Transaction.Cancelled', 'Payment.Cancelled',
    'Transaction.PartialCancelled', 'Payment.PartialCancelled',
)

class VerifyRequest(BaseModel):
    paymentId: Optional[str] = None
    orderId: Optional[str] = None

def _paid_fields(payment: dict, now: str) -> dict:
    return {
        'status': 'paid',
        'pg_provider': (payment.get('channel') or {}).get('pgProvider'),
        'pg_tx_id': payment.get('pgTxId'),
        'paid_at': payment.get('paidAt') or now,
        'receipt_url': payment.get('receiptUrl'),
        'updated_at': now,
    }

def _deduct_inventory(supabase, order_id: str) -> None:
    """在庫差し引き（失敗しても決済結果には影響させない）"""
    try:
        result = InventoryDeduction(supabase).deduct_for_order(order_id)
        if not result['success']:
            logger.warning(f"在庫差し引きで一部エラー {order_id}: {result['errors']}")
    except Exception as e:
        logger.error(f"在庫差し引きに失敗しました {order_id}: {e}")

@router.get("/config")
async def get_payment_config(method: Optional[str] = Query(None, description="card / kakao_pay / naver_pay")):
    """決済ウィジェット用のストアID・チャネルキー"""
    return {
        "storeId": Config.get_portone_store_id(),
        "channelKey": Config.get_channel_key(method),
        "available": Config.is_payment_available(),
    }

@router.post("/verify")
async def verify_payment(body: VerifyRequest, request: Request):
    """決済完了後のサーバー検証

    PortOneの決済状態と金額を確認し、注文を決済完了にする。
    金額が一致しない場合は決済を取り消す。
    """
    user = require_user(request)
    if not body.paymentId or not body.orderId:
        raise HTTPException(status_code=400, detail="paymentId와 orderId가 필요합니다")

    try:
        supabase = get_supabase()
        result = supabase.table('orders').select('*').eq('id', body.orderId) \
            .eq('user_id', user['id']).limit(1).execute()
        if not result.data:
            raise HTTPException(status_code=404, detail="주문을 찾을 수 없습니다")
        order = result.data[0]

        try:
            portone = PortOneAPI()
            payment = portone.get_payment(body.paymentId)
        except (PortOneError, ValueError) as e:
            logger.error(f"PortOne決済照会に失敗しました {body.paymentId}: {e}")
            raise HTTPException(status_code=502, detail="결제 정보 조회에 실패했습니다")

        status = payment.get('status')
        if status != 'PAID':
            raise HTTPException(status_code=400, detail=f"결제가 완료되지 않았습니다 (상태: {status})")

        paid_total = (payment.get('amount') or {}).get('total')
        if paid_total != order.get('final_price'):
            logger.error(f"決済金額不一致: paid={paid_total} expected={order.get('final_price')}")
            try:
                portone.cancel_payment(body.paymentId, '결제 금액 불일치')
            except PortOneError as e:
                logger.error(f"不一致決済の取消に失敗しました {body.paymentId}: {e}")
            raise HTTPException(status_code=400, detail="결제 금액이 주문 금액과 일치하지 않습니다")

        updates = _paid_fields(payment, now_iso())
        updates['payment_id'] = body.paymentId
        updated = supabase.table('orders').update(updates).eq('id', body.orderId).execute()

        _deduct_inventory(supabase, body.orderId)

        logger.info(f"決済を確認しました: {body.orderId}")
        return {"success": True, "order": updated.data[0] if updated.data else None}

    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"決済検証エラー: {e}")
        raise HTTPException(status_code=500, detail="서버 오류가 발생했습니다")

@router.post("/webhook")
async def payment_webhook(request: Request):
    """PortOne Webhook（再送を防ぐため常に200を返す）"""
    try:
        body = await request.json()
    except ValueError:
        logger.warning("Webhookの本文を解析できません")
        return {"success": True}

    event_type = body.get('type') or ''
    payment_id = (body.get('data') or {}).get('paymentId')
    if not event_type or not payment_id:
        logger.warning("Webhookにtypeまたはpaymentがありません")
        return {"success": True}

    try:
        supabase = get_supabase()

        if any(event in event_type for event in PAID_EVENTS):
            payment = PortOneAPI().get_payment(payment_id)
            if payment.get('status') != 'PAID':
                logger.warning(f"決済状態がPAIDではありません: {payment.get('status')}")
                return {"success": True}

            result = supabase.table('orders').select('*').eq('payment_id', payment_id).limit(1).execute()
            if not result.data:
                logger.warning(f"paymentIdに対応する注文がありません: {payment_id}")
                return {"success": True}
            order = result.data[0]

            # 処理済みの注文は二重に処理しない
            if order.get('status') != 'pending':
                return {"success": True}

            supabase.table('orders').update(_paid_fields(payment, now_iso())).eq('id', order['id']).execute()
            _deduct_inventory(supabase, order['id'])
            logger.info(f"Webhookで決済完了に更新: {order['id']}")

        elif any(event in event_type for event in CANCEL_EVENTS):
            result = supabase.table('orders').select('id').eq('payment_id', payment_id).limit(1).execute()
            if not result.data:
                logger.warning(f"取消対象の注文がありません: {payment_id}")
                return {"success": True}

            supabase.table('orders').update({
                'status': 'cancelled',
                'updated_at': now_iso(),
            }).eq('id', result.data[0]['id']).execute()
            logger.info(f"Webhookで注文を取消: {result.data[0]['id']}")

        else:
            logger.info(f"未対応のWebhookタイプ: {event_type}")

    except Exception as e:
        logger.error(f"Webhook処理エラー: {e}")

    return {"success": True}
