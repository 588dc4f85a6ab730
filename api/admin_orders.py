#!/usr/bin/env python
# -*- coding: utf-8 -*-
"""
管理者 注文API
注文一覧・ステータス変更・返金
"""

import logging
from typing import Optional

from fastapi import APIRouter, HTTPException, Query, Request
from pydantic import BaseModel

from core.auth import require_admin
from core.database import get_supabase
from core.inventory import InventoryDeduction
from core.portone import PortOneAPI, PortOneError
from core.utils import now_iso, page_range, paginate

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/admin/orders", tags=["admin-orders"])

# 管理画面から変更できるステータス
ADMIN_STATUSES = ('pending', 'paid', 'shipping', 'delivered')

class StatusUpdateRequest(BaseModel):
    orderId: Optional[str] = None
    status: Optional[str] = None

class RefundRequest(BaseModel):
    orderId: Optional[str] = None
    reason: Optional[str] = None
    amount: Optional[int] = None

@router.get("")
async def list_orders(
    request: Request,
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    status: Optional[str] = Query(None, description="pending / paid / shipping / delivered"),
):
    """全注文一覧（新しい順）"""
    require_admin(request)
    try:
        start, end = page_range(page, limit)
        query = get_supabase().table('orders').select('*', count='exact')
        if status in ADMIN_STATUSES:
            query = query.eq('status', status)

        result = query.order('created_at', desc=True).range(start, end).execute()
        return {"orders": result.data or [], "pagination": paginate(page, limit, result.count or 0)}

    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"注文一覧取得エラー: {e}")
        raise HTTPException(status_code=500, detail="주문 목록 조회에 실패했습니다")

@router.patch("")
async def update_order_status(body: StatusUpdateRequest, request: Request):
    """注文ステータスを変更

    入金確認（pending -> paid）のときは在庫を差し引く。
    """
    admin = require_admin(request)
    if not body.orderId or not body.status:
        raise HTTPException(status_code=400, detail="orderId와 status가 필요합니다")
    if body.status not in ADMIN_STATUSES:
        raise HTTPException(status_code=400, detail="유효하지 않은 상태값입니다")

    try:
        supabase = get_supabase()
        current = supabase.table('orders').select('status').eq('id', body.orderId).limit(1).execute()
        if not current.data:
            raise HTTPException(status_code=404, detail="주문을 찾을 수 없습니다")
        previous_status = current.data[0].get('status')

        updated = supabase.table('orders').update({
            'status': body.status,
            'updated_at': now_iso(),
        }).eq('id', body.orderId).execute()

        if body.status == 'paid' and previous_status == 'pending':
            try:
                result = InventoryDeduction(supabase).deduct_for_order(body.orderId, admin.get('email'))
                if not result['success']:
                    logger.warning(f"在庫差し引きで一部エラー {body.orderId}: {result['errors']}")
            except Exception as e:
                logger.error(f"在庫差し引きに失敗しました {body.orderId}: {e}")

        return {"success": True, "order": updated.data[0] if updated.data else None}

    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"注文ステータス変更エラー: {e}")
        raise HTTPException(status_code=500, detail="주문 상태 변경에 실패했습니다")

@router.post("/refund")
async def refund_order(body: RefundRequest, request: Request):
    """PortOne決済を取り消して返金（amount指定で部分返金）"""
    admin = require_admin(request)
    if not body.orderId or not body.reason:
        raise HTTPException(status_code=400, detail="orderId와 reason이 필요합니다")

    try:
        supabase = get_supabase()
        result = supabase.table('orders').select('*').eq('id', body.orderId).limit(1).execute()
        if not result.data:
            raise HTTPException(status_code=404, detail="주문을 찾을 수 없습니다")
        order = result.data[0]

        if not order.get('payment_id'):
            raise HTTPException(status_code=400, detail="결제 정보가 없는 주문입니다 (무통장 입금 등)")
        if order.get('status') == 'cancelled' and order.get('refunded_at'):
            raise HTTPException(status_code=400, detail="이미 환불 처리된 주문입니다")

        logger.info(f"返金処理: order={body.orderId} amount={body.amount} admin={admin.get('email')}")
        try:
            cancel_result = PortOneAPI().cancel_payment(order['payment_id'], body.reason, body.amount)
        except (PortOneError, ValueError) as e:
            raise HTTPException(
                status_code=502,
                detail={"error": "결제 취소에 실패했습니다", "details": str(e)}
            )

        cancellation = cancel_result.get('cancellation') or cancel_result
        now = now_iso()
        refund_amount = body.amount or order.get('final_price')
        cancelled_at = cancellation.get('cancelledAt') or now

        updated = supabase.table('orders').update({
            'status': 'cancelled',
            'refund_amount': refund_amount,
            'refunded_at': cancelled_at,
            'refund_reason': body.reason,
            'updated_at': now,
        }).eq('id', body.orderId).execute()

        logger.info(f"返金完了: {body.orderId} ({refund_amount}원)")
        return {
            "success": True,
            "order": updated.data[0] if updated.data else None,
            "refund": {
                "cancellationId": cancellation.get('id') or cancellation.get('cancellationId'),
                "cancelledAt": cancelled_at,
                "amount": refund_amount,
            },
        }

    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"返金処理エラー: {e}")
        raise HTTPException(status_code=500, detail="서버 오류가 발생했습니다")
