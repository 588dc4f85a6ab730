#!/usr/bin/env python
# -*- coding: utf-8 -*-
"""
注文API
注文作成（単品/カート一括）・注文履歴・注文照会・キャンセル申請
"""

import logging
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, HTTPException, Request
from pydantic import BaseModel

from core.auth import require_user
from core.coupons import checkout_coupons_for_user
from core.database import get_supabase
from core.pricing import calculate_cart_totals
from core.utils import now_iso, now_local, random_code

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/orders", tags=["orders"])

# 注文完了画面に返す項目
PUBLIC_ORDER_FIELDS = (
    'id', 'order_number', 'perfume_name', 'perfume_brand', 'size', 'price',
    'shipping_fee', 'discount_amount', 'final_price', 'product_type', 'status', 'created_at',
)

class OrderCreateRequest(BaseModel):
    perfumeName: Optional[str] = None
    perfumeBrand: Optional[str] = None
    productType: Optional[str] = None
    size: Optional[str] = None
    price: Optional[int] = None
    shippingFee: Optional[int] = None
    totalPrice: Optional[int] = None
    userCouponId: Optional[str] = None
    discountAmount: Optional[int] = None
    originalPrice: Optional[int] = None
    finalPrice: Optional[int] = None
    recipientName: Optional[str] = None
    phone: Optional[str] = None
    zipCode: Optional[str] = None
    address: Optional[str] = None
    addressDetail: Optional[str] = None
    memo: Optional[str] = None
    userImage: Optional[str] = None
    keywords: Optional[List[str]] = None
    analysisData: Optional[Dict[str, Any]] = None
    cartItemIds: Optional[List[str]] = None

def generate_order_number() -> str:
    """注文番号 ORD-YYYYMMDD-XXXXXX"""
    return f"ORD-{now_local().strftime('%Y%m%d')}-{random_code(6)}"

def _shipping_fields(body: OrderCreateRequest) -> Dict:
    return {
        'recipient_name': body.recipientName,
        'phone': body.phone,
        'zip_code': body.zipCode,
        'address': body.address,
        'address_detail': body.addressDetail or '',
        'memo': body.memo or '',
    }

def _use_coupon(supabase, user_id: str, user_coupon_id: str, order_id: str) -> None:
    """本人の未使用クーポンを使用済みにする（失敗しても注文は成功扱い）"""
    try:
        result = supabase.table('user_coupons').update({
            'is_used': True,
            'used_at': now_iso(),
            'used_order_id': order_id,
        }).eq('id', user_coupon_id).eq('user_id', user_id).eq('is_used', False).execute()
        if not result.data:
            logger.warning(f"使用できるクーポンがありません {user_coupon_id}")
    except Exception as e:
        logger.error(f"クーポン使用処理に失敗しました {user_coupon_id}: {e}")

def _coupon_percent(supabase, user_id: str, user_coupon_id: Optional[str]) -> int:
    if not user_coupon_id:
        return 0
    coupons = checkout_coupons_for_user(supabase, user_id)
    coupon = next((c for c in coupons if c['userCouponId'] == user_coupon_id), None)
    if not coupon:
        raise HTTPException(status_code=404, detail="쿠폰을 찾을 수 없습니다")
    if not coupon['isEligible']:
        raise HTTPException(status_code=400, detail=coupon['ineligibleReason'])
    return coupon['discount_percent']

def _create_cart_order(supabase, user_id: str, body: OrderCreateRequest) -> Dict:
    """カートの商品をまとめて注文"""
    cart = supabase.table('cart_items').select('*').eq('user_id', user_id) \
        .in_('id', body.cartItemIds).execute()
    cart_items = cart.data or []
    if not cart_items:
        raise HTTPException(status_code=400, detail="주문할 상품이 없습니다")

    percent = _coupon_percent(supabase, user_id, body.userCouponId)
    totals = calculate_cart_totals(cart_items, percent)
    first = cart_items[0]
    title = first['perfume_name']
    if len(cart_items) > 1:
        title = f"{title} 외 {len(cart_items) - 1}건"

    now = now_iso()
    order_row = {
        'order_number': generate_order_number(),
        'user_id': user_id,
        'perfume_name': title,
        'perfume_brand': first.get('perfume_brand'),
        'product_type': first.get('product_type'),
        'size': first.get('size'),
        'price': totals['subtotal'],
        'shipping_fee': totals['shippingFee'],
        'user_coupon_id': body.userCouponId,
        'discount_amount': totals['discount'],
        'original_price': totals['subtotal'] + totals['shippingFee'],
        'final_price': totals['total'],
        **_shipping_fields(body),
        'keywords': body.keywords or [],
        'status': 'pending',
        'created_at': now,
        'updated_at': now,
    }
    order = supabase.table('orders').insert(order_row).execute().data[0]

    supabase.table('order_items').insert([
        {
            'order_id': order['id'],
            'analysis_id': item.get('analysis_id'),
            'product_type': item.get('product_type'),
            'perfume_name': item.get('perfume_name'),
            'perfume_brand': item.get('perfume_brand'),
            'twitter_name': item.get('twitter_name'),
            'size': item.get('size'),
            'unit_price': item['price'],
            'quantity': item.get('quantity') or 1,
            'subtotal': item['price'] * (item.get('quantity') or 1),
            'image_url': item.get('image_url'),
            'analysis_data': item.get('analysis_data'),
        }
        for item in cart_items
    ]).execute()

    supabase.table('cart_items').delete().eq('user_id', user_id) \
        .in_('id', [item['id'] for item in cart_items]).execute()
    return order

@router.post("")
async def create_order(body: OrderCreateRequest, request: Request):
    """注文を作成（cartItemIdsがあればカート一括注文）"""
    user = require_user(request)

    if body.cartItemIds is not None:
        if not body.recipientName or not body.phone or not body.address:
            raise HTTPException(status_code=400, detail="필수 정보가 누락되었습니다")
    elif not body.recipientName or not body.phone or not body.address or not body.price or not body.size:
        raise HTTPException(status_code=400, detail="필수 정보가 누락되었습니다")

    try:
        supabase = get_supabase()

        if body.cartItemIds is not None:
            order = _create_cart_order(supabase, user['id'], body)
        else:
            # 本人の利用可能なクーポンか確認
            _coupon_percent(supabase, user['id'], body.userCouponId)
            now = now_iso()
            shipping_fee = body.shippingFee or 0
            result = supabase.table('orders').insert({
                'order_number': generate_order_number(),
                'user_id': user['id'],
                'perfume_name': body.perfumeName,
                'perfume_brand': body.perfumeBrand,
                'product_type': body.productType or 'image_analysis',
                'size': body.size,
                'price': body.price,
                'shipping_fee': shipping_fee,
                'user_coupon_id': body.userCouponId,
                'discount_amount': body.discountAmount or 0,
                'original_price': body.originalPrice or (body.price + shipping_fee),
                'final_price': body.finalPrice or body.totalPrice or body.price,
                **_shipping_fields(body),
                'user_image_url': body.userImage,
                'keywords': body.keywords or [],
                'analysis_data': body.analysisData,
                'status': 'pending',
                'created_at': now,
                'updated_at': now,
            }).execute()
            order = result.data[0]

        if body.userCouponId:
            _use_coupon(supabase, user['id'], body.userCouponId, order['id'])

        logger.info(f"注文を作成しました: {order['order_number']}")
        return {
            "success": True,
            "orderId": order['id'],
            "orderNumber": order['order_number'],
            "discountApplied": (order.get('discount_amount') or 0) > 0,
        }

    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"注文作成エラー: {e}")
        raise HTTPException(status_code=500, detail="주문 생성에 실패했습니다")

@router.get("")
async def list_orders(request: Request):
    """自分の注文履歴（新しい順）"""
    user = require_user(request)
    try:
        result = get_supabase().table('orders').select('*').eq('user_id', user['id']) \
            .order('created_at', desc=True).execute()
        return {"orders": result.data or []}
    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"注文履歴取得エラー: {e}")
        raise HTTPException(status_code=500, detail="주문 내역 조회에 실패했습니다")

@router.get("/{order_id}")
async def get_order(order_id: str):
    """注文完了画面用の注文情報"""
    try:
        result = get_supabase().table('orders').select('*').eq('id', order_id).limit(1).execute()
        if not result.data:
            raise HTTPException(status_code=404, detail="주문을 찾을 수 없습니다")
        order = result.data[0]
        return {"success": True, "order": {field: order.get(field) for field in PUBLIC_ORDER_FIELDS}}
    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"注文照会エラー: {e}")
        raise HTTPException(status_code=500, detail="서버 오류가 발생했습니다")

@router.patch("/{order_id}/cancel")
async def request_cancel(order_id: str, request: Request):
    """キャンセル申請"""
    user = require_user(request)
    try:
        supabase = get_supabase()
        result = supabase.table('orders').select('*').eq('id', order_id).eq('user_id', user['id']) \
            .limit(1).execute()
        if not result.data:
            raise HTTPException(status_code=404, detail="주문을 찾을 수 없습니다")

        if result.data[0].get('status') in ('cancel_requested', 'cancelled'):
            raise HTTPException(status_code=400, detail="이미 취소 요청된 주문입니다")

        now = now_iso()
        updated = supabase.table('orders').update({
            'status': 'cancel_requested',
            'cancel_requested_at': now,
            'updated_at': now,
        }).eq('id', order_id).execute()

        return {
            "success": True,
            "message": "취소 요청이 접수되었습니다",
            "order": updated.data[0] if updated.data else None,
        }
    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"キャンセル申請エラー: {e}")
        raise HTTPException(status_code=500, detail="서버 오류가 발생했습니다")
