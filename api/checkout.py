#!/usr/bin/env python
# -*- coding: utf-8 -*-
"""
チェックアウトAPI
決済画面のクーポン一覧と金額計算
"""

import logging
from typing import List, Optional

from fastapi import APIRouter, HTTPException, Request
from pydantic import BaseModel

from core.auth import get_current_user
from core.coupons import checkout_coupons_for_user
from core.database import get_supabase
from core.pricing import (
    BANK_TRANSFER_INFO, calculate_cart_totals, calculate_checkout,
    join_phone, validate_shipping_form,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/checkout", tags=["checkout"])

class QuoteItem(BaseModel):
    size: str
    price: int
    quantity: int = 1

class QuoteRequest(BaseModel):
    size: Optional[str] = None
    items: Optional[List[QuoteItem]] = None
    userCouponId: Optional[str] = None
    shipping: Optional[dict] = None

@router.get("/coupons")
async def get_checkout_coupons(request: Request):
    """決済画面で選択できるクーポン"""
    user = get_current_user(request)
    if not user:
        return {"success": False, "requireLogin": True, "coupons": []}
    try:
        return {"success": True, "coupons": checkout_coupons_for_user(get_supabase(), user['id'])}
    except Exception as e:
        logger.error(f"決済クーポン取得エラー: {e}")
        return {"success": False, "error": "서버 오류가 발생했습니다", "coupons": []}

@router.post("/quote")
async def quote(body: QuoteRequest, request: Request):
    """決済金額を計算

    itemsがあればカート購入、なければ単品購入として計算する。
    クーポンは利用可能なものだけ適用する。
    """
    coupon_percent = 0
    applied_coupon = None

    if body.userCouponId:
        user = get_current_user(request)
        if not user:
            raise HTTPException(status_code=401, detail="로그인이 필요합니다")
        try:
            coupons = checkout_coupons_for_user(get_supabase(), user['id'])
        except HTTPException:
            raise
        except Exception as e:
            logger.error(f"クーポン確認エラー: {e}")
            raise HTTPException(status_code=500, detail="서버 오류가 발생했습니다")

        applied_coupon = next((c for c in coupons if c['userCouponId'] == body.userCouponId), None)
        if not applied_coupon:
            raise HTTPException(status_code=404, detail="쿠폰을 찾을 수 없습니다")
        if not applied_coupon['isEligible']:
            raise HTTPException(status_code=400, detail=applied_coupon['ineligibleReason'])
        coupon_percent = applied_coupon['discount_percent']

    if body.items is not None:
        totals = calculate_cart_totals([item.model_dump() for item in body.items], coupon_percent)
        amounts = {
            "productPrice": totals['subtotal'],
            "shippingFee": totals['shippingFee'],
            "discountAmount": totals['discount'],
            "originalPrice": totals['subtotal'] + totals['shippingFee'],
            "finalPrice": totals['total'],
            "itemCount": totals['itemCount'],
        }
    elif body.size:
        amounts = calculate_checkout(body.size, coupon_percent)
    else:
        raise HTTPException(status_code=400, detail="사이즈 또는 상품 목록이 필요합니다")

    response = {
        "success": True,
        **amounts,
        "coupon": applied_coupon,
        "bankTransfer": BANK_TRANSFER_INFO,
    }

    if body.shipping is not None:
        errors = validate_shipping_form(body.shipping)
        response["shippingValid"] = not errors
        response["shippingErrors"] = errors
        if not errors:
            response["phone"] = join_phone(body.shipping)

    return response
