#!/usr/bin/env python
# -*- coding: utf-8 -*-
"""
クーポンAPI
保有クーポン・受け取り可能クーポン・受け取り・再購入資格
"""

import logging
from typing import Optional

from fastapi import APIRouter, HTTPException, Request
from pydantic import BaseModel

from core.auth import get_current_user
from core.coupons import DEFAULT_COUPONS, count_completed_orders, fetch_user_coupons, is_expired
from core.database import Database, get_supabase
from core.utils import now_iso, now_local

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/coupons", tags=["coupons"])

class ClaimRequest(BaseModel):
    couponId: Optional[str] = None
    birthdayProofType: Optional[str] = None
    birthdayIdolName: Optional[str] = None

@router.get("")
async def get_my_coupons(request: Request):
    """保有クーポン一覧"""
    user = get_current_user(request)
    if not user:
        raise HTTPException(status_code=401, detail={"error": "로그인이 필요합니다", "coupons": []})
    try:
        user_coupons = fetch_user_coupons(get_supabase(), user['id'])
        coupons = []
        for uc in user_coupons:
            coupon = uc.get('coupon') or {}
            coupons.append({
                "id": uc['id'],
                "code": coupon.get('code'),
                "type": coupon.get('type'),
                "discount_percent": coupon.get('discount_percent'),
                "title": coupon.get('title'),
                "description": coupon.get('description'),
                "validUntil": coupon.get('valid_until'),
                "claimedAt": uc.get('claimed_at'),
                "usedAt": uc.get('used_at'),
                "isUsed": uc.get('is_used'),
            })
        return {"coupons": coupons}
    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"クーポン一覧取得エラー: {e}")
        raise HTTPException(status_code=500, detail={"error": "서버 오류가 발생했습니다", "coupons": []})

@router.get("/available")
async def get_available_coupons(request: Request):
    """受け取り可能なクーポン（取得できない場合は既定のクーポン）"""
    user = get_current_user(request)
    is_logged_in = bool(user)
    client = Database.get_client()
    if client is None:
        return {"coupons": DEFAULT_COUPONS, "isLoggedIn": is_logged_in}

    try:
        result = client.table('coupons').select('*').eq('is_active', True).execute()
        now = now_local()
        coupons = [c for c in result.data or [] if not is_expired(c, now)]
        if not coupons:
            return {"coupons": DEFAULT_COUPONS, "isLoggedIn": is_logged_in}

        claimed_ids = set()
        if user:
            claimed = client.table('user_coupons').select('coupon_id').eq('user_id', user['id']).execute()
            claimed_ids = {uc['coupon_id'] for uc in claimed.data or []}

        return {
            "coupons": [
                {
                    "id": c['id'],
                    "type": c.get('type'),
                    "discount_percent": c.get('discount_percent'),
                    "title": c.get('title'),
                    "description": c.get('description'),
                    "isClaimed": c['id'] in claimed_ids,
                }
                for c in coupons
            ],
            "isLoggedIn": is_logged_in,
        }
    except Exception as e:
        logger.warning(f"クーポン取得に失敗したため既定値を返します: {e}")
        return {"coupons": DEFAULT_COUPONS, "isLoggedIn": False}

@router.post("/claim")
async def claim_coupon(body: ClaimRequest, request: Request):
    """クーポンを受け取る"""
    user = get_current_user(request)
    if not user:
        raise HTTPException(
            status_code=401,
            detail={"success": False, "error": "로그인이 필요합니다", "requireLogin": True}
        )
    if not body.couponId:
        raise HTTPException(status_code=400, detail={"success": False, "error": "쿠폰 ID가 필요합니다"})

    try:
        supabase = get_supabase()
        result = supabase.table('coupons').select('*').eq('id', body.couponId).eq('is_active', True) \
            .limit(1).execute()
        if not result.data:
            raise HTTPException(status_code=404, detail={"success": False, "error": "유효하지 않은 쿠폰입니다"})
        coupon = result.data[0]

        if is_expired(coupon, now_local()):
            raise HTTPException(status_code=400, detail={"success": False, "error": "쿠폰 유효기간이 만료되었습니다"})

        existing = supabase.table('user_coupons').select('id').eq('user_id', user['id']) \
            .eq('coupon_id', body.couponId).limit(1).execute()
        if existing.data:
            raise HTTPException(status_code=409, detail={"success": False, "error": "이미 받은 쿠폰입니다"})

        insert_data = {
            'user_id': user['id'],
            'coupon_id': body.couponId,
            'claimed_at': now_iso(),
            'is_used': False,
        }
        # 誕生日クーポンは証明情報も保存
        if coupon.get('type') == 'birthday' and body.birthdayProofType:
            insert_data['birthday_proof_type'] = body.birthdayProofType
            if body.birthdayIdolName:
                insert_data['birthday_idol_name'] = body.birthdayIdolName

        inserted = supabase.table('user_coupons').insert(insert_data).execute()
        user_coupon = inserted.data[0] if inserted.data else insert_data
        user_coupon['coupon'] = coupon

        return {
            "success": True,
            "userCoupon": user_coupon,
            "message": f"{coupon.get('title')} 쿠폰이 발급되었습니다!",
        }
    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"クーポン発行エラー: {e}")
        raise HTTPException(status_code=500, detail={"success": False, "error": "서버 오류가 발생했습니다"})

@router.get("/my")
async def get_my_coupon_rows(request: Request):
    """マイページ用のクーポン一覧"""
    user = get_current_user(request)
    if not user:
        return {"coupons": [], "requireLogin": True}
    try:
        return {"coupons": fetch_user_coupons(get_supabase(), user['id'])}
    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"クーポン一覧取得エラー: {e}")
        raise HTTPException(status_code=500, detail="서버 오류가 발생했습니다")

@router.get("/repurchase/eligible")
async def check_repurchase_eligibility(request: Request):
    """再購入クーポンの利用資格"""
    user = get_current_user(request)
    if not user:
        raise HTTPException(
            status_code=401,
            detail={"success": False, "eligible": False, "requireLogin": True}
        )
    try:
        completed = count_completed_orders(get_supabase(), user['id'])
        return {"success": True, "eligible": completed > 0, "completedOrders": completed}
    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"再購入資格確認エラー: {e}")
        raise HTTPException(
            status_code=500,
            detail={"success": False, "eligible": False, "error": "서버 오류가 발생했습니다"}
        )
