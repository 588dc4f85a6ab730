#!/usr/bin/env python
# -*- coding: utf-8 -*-
"""
友達紹介API
紹介コードの発行と適用
"""

import logging
from typing import Optional

from fastapi import APIRouter, HTTPException, Request
from pydantic import BaseModel

from core.auth import get_current_user
from core.database import get_supabase
from core.utils import now_iso, random_code

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/referral", tags=["referral"])

# 紛らわしい文字（I, O, 0, 1）は使わない
REFERRAL_CODE_CHARS = 'ABCDEFGHJKLMNPQRSTUVWXYZ23456789'
REFERRAL_CODE_LENGTH = 6
MAX_CODE_ATTEMPTS = 10

class ApplyRequest(BaseModel):
    referralCode: Optional[str] = None

def _login_required():
    return HTTPException(
        status_code=401,
        detail={"success": False, "error": "로그인이 필요합니다", "requireLogin": True}
    )

def _server_error(message: str = "서버 오류가 발생했습니다"):
    return HTTPException(status_code=500, detail={"success": False, "error": message})

def generate_unique_code(supabase) -> Optional[str]:
    for _ in range(MAX_CODE_ATTEMPTS):
        code = random_code(REFERRAL_CODE_LENGTH, REFERRAL_CODE_CHARS)
        existing = supabase.table('user_profiles').select('id').eq('referral_code', code).limit(1).execute()
        if not existing.data:
            return code
    return None

@router.get("/code")
async def get_referral_code(request: Request):
    """自分の紹介コード（なければ発行）と招待人数"""
    user = get_current_user(request)
    if not user:
        raise _login_required()

    try:
        supabase = get_supabase()
        profile = supabase.table('user_profiles').select('referral_code').eq('id', user['id']).limit(1).execute()
        if not profile.data:
            raise HTTPException(status_code=404, detail={"success": False, "error": "프로필을 찾을 수 없습니다"})

        code = profile.data[0].get('referral_code')
        if not code:
            code = generate_unique_code(supabase)
            if not code:
                raise _server_error("추천인 코드 생성에 실패했습니다. 다시 시도해주세요.")
            supabase.table('user_profiles').update({'referral_code': code}).eq('id', user['id']).execute()
            logger.info(f"紹介コードを発行しました: {user['id']}")

        invites = supabase.table('referral_rewards').select('id', count='exact') \
            .eq('referrer_id', user['id']).execute()

        return {"success": True, "code": code, "inviteCount": invites.count or 0}

    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"紹介コード取得エラー: {e}")
        raise _server_error()

@router.post("/apply")
async def apply_referral_code(body: ApplyRequest, request: Request):
    """紹介コードを適用し、紹介者と本人に紹介クーポンを発行"""
    user = get_current_user(request)
    if not user:
        raise _login_required()
    if not body.referralCode:
        raise HTTPException(status_code=400, detail={"success": False, "error": "추천인 코드를 입력해주세요"})

    try:
        supabase = get_supabase()
        referrer_result = supabase.table('user_profiles').select('id, name') \
            .eq('referral_code', body.referralCode.upper()).limit(1).execute()
        if not referrer_result.data:
            raise HTTPException(status_code=404, detail={"success": False, "error": "유효하지 않은 추천인 코드입니다"})
        referrer = referrer_result.data[0]

        if referrer['id'] == user['id']:
            raise HTTPException(
                status_code=400,
                detail={"success": False, "error": "본인의 추천인 코드는 사용할 수 없습니다"}
            )

        current = supabase.table('user_profiles').select('referred_by').eq('id', user['id']).limit(1).execute()
        if current.data and current.data[0].get('referred_by'):
            raise HTTPException(status_code=409, detail={"success": False, "error": "이미 추천인 코드를 사용하셨습니다"})

        coupon = supabase.table('coupons').select('id').eq('type', 'referral').eq('is_active', True) \
            .limit(1).execute()
        if not coupon.data:
            raise _server_error("친구 초대 쿠폰을 찾을 수 없습니다")
        coupon_id = coupon.data[0]['id']

        issued = {}
        for role, user_id in (('referrer', referrer['id']), ('referred', user['id'])):
            inserted = supabase.table('user_coupons').insert({
                'user_id': user_id,
                'coupon_id': coupon_id,
                'claimed_at': now_iso(),
                'is_used': False,
            }).execute()
            issued[role] = inserted.data[0]['id'] if inserted.data else None

        supabase.table('user_profiles').update({'referred_by': referrer['id']}).eq('id', user['id']).execute()
        supabase.table('referral_rewards').insert({
            'referrer_id': referrer['id'],
            'referred_id': user['id'],
            'referrer_coupon_id': issued['referrer'],
            'referred_coupon_id': issued['referred'],
        }).execute()

        return {
            "success": True,
            "message": "추천인 코드가 적용되었습니다! 10% 할인 쿠폰이 발급되었어요.",
            "referrerName": referrer.get('name') or '친구',
        }

    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"紹介コード適用エラー: {e}")
        raise _server_error()
