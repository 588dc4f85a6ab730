#!/usr/bin/env python
# -*- coding: utf-8 -*-
"""
QRコードスキャンAPI（公開）
スキャン数を加算し、遷移先を返す
"""

import logging

from fastapi import APIRouter, HTTPException

from core.database import get_supabase
from core.utils import now_iso

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/qr", tags=["qr"])

# 商品タイプ -> 入力画面のプログラム種別
INPUT_TYPES = {
    'image_analysis': 'idol_image',
    'figure_diffuser': 'figure',
    'graduation': 'graduation',
    'personal_scent': 'personal',
}

def build_redirect_url(qr_code: dict) -> str:
    """QRコードの遷移先（custom_urlがあれば優先）"""
    if qr_code.get('custom_url'):
        return qr_code['custom_url']
    input_type = INPUT_TYPES.get(qr_code.get('product_type'), 'idol_image')
    mode = 'qr' if (qr_code.get('service_mode') or 'offline') == 'offline' else 'online'
    return f"/input?type={input_type}&mode={mode}&qr_code={qr_code['code']}"

@router.get("/{code}")
async def scan_qr_code(code: str):
    """QRスキャン"""
    try:
        supabase = get_supabase()
        result = supabase.table('qr_codes').select('*').eq('code', code.upper()) \
            .eq('is_active', True).limit(1).execute()
        if not result.data:
            raise HTTPException(status_code=404, detail="QR 코드를 찾을 수 없습니다")
        qr_code = result.data[0]

        scan_count = (qr_code.get('scan_count') or 0) + 1
        supabase.table('qr_codes').update({
            'scan_count': scan_count,
            'updated_at': now_iso(),
        }).eq('id', qr_code['id']).execute()

        return {
            "code": qr_code['code'],
            "productType": qr_code.get('product_type'),
            "serviceMode": qr_code.get('service_mode') or 'offline',
            "scanCount": scan_count,
            "redirectUrl": build_redirect_url(qr_code),
        }
    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"QRスキャンエラー {code}: {e}")
        raise HTTPException(status_code=500, detail="서버 오류가 발생했습니다")
