#!/usr/bin/env python
# -*- coding: utf-8 -*-
"""
管理者QRコードAPI
一覧・作成・詳細・更新・無効化
"""

import logging
from typing import Optional

from fastapi import APIRouter, HTTPException, Query, Request
from pydantic import BaseModel

from core.auth import require_admin
from core.database import get_supabase
from core.utils import now_iso, page_range, paginate, random_code

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/admin/qr", tags=["admin-qr"])

QR_CODE_LENGTH = 8

class QRCreateRequest(BaseModel):
    product_type: Optional[str] = None
    name: Optional[str] = None
    location: Optional[str] = None
    custom_url: Optional[str] = None

class QRUpdateRequest(BaseModel):
    name: Optional[str] = None
    location: Optional[str] = None
    is_active: Optional[bool] = None

@router.get("")
async def list_qr_codes(
    request: Request,
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    product_type: Optional[str] = Query(None),
    is_active: Optional[str] = Query(None),
    search: Optional[str] = Query(None),
):
    """QRコード一覧（新しい順）"""
    require_admin(request)
    try:
        start, end = page_range(page, limit)
        query = get_supabase().table('qr_codes').select('*', count='exact')

        if product_type and product_type != 'all':
            query = query.eq('product_type', product_type)
        if is_active is not None and is_active != 'all':
            query = query.eq('is_active', is_active == 'true')
        if search:
            query = query.or_(f"code.ilike.%{search}%,name.ilike.%{search}%,location.ilike.%{search}%")

        result = query.order('created_at', desc=True).range(start, end).execute()
        return {"data": result.data or [], "pagination": paginate(page, limit, result.count or 0)}

    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"QRコード一覧取得エラー: {e}")
        raise HTTPException(status_code=500, detail="QR 코드 목록을 불러오는데 실패했습니다")

@router.post("")
async def create_qr_code(body: QRCreateRequest, request: Request):
    """QRコードを発行（オフライン用）"""
    require_admin(request)
    if not body.product_type:
        raise HTTPException(status_code=400, detail="상품 타입은 필수입니다")

    try:
        result = get_supabase().table('qr_codes').insert({
            'code': random_code(QR_CODE_LENGTH),
            'product_type': body.product_type,
            'service_mode': 'offline',
            'name': body.name or None,
            'location': body.location or None,
            'custom_url': body.custom_url or None,
            'is_active': True,
            'scan_count': 0,
            'analysis_count': 0,
        }).execute()
        return {"data": result.data[0] if result.data else None, "message": "QR 코드가 생성되었습니다"}
    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"QRコード作成エラー: {e}")
        raise HTTPException(status_code=500, detail="QR 코드 생성에 실패했습니다")

@router.get("/{qr_id}")
async def get_qr_code(qr_id: str, request: Request):
    require_admin(request)
    try:
        result = get_supabase().table('qr_codes').select('*').eq('id', qr_id).limit(1).execute()
        if not result.data:
            raise HTTPException(status_code=404, detail="QR 코드를 찾을 수 없습니다")
        return {"data": result.data[0]}
    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"QRコード取得エラー: {e}")
        raise HTTPException(status_code=500, detail="서버 오류가 발생했습니다")

@router.patch("/{qr_id}")
async def update_qr_code(qr_id: str, body: QRUpdateRequest, request: Request):
    """名前・設置場所・有効状態の変更（指定された項目のみ）"""
    require_admin(request)
    updates = body.model_dump(exclude_unset=True)
    updates['updated_at'] = now_iso()
    try:
        result = get_supabase().table('qr_codes').update(updates).eq('id', qr_id).execute()
        if not result.data:
            raise HTTPException(status_code=404, detail="QR 코드를 찾을 수 없습니다")
        return {"data": result.data[0], "message": "QR 코드가 수정되었습니다"}
    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"QRコード更新エラー: {e}")
        raise HTTPException(status_code=500, detail="QR 코드 수정에 실패했습니다")

@router.delete("/{qr_id}")
async def deactivate_qr_code(qr_id: str, request: Request):
    """削除せず無効化する"""
    require_admin(request)
    try:
        result = get_supabase().table('qr_codes').update({
            'is_active': False,
            'updated_at': now_iso(),
        }).eq('id', qr_id).execute()
        if not result.data:
            raise HTTPException(status_code=404, detail="QR 코드를 찾을 수 없습니다")
        return {"message": "QR 코드가 비활성화되었습니다"}
    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"QRコード無効化エラー: {e}")
        raise HTTPException(status_code=500, detail="QR 코드 삭제에 실패했습니다")
