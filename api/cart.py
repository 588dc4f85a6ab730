#!/usr/bin/env python
# -*- coding: utf-8 -*-
"""
カートAPI
照会・追加（単一/複数）・数量/容量変更・削除
"""

import logging
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, HTTPException, Query, Request
from postgrest.exceptions import APIError
from pydantic import BaseModel

from core.auth import require_user
from core.database import get_supabase, UNIQUE_VIOLATION
from core.pricing import PRODUCT_PRICING, calculate_cart_totals
from core.utils import now_iso

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/cart", tags=["cart"])

REQUIRED_FIELDS = ('analysis_id', 'product_type', 'perfume_name', 'size', 'price')

class CartItemIn(BaseModel):
    analysis_id: Optional[str] = None
    product_type: Optional[str] = None
    perfume_name: Optional[str] = None
    perfume_brand: Optional[str] = None
    twitter_name: Optional[str] = None
    size: Optional[str] = None
    price: Optional[int] = None
    quantity: Optional[int] = None
    image_url: Optional[str] = None
    analysis_data: Optional[Dict[str, Any]] = None

class CartAddRequest(CartItemIn):
    items: Optional[List[CartItemIn]] = None

class CartDeleteRequest(BaseModel):
    ids: Optional[List[str]] = None

class CartUpdateRequest(BaseModel):
    quantity: Optional[int] = None
    size: Optional[str] = None
    product_type: Optional[str] = None

def _is_complete(item: CartItemIn) -> bool:
    return all(getattr(item, field) for field in REQUIRED_FIELDS)

def _to_row(user_id: str, item: CartItemIn) -> Dict:
    return {
        'user_id': user_id,
        'analysis_id': item.analysis_id,
        'product_type': item.product_type,
        'perfume_name': item.perfume_name,
        'perfume_brand': item.perfume_brand,
        'twitter_name': item.twitter_name,
        'size': item.size,
        'price': item.price,
        'quantity': item.quantity or 1,
        'image_url': item.image_url,
        'analysis_data': item.analysis_data,
    }

@router.get("")
async def get_cart(request: Request, count: Optional[str] = Query(None, description="true なら件数のみ")):
    """カート内容を取得"""
    user = require_user(request)
    try:
        supabase = get_supabase()
        if count == 'true':
            result = supabase.table('cart_items').select('id', count='exact').eq('user_id', user['id']).execute()
            return {"count": result.count or 0}

        result = supabase.table('cart_items').select('*').eq('user_id', user['id']) \
            .order('created_at', desc=True).execute()
        items = result.data or []
        return {"items": items, "count": len(items), "totals": calculate_cart_totals(items)}

    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"カート取得エラー: {e}")
        raise HTTPException(status_code=500, detail="장바구니를 불러오는데 실패했습니다")

@router.post("")
async def add_to_cart(body: CartAddRequest, request: Request):
    """カートに追加（itemsがあれば一括追加）"""
    user = require_user(request)
    try:
        supabase = get_supabase()

        if body.items is not None:
            if any(not _is_complete(item) for item in body.items):
                raise HTTPException(
                    status_code=400,
                    detail="필수 항목이 누락되었습니다 (analysis_id, product_type, perfume_name, size, price)"
                )
            rows = [_to_row(user['id'], item) for item in body.items]
            result = supabase.table('cart_items').upsert(
                rows, on_conflict='user_id,analysis_id', ignore_duplicates=True
            ).execute()
            added = len(result.data or [])
            duplicates = len(rows) - added
            if duplicates > 0:
                message = f"{added}개 추가됨 ({duplicates}개는 이미 장바구니에 있음)"
            else:
                message = f"{added}개가 장바구니에 추가되었습니다"
            return {"success": True, "added": added, "duplicates": duplicates, "message": message}

        if not _is_complete(body):
            raise HTTPException(status_code=400, detail="필수 항목이 누락되었습니다")

        result = supabase.table('cart_items').upsert(
            _to_row(user['id'], body), on_conflict='user_id,analysis_id'
        ).execute()
        item = result.data[0] if result.data else None
        return {"success": True, "item": item, "message": "장바구니에 추가되었습니다"}

    except HTTPException:
        raise
    except APIError as e:
        if e.code == UNIQUE_VIOLATION:
            raise HTTPException(status_code=409, detail="이미 장바구니에 있는 상품입니다")
        logger.error(f"カート追加エラー: {e}")
        raise HTTPException(status_code=500, detail="장바구니에 추가하는데 실패했습니다")
    except Exception as e:
        logger.error(f"カート追加エラー: {e}")
        raise HTTPException(status_code=500, detail="장바구니에 추가하는데 실패했습니다")

@router.delete("")
async def remove_from_cart(request: Request, clear_all: Optional[str] = Query(None, alias="all", description="true なら全件削除")):
    """複数削除または全削除"""
    user = require_user(request)
    try:
        supabase = get_supabase()

        if clear_all == 'true':
            supabase.table('cart_items').delete().eq('user_id', user['id']).execute()
            return {"success": True, "message": "장바구니가 비워졌습니다"}

        raw = await request.body()
        body = CartDeleteRequest.model_validate_json(raw) if raw else CartDeleteRequest()
        if not body.ids:
            raise HTTPException(status_code=400, detail="삭제할 항목을 선택해주세요")

        result = supabase.table('cart_items').delete().in_('id', body.ids).eq('user_id', user['id']).execute()
        deleted = len(result.data or [])
        return {"success": True, "deleted": deleted, "message": f"{deleted}개 항목이 삭제되었습니다"}

    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"カート削除エラー: {e}")
        raise HTTPException(status_code=500, detail="삭제하는데 실패했습니다")

@router.patch("/{item_id}")
async def update_cart_item(item_id: str, body: CartUpdateRequest, request: Request):
    """数量・容量の変更（容量変更時は価格も更新）"""
    user = require_user(request)
    updates = {}

    if body.quantity is not None:
        if body.quantity < 1 or body.quantity > 10:
            raise HTTPException(status_code=400, detail="수량은 1~10 사이여야 합니다")
        updates['quantity'] = body.quantity

    if body.size and body.product_type:
        if body.product_type == 'figure_diffuser':
            raise HTTPException(status_code=400, detail="피규어 디퓨저는 사이즈 변경이 불가합니다")
        option = next((p for p in PRODUCT_PRICING.get(body.product_type, []) if p['size'] == body.size), None)
        if not option:
            raise HTTPException(status_code=400, detail="유효하지 않은 사이즈입니다")
        updates['size'] = body.size
        updates['price'] = option['price']

    if not updates:
        raise HTTPException(status_code=400, detail="수정할 항목이 없습니다")

    try:
        supabase = get_supabase()
        updates['updated_at'] = now_iso()
        result = supabase.table('cart_items').update(updates) \
            .eq('id', item_id).eq('user_id', user['id']).execute()
        if not result.data:
            raise HTTPException(status_code=404, detail="장바구니 항목을 찾을 수 없습니다")
        return {"success": True, "item": result.data[0], "message": "장바구니가 수정되었습니다"}

    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"カート更新エラー: {e}")
        raise HTTPException(status_code=500, detail="수정하는데 실패했습니다")

@router.delete("/{item_id}")
async def delete_cart_item(item_id: str, request: Request):
    """カートから1件削除"""
    user = require_user(request)
    try:
        supabase = get_supabase()
        supabase.table('cart_items').delete().eq('id', item_id).eq('user_id', user['id']).execute()
        return {"success": True, "message": "장바구니에서 삭제되었습니다"}
    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"カート削除エラー: {e}")
        raise HTTPException(status_code=500, detail="삭제하는데 실패했습니다")
