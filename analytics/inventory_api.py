#!/usr/bin/env python
# -*- coding: utf-8 -*-
"""
香料在庫管理 API
在庫一覧・変動履歴・一括設定・個別調整
"""

import logging
from typing import List, Optional

from fastapi import APIRouter, HTTPException, Query, Request
from postgrest.exceptions import APIError
from pydantic import BaseModel

from core.auth import require_admin
from core.database import TABLE_NOT_FOUND, get_supabase
from core.fragrances import get_perfume_by_id, load_catalog
from core.inventory import DEFAULT_MIN_THRESHOLD_ML, build_inventory_items, format_log, low_stock_alerts
from core.utils import now_iso

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/admin/datacenter/inventory", tags=["admin-inventory"])

class BulkInventoryItem(BaseModel):
    fragranceId: str
    onlineStockMl: float
    offlineStockMl: float
    minThresholdMl: Optional[float] = None

class BulkInventoryRequest(BaseModel):
    items: Optional[List[BulkInventoryItem]] = None

class InventorySetRequest(BaseModel):
    onlineStockMl: Optional[float] = None
    offlineStockMl: Optional[float] = None
    minThresholdMl: Optional[float] = None
    note: Optional[str] = None

class InventoryAdjustRequest(BaseModel):
    source: Optional[str] = None
    changeType: Optional[str] = None
    amountMl: Optional[float] = None
    note: Optional[str] = None

def _find_perfume(fragrance_id: str):
    perfume = get_perfume_by_id(fragrance_id)
    if not perfume:
        raise HTTPException(status_code=404, detail="향료를 찾을 수 없습니다")
    return perfume

def _current_stock(supabase, fragrance_id: str) -> dict:
    result = supabase.table('fragrance_inventory').select('*').eq('fragrance_id', fragrance_id).limit(1).execute()
    return result.data[0] if result.data else {}

def _adjust_log(fragrance_id: str, source: str, amount: float, resulting: float, note: str, admin_email: str) -> dict:
    return {
        'fragrance_id': fragrance_id,
        'change_type': 'adjust',
        'source': source,
        'change_amount_ml': amount,
        'resulting_stock_ml': resulting,
        'reference_type': 'manual',
        'note': note,
        'created_by': admin_email,
    }

@router.get("")
async def get_inventory(request: Request):
    """全香料の在庫と不足アラート"""
    require_admin(request)
    try:
        result = get_supabase().table('fragrance_inventory').select('*').order('fragrance_id').execute()
        items = build_inventory_items(result.data)
        return {"items": items, "alerts": low_stock_alerts(items)}

    except HTTPException:
        raise
    except APIError as e:
        if e.code == TABLE_NOT_FOUND:
            # テーブル未作成時は全香料0で返す
            logger.warning("fragrance_inventoryテーブルが存在しません")
            return {"items": build_inventory_items([]), "alerts": []}
        logger.error(f"在庫取得エラー: {e}")
        raise HTTPException(status_code=500, detail="재고 데이터 조회 실패")
    except Exception as e:
        logger.error(f"在庫取得エラー: {e}")
        raise HTTPException(status_code=500, detail="서버 오류가 발생했습니다")

@router.get("/logs")
async def get_inventory_logs(
    request: Request,
    fragranceId: Optional[str] = Query(None),
    limit: int = Query(50, ge=1, le=500),
    offset: int = Query(0, ge=0),
):
    """在庫変動履歴（新しい順）"""
    require_admin(request)
    try:
        query = get_supabase().table('fragrance_inventory_logs').select('*', count='exact') \
            .order('created_at', desc=True).range(offset, offset + limit - 1)
        if fragranceId:
            query = query.eq('fragrance_id', fragranceId)
        result = query.execute()

        names = {p['id']: p['name'] for p in load_catalog()}
        logs = [
            format_log(log, names.get(log.get('fragrance_id'), log.get('fragrance_id')))
            for log in result.data or []
        ]
        return {"logs": logs, "total": result.count or 0}

    except HTTPException:
        raise
    except APIError as e:
        if e.code == TABLE_NOT_FOUND:
            return {"logs": [], "total": 0}
        logger.error(f"在庫履歴取得エラー: {e}")
        raise HTTPException(status_code=500, detail="이력 데이터 조회 실패")
    except Exception as e:
        logger.error(f"在庫履歴取得エラー: {e}")
        raise HTTPException(status_code=500, detail="서버 오류가 발생했습니다")

@router.post("/bulk")
async def bulk_update_inventory(body: BulkInventoryRequest, request: Request):
    """在庫の一括設定

    マスタにない香料IDは無視し、変動があった分だけ履歴を残す。
    """
    admin = require_admin(request)
    if not body.items:
        raise HTTPException(status_code=400, detail="유효한 재고 데이터가 필요합니다")

    try:
        supabase = get_supabase()
        items = [item for item in body.items if get_perfume_by_id(item.fragranceId)]

        existing = supabase.table('fragrance_inventory').select('*') \
            .in_('fragrance_id', [item.fragranceId for item in body.items]).execute()
        existing_map = {row['fragrance_id']: row for row in existing.data or []}

        upsert_data = []
        for item in items:
            perfume = get_perfume_by_id(item.fragranceId)
            upsert_data.append({
                'fragrance_id': item.fragranceId,
                'fragrance_name': perfume['name'],
                'category': perfume['category'],
                'online_stock_ml': item.onlineStockMl,
                'offline_stock_ml': item.offlineStockMl,
                'min_threshold_ml': item.minThresholdMl if item.minThresholdMl is not None else DEFAULT_MIN_THRESHOLD_ML,
                'updated_at': now_iso(),
                'updated_by': admin.get('email'),
            })
        if upsert_data:
            supabase.table('fragrance_inventory').upsert(upsert_data, on_conflict='fragrance_id').execute()

        logs = []
        for item in items:
            previous = existing_map.get(item.fragranceId) or {}
            prev_online = float(previous.get('online_stock_ml') or 0)
            prev_offline = float(previous.get('offline_stock_ml') or 0)
            if item.onlineStockMl != prev_online:
                logs.append(_adjust_log(item.fragranceId, 'online', item.onlineStockMl - prev_online,
                                        item.onlineStockMl, '일괄 재고 설정', admin.get('email')))
            if item.offlineStockMl != prev_offline:
                logs.append(_adjust_log(item.fragranceId, 'offline', item.offlineStockMl - prev_offline,
                                        item.offlineStockMl, '일괄 재고 설정', admin.get('email')))
        if logs:
            supabase.table('fragrance_inventory_logs').insert(logs).execute()

        logger.info(f"在庫一括設定: {len(upsert_data)}件, 履歴{len(logs)}件 ({admin.get('email')})")
        return {"success": True, "updated": len(upsert_data), "logsCreated": len(logs)}

    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"在庫一括設定エラー: {e}")
        raise HTTPException(status_code=500, detail="재고 일괄 업데이트 실패")

@router.get("/{fragrance_id}")
async def get_fragrance_inventory(fragrance_id: str, request: Request):
    """単一香料の在庫と直近20件の履歴"""
    require_admin(request)
    perfume = _find_perfume(fragrance_id)
    try:
        supabase = get_supabase()
        inventory = _current_stock(supabase, fragrance_id)
        logs = supabase.table('fragrance_inventory_logs').select('*').eq('fragrance_id', fragrance_id) \
            .order('created_at', desc=True).limit(20).execute()

        online = float(inventory.get('online_stock_ml') or 0)
        offline = float(inventory.get('offline_stock_ml') or 0)
        return {
            "fragranceId": perfume['id'],
            "fragranceName": perfume['name'],
            "category": perfume['category'],
            "onlineStockMl": online,
            "offlineStockMl": offline,
            "totalStockMl": online + offline,
            "minThresholdMl": float(inventory.get('min_threshold_ml') or DEFAULT_MIN_THRESHOLD_ML),
            "updatedAt": inventory.get('updated_at'),
            "logs": [format_log(log) for log in logs.data or []],
        }

    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"在庫詳細取得エラー {fragrance_id}: {e}")
        raise HTTPException(status_code=500, detail="서버 오류가 발생했습니다")

@router.put("/{fragrance_id}")
async def set_fragrance_inventory(fragrance_id: str, body: InventorySetRequest, request: Request):
    """在庫の直接設定（指定された項目のみ）"""
    admin = require_admin(request)
    perfume = _find_perfume(fragrance_id)
    try:
        supabase = get_supabase()
        existing = _current_stock(supabase, fragrance_id)

        update_data = {
            'fragrance_id': fragrance_id,
            'fragrance_name': perfume['name'],
            'category': perfume['category'],
            'updated_at': now_iso(),
            'updated_by': admin.get('email'),
        }
        if body.onlineStockMl is not None:
            update_data['online_stock_ml'] = body.onlineStockMl
        if body.offlineStockMl is not None:
            update_data['offline_stock_ml'] = body.offlineStockMl
        if body.minThresholdMl is not None:
            update_data['min_threshold_ml'] = body.minThresholdMl
        supabase.table('fragrance_inventory').upsert(update_data, on_conflict='fragrance_id').execute()

        note = body.note or '재고 직접 설정'
        for source, value in (('online', body.onlineStockMl), ('offline', body.offlineStockMl)):
            if value is None:
                continue
            previous = float(existing.get(f'{source}_stock_ml') or 0)
            supabase.table('fragrance_inventory_logs').insert(
                _adjust_log(fragrance_id, source, value - previous, value, note, admin.get('email'))
            ).execute()

        return {"success": True}

    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"在庫設定エラー {fragrance_id}: {e}")
        raise HTTPException(status_code=500, detail="재고 업데이트 실패")

@router.post("/{fragrance_id}")
async def adjust_fragrance_inventory(fragrance_id: str, body: InventoryAdjustRequest, request: Request):
    """在庫の追加・差し引き（0未満にはしない）"""
    admin = require_admin(request)
    if not body.source or not body.changeType or body.amountMl is None:
        raise HTTPException(status_code=400, detail="필수 파라미터가 누락되었습니다")
    perfume = _find_perfume(fragrance_id)

    try:
        supabase = get_supabase()
        existing = _current_stock(supabase, fragrance_id)
        online = float(existing.get('online_stock_ml') or 0)
        offline = float(existing.get('offline_stock_ml') or 0)

        change = body.amountMl if body.changeType == 'add' else -body.amountMl
        if body.source == 'online':
            online = max(0, online + change)
        else:
            offline = max(0, offline + change)

        supabase.table('fragrance_inventory').upsert({
            'fragrance_id': fragrance_id,
            'fragrance_name': perfume['name'],
            'category': perfume['category'],
            'online_stock_ml': online,
            'offline_stock_ml': offline,
            'min_threshold_ml': existing.get('min_threshold_ml') or DEFAULT_MIN_THRESHOLD_ML,
            'updated_at': now_iso(),
            'updated_by': admin.get('email'),
        }, on_conflict='fragrance_id').execute()

        supabase.table('fragrance_inventory_logs').insert({
            'fragrance_id': fragrance_id,
            'change_type': body.changeType,
            'source': body.source,
            'change_amount_ml': change,
            'resulting_stock_ml': online if body.source == 'online' else offline,
            'reference_type': 'manual',
            'note': body.note or ('재고 추가' if body.changeType == 'add' else '재고 차감'),
            'created_by': admin.get('email'),
        }).execute()

        return {
            "success": True,
            "onlineStockMl": online,
            "offlineStockMl": offline,
            "totalStockMl": online + offline,
        }

    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"在庫調整エラー {fragrance_id}: {e}")
        raise HTTPException(status_code=500, detail="재고 업데이트 실패")
