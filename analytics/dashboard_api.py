#!/usr/bin/env python
# -*- coding: utf-8 -*-
"""
管理者ダッシュボード API
分析・注文・売上・会員・QRの集計
"""

import logging
from typing import Dict, List

from fastapi import APIRouter, HTTPException, Request

from core.auth import require_admin
from core.coupons import COMPLETED_ORDER_STATUSES
from core.database import get_supabase
from core.utils import parse_timestamp, today_start

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/admin/analytics", tags=["admin-analytics"])

ORDER_STATUSES = ('pending', 'paid', 'shipping', 'delivered', 'cancel_requested', 'cancelled')

def count_rows(supabase, table: str, since: str = None) -> int:
    query = supabase.table(table).select('id', count='exact')
    if since:
        query = query.gte('created_at', since)
    return query.execute().count or 0

def tally(rows: List[Dict], column: str, keys, default: str) -> Dict[str, int]:
    """指定キーのみ数える（値がなければdefault扱い）"""
    counts = {key: 0 for key in keys}
    for row in rows:
        value = row.get(column) or default
        if value in counts:
            counts[value] += 1
    return counts

def build_dashboard_stats(supabase) -> Dict:
    """ダッシュボードの集計値

    「今日」は設定タイムゾーンの0時以降。
    """
    today = today_start()
    today_iso = today.isoformat()

    analyses = supabase.table('analysis_results').select('product_type, service_mode').execute().data or []
    statuses = supabase.table('orders').select('status').execute().data or []
    revenue_rows = supabase.table('orders').select('final_price, created_at') \
        .in_('status', COMPLETED_ORDER_STATUSES).execute().data or []
    qr_rows = supabase.table('qr_codes').select('scan_count').execute().data or []

    revenue_today = 0
    for order in revenue_rows:
        created_at = parse_timestamp(order.get('created_at'))
        if created_at and created_at >= today:
            revenue_today += order.get('final_price') or 0

    return {
        "totalAnalysis": count_rows(supabase, 'analysis_results'),
        "analysisToday": count_rows(supabase, 'analysis_results', today_iso),
        "analysisByProduct": tally(
            analyses, 'product_type', ('image_analysis', 'figure_diffuser', 'personal_scent'), 'image_analysis'
        ),
        "analysisByMode": tally(analyses, 'service_mode', ('online', 'offline'), 'online'),
        "totalOrders": count_rows(supabase, 'orders'),
        "ordersToday": count_rows(supabase, 'orders', today_iso),
        "ordersByStatus": tally(statuses, 'status', ORDER_STATUSES, 'pending'),
        "totalRevenue": sum(order.get('final_price') or 0 for order in revenue_rows),
        "revenueToday": revenue_today,
        "totalMembers": count_rows(supabase, 'user_profiles'),
        "newMembersToday": count_rows(supabase, 'user_profiles', today_iso),
        "totalQRCodes": count_rows(supabase, 'qr_codes'),
        "totalQRScans": sum(qr.get('scan_count') or 0 for qr in qr_rows),
    }

@router.get("")
async def get_dashboard_stats(request: Request):
    """管理者ダッシュボードの統計"""
    require_admin(request)
    try:
        return build_dashboard_stats(get_supabase())
    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"ダッシュボード集計エラー: {e}")
        raise HTTPException(status_code=500, detail="서버 오류가 발생했습니다")
