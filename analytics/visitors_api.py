#!/usr/bin/env python
# -*- coding: utf-8 -*-
"""
訪問者分析 API
"""

import logging
from typing import Optional

from fastapi import APIRouter, HTTPException, Query, Request

from core.auth import require_admin
from core.database import get_supabase
from .visitors import VisitorAnalytics, resolve_period

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/admin/analytics/visitors", tags=["admin-visitors"])

PERIOD_REPORTS = {
    'summary': VisitorAnalytics.summary,
    'daily': VisitorAnalytics.daily,
    'hourly': VisitorAnalytics.hourly,
    'top-pages': VisitorAnalytics.top_pages,
    'referrers': VisitorAnalytics.referrers,
    'devices': VisitorAnalytics.devices,
    'events': VisitorAnalytics.events,
    'user-flow': VisitorAnalytics.user_flow,
    'duration-detail': VisitorAnalytics.duration_detail,
}

@router.get("")
async def get_visitor_analytics(
    request: Request,
    type: str = Query('summary', description="summary / daily / hourly / top-pages / referrers / devices / events / realtime / user-flow / calendar / duration-detail"),
    period: str = Query('7d', description="1d / 7d / 30d / 90d"),
    start: Optional[str] = Query(None),
    end: Optional[str] = Query(None),
    year: Optional[int] = Query(None),
    month: Optional[int] = Query(None, ge=1, le=12),
):
    """訪問者分析レポート"""
    require_admin(request)

    if type not in PERIOD_REPORTS and type not in ('realtime', 'calendar'):
        raise HTTPException(status_code=400, detail="Invalid type")

    try:
        analytics = VisitorAnalytics(get_supabase())

        if type == 'realtime':
            return analytics.realtime()
        if type == 'calendar':
            return analytics.calendar(year, month)

        period_start, period_end = resolve_period(period, start, end)
        return PERIOD_REPORTS[type](analytics, period_start, period_end)

    except HTTPException:
        raise
    except ValueError as e:
        logger.warning(f"期間指定が不正です: {e}")
        raise HTTPException(status_code=400, detail="잘못된 기간입니다")
    except Exception as e:
        logger.error(f"訪問者分析エラー ({type}): {e}")
        raise HTTPException(status_code=500, detail="Internal server error")
