#!/usr/bin/env python
# -*- coding: utf-8 -*-
"""
管理者 会員API
会員一覧（分析数・注文数・紹介人数・紹介者）
"""

import logging
from collections import Counter
from typing import Optional

from fastapi import APIRouter, HTTPException, Query, Request

from core.auth import require_admin
from core.database import get_supabase
from core.utils import end_of_day, page_range, paginate

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/admin/members", tags=["admin-members"])

@router.get("")
async def list_members(
    request: Request,
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    search: Optional[str] = Query(None, description="名前・メール・紹介コード"),
    provider: Optional[str] = Query(None),
    date_from: Optional[str] = Query(None),
    date_to: Optional[str] = Query(None),
):
    """会員一覧

    referred_by には紹介者のユーザーIDが入る。
    """
    require_admin(request)
    try:
        supabase = get_supabase()
        start, end = page_range(page, limit)
        query = supabase.table('user_profiles').select('*', count='exact')

        if provider and provider != 'all':
            query = query.eq('provider', provider)
        if search:
            query = query.or_(f"name.ilike.%{search}%,email.ilike.%{search}%,referral_code.ilike.%{search}%")
        if date_from:
            query = query.gte('created_at', date_from)
        if date_to:
            query = query.lte('created_at', end_of_day(date_to))

        result = query.order('created_at', desc=True).range(start, end).execute()
        members = result.data or []
        member_ids = [m['id'] for m in members]

        analysis_counts = Counter()
        order_counts = Counter()
        referred_counts = Counter()
        if member_ids:
            rows = supabase.table('analysis_results').select('user_id').in_('user_id', member_ids).execute()
            analysis_counts.update(r['user_id'] for r in rows.data or [])

            rows = supabase.table('orders').select('user_id').in_('user_id', member_ids).execute()
            order_counts.update(r['user_id'] for r in rows.data or [])

            rows = supabase.table('user_profiles').select('referred_by').in_('referred_by', member_ids).execute()
            referred_counts.update(r['referred_by'] for r in rows.data or [])

        referrers = {}
        referrer_ids = list({m['referred_by'] for m in members if m.get('referred_by')})
        if referrer_ids:
            rows = supabase.table('user_profiles').select('id, name, email').in_('id', referrer_ids).execute()
            referrers = {r['id']: {"name": r.get('name'), "email": r.get('email')} for r in rows.data or []}

        data = [
            {
                **m,
                "analysis_count": analysis_counts[m['id']],
                "order_count": order_counts[m['id']],
                "referred_count": referred_counts[m['id']],
                "referrer": referrers.get(m['referred_by']) if m.get('referred_by') else None,
            }
            for m in members
        ]
        return {"data": data, "pagination": paginate(page, limit, result.count or 0)}

    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"会員一覧取得エラー: {e}")
        raise HTTPException(status_code=500, detail="회원 목록을 불러오는데 실패했습니다")
