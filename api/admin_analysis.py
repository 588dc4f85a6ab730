#!/usr/bin/env python
# -*- coding: utf-8 -*-
"""
管理者 分析結果API
分析一覧・詳細・オフライン分析の在庫差し引き
"""

import logging
from typing import Optional

from fastapi import APIRouter, HTTPException, Query, Request

from core.auth import require_admin
from core.database import get_supabase
from core.inventory import InventoryDeduction
from core.utils import end_of_day, page_range, paginate

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/admin/analysis", tags=["admin-analysis"])

@router.get("")
async def list_analyses(
    request: Request,
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    product_type: Optional[str] = Query(None),
    service_mode: Optional[str] = Query(None),
    search: Optional[str] = Query(None, description="アイドル名・Twitter名・香水名"),
    date_from: Optional[str] = Query(None, description="YYYY-MM-DD"),
    date_to: Optional[str] = Query(None, description="YYYY-MM-DD"),
):
    """分析結果一覧（会員情報・フィードバック付き）"""
    require_admin(request)
    try:
        supabase = get_supabase()
        start, end = page_range(page, limit)
        query = supabase.table('analysis_results').select('*', count='exact')

        if product_type and product_type != 'all':
            query = query.eq('product_type', product_type)
        if service_mode and service_mode != 'all':
            query = query.eq('service_mode', service_mode)
        if search:
            query = query.or_(
                f"idol_name.ilike.%{search}%,twitter_name.ilike.%{search}%,perfume_name.ilike.%{search}%"
            )
        if date_from:
            query = query.gte('created_at', date_from)
        if date_to:
            query = query.lte('created_at', end_of_day(date_to))

        result = query.order('created_at', desc=True).range(start, end).execute()
        analyses = result.data or []

        profiles = {}
        user_ids = list({a['user_id'] for a in analyses if a.get('user_id')})
        if user_ids:
            rows = supabase.table('user_profiles').select('id, name, email, provider').in_('id', user_ids).execute()
            profiles = {p['id']: p for p in rows.data or []}

        feedbacks = {}
        analysis_ids = [a['id'] for a in analyses]
        if analysis_ids:
            rows = supabase.table('feedback').select('*').in_('result_id', analysis_ids).execute()
            feedbacks = {f['result_id']: f for f in rows.data or []}

        data = [
            {
                **a,
                "user_profile": profiles.get(a['user_id']) if a.get('user_id') else None,
                "feedback": feedbacks.get(a['id']),
            }
            for a in analyses
        ]
        return {"data": data, "pagination": paginate(page, limit, result.count or 0)}

    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"分析一覧取得エラー: {e}")
        raise HTTPException(status_code=500, detail="분석 목록을 불러오는데 실패했습니다")

@router.get("/{analysis_id}")
async def get_analysis(analysis_id: str, request: Request):
    """分析結果の詳細（会員・最新フィードバック・注文履歴）"""
    require_admin(request)
    try:
        supabase = get_supabase()
        result = supabase.table('analysis_results').select('*').eq('id', analysis_id).limit(1).execute()
        if not result.data:
            raise HTTPException(status_code=404, detail="분석 결과를 찾을 수 없습니다")
        analysis = result.data[0]

        user_profile = None
        orders = []
        if analysis.get('user_id'):
            profile = supabase.table('user_profiles') \
                .select('id, name, email, provider, referral_code, referred_by, created_at') \
                .eq('id', analysis['user_id']).limit(1).execute()
            user_profile = profile.data[0] if profile.data else None

            orders = supabase.table('orders').select('id, order_number, status, created_at, final_price') \
                .eq('user_id', analysis['user_id']).order('created_at', desc=True).execute().data or []

        feedback = supabase.table('feedback').select('*').eq('result_id', analysis_id) \
            .order('created_at', desc=True).limit(1).execute()

        return {
            "analysis": analysis,
            "user_profile": user_profile,
            "feedback": feedback.data[0] if feedback.data else None,
            "orders": orders,
        }

    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"分析詳細取得エラー: {e}")
        raise HTTPException(status_code=500, detail="서버 오류가 발생했습니다")

@router.post("/{analysis_id}/deduct-inventory")
async def deduct_inventory_for_analysis(analysis_id: str, request: Request):
    """オフライン分析で作った10mlパフューム分の在庫を差し引く"""
    admin = require_admin(request)
    try:
        supabase = get_supabase()
        result = supabase.table('analysis_results').select('*').eq('id', analysis_id).limit(1).execute()
        if not result.data:
            raise HTTPException(status_code=404, detail="분석 결과를 찾을 수 없습니다")
        analysis = result.data[0]

        if analysis.get('service_mode') != 'offline':
            raise HTTPException(status_code=400, detail="오프라인 분석만 재고를 차감할 수 있습니다")

        inventory = InventoryDeduction(supabase)
        if inventory.is_deducted('analysis', analysis_id):
            raise HTTPException(status_code=409, detail="이미 재고가 차감된 분석입니다")

        feedback = supabase.table('perfume_feedbacks').select('generated_recipe') \
            .eq('result_id', analysis_id).order('created_at', desc=True).limit(1).execute()
        final_recipe = None
        if feedback.data:
            final_recipe = feedback.data[0].get('generated_recipe')

        deduction = inventory.deduct_for_analysis(analysis_id, {
            'finalRecipe': final_recipe or analysis.get('final_recipe'),
            'perfumeName': analysis.get('perfume_name'),
            'productType': analysis.get('product_type'),
        }, created_by=admin.get('email'))

        return {
            "success": deduction['success'],
            "deducted": deduction['deducted'],
            "errors": deduction['errors'],
        }

    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"分析の在庫差し引きエラー: {e}")
        raise HTTPException(status_code=500, detail="서버 오류가 발생했습니다")
