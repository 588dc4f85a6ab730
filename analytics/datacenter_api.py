#!/usr/bin/env python
# -*- coding: utf-8 -*-
"""
データセンター API
"""

import logging
from datetime import datetime
from typing import Optional
from urllib.parse import quote

import pytz
from fastapi import APIRouter, HTTPException, Query, Request
from fastapi.responses import Response

from core.auth import require_admin
from core.database import get_supabase
from core.fragrances import PROGRAM_TYPES
from .datacenter import (
    DataCenter, analyses_csv, feedback_patterns, fragrance_usage_report,
    program_stats, recipe_selection,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/admin/datacenter", tags=["admin-datacenter"])

@router.get("")
async def get_program_stats(
    request: Request,
    format: str = Query('json', description="json / csv"),
    program: Optional[str] = Query(None, description="idol_image / figure / graduation / all"),
):
    """プログラム別の分析統計（format=csvでダウンロード）"""
    require_admin(request)
    try:
        analyses = DataCenter(get_supabase()).analyses()

        if format == 'csv':
            filename = f"분석데이터_{program or 'all'}_{datetime.now(pytz.UTC):%Y-%m-%d}.csv"
            return Response(
                content=analyses_csv(analyses, program),
                media_type='text/csv; charset=utf-8',
                headers={'Content-Disposition': f'attachment; filename="{quote(filename)}"'},
            )

        return program_stats(analyses)

    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"データセンター集計エラー: {e}")
        raise HTTPException(status_code=500, detail="서버 오류가 발생했습니다")

@router.get("/fragrance-usage")
async def get_fragrance_usage(
    request: Request,
    dateFrom: Optional[str] = Query(None),
    dateTo: Optional[str] = Query(None),
    programType: Optional[str] = Query(None, description="idol_image / figure / graduation / all"),
):
    """香料使用量（オンライン注文・オフライン分析・合算）"""
    require_admin(request)
    if programType and programType != 'all' and programType not in PROGRAM_TYPES:
        raise HTTPException(status_code=400, detail="잘못된 프로그램 타입입니다")

    try:
        center = DataCenter(get_supabase())
        usage = center.online_usage(dateFrom, dateTo, programType) \
            + center.offline_usage(dateFrom, dateTo, programType)
        return fragrance_usage_report(usage)
    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"香料使用量集計エラー: {e}")
        raise HTTPException(status_code=500, detail="서버 오류가 발생했습니다")

@router.get("/feedback-patterns")
async def get_feedback_patterns(
    request: Request,
    dateFrom: Optional[str] = Query(None),
    dateTo: Optional[str] = Query(None),
):
    """フィードバック傾向"""
    require_admin(request)
    try:
        feedbacks = DataCenter(get_supabase()).feedbacks(
            'id, created_at, retention_percentage, category_preferences, specific_scents, natural_language_feedback',
            dateFrom, dateTo,
        )
        return feedback_patterns(feedbacks)
    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"フィードバック傾向集計エラー: {e}")
        raise HTTPException(status_code=500, detail="서버 오류가 발생했습니다")

@router.get("/recipe-selection")
async def get_recipe_selection(
    request: Request,
    dateFrom: Optional[str] = Query(None),
    dateTo: Optional[str] = Query(None),
):
    """レシピ選択の統計"""
    require_admin(request)
    try:
        center = DataCenter(get_supabase())
        feedbacks = center.feedbacks('id, created_at, selected_recipe_type, result_id, generated_recipe',
                                     dateFrom, dateTo)
        result_ids = list({f['result_id'] for f in feedbacks if f.get('result_id')})
        return recipe_selection(feedbacks, center.program_by_result(result_ids))
    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"レシピ選択集計エラー: {e}")
        raise HTTPException(status_code=500, detail="서버 오류가 발생했습니다")
