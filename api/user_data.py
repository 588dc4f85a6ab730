#!/usr/bin/env python
# -*- coding: utf-8 -*-
"""
マイページAPI
分析結果・保存レシピの照会と分析結果の削除
"""

import logging
from typing import Dict, List, Optional

from fastapi import APIRouter, HTTPException, Query, Request

from core.auth import require_user
from core.database import get_supabase

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/user", tags=["user"])

def _merge_newest_first(*groups: List[Dict]) -> List[Dict]:
    """id で重複を除き created_at 降順に並べる"""
    by_id = {}
    for rows in groups:
        for row in rows or []:
            by_id[row['id']] = row
    return sorted(by_id.values(), key=lambda r: r.get('created_at') or '', reverse=True)

def _with_recipe(rows: List[Dict]) -> List[Dict]:
    return [r for r in rows or [] if r.get('generated_recipe') is not None]

@router.get("/data")
async def get_user_data(request: Request, fingerprint: Optional[str] = Query(None)):
    """ログインユーザーの分析結果とレシピ

    fingerprint があれば匿名時代のデータを先に紐付け、両方を合わせて返す。
    """
    user = require_user(request)
    try:
        supabase = get_supabase()

        if fingerprint:
            try:
                supabase.rpc('link_fingerprint_data', {
                    'p_user_id': user['id'],
                    'p_fingerprint': fingerprint,
                }).execute()
            except Exception as e:
                logger.warning(f"fingerprintデータの紐付けに失敗しました: {e}")

        analyses = supabase.table('analysis_results').select('*').eq('user_id', user['id']) \
            .order('created_at', desc=True).execute().data
        recipes = _with_recipe(
            supabase.table('perfume_feedbacks').select('*').eq('user_id', user['id'])
            .order('created_at', desc=True).execute().data
        )

        anon_analyses = []
        anon_recipes = []
        if fingerprint:
            anon_analyses = supabase.table('analysis_results').select('*') \
                .eq('user_fingerprint', fingerprint).is_('user_id', 'null').execute().data
            anon_recipes = _with_recipe(
                supabase.table('perfume_feedbacks').select('*')
                .eq('user_fingerprint', fingerprint).is_('user_id', 'null').execute().data
            )

        merged_analyses = _merge_newest_first(analyses, anon_analyses)
        merged_recipes = _merge_newest_first(recipes, anon_recipes)

        # 各分析結果に確定レシピを付ける
        confirmed = {}
        analysis_ids = [a['id'] for a in merged_analyses]
        if analysis_ids:
            linked = supabase.table('perfume_feedbacks').select('result_id, generated_recipe') \
                .in_('result_id', analysis_ids).execute()
            for row in _with_recipe(linked.data):
                if row.get('result_id'):
                    confirmed[row['result_id']] = row['generated_recipe']

        return {
            "analyses": [{**a, "confirmed_recipe": confirmed.get(a['id'])} for a in merged_analyses],
            "recipes": merged_recipes,
        }

    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"ユーザーデータ取得エラー: {e}")
        raise HTTPException(status_code=500, detail="데이터 조회에 실패했습니다")

@router.delete("/analysis/{analysis_id}")
async def delete_analysis(analysis_id: str, request: Request):
    """自分の分析結果を削除"""
    user = require_user(request)
    try:
        result = get_supabase().table('analysis_results').delete() \
            .eq('id', analysis_id).eq('user_id', user['id']).execute()
        if not result.data:
            raise HTTPException(status_code=404, detail="분석 결과를 찾을 수 없습니다")
        return {"success": True}
    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"分析結果削除エラー: {e}")
        raise HTTPException(status_code=500, detail="삭제에 실패했습니다")
