#!/usr/bin/env python
# -*- coding: utf-8 -*-
"""
データセンター集計
プログラム別統計・香料使用量・フィードバック傾向・レシピ選択
"""

import csv
import logging
from collections import Counter
from typing import Dict, List, Optional

import pandas as pd

from core.coupons import COMPLETED_ORDER_STATUSES
from core.fragrances import (
    CATEGORIES, PROGRAM_TYPES, aggregate_category_usage, aggregate_fragrance_usage,
    aggregate_keywords, extract_granules, get_fragrance_volume, normalize_program_type,
    single_perfume_recipe, usage_rows,
)
from core.utils import end_of_day, get_timezone, parse_timestamp, round_half_up

logger = logging.getLogger(__name__)

GENDER_LABELS = {'male': '남성', 'female': '여성', 'other': '기타'}

PROGRAM_LABELS = {
    'idol_image': 'AI이미지분석',
    'figure': '피규어디퓨저',
    'graduation': '졸업퍼퓸',
}

CSV_HEADERS = ['분석ID', '분석일시', '프로그램', '분석대상이름', '트위터이름', '추천향수', '키워드']

RETENTION_RANGES = [
    ('0-20%', 0, 20),
    ('21-40%', 21, 40),
    ('41-60%', 41, 60),
    ('61-80%', 61, 80),
    ('81-100%', 81, 100),
]

RECIPE_TYPES = {
    'user_direct': 'userDirect',
    'ai_recommended': 'aiRecommended',
    'original': 'original',
}

def share(count: int, total: int) -> float:
    """小数1桁の百分率"""
    return round_half_up(count / total * 1000) / 10 if total > 0 else 0

def _ranked_counts(counter: Counter) -> List[Dict]:
    return [
        {"name": name, "count": count}
        for name, count in sorted(counter.items(), key=lambda x: x[1], reverse=True)
    ]

def _extract_gender(analysis_data: Optional[Dict]) -> Optional[str]:
    if not analysis_data:
        return None
    for source in (analysis_data, analysis_data.get('inputData'), analysis_data.get('formData')):
        if isinstance(source, dict) and isinstance(source.get('gender'), str):
            return source['gender']
    return None

# ---------- プログラム別統計 ----------

def program_stats(analyses: List[Dict]) -> Dict:
    """プログラム別の香水・キーワード・対象名・性別の件数"""
    counters = {
        program: {key: Counter() for key in ('perfume', 'keyword', 'name', 'gender')}
        for program in PROGRAM_TYPES
    }
    totals = Counter()

    for analysis in analyses:
        program = normalize_program_type(analysis.get('product_type') or 'idol_image')
        totals[program] += 1
        counter = counters[program]

        if analysis.get('perfume_name'):
            counter['perfume'][analysis['perfume_name']] += 1

        for keyword in analysis.get('matching_keywords') or []:
            if isinstance(keyword, str) and keyword.strip():
                counter['keyword'][keyword.strip()] += 1

        idol_name = analysis.get('idol_name')
        if isinstance(idol_name, str) and idol_name.strip():
            counter['name'][idol_name.strip()] += 1

        gender = _extract_gender(analysis.get('analysis_data'))
        if gender:
            counter['gender'][GENDER_LABELS.get(gender, gender)] += 1

    def stats(total: int, counter: Dict[str, Counter]) -> Dict:
        return {
            "totalAnalyses": total,
            "perfumeCounts": _ranked_counts(counter['perfume']),
            "keywordCounts": _ranked_counts(counter['keyword']),
            "nameCounts": _ranked_counts(counter['name']),
            "genderCounts": _ranked_counts(counter['gender']),
        }

    combined = {key: Counter() for key in ('perfume', 'keyword', 'name', 'gender')}
    for program in PROGRAM_TYPES:
        for key, counter in counters[program].items():
            combined[key].update(counter)

    return {
        "byProgram": {program: stats(totals[program], counters[program]) for program in PROGRAM_TYPES},
        "total": stats(sum(totals.values()), combined),
    }

def analyses_csv(analyses: List[Dict], program: Optional[str] = None) -> str:
    """分析データのCSV（Excelで文字化けしないようBOM付き）"""
    if program and program != 'all':
        analyses = [
            a for a in analyses
            if normalize_program_type(a.get('product_type') or 'idol_image') == program
        ]

    tz = get_timezone()
    rows = []
    for a in analyses:
        created_at = parse_timestamp(a.get('created_at'))
        rows.append([
            a.get('id'),
            created_at.astimezone(tz).strftime('%Y-%m-%d %H:%M:%S') if created_at else '',
            PROGRAM_LABELS[normalize_program_type(a.get('product_type') or 'idol_image')],
            a.get('idol_name') or '',
            a.get('twitter_name') or '',
            a.get('perfume_name') or '',
            ', '.join(a.get('matching_keywords') or []),
        ])

    df = pd.DataFrame(rows, columns=CSV_HEADERS)
    return '\ufeff' + df.to_csv(index=False, quoting=csv.QUOTE_ALL, lineterminator='\n')

# ---------- 香料使用量 ----------

def _program_usage(usage_data: List[Dict]) -> Dict:
    by_program = {}
    for program in PROGRAM_TYPES:
        rows = [d for d in usage_data if d['programType'] == program]
        by_program[program] = {
            "totalMl": round_half_up(sum(d['ml'] for d in rows), 2),
            "totalG": round_half_up(sum(d['g'] for d in rows), 2),
            "totalItems": len(rows),
            "topFragrances": aggregate_fragrance_usage(rows)[:5],
        }
    return by_program

def _usage_summary(usage_data: List[Dict], by_fragrance: List[Dict]) -> Dict:
    return {
        "totalMl": round_half_up(sum(f['totalMl'] for f in by_fragrance), 2),
        "totalG": round_half_up(sum(f['totalG'] for f in by_fragrance), 2),
        "totalItems": len(usage_data),
        "uniqueFragrances": len(by_fragrance),
    }

def fragrance_usage_report(usage_data: List[Dict]) -> Dict:
    """オンライン・オフライン・合算の使用量レポート"""
    sources = {
        'online': [d for d in usage_data if d['source'] == 'online'],
        'offline': [d for d in usage_data if d['source'] == 'offline'],
        'combined': usage_data,
    }
    report = {"summary": {}, "byFragrance": {}, "byCategory": {}, "byProgram": {}}
    for key, rows in sources.items():
        by_fragrance = [
            {**f, "rank": index + 1} for index, f in enumerate(aggregate_fragrance_usage(rows))
        ]
        report["summary"][key] = _usage_summary(rows, by_fragrance)
        report["byFragrance"][key] = by_fragrance
        report["byCategory"][key] = aggregate_category_usage(by_fragrance)
        report["byProgram"][key] = _program_usage(rows)
    return report

# ---------- フィードバック傾向 ----------

def feedback_patterns(feedbacks: List[Dict]) -> Dict:
    """残香率分布・カテゴリ嗜好・追加香料・自然言語キーワード"""
    total = len(feedbacks)

    retention_counts = Counter()
    for fb in feedbacks:
        retention = fb.get('retention_percentage') or 0
        for label, low, high in RETENTION_RANGES:
            if low <= retention <= high:
                retention_counts[label] += 1
                break

    category_stats = {
        category: {"increase": 0, "decrease": 0, "maintain": 0, "total": 0}
        for category in CATEGORIES
    }
    for fb in feedbacks:
        for category, preference in (fb.get('category_preferences') or {}).items():
            stats = category_stats.get(category)
            if stats is not None and preference in stats:
                stats[preference] += 1
                stats['total'] += 1

    scents: Dict[str, Dict] = {}
    for fb in feedbacks:
        for scent in fb.get('specific_scents') or []:
            entry = scents.setdefault(scent.get('id'), {
                "id": scent.get('id'), "name": scent.get('name'), "count": 0, "totalRatio": 0,
            })
            entry['count'] += 1
            entry['totalRatio'] += scent.get('ratio') or 0
    popular = sorted(
        (
            {"id": s['id'], "name": s['name'], "count": s['count'],
             "avgRatio": round_half_up(s['totalRatio'] / s['count'], 1)}
            for s in scents.values()
        ),
        key=lambda x: x['count'],
        reverse=True,
    )[:15]

    texts = [fb['natural_language_feedback'] for fb in feedbacks if fb.get('natural_language_feedback')]

    return {
        "retentionDistribution": [
            {"range": label, "count": retention_counts[label], "percentage": share(retention_counts[label], total)}
            for label, _, _ in RETENTION_RANGES
        ],
        "categoryPreferences": category_stats,
        "popularAddedScents": popular,
        "naturalLanguageKeywords": aggregate_keywords(texts)[:20],
        "totalFeedbacks": total,
    }

# ---------- レシピ選択 ----------

def recipe_type_of(feedback: Dict) -> str:
    """選択レシピの種類（未記録でレシピがあればユーザー調整とみなす）"""
    if feedback.get('selected_recipe_type'):
        return RECIPE_TYPES.get(feedback['selected_recipe_type'], 'original')
    if feedback.get('generated_recipe'):
        return 'userDirect'
    return 'original'

def recipe_selection(feedbacks: List[Dict], program_by_result: Dict[str, str]) -> Dict:
    """レシピ選択の内訳・プログラム別・月別推移（直近12か月）"""
    empty = {"userDirect": 0, "aiRecommended": 0, "original": 0, "total": 0}
    counts = Counter()
    by_program = {program: dict(empty) for program in PROGRAM_TYPES}
    monthly: Dict[str, Dict] = {}
    tz = get_timezone()

    for fb in feedbacks:
        recipe_type = recipe_type_of(fb)
        counts[recipe_type] += 1

        program = program_by_result.get(fb.get('result_id'), 'idol_image')
        by_program[program][recipe_type] += 1
        by_program[program]['total'] += 1

        created_at = parse_timestamp(fb.get('created_at'))
        if created_at:
            month = created_at.astimezone(tz).strftime('%Y-%m')
            stats = monthly.setdefault(month, dict(empty))
            stats[recipe_type] += 1
            stats['total'] += 1

    total = len(feedbacks)
    return {
        "total": total,
        "breakdown": {
            key: {"count": counts[key], "percentage": share(counts[key], total)}
            for key in ('userDirect', 'aiRecommended', 'original')
        },
        "byProgram": by_program,
        "trend": [{"month": month, **monthly[month]} for month in sorted(monthly)[-12:]],
    }

class DataCenter:
    """データセンター用のデータ取得"""

    def __init__(self, client):
        if not client:
            raise Exception("Supabase client not initialized")
        self.client = client

    @staticmethod
    def _date_filter(query, column: str, date_from: Optional[str], date_to: Optional[str]):
        if date_from:
            query = query.gte(column, date_from)
        if date_to:
            # 日付のみの場合はその日の終わりまで含める
            query = query.lte(column, end_of_day(date_to) if len(date_to) == 10 else date_to)
        return query

    def _recipes_by_result(self, result_ids: List[str]) -> Dict[str, Dict]:
        if not result_ids:
            return {}
        result = self.client.table('perfume_feedbacks').select('result_id, generated_recipe') \
            .in_('result_id', result_ids).execute()
        return {f['result_id']: f.get('generated_recipe') for f in result.data or []}

    def analyses(self) -> List[Dict]:
        result = self.client.table('analysis_results') \
            .select('id, created_at, product_type, perfume_name, matching_keywords, idol_name, twitter_name, analysis_data') \
            .order('created_at', desc=True).execute()
        return result.data or []

    def offline_usage(self, date_from=None, date_to=None, program_type=None) -> List[Dict]:
        """オフライン分析の使用量（注文の有無に関係なく最終レシピ、10ml換算）"""
        query = self.client.table('analysis_results').select('id, created_at, product_type, perfume_name, service_mode') \
            .eq('service_mode', 'offline')
        analyses = self._date_filter(query, 'created_at', date_from, date_to).execute().data or []
        recipes = self._recipes_by_result([a['id'] for a in analyses])

        rows = []
        for analysis in analyses:
            raw_type = analysis.get('product_type') or 'idol_image'
            program = normalize_program_type(raw_type)
            if program_type and program_type != 'all' and program != program_type:
                continue
            recipe = recipes.get(analysis['id'])
            granules = extract_granules(recipe) if recipe else single_perfume_recipe(analysis.get('perfume_name'))
            rows.extend(usage_rows(granules, get_fragrance_volume(raw_type, '10ml'),
                                   programType=program, source='offline'))
        return rows

    def online_usage(self, date_from=None, date_to=None, program_type=None) -> List[Dict]:
        """決済済み注文の商品ごとの使用量"""
        query = self.client.table('orders').select('id, status, created_at') \
            .in_('status', COMPLETED_ORDER_STATUSES)
        orders = self._date_filter(query, 'created_at', date_from, date_to).execute().data or []
        if not orders:
            return []

        items = self.client.table('order_items') \
            .select('id, order_id, product_type, perfume_name, size, quantity, analysis_id') \
            .in_('order_id', [o['id'] for o in orders]).execute().data or []
        recipes = self._recipes_by_result([i['analysis_id'] for i in items if i.get('analysis_id')])

        rows = []
        for item in items:
            raw_type = item.get('product_type') or 'image_analysis'
            program = normalize_program_type(raw_type)
            if program_type and program_type != 'all' and program != program_type:
                continue
            recipe = recipes.get(item['analysis_id']) if item.get('analysis_id') else None
            granules = extract_granules(recipe) if recipe else single_perfume_recipe(item.get('perfume_name'))
            rows.extend(usage_rows(granules, get_fragrance_volume(raw_type, item.get('size') or '10ml'),
                                   item.get('quantity') or 1, programType=program, source='online'))
        return rows

    def feedbacks(self, columns: str, date_from=None, date_to=None) -> List[Dict]:
        query = self.client.table('perfume_feedbacks').select(columns)
        query = self._date_filter(query, 'created_at', date_from, date_to)
        return query.order('created_at', desc=True).execute().data or []

    def program_by_result(self, result_ids: List[str]) -> Dict[str, str]:
        if not result_ids:
            return {}
        result = self.client.table('analysis_results').select('id, product_type').in_('id', result_ids).execute()
        return {r['id']: normalize_program_type(r.get('product_type')) for r in result.data or []}
