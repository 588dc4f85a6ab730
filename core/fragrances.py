#!/usr/bin/env python
# -*- coding: utf-8 -*-
"""
香料マスタと消費量計算
データセンターの香料使用量・在庫集計で共通利用
"""

import json
from pathlib import Path
from typing import Dict, List, Optional

from .utils import round_half_up

CATALOG_PATH = Path(__file__).parent / "data" / "fragrances.json"

# 製品タイプ別の香料原液量 (ml)
FRAGRANCE_VOLUME_MAP = {
    '10ml': 2,
    '50ml': 10,
    'set': 5,
    'diffuser': 5,
    'default': 2,
}

PROGRAM_TYPES = ('idol_image', 'figure', 'graduation')

PROGRAM_TYPE_MAP = {
    'image_analysis': 'idol_image',
    'idol_image': 'idol_image',
    'figure_diffuser': 'figure',
    'figure': 'figure',
    'graduation': 'graduation',
}

CATEGORIES = ('citrus', 'floral', 'woody', 'musky', 'fruity', 'spicy')

CATEGORY_META = {
    'citrus': {'label': '시트러스', 'icon': '🍋'},
    'floral': {'label': '플로럴', 'icon': '🌸'},
    'woody': {'label': '우디', 'icon': '🌳'},
    'musky': {'label': '머스크', 'icon': '✨'},
    'fruity': {'label': '프루티', 'icon': '🍎'},
    'spicy': {'label': '스파이시', 'icon': '🌶️'},
}

# 香料密度 (g/ml)
FRAGRANCE_DENSITY = 0.9

FEEDBACK_KEYWORDS = [
    # 香りの印象
    '상큼', '달콤', '무거운', '가벼운', '은은', '강렬', '부드러운', '시원한', '따뜻한',
    # 季節
    '가을', '봄', '여름', '겨울',
    # シーン
    '데이트', '출근', '파티', '일상', '여행', '운동',
    # カテゴリ
    '플로럴', '우디', '시트러스', '머스크', '프루티', '스파이시',
    # 雰囲気
    '세련된', '로맨틱', '섹시', '청순', '고급스러운', '캐주얼',
    # その他
    '향이 오래', '잔향', '지속', '발향', '확산',
]

_catalog: Optional[List[Dict]] = None

def load_catalog() -> List[Dict]:
    """香料マスタ（30種）を読み込む"""
    global _catalog
    if _catalog is None:
        with open(CATALOG_PATH, encoding='utf-8') as f:
            _catalog = json.load(f)
    return _catalog

def get_perfume_by_id(fragrance_id: str) -> Optional[Dict]:
    for perfume in load_catalog():
        if perfume['id'] == fragrance_id:
            return perfume
    return None

def find_perfume(name_or_id: str) -> Optional[Dict]:
    """名前またはIDで検索"""
    for perfume in load_catalog():
        if perfume['name'] == name_or_id or perfume['id'] == name_or_id:
            return perfume
    return None

def get_fragrance_volume(product_type: Optional[str], size: Optional[str]) -> float:
    """製品タイプと容量から香料原液量を求める"""
    product_type = product_type or ''
    size = size or ''
    if 'diffuser' in product_type or 'figure' in product_type:
        return FRAGRANCE_VOLUME_MAP['diffuser']
    if '50' in size:
        return FRAGRANCE_VOLUME_MAP['50ml']
    if '10' in size:
        return FRAGRANCE_VOLUME_MAP['10ml']
    return FRAGRANCE_VOLUME_MAP['default']

def normalize_program_type(raw_type: Optional[str]) -> str:
    return PROGRAM_TYPE_MAP.get(raw_type or '', 'idol_image')

def extract_granules(recipe: Optional[Dict]) -> List[Dict]:
    """生成レシピから香料リストを取り出す"""
    granules = (recipe or {}).get('granules') or []
    result = []
    for g in granules:
        perfume = get_perfume_by_id(g.get('id'))
        category = g.get('mainCategory') or (perfume['category'] if perfume else None) or 'unknown'
        result.append({
            "id": g.get('id'),
            "name": g.get('name'),
            "category": category,
            "ratio": g.get('ratio') or 0,
        })
    return result

def single_perfume_recipe(perfume_name: Optional[str]) -> List[Dict]:
    """単一香水を100%とみなしたレシピ"""
    perfume = find_perfume(perfume_name) if perfume_name else None
    if not perfume:
        return []
    return [{
        "id": perfume['id'],
        "name": perfume['name'],
        "category": perfume['category'],
        "ratio": 100,
    }]

def usage_rows(granules: List[Dict], volume_ml: float, quantity: int = 1, **extra) -> List[Dict]:
    """香料ごとの消費量行を生成"""
    rows = []
    for granule in granules:
        ml = granule['ratio'] / 100 * volume_ml * quantity
        row = {
            "fragranceId": granule['id'],
            "fragranceName": granule['name'],
            "category": granule['category'],
            "ml": ml,
            "g": ml * FRAGRANCE_DENSITY,
            "ratio": granule['ratio'],
        }
        row.update(extra)
        rows.append(row)
    return rows

def aggregate_fragrance_usage(usage_data: List[Dict]) -> List[Dict]:
    """香料別の使用量集計（使用量降順）"""
    aggregated: Dict[str, Dict] = {}
    for item in usage_data:
        key = item['fragranceId']
        if key not in aggregated:
            aggregated[key] = {
                'id': key,
                'name': item['fragranceName'],
                'category': item['category'],
                'totalMl': 0,
                'totalG': 0,
                'usageCount': 0,
                'totalRatio': 0,
            }
        aggregated[key]['totalMl'] += item['ml']
        aggregated[key]['totalG'] += item['g']
        aggregated[key]['usageCount'] += 1
        aggregated[key]['totalRatio'] += item['ratio']

    result = [
        {
            'id': a['id'],
            'name': a['name'],
            'category': a['category'],
            'totalMl': round_half_up(a['totalMl'], 2),
            'totalG': round_half_up(a['totalG'], 2),
            'usageCount': a['usageCount'],
            'averageRatio': round_half_up(a['totalRatio'] / a['usageCount'], 1),
        }
        for a in aggregated.values()
    ]
    return sorted(result, key=lambda x: x['totalMl'], reverse=True)

def aggregate_category_usage(fragrance_usage: List[Dict]) -> List[Dict]:
    """カテゴリ別の使用量と構成比"""
    totals: Dict[str, float] = {}
    grand_total = 0
    for item in fragrance_usage:
        totals[item['category']] = totals.get(item['category'], 0) + item['totalMl']
        grand_total += item['totalMl']

    result = []
    for category, total_ml in totals.items():
        meta = CATEGORY_META.get(category, {})
        result.append({
            'category': category,
            'label': meta.get('label', category),
            'icon': meta.get('icon', '🎯'),
            'totalMl': round_half_up(total_ml, 2),
            'percentage': round_half_up(total_ml / grand_total * 1000) / 10 if grand_total > 0 else 0,
        })
    return sorted(result, key=lambda x: x['totalMl'], reverse=True)

def extract_keywords(text: Optional[str]) -> List[str]:
    if not text:
        return []
    return [kw for kw in FEEDBACK_KEYWORDS if kw in text]

def aggregate_keywords(feedbacks: List[str]) -> List[Dict]:
    """自然言語フィードバックのキーワード頻度"""
    counts: Dict[str, int] = {}
    for feedback in feedbacks:
        for kw in extract_keywords(feedback):
            counts[kw] = counts.get(kw, 0) + 1
    return [
        {'keyword': kw, 'count': count}
        for kw, count in sorted(counts.items(), key=lambda x: x[1], reverse=True)
    ]
