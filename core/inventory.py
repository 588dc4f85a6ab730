#!/usr/bin/env python
# -*- coding: utf-8 -*-
"""
香料在庫の自動差し引き
注文の決済完了時・オフライン分析完了時に在庫を減らす
"""

import logging
from typing import Dict, List, Optional

from .fragrances import extract_granules, single_perfume_recipe, get_fragrance_volume, load_catalog
from .utils import round_half_up, now_iso

logger = logging.getLogger(__name__)

DEFAULT_MIN_THRESHOLD_ML = 50

def calculate_fragrance_usage(final_recipe: Optional[Dict], perfume_name: Optional[str],
                              product_type: str, size: str, quantity: int) -> List[Dict]:
    """レシピまたは香水名から香料ごとの使用量を計算"""
    granules = extract_granules(final_recipe)
    if not granules and perfume_name:
        granules = single_perfume_recipe(perfume_name)
    if not granules:
        return []

    volume_ml = get_fragrance_volume(product_type, size)
    return [
        {
            "fragranceId": g['id'],
            "fragranceName": g['name'],
            "category": g['category'],
            "amountMl": round_half_up(g['ratio'] / 100 * volume_ml * quantity, 2),
        }
        for g in granules
    ]

def recipe_from_analysis_data(analysis_data: Optional[Dict]) -> Optional[Dict]:
    if not analysis_data:
        return None
    return analysis_data.get('finalRecipe') or analysis_data.get('final_recipe')

class InventoryDeduction:
    """在庫差し引き処理"""

    def __init__(self, client):
        if not client:
            raise Exception("Supabase client not initialized")
        self.client = client

    def deduct(self, items: List[Dict], source: str, reference_type: str,
               reference_id: str, created_by: Optional[str] = None) -> Dict:
        """在庫から使用量を差し引き、変動履歴を記録

        在庫はマイナスになり得る（警告表示のみ）。
        """
        deducted = []
        errors = []
        stock_column = 'online_stock_ml' if source == 'online' else 'offline_stock_ml'

        for item in items:
            if item['amountMl'] <= 0:
                continue
            try:
                result = self.client.table('fragrance_inventory').select('*') \
                    .eq('fragrance_id', item['fragranceId']).limit(1).execute()

                if result.data:
                    current = float(result.data[0].get(stock_column) or 0)
                else:
                    # 在庫レコードがなければ作成
                    self.client.table('fragrance_inventory').insert({
                        'fragrance_id': item['fragranceId'],
                        'fragrance_name': item['fragranceName'],
                        'category': item['category'],
                        'online_stock_ml': 0,
                        'offline_stock_ml': 0,
                        'min_threshold_ml': DEFAULT_MIN_THRESHOLD_ML,
                    }).execute()
                    current = 0

                new_stock = round_half_up(current - item['amountMl'], 2)
                self.client.table('fragrance_inventory').update({
                    stock_column: new_stock,
                    'updated_at': now_iso(),
                    'updated_by': created_by,
                }).eq('fragrance_id', item['fragranceId']).execute()

                self.client.table('fragrance_inventory_logs').insert({
                    'fragrance_id': item['fragranceId'],
                    'change_type': 'deduct',
                    'source': source,
                    'change_amount_ml': -item['amountMl'],
                    'resulting_stock_ml': new_stock,
                    'reference_type': reference_type,
                    'reference_id': reference_id,
                    'note': f"자동 차감 ({'온라인 주문' if source == 'online' else '오프라인 분석'})",
                    'created_by': created_by,
                }).execute()

                deducted.append(item)

            except Exception as e:
                logger.error(f"在庫差し引きエラー {item['fragranceId']}: {e}")
                errors.append(f"{item['fragranceName']}: {e}")

        return {"success": not errors, "deducted": deducted, "errors": errors}

    def is_deducted(self, reference_type: str, reference_id: str) -> bool:
        """同じ注文・分析の差し引き履歴があるか"""
        logged = self.client.table('fragrance_inventory_logs').select('id') \
            .eq('reference_type', reference_type).eq('reference_id', reference_id).limit(1).execute()
        return bool(logged.data)

    def deduct_for_order(self, order_id: str, created_by: Optional[str] = None) -> Dict:
        """注文の全商品について在庫を差し引く（差し引き済みの注文は何もしない）"""
        all_deducted = []
        all_errors = []

        if self.is_deducted('order', order_id):
            logger.info(f"在庫差し引き済みの注文です: {order_id}")
            return {"success": True, "deducted": [], "errors": [], "skipped": True}

        try:
            items_result = self.client.table('order_items').select('*').eq('order_id', order_id).execute()
            order_items = items_result.data or []

            if not order_items:
                # order_itemsがない単品注文はordersのanalysis_dataから
                order_result = self.client.table('orders').select('*').eq('id', order_id).limit(1).execute()
                if not order_result.data:
                    return {"success": False, "deducted": [], "errors": ['주문 정보를 찾을 수 없습니다']}

                order = order_result.data[0]
                usage = calculate_fragrance_usage(
                    recipe_from_analysis_data(order.get('analysis_data')),
                    order.get('perfume_name'),
                    order.get('product_type') or 'image_analysis',
                    order.get('size') or '10ml',
                    1,
                )
                if usage:
                    result = self.deduct(usage, 'online', 'order', order_id, created_by)
                    all_deducted.extend(result['deducted'])
                    all_errors.extend(result['errors'])
                return {"success": not all_errors, "deducted": all_deducted, "errors": all_errors}

            for item in order_items:
                final_recipe = None
                if item.get('analysis_id'):
                    analysis = self.client.table('analysis_results').select('final_recipe') \
                        .eq('id', item['analysis_id']).limit(1).execute()
                    if analysis.data:
                        final_recipe = analysis.data[0].get('final_recipe')
                if not final_recipe:
                    final_recipe = recipe_from_analysis_data(item.get('analysis_data'))

                usage = calculate_fragrance_usage(
                    final_recipe,
                    item.get('perfume_name'),
                    item.get('product_type') or 'image_analysis',
                    item.get('size') or '10ml',
                    item.get('quantity') or 1,
                )
                if usage:
                    result = self.deduct(usage, 'online', 'order', order_id, created_by)
                    all_deducted.extend(result['deducted'])
                    all_errors.extend(result['errors'])

        except Exception as e:
            logger.error(f"注文の在庫差し引きに失敗しました {order_id}: {e}")
            all_errors.append(f"주문 처리 실패: {e}")

        return {"success": not all_errors, "deducted": all_deducted, "errors": all_errors}

    def deduct_for_analysis(self, analysis_id: str, analysis_data: Dict,
                            created_by: Optional[str] = None) -> Dict:
        """オフライン分析（10mlパフューム）の在庫差し引き"""
        usage = calculate_fragrance_usage(
            analysis_data.get('finalRecipe'),
            analysis_data.get('perfumeName'),
            analysis_data.get('productType') or 'image_analysis',
            '10ml',
            1,
        )
        if not usage:
            return {"success": True, "deducted": [], "errors": []}
        return self.deduct(usage, 'offline', 'analysis', analysis_id, created_by)

def build_inventory_items(rows: List[Dict], now: Optional[str] = None) -> List[Dict]:
    """香料マスタ全件に在庫レコードを重ねる（レコードがなければ0）"""
    by_id = {row['fragrance_id']: row for row in rows or []}
    items = []
    for perfume in load_catalog():
        row = by_id.get(perfume['id']) or {}
        online = float(row.get('online_stock_ml') or 0)
        offline = float(row.get('offline_stock_ml') or 0)
        total = online + offline
        threshold = float(row.get('min_threshold_ml') or DEFAULT_MIN_THRESHOLD_ML)
        items.append({
            "id": row.get('id', ''),
            "fragranceId": perfume['id'],
            "fragranceName": perfume['name'],
            "category": perfume['category'],
            "onlineStockMl": online,
            "offlineStockMl": offline,
            "totalStockMl": total,
            "minThresholdMl": threshold,
            "isLowStock": total < threshold,
            "updatedAt": row.get('updated_at') or now or now_iso(),
        })
    return items

def low_stock_alerts(items: List[Dict]) -> List[Dict]:
    return [
        {
            "fragranceId": item['fragranceId'],
            "fragranceName": item['fragranceName'],
            "currentStock": item['totalStockMl'],
            "threshold": item['minThresholdMl'],
        }
        for item in items if item['isLowStock']
    ]

def format_log(log: Dict, fragrance_name: Optional[str] = None) -> Dict:
    """在庫変動履歴をAPI表記に変換"""
    formatted = {
        "id": log.get('id'),
        "fragranceId": log.get('fragrance_id'),
        "changeType": log.get('change_type'),
        "source": log.get('source'),
        "changeAmountMl": float(log.get('change_amount_ml') or 0),
        "resultingStockMl": float(log.get('resulting_stock_ml') or 0),
        "referenceType": log.get('reference_type'),
        "referenceId": log.get('reference_id'),
        "note": log.get('note'),
        "createdAt": log.get('created_at'),
        "createdBy": log.get('created_by'),
    }
    if fragrance_name is not None:
        formatted['fragranceName'] = fragrance_name
    return formatted
