#!/usr/bin/env python
# -*- coding: utf-8 -*-
"""
クーポン処理
保有クーポンの取得と決済時の利用可否判定
"""

import logging
from datetime import datetime
from typing import Dict, List, Optional

from .utils import parse_timestamp, get_timezone

logger = logging.getLogger(__name__)

COMPLETED_ORDER_STATUSES = ['paid', 'delivered', 'shipping']

# DBにクーポンがない場合の既定値
DEFAULT_COUPONS = [
    {
        'id': 'welcome',
        'type': 'welcome',
        'discount_percent': 15,
        'title': '웰컴 쿠폰',
        'description': '처음 방문해주셔서 감사합니다',
        'isClaimed': False,
    },
    {
        'id': 'birthday',
        'type': 'birthday',
        'discount_percent': 20,
        'title': '생일 축하',
        'description': '생일 달 고객님께 드리는 특별 할인',
        'isClaimed': False,
    },
    {
        'id': 'referral',
        'type': 'referral',
        'discount_percent': 10,
        'title': '친구 추천',
        'description': '친구를 추천해주셔서 감사합니다',
        'isClaimed': False,
    },
    {
        'id': 'repurchase',
        'type': 'repurchase',
        'discount_percent': 10,
        'title': '재구매 감사',
        'description': '다시 찾아주셔서 감사합니다',
        'isClaimed': False,
    },
]

def is_expired(coupon: Dict, now: datetime) -> bool:
    valid_until = parse_timestamp(coupon.get('valid_until'))
    return bool(valid_until and valid_until < now)

def count_completed_orders(client, user_id: str) -> int:
    """決済完了済み（paid/delivered/shipping）の注文数"""
    result = client.table('orders').select('id', count='exact') \
        .eq('user_id', user_id).in_('status', COMPLETED_ORDER_STATUSES).execute()
    return result.count or 0

def fetch_user_coupons(client, user_id: str, unused_only: bool = False) -> List[Dict]:
    """保有クーポンをクーポン情報付きで取得（claimed_at降順）"""
    query = client.table('user_coupons').select('*').eq('user_id', user_id)
    if unused_only:
        query = query.eq('is_used', False)
    user_coupons = query.order('claimed_at', desc=True).execute().data or []

    coupon_ids = list({uc['coupon_id'] for uc in user_coupons if uc.get('coupon_id')})
    coupons = {}
    if coupon_ids:
        result = client.table('coupons').select('*').in_('id', coupon_ids).execute()
        coupons = {c['id']: c for c in result.data or []}

    for uc in user_coupons:
        uc['coupon'] = coupons.get(uc.get('coupon_id'))
    return user_coupons

def evaluate_checkout_coupons(user_coupons: List[Dict], has_completed_order: bool,
                              now: Optional[datetime] = None) -> List[Dict]:
    """決済画面向けの利用可否判定

    - 有効期限切れは不可
    - 再購入クーポンは購入完了履歴が必要
    - 誕生日クーポンは受け取った月のみ
    利用可能なものを先に、割引率の高い順に並べる。
    """
    now = now or datetime.now(get_timezone())
    tz = get_timezone()
    current_month = now.astimezone(tz).month
    result = []

    for uc in user_coupons:
        coupon = uc.get('coupon')
        if not coupon:
            continue

        expired = is_expired(coupon, now)
        repurchase_ok = coupon.get('type') != 'repurchase' or has_completed_order
        claimed_at = parse_timestamp(uc.get('claimed_at'))
        claimed_month = claimed_at.astimezone(tz).month if claimed_at else current_month
        birthday_ok = coupon.get('type') != 'birthday' or claimed_month == current_month

        reason = None
        if expired:
            reason = '유효기간이 만료되었어요'
        elif not repurchase_ok:
            reason = '첫 주문 완료 후 사용할 수 있어요'
        elif not birthday_ok:
            reason = '생일 달에만 사용할 수 있어요'

        result.append({
            'id': coupon['id'],
            'userCouponId': uc['id'],
            'type': coupon.get('type'),
            'discount_percent': coupon.get('discount_percent', 0),
            'title': coupon.get('title'),
            'isEligible': reason is None,
            'ineligibleReason': reason,
        })

    return sorted(result, key=lambda c: (not c['isEligible'], -c['discount_percent']))

def checkout_coupons_for_user(client, user_id: str) -> List[Dict]:
    user_coupons = fetch_user_coupons(client, user_id, unused_only=True)
    has_completed = count_completed_orders(client, user_id) > 0
    return evaluate_checkout_coupons(user_coupons, has_completed)
