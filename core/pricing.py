#!/usr/bin/env python
# -*- coding: utf-8 -*-
"""
価格計算モジュール
商品価格・送料・クーポン割引の計算
"""

import math
from typing import Dict, List, Optional

# 商品タイプ別の価格表（ウォン）
PRODUCT_PRICING = {
    'image_analysis': [
        {'size': '10ml', 'price': 24000, 'label': '스프레이 10ml', 'shipping': 3000},
        {'size': '50ml', 'price': 48000, 'label': '스프레이 50ml', 'shipping': 0},
    ],
    'figure_diffuser': [
        {'size': 'set', 'price': 48000, 'label': '피규어+디퓨저 세트', 'shipping': 0},
    ],
    'personal_scent': [
        {'size': '10ml', 'price': 24000, 'label': '스프레이 10ml', 'shipping': 3000},
        {'size': '50ml', 'price': 48000, 'label': '스프레이 50ml', 'shipping': 0},
    ],
}

PRODUCT_TYPES = tuple(PRODUCT_PRICING.keys())

# 単品購入（チェックアウト画面）の価格
CHECKOUT_PRICES = {'10ml': 24000, '50ml': 48000}
DEFAULT_SHIPPING_FEE = 3000

# この容量を含むと送料無料
FREE_SHIPPING_SIZES = ('50ml', 'set')

BANK_TRANSFER_INFO = {
    "bank": "카카오뱅크",
    "accountNumber": "3333093215346",
    "accountHolder": "김주연",
}

def get_size_options(product_type: str) -> List[Dict]:
    return PRODUCT_PRICING.get(product_type, [])

def is_valid_size(product_type: str, size: str) -> bool:
    return any(opt['size'] == size for opt in get_size_options(product_type))

def get_price_by_size(product_type: str, size: str) -> int:
    """容量に対応する価格。見つからなければ先頭オプションの価格"""
    options = get_size_options(product_type)
    for opt in options:
        if opt['size'] == size:
            return opt['price']
    return options[0]['price'] if options else 0

def get_default_size(product_type: str) -> str:
    return 'set' if product_type == 'figure_diffuser' else '10ml'

def get_default_price(product_type: str) -> int:
    return 48000 if product_type == 'figure_diffuser' else 24000

def calculate_cart_totals(items: List[Dict], coupon_percent: Optional[float] = None) -> Dict:
    """カート合計を計算

    50ml・セット商品が1つでもあれば送料無料。
    割引は小計に対して適用（切り捨て）。
    """
    subtotal = sum(item['price'] * item.get('quantity', 1) for item in items)

    has_free_shipping = any(item.get('size') in FREE_SHIPPING_SIZES for item in items)
    if has_free_shipping or not items:
        shipping_fee = 0
    else:
        shipping_fee = DEFAULT_SHIPPING_FEE

    discount = math.floor(subtotal * coupon_percent / 100) if coupon_percent else 0
    total = subtotal + shipping_fee - discount

    return {
        "subtotal": subtotal,
        "shippingFee": shipping_fee,
        "discount": discount,
        "total": total,
        "itemCount": sum(item.get('quantity', 1) for item in items),
    }

def calculate_checkout(size: str, coupon_percent: Optional[float] = None) -> Dict:
    """単品チェックアウトの金額

    割引は商品価格のみに適用し、送料には適用しない。
    """
    product_price = CHECKOUT_PRICES.get(size, CHECKOUT_PRICES['10ml'])
    shipping_fee = DEFAULT_SHIPPING_FEE if size == '10ml' else 0
    discount = math.floor(product_price * coupon_percent / 100) if coupon_percent else 0
    total = product_price + shipping_fee - discount

    return {
        "productPrice": product_price,
        "shippingFee": shipping_fee,
        "discountAmount": discount,
        "originalPrice": product_price + shipping_fee,
        "finalPrice": total,
    }

def validate_shipping_form(form: Dict) -> Dict[str, str]:
    """配送フォームの検証。エラーがなければ空の辞書"""
    errors = {}
    if not (form.get('name') or '').strip():
        errors['name'] = '이름을 입력해주세요'
    if len(form.get('phone1') or '') < 2 or len(form.get('phone2') or '') != 4 \
            or len(form.get('phone3') or '') != 4:
        errors['phone'] = '연락처를 정확히 입력해주세요'
    if not form.get('zipCode'):
        errors['zipCode'] = '우편번호를 입력해주세요'
    if not form.get('address'):
        errors['address'] = '주소를 입력해주세요'
    if not form.get('privacyAgreed'):
        errors['privacyAgreed'] = '개인정보 수집에 동의해주세요'
    return errors

def join_phone(form: Dict) -> str:
    return f"{form.get('phone1', '')}-{form.get('phone2', '')}-{form.get('phone3', '')}"
