"""
カート・注文APIのテスト
"""

import re

from postgrest.exceptions import APIError

from conftest import USER

def _cart_item(analysis_id, size='10ml', price=24000, **extra):
    return {
        'analysis_id': analysis_id,
        'product_type': 'image_analysis',
        'perfume_name': f'향수 {analysis_id}',
        'size': size,
        'price': price,
        **extra,
    }

SHIPPING = {'recipientName': '김하늘', 'phone': '010-1234-5678', 'zipCode': '06000', 'address': '서울시 강남구'}

def test_add_and_list_cart(user_client, fake_db):
    response = user_client.post('/api/cart', json=_cart_item('a-1', quantity=2))
    assert response.status_code == 200
    assert response.json()['message'] == '장바구니에 추가되었습니다'

    body = user_client.get('/api/cart').json()
    assert body['count'] == 1
    assert body['totals'] == {
        "subtotal": 48000, "shippingFee": 3000, "discount": 0, "total": 51000, "itemCount": 2,
    }
    assert user_client.get('/api/cart', params={'count': 'true'}).json() == {"count": 1}

def test_add_missing_fields(user_client):
    response = user_client.post('/api/cart', json={'analysis_id': 'a-1'})
    assert response.status_code == 400
    assert response.json() == {"error": "필수 항목이 누락되었습니다"}

def test_bulk_add_reports_duplicates(user_client, fake_db):
    fake_db.seed('cart_items', {'user_id': USER['id'], **_cart_item('a-1'), 'quantity': 1})

    body = user_client.post('/api/cart', json={'items': [_cart_item('a-1'), _cart_item('a-2')]}).json()
    assert body['added'] == 1
    assert body['duplicates'] == 1
    assert body['message'] == '1개 추가됨 (1개는 이미 장바구니에 있음)'
    assert len(fake_db.rows('cart_items')) == 2

def test_update_cart_item_size_updates_price(user_client, fake_db):
    item = fake_db.seed('cart_items', {'user_id': USER['id'], **_cart_item('a-1'), 'quantity': 1})[0]

    body = user_client.patch(f"/api/cart/{item['id']}", json={
        'size': '50ml', 'product_type': 'image_analysis', 'quantity': 3,
    }).json()
    assert body['item']['price'] == 48000
    assert body['item']['quantity'] == 3

    response = user_client.patch(f"/api/cart/{item['id']}", json={'quantity': 11})
    assert response.status_code == 400
    response = user_client.patch(f"/api/cart/{item['id']}", json={'size': 'set', 'product_type': 'figure_diffuser'})
    assert response.json() == {"error": "피규어 디퓨저는 사이즈 변경이 불가합니다"}
    response = user_client.patch('/api/cart/other', json={'quantity': 2})
    assert response.status_code == 404

def test_delete_cart_items(user_client, fake_db):
    rows = fake_db.seed('cart_items',
                        {'user_id': USER['id'], **_cart_item('a-1')},
                        {'user_id': USER['id'], **_cart_item('a-2')},
                        {'user_id': 'someone-else', **_cart_item('a-3')})

    body = user_client.request('DELETE', '/api/cart', json={'ids': [rows[0]['id'], rows[2]['id']]}).json()
    assert body['deleted'] == 1

    assert user_client.request('DELETE', '/api/cart', json={}).status_code == 400

    user_client.delete('/api/cart', params={'all': 'true'})
    assert [r['user_id'] for r in fake_db.rows('cart_items')] == ['someone-else']

def _seed_welcome_coupon(fake_db, user_coupon_id, user_id, **extra):
    if not fake_db.rows('coupons'):
        fake_db.seed('coupons', {'id': 'c-welcome', 'type': 'welcome', 'discount_percent': 15, 'title': '웰컴'})
    fake_db.seed('user_coupons', {'id': user_coupon_id, 'user_id': user_id, 'coupon_id': 'c-welcome',
                                  'is_used': False, **extra})

def test_create_single_order_and_use_coupon(user_client, fake_db):
    _seed_welcome_coupon(fake_db, 'uc-1', USER['id'])

    response = user_client.post('/api/orders', json={
        **SHIPPING,
        'perfumeName': '블랙베리',
        'size': '10ml',
        'price': 24000,
        'shippingFee': 3000,
        'userCouponId': 'uc-1',
        'discountAmount': 3600,
        'finalPrice': 23400,
    })
    assert response.status_code == 200
    body = response.json()
    assert re.fullmatch(r'ORD-\d{8}-[A-Z0-9]{6}', body['orderNumber'])
    assert body['discountApplied'] is True

    order = fake_db.rows('orders')[0]
    assert order['status'] == 'pending'
    assert order['original_price'] == 27000
    assert order['final_price'] == 23400

    coupon = fake_db.rows('user_coupons')[0]
    assert coupon['is_used'] is True
    assert coupon['used_order_id'] == order['id']

def test_order_cannot_use_other_or_spent_coupon(user_client, fake_db):
    _seed_welcome_coupon(fake_db, 'victim-uc', 'victim')
    _seed_welcome_coupon(fake_db, 'spent-uc', USER['id'], is_used=True, used_order_id='o-old')
    order = {**SHIPPING, 'perfumeName': '블랙베리', 'size': '10ml', 'price': 24000, 'finalPrice': 23400}

    response = user_client.post('/api/orders', json={**order, 'userCouponId': 'victim-uc'})
    assert response.status_code == 404
    assert response.json() == {"error": "쿠폰을 찾을 수 없습니다"}

    response = user_client.post('/api/orders', json={**order, 'userCouponId': 'spent-uc'})
    assert response.status_code == 404

    coupons = {c['id']: c for c in fake_db.rows('user_coupons')}
    assert coupons['victim-uc']['is_used'] is False
    assert coupons['spent-uc']['used_order_id'] == 'o-old'
    assert fake_db.rows('orders') == []

def test_create_order_requires_fields(user_client):
    response = user_client.post('/api/orders', json={'recipientName': '김하늘', 'size': '10ml'})
    assert response.status_code == 400
    assert response.json() == {"error": "필수 정보가 누락되었습니다"}

def test_create_cart_order(user_client, fake_db):
    rows = fake_db.seed('cart_items',
                        {'user_id': USER['id'], **_cart_item('a-1'), 'quantity': 1},
                        {'user_id': USER['id'], **_cart_item('a-2', size='50ml', price=48000), 'quantity': 1},
                        {'user_id': USER['id'], **_cart_item('a-3'), 'quantity': 1})

    response = user_client.post('/api/orders', json={**SHIPPING, 'cartItemIds': [rows[0]['id'], rows[1]['id']]})
    assert response.status_code == 200

    order = fake_db.rows('orders')[0]
    assert order['perfume_name'] == '향수 a-1 외 1건'
    assert order['price'] == 72000
    assert order['shipping_fee'] == 0
    assert order['final_price'] == 72000

    items = fake_db.rows('order_items')
    assert [i['subtotal'] for i in items] == [24000, 48000]
    assert all(i['order_id'] == order['id'] for i in items)
    # 注文した分だけカートから消える
    assert [r['analysis_id'] for r in fake_db.rows('cart_items')] == ['a-3']

def test_create_cart_order_with_no_items(user_client):
    response = user_client.post('/api/orders', json={**SHIPPING, 'cartItemIds': ['missing']})
    assert response.status_code == 400
    assert response.json() == {"error": "주문할 상품이 없습니다"}

def test_order_history_and_lookup(user_client, anon_client, fake_db):
    fake_db.seed('orders',
                 {'id': 'o-1', 'user_id': USER['id'], 'order_number': 'ORD-1', 'status': 'paid',
                  'created_at': '2026-10-01T00:00:00+00:00', 'phone': '010-0000-0000'},
                 {'id': 'o-2', 'user_id': USER['id'], 'order_number': 'ORD-2', 'status': 'pending',
                  'created_at': '2026-10-02T00:00:00+00:00'},
                 {'id': 'o-3', 'user_id': 'other', 'order_number': 'ORD-3'})

    orders = user_client.get('/api/orders').json()['orders']
    assert [o['id'] for o in orders] == ['o-2', 'o-1']

    body = anon_client.get('/api/orders/o-1').json()
    assert body['order']['order_number'] == 'ORD-1'
    assert 'phone' not in body['order']
    assert anon_client.get('/api/orders/none').status_code == 404

def test_cancel_request(user_client, fake_db):
    fake_db.seed('orders', {'id': 'o-1', 'user_id': USER['id'], 'status': 'paid'},
                 {'id': 'o-2', 'user_id': 'other', 'status': 'paid'})

    body = user_client.patch('/api/orders/o-1/cancel').json()
    assert body['message'] == '취소 요청이 접수되었습니다'
    assert body['order']['status'] == 'cancel_requested'

    response = user_client.patch('/api/orders/o-1/cancel')
    assert response.status_code == 400
    assert response.json() == {"error": "이미 취소 요청된 주문입니다"}

    assert user_client.patch('/api/orders/o-2/cancel').status_code == 404

def test_add_cart_unique_violation_is_conflict(user_client, fake_db):
    fake_db.errors['cart_items'] = APIError({
        'message': 'duplicate key value violates unique constraint', 'code': '23505', 'hint': None, 'details': None,
    })
    response = user_client.post('/api/cart', json=_cart_item('a-1'))
    assert response.status_code == 409
    assert response.json() == {"error": "이미 장바구니에 있는 상품입니다"}

    fake_db.errors['cart_items'] = APIError({'message': 'boom', 'code': 'XX000', 'hint': None, 'details': None})
    response = user_client.post('/api/cart', json=_cart_item('a-1'))
    assert response.status_code == 500
    assert response.json() == {"error": "장바구니에 추가하는데 실패했습니다"}

def test_update_cart_item_rejects_bad_size_or_empty_body(user_client, fake_db):
    item = fake_db.seed('cart_items', {'user_id': USER['id'], **_cart_item('a-1'), 'quantity': 1})[0]

    response = user_client.patch(f"/api/cart/{item['id']}", json={'size': '30ml', 'product_type': 'image_analysis'})
    assert response.status_code == 400
    assert response.json() == {"error": "유효하지 않은 사이즈입니다"}

    response = user_client.patch(f"/api/cart/{item['id']}", json={})
    assert response.status_code == 400
    assert response.json() == {"error": "수정할 항목이 없습니다"}

    # 変更されていない
    assert fake_db.rows('cart_items')[0]['size'] == '10ml'
