"""
データセンター（プログラム統計・香料使用量・フィードバック・在庫）のテスト
"""

from urllib.parse import quote

import pytest
from postgrest.exceptions import APIError

from analytics.datacenter import analyses_csv, feedback_patterns, program_stats, recipe_selection

from conftest import ADMIN_EMAIL

BLACKBERRY = "AC'SCENT 01"
MANDARIN = "AC'SCENT 02"
RECIPE = {'granules': [
    {'id': BLACKBERRY, 'name': '블랙베리', 'ratio': 60},
    {'id': MANDARIN, 'name': '만다린 오렌지', 'ratio': 40},
]}

def _api_error(code):
    return APIError({'message': 'relation does not exist', 'code': code, 'hint': None, 'details': None})

def _inventory_url(fragrance_id=''):
    base = '/api/admin/datacenter/inventory'
    return f'{base}/{quote(fragrance_id)}' if fragrance_id else base

ANALYSES = [
    {'id': 'a-1', 'created_at': '2026-10-01T00:00:00+00:00', 'product_type': 'image_analysis',
     'perfume_name': '블랙베리', 'matching_keywords': ['상큼', ' 달콤 '], 'idol_name': '카리나',
     'analysis_data': {'gender': 'female'}},
    {'id': 'a-2', 'created_at': '2026-10-02T00:00:00+00:00', 'product_type': None,
     'perfume_name': '블랙베리', 'matching_keywords': ['상큼'],
     'analysis_data': {'inputData': {'gender': 'male'}}},
    {'id': 'a-3', 'created_at': '2026-10-03T00:00:00+00:00', 'product_type': 'figure_diffuser',
     'perfume_name': '만다린 오렌지', 'analysis_data': {'formData': {'gender': 'nonbinary'}}},
]

def test_program_stats():
    stats = program_stats(ANALYSES)

    idol = stats['byProgram']['idol_image']
    assert idol['totalAnalyses'] == 2
    assert idol['perfumeCounts'] == [{"name": '블랙베리', "count": 2}]
    assert idol['keywordCounts'] == [{"name": '상큼', "count": 2}, {"name": '달콤', "count": 1}]
    assert idol['nameCounts'] == [{"name": '카리나', "count": 1}]
    assert sorted(g['name'] for g in idol['genderCounts']) == ['남성', '여성']

    assert stats['byProgram']['figure']['genderCounts'] == [{"name": 'nonbinary', "count": 1}]
    assert stats['byProgram']['graduation']['totalAnalyses'] == 0
    assert stats['total']['totalAnalyses'] == 3
    assert stats['total']['perfumeCounts'][0] == {"name": '블랙베리', "count": 2}

def test_analyses_csv_has_bom_and_local_time():
    text = analyses_csv(ANALYSES)
    lines = text.split('\n')
    assert lines[0] == '\ufeff"분석ID","분석일시","프로그램","분석대상이름","트위터이름","추천향수","키워드"'
    assert lines[1] == '"a-1","2026-10-01 09:00:00","AI이미지분석","카리나","","블랙베리","상큼,  달콤 "'

    figure_only = analyses_csv(ANALYSES, 'figure').strip().split('\n')
    assert len(figure_only) == 2
    assert '"피규어디퓨저"' in figure_only[1]

def test_program_stats_endpoint_csv(admin_client, fake_db):
    fake_db.seed('analysis_results', *ANALYSES)

    body = admin_client.get('/api/admin/datacenter').json()
    assert body['total']['totalAnalyses'] == 3

    response = admin_client.get('/api/admin/datacenter', params={'format': 'csv', 'program': 'figure'})
    assert response.status_code == 200
    assert response.headers['content-type'] == 'text/csv; charset=utf-8'
    assert quote('분석데이터_figure_') in response.headers['content-disposition']
    assert response.content.startswith(b'\xef\xbb\xbf')

def _seed_usage(fake_db):
    fake_db.seed('orders',
                 {'id': 'o-1', 'status': 'paid', 'created_at': '2026-10-05T00:00:00+00:00'},
                 {'id': 'o-2', 'status': 'pending', 'created_at': '2026-10-05T00:00:00+00:00'})
    fake_db.seed('order_items',
                 {'order_id': 'o-1', 'analysis_id': 'r-1', 'product_type': 'image_analysis',
                  'size': '50ml', 'quantity': 1},
                 {'order_id': 'o-2', 'perfume_name': '블랙베리', 'product_type': 'image_analysis',
                  'size': '50ml', 'quantity': 3})
    fake_db.seed('perfume_feedbacks', {'result_id': 'r-1', 'generated_recipe': RECIPE})
    fake_db.seed('analysis_results',
                 {'id': 'a-off', 'service_mode': 'offline', 'product_type': 'figure_diffuser',
                  'perfume_name': '블랙베리', 'created_at': '2026-10-06T03:00:00+00:00'},
                 {'id': 'a-on', 'service_mode': 'online', 'perfume_name': '블랙베리',
                  'created_at': '2026-10-06T03:00:00+00:00'})

def test_fragrance_usage_endpoint(admin_client, fake_db):
    _seed_usage(fake_db)

    report = admin_client.get('/api/admin/datacenter/fragrance-usage').json()

    assert report['summary']['online'] == {
        "totalMl": 10, "totalG": pytest.approx(9), "totalItems": 2, "uniqueFragrances": 2,
    }
    assert report['summary']['offline']['totalMl'] == 5
    combined = report['byFragrance']['combined']
    assert [(f['id'], f['totalMl'], f['rank']) for f in combined] == [(BLACKBERRY, 11, 1), (MANDARIN, 4, 2)]
    assert report['byCategory']['combined'][0]['category'] == 'fruity'
    assert report['byProgram']['combined']['figure']['totalMl'] == 5
    assert report['byProgram']['combined']['idol_image']['totalMl'] == 10
    assert report['byProgram']['combined']['graduation']['totalItems'] == 0

def test_fragrance_usage_filters(admin_client, fake_db):
    _seed_usage(fake_db)

    report = admin_client.get('/api/admin/datacenter/fragrance-usage', params={'programType': 'figure'}).json()
    assert report['summary']['combined']['totalMl'] == 5
    assert report['summary']['online']['totalItems'] == 0

    # 日付のみのdateToはその日の終わりまで含む
    report = admin_client.get('/api/admin/datacenter/fragrance-usage',
                              params={'dateFrom': '2026-10-06', 'dateTo': '2026-10-06'}).json()
    assert report['summary']['online']['totalItems'] == 0
    assert report['summary']['offline']['totalItems'] == 1

    response = admin_client.get('/api/admin/datacenter/fragrance-usage', params={'programType': 'candle'})
    assert response.status_code == 400
    assert response.json() == {"error": "잘못된 프로그램 타입입니다"}

FEEDBACKS = [
    {'retention_percentage': 85,
     'category_preferences': {'citrus': 'increase', 'floral': 'decrease', 'unknown': 'increase'},
     'specific_scents': [{'id': BLACKBERRY, 'name': '블랙베리', 'ratio': 20}],
     'natural_language_feedback': '달콤하고 잔향이 좋아요'},
    {'retention_percentage': 0,
     'category_preferences': {'citrus': 'increase'},
     'specific_scents': [{'id': BLACKBERRY, 'name': '블랙베리', 'ratio': 10}],
     'natural_language_feedback': '달콤'},
    {'retention_percentage': None},
]

def test_feedback_patterns():
    result = feedback_patterns(FEEDBACKS)

    distribution = {r['range']: (r['count'], r['percentage']) for r in result['retentionDistribution']}
    assert distribution['0-20%'] == (2, 66.7)
    assert distribution['81-100%'] == (1, 33.3)
    assert distribution['41-60%'] == (0, 0)

    assert result['categoryPreferences']['citrus'] == {"increase": 2, "decrease": 0, "maintain": 0, "total": 2}
    assert result['categoryPreferences']['floral']['decrease'] == 1
    assert 'unknown' not in result['categoryPreferences']
    assert result['popularAddedScents'] == [{"id": BLACKBERRY, "name": '블랙베리', "count": 2, "avgRatio": 15.0}]
    assert result['naturalLanguageKeywords'][0] == {"keyword": '달콤', "count": 2}
    assert result['totalFeedbacks'] == 3

def test_feedback_patterns_endpoint(admin_client, fake_db):
    fake_db.seed('perfume_feedbacks', *FEEDBACKS)
    body = admin_client.get('/api/admin/datacenter/feedback-patterns').json()
    assert body['totalFeedbacks'] == 3

def test_recipe_selection():
    feedbacks = [
        {'selected_recipe_type': 'ai_recommended', 'result_id': 'r-1', 'created_at': '2026-09-10T00:00:00+00:00'},
        # ローカル時刻では10月
        {'generated_recipe': RECIPE, 'result_id': 'r-2', 'created_at': '2026-09-30T16:00:00+00:00'},
        {'selected_recipe_type': 'weird'},
        {},
    ]
    result = recipe_selection(feedbacks, {'r-1': 'figure'})

    assert result['total'] == 4
    assert result['breakdown'] == {
        "userDirect": {"count": 1, "percentage": 25.0},
        "aiRecommended": {"count": 1, "percentage": 25.0},
        "original": {"count": 2, "percentage": 50.0},
    }
    assert result['byProgram']['figure'] == {"userDirect": 0, "aiRecommended": 1, "original": 0, "total": 1}
    assert result['byProgram']['idol_image']['total'] == 3
    assert [t['month'] for t in result['trend']] == ['2026-09', '2026-10']
    assert result['trend'][1]['userDirect'] == 1

def test_recipe_selection_endpoint(admin_client, fake_db):
    fake_db.seed('analysis_results', {'id': 'r-1', 'product_type': 'graduation'})
    fake_db.seed('perfume_feedbacks', {'result_id': 'r-1', 'selected_recipe_type': 'user_direct'})

    body = admin_client.get('/api/admin/datacenter/recipe-selection').json()
    assert body['byProgram']['graduation']['userDirect'] == 1
    assert body['breakdown']['userDirect']['percentage'] == 100.0

def test_inventory_list(admin_client, fake_db):
    fake_db.seed('fragrance_inventory', {'fragrance_id': BLACKBERRY, 'online_stock_ml': 100, 'offline_stock_ml': 20})

    body = admin_client.get(_inventory_url()).json()
    assert len(body['items']) == 30
    assert body['items'][0]['totalStockMl'] == 120
    assert len(body['alerts']) == 29

def test_inventory_without_table(admin_client, fake_db):
    fake_db.errors['fragrance_inventory'] = _api_error('42P01')
    body = admin_client.get(_inventory_url()).json()
    assert len(body['items']) == 30
    assert body['alerts'] == []

    fake_db.errors['fragrance_inventory'] = _api_error('42501')
    response = admin_client.get(_inventory_url())
    assert response.status_code == 500
    assert response.json() == {"error": "재고 데이터 조회 실패"}

    fake_db.errors['fragrance_inventory_logs'] = _api_error('42P01')
    assert admin_client.get(_inventory_url() + '/logs').json() == {"logs": [], "total": 0}

def test_inventory_logs(admin_client, fake_db):
    fake_db.seed('fragrance_inventory_logs',
                 {'fragrance_id': BLACKBERRY, 'change_type': 'add', 'change_amount_ml': 10},
                 {'fragrance_id': MANDARIN, 'change_type': 'deduct', 'change_amount_ml': -2})

    body = admin_client.get(_inventory_url() + '/logs', params={'fragranceId': BLACKBERRY}).json()
    assert body['total'] == 1
    assert body['logs'][0]['fragranceName'] == '블랙베리'
    assert body['logs'][0]['changeAmountMl'] == 10

def test_inventory_bulk_update(admin_client, fake_db):
    fake_db.seed('fragrance_inventory', {'fragrance_id': BLACKBERRY, 'online_stock_ml': 100, 'offline_stock_ml': 20})

    body = admin_client.post(_inventory_url() + '/bulk', json={'items': [
        {'fragranceId': BLACKBERRY, 'onlineStockMl': 100, 'offlineStockMl': 30},
        {'fragranceId': MANDARIN, 'onlineStockMl': 50, 'offlineStockMl': 0},
        {'fragranceId': 'NOT A SCENT', 'onlineStockMl': 1, 'offlineStockMl': 1},
    ]}).json()
    assert body == {"success": True, "updated": 2, "logsCreated": 2}

    logs = fake_db.rows('fragrance_inventory_logs')
    assert {(log['fragrance_id'], log['source'], log['change_amount_ml']) for log in logs} == {
        (BLACKBERRY, 'offline', 10), (MANDARIN, 'online', 50),
    }
    assert all(log['note'] == '일괄 재고 설정' and log['created_by'] == ADMIN_EMAIL for log in logs)
    assert len(fake_db.rows('fragrance_inventory')) == 2

    response = admin_client.post(_inventory_url() + '/bulk', json={'items': []})
    assert response.status_code == 400

def test_inventory_set_and_adjust(admin_client, fake_db):
    fake_db.seed('fragrance_inventory', {'fragrance_id': BLACKBERRY, 'online_stock_ml': 100, 'offline_stock_ml': 20})

    assert admin_client.put(_inventory_url(BLACKBERRY), json={'onlineStockMl': 80}).json() == {"success": True}
    row = fake_db.rows('fragrance_inventory')[0]
    assert row['online_stock_ml'] == 80
    assert row['offline_stock_ml'] == 20
    log = fake_db.rows('fragrance_inventory_logs')[0]
    assert (log['change_amount_ml'], log['note']) == (-20, '재고 직접 설정')

    body = admin_client.post(_inventory_url(BLACKBERRY), json={
        'source': 'offline', 'changeType': 'subtract', 'amountMl': 50,
    }).json()
    # 0未満にはならない
    assert body == {"success": True, "onlineStockMl": 80, "offlineStockMl": 0, "totalStockMl": 80}

    body = admin_client.post(_inventory_url(BLACKBERRY), json={
        'source': 'online', 'changeType': 'add', 'amountMl': 5,
    }).json()
    assert body['totalStockMl'] == 85

    detail = admin_client.get(_inventory_url(BLACKBERRY)).json()
    assert detail['fragranceName'] == '블랙베리'
    assert detail['onlineStockMl'] == 85
    assert len(detail['logs']) == 3

@pytest.mark.parametrize('method, payload', [('get', None), ('put', {}), ('post', {
    'source': 'online', 'changeType': 'add', 'amountMl': 1,
})])
def test_inventory_unknown_fragrance(admin_client, fake_db, method, payload):
    kwargs = {'json': payload} if payload is not None else {}
    response = getattr(admin_client, method)(_inventory_url('NOPE'), **kwargs)
    assert response.status_code == 404
    assert response.json() == {"error": "향료를 찾을 수 없습니다"}

def test_inventory_adjust_requires_params(admin_client, fake_db):
    response = admin_client.post(_inventory_url(BLACKBERRY), json={'source': 'online'})
    assert response.status_code == 400
