"""
マイページ（分析結果・レシピ）のテスト
"""

from conftest import USER

RECIPE = {'granules': [{'id': "AC'SCENT 01", 'ratio': 100}]}

def _seed(fake_db):
    fake_db.seed('analysis_results',
                 {'id': 'a-1', 'user_id': USER['id'], 'created_at': '2026-10-01T00:00:00+00:00'},
                 {'id': 'a-2', 'user_fingerprint': 'fp-1', 'created_at': '2026-10-05T00:00:00+00:00'},
                 {'id': 'a-3', 'user_id': 'other', 'created_at': '2026-10-06T00:00:00+00:00'})
    fake_db.seed('perfume_feedbacks',
                 {'id': 'f-1', 'user_id': USER['id'], 'result_id': 'a-1', 'generated_recipe': RECIPE,
                  'created_at': '2026-10-02T00:00:00+00:00'},
                 {'id': 'f-2', 'user_id': USER['id'], 'generated_recipe': None},
                 {'id': 'f-3', 'user_fingerprint': 'fp-1', 'generated_recipe': RECIPE,
                  'created_at': '2026-10-03T00:00:00+00:00'})

def test_user_data_without_fingerprint(user_client, fake_db):
    _seed(fake_db)
    body = user_client.get('/api/user/data').json()

    assert [a['id'] for a in body['analyses']] == ['a-1']
    assert body['analyses'][0]['confirmed_recipe'] == RECIPE
    assert [r['id'] for r in body['recipes']] == ['f-1']
    assert fake_db.rpc_calls == []

def test_user_data_merges_anonymous_rows(user_client, fake_db):
    _seed(fake_db)
    body = user_client.get('/api/user/data', params={'fingerprint': 'fp-1'}).json()

    assert fake_db.rpc_calls == [('link_fingerprint_data', {'p_user_id': USER['id'], 'p_fingerprint': 'fp-1'})]
    assert [a['id'] for a in body['analyses']] == ['a-2', 'a-1']
    assert body['analyses'][0]['confirmed_recipe'] is None
    assert [r['id'] for r in body['recipes']] == ['f-3', 'f-1']

def test_delete_only_own_analysis(user_client, fake_db):
    _seed(fake_db)
    response = user_client.delete('/api/user/analysis/a-3')
    assert response.status_code == 404
    assert response.json() == {"error": "분석 결과를 찾을 수 없습니다"}
    assert user_client.delete('/api/user/analysis/a-1').json() == {"success": True}
    assert [a['id'] for a in fake_db.rows('analysis_results')] == ['a-2', 'a-3']

def test_user_data_requires_login(anon_client):
    assert anon_client.get('/api/user/data').status_code == 401
