"""
セッションCookie・Supabase Auth・権限チェックのテスト
"""

import base64
import hashlib
import hmac
import json
import time
from types import SimpleNamespace

import pytest
from fastapi.testclient import TestClient

from core.auth import SESSION_DURATION_MS, decode_session, encode_session
from core.config import Config

from conftest import ADMIN_EMAIL, SESSION_SECRET, USER

def _cookie(payload, secret=None):
    """任意の内容でCookie値を作る（secretがあれば署名付き）"""
    encoded = base64.b64encode(json.dumps(payload).encode('utf-8')).decode('ascii')
    if secret is None:
        return encoded
    signature = hmac.new(secret.encode('utf-8'), encoded.encode('utf-8'), hashlib.sha256).hexdigest()
    return f"{encoded}.{signature}"

def _valid_until():
    return int(time.time() * 1000) + SESSION_DURATION_MS

def test_session_round_trip_keeps_korean_name():
    value = encode_session(USER)
    session = decode_session(value)
    assert session['user'] == USER
    encoded, signature = value.split('.')
    raw = json.loads(base64.b64decode(encoded).decode('utf-8'))
    assert raw['user']['name'] == '김하늘'
    assert len(signature) == 64

def test_expired_or_broken_session_is_ignored():
    assert decode_session(encode_session(USER, now_ms=0)) is None
    assert decode_session('not-base64!!') is None
    assert decode_session(_cookie([1, 2], SESSION_SECRET)) is None
    assert decode_session('') is None
    assert decode_session(_cookie({'user': {'id': 'u'}, 'expiresAt': 'soon'}, SESSION_SECRET)) is None
    assert decode_session(_cookie({'user': {'id': 'u'}, 'expiresAt': None}, SESSION_SECRET)) is None

def test_session_with_non_numeric_expiry_is_unauthenticated(app):
    cookie = _cookie({'user': {'id': 'u'}, 'expiresAt': 'soon'}, SESSION_SECRET)
    client = TestClient(app, cookies={Config.SESSION_COOKIE_NAME: cookie})
    response = client.get('/api/orders')
    assert response.status_code == 401
    assert response.json() == {"error": "로그인이 필요합니다"}

def test_forged_admin_cookie_is_rejected(app):
    payload = {'user': {'id': 'x', 'email': ADMIN_EMAIL}, 'expiresAt': _valid_until()}
    assert decode_session(_cookie(payload, SESSION_SECRET))['user']['email'] == ADMIN_EMAIL

    for forged in (_cookie(payload), _cookie(payload, 'other-secret'), _cookie(payload, SESSION_SECRET)[:-1] + 'x'):
        client = TestClient(app, cookies={Config.SESSION_COOKIE_NAME: forged})
        response = client.get('/api/admin/orders')
        assert response.status_code == 403
        assert response.json() == {"error": "관리자 권한이 필요합니다"}

def test_cookie_ignored_without_session_secret(monkeypatch):
    value = encode_session(USER)
    monkeypatch.delenv('SESSION_SECRET')
    assert decode_session(value) is None
    with pytest.raises(ValueError):
        encode_session(USER)

def test_session_lasts_seven_days():
    assert SESSION_DURATION_MS == 7 * 24 * 60 * 60 * 1000

def test_session_endpoint(anon_client, user_client):
    assert anon_client.get('/api/auth/session').json() == {"user": None, "provider": None}

    body = user_client.get('/api/auth/session').json()
    assert body['user']['id'] == USER['id']
    assert body['provider'] == 'kakao'

def test_bearer_token_uses_supabase_auth(app, fake_db):
    fake_db.auth.tokens['good-token'] = SimpleNamespace(
        id='google-user',
        email='g@example.com',
        user_metadata={'full_name': '구글 유저'},
        app_metadata={'provider': 'google'},
    )
    client = TestClient(app)

    body = client.get('/api/auth/session', headers={'Authorization': 'Bearer good-token'}).json()
    assert body['user']['id'] == 'google-user'
    assert body['user']['name'] == '구글 유저'
    assert body['provider'] == 'google'

    body = client.get('/api/auth/session', headers={'Authorization': 'Bearer bad-token'}).json()
    assert body['user'] is None

def test_logout_clears_cookie(user_client):
    response = user_client.post('/api/auth/logout')
    assert response.json() == {"success": True}
    assert Config.SESSION_COOKIE_NAME in response.headers.get('set-cookie', '')

def test_login_and_admin_required(anon_client, user_client):
    response = anon_client.get('/api/orders')
    assert response.status_code == 401
    assert response.json() == {"error": "로그인이 필요합니다"}

    response = user_client.get('/api/admin/orders')
    assert response.status_code == 403
    assert response.json() == {"error": "관리자 권한이 필요합니다"}

def test_database_unavailable_returns_503(user_client, monkeypatch):
    from core.database import Database
    monkeypatch.delenv('SUPABASE_URL', raising=False)
    Database.set_client(None)
    response = user_client.get('/api/orders')
    assert response.status_code == 503
