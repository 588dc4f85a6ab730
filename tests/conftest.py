"""
テスト共通設定
メモリ上のSupabase代替とログイン済みクライアント
"""

import copy
import re
import uuid
from types import SimpleNamespace

import pytest
from fastapi.testclient import TestClient

from core.auth import encode_session
from core.config import Config
from core.database import Database
from core.utils import now_iso, parse_timestamp

ADMIN_EMAIL = 'admin@acscent.kr'
SESSION_SECRET = 'test-session-secret'
USER = {'id': 'user-1', 'email': 'fan@example.com', 'name': '김하늘'}
ADMIN = {'id': 'admin-1', 'email': ADMIN_EMAIL, 'name': '관리자'}

def _comparable(value):
    if isinstance(value, str):
        try:
            return parse_timestamp(value)
        except ValueError:
            return value
    return value

def _compare(left, right, op):
    a, b = _comparable(left), _comparable(right)
    if type(a) is not type(b):
        a, b = left, right
    if a is None:
        return False
    return op(a, b)

def _ilike(value, pattern):
    if value is None:
        return False
    regex = '.*'.join(re.escape(part) for part in pattern.split('%'))
    return re.fullmatch(regex, str(value), re.IGNORECASE) is not None

class FakeResponse:
    def __init__(self, data, count=None):
        self.data = data
        self.count = count

class FakeQuery:
    """supabase-py のクエリビルダーのうち使用しているものだけ"""

    def __init__(self, db, table):
        self.db = db
        self.table = table
        self.action = 'select'
        self.payload = None
        self.count_mode = None
        self.filters = []
        self.orders = []
        self.offset = 0
        self.max_rows = None
        self.on_conflict = 'id'
        self.ignore_duplicates = False

    # 操作
    def select(self, columns='*', count=None):
        self.count_mode = count
        return self

    def insert(self, rows):
        self.action, self.payload = 'insert', rows
        return self

    def update(self, values):
        self.action, self.payload = 'update', values
        return self

    def upsert(self, rows, on_conflict='id', ignore_duplicates=False):
        self.action, self.payload = 'upsert', rows
        self.on_conflict = on_conflict
        self.ignore_duplicates = ignore_duplicates
        return self

    def delete(self):
        self.action = 'delete'
        return self

    # フィルタ
    def eq(self, column, value):
        self.filters.append(lambda r: r.get(column) == value)
        return self

    def neq(self, column, value):
        self.filters.append(lambda r: r.get(column) != value)
        return self

    def in_(self, column, values):
        values = list(values)
        self.filters.append(lambda r: r.get(column) in values)
        return self

    def gte(self, column, value):
        self.filters.append(lambda r: _compare(r.get(column), value, lambda a, b: a >= b))
        return self

    def lte(self, column, value):
        self.filters.append(lambda r: _compare(r.get(column), value, lambda a, b: a <= b))
        return self

    def gt(self, column, value):
        self.filters.append(lambda r: _compare(r.get(column), value, lambda a, b: a > b))
        return self

    def lt(self, column, value):
        self.filters.append(lambda r: _compare(r.get(column), value, lambda a, b: a < b))
        return self

    def ilike(self, column, pattern):
        self.filters.append(lambda r: _ilike(r.get(column), pattern))
        return self

    def is_(self, column, value):
        expected = None if value == 'null' else value
        self.filters.append(lambda r: r.get(column) is expected)
        return self

    def or_(self, expression):
        conditions = []
        for part in expression.split(','):
            column, op, value = part.split('.', 2)
            if op == 'ilike':
                conditions.append(lambda r, c=column, v=value: _ilike(r.get(c), v))
            elif op == 'eq':
                conditions.append(lambda r, c=column, v=value: str(r.get(c)) == v)
        self.filters.append(lambda r: any(cond(r) for cond in conditions))
        return self

    # 並び順・件数
    def order(self, column, desc=False):
        self.orders.append((column, desc))
        return self

    def range(self, start, end):
        self.offset = start
        self.max_rows = end - start + 1
        return self

    def limit(self, count):
        self.max_rows = count
        return self

    def _matches(self, row):
        return all(f(row) for f in self.filters)

    def execute(self):
        error = self.db.errors.get(self.table)
        if error:
            raise error

        rows = self.db.tables.setdefault(self.table, [])
        handler = getattr(self, f'_execute_{self.action}')
        return handler(rows)

    def _execute_select(self, rows):
        matched = [copy.deepcopy(r) for r in rows if self._matches(r)]
        for column, desc in reversed(self.orders):
            matched.sort(key=lambda r: (r.get(column) is not None, r.get(column)), reverse=desc)
        count = len(matched) if self.count_mode else None
        matched = matched[self.offset:]
        if self.max_rows is not None:
            matched = matched[:self.max_rows]
        return FakeResponse(matched, count)

    def _new_row(self, row):
        row = copy.deepcopy(row)
        row.setdefault('id', str(uuid.uuid4()))
        row.setdefault('created_at', now_iso())
        return row

    def _execute_insert(self, rows):
        payload = self.payload if isinstance(self.payload, list) else [self.payload]
        inserted = [self._new_row(row) for row in payload]
        rows.extend(inserted)
        return FakeResponse(copy.deepcopy(inserted))

    def _execute_update(self, rows):
        updated = []
        for row in rows:
            if self._matches(row):
                row.update(copy.deepcopy(self.payload))
                updated.append(copy.deepcopy(row))
        return FakeResponse(updated)

    def _execute_upsert(self, rows):
        payload = self.payload if isinstance(self.payload, list) else [self.payload]
        keys = [k.strip() for k in self.on_conflict.split(',')]
        result = []
        for item in payload:
            existing = next((r for r in rows if all(r.get(k) == item.get(k) for k in keys)), None)
            if existing is None:
                new_row = self._new_row(item)
                rows.append(new_row)
                result.append(copy.deepcopy(new_row))
            elif not self.ignore_duplicates:
                existing.update(copy.deepcopy(item))
                result.append(copy.deepcopy(existing))
        return FakeResponse(result)

    def _execute_delete(self, rows):
        removed = [r for r in rows if self._matches(r)]
        rows[:] = [r for r in rows if not self._matches(r)]
        return FakeResponse(removed)

class FakeAuth:
    def __init__(self):
        self.tokens = {}

    def get_user(self, token):
        if token not in self.tokens:
            raise Exception("invalid JWT")
        return SimpleNamespace(user=self.tokens[token])

class FakeSupabase:
    """テーブルごとに行のリストを持つだけのSupabaseクライアント"""

    def __init__(self):
        self.tables = {}
        self.errors = {}
        self.rpc_calls = []
        self.auth = FakeAuth()

    def table(self, name):
        return FakeQuery(self, name)

    def rpc(self, name, params=None):
        self.rpc_calls.append((name, params))
        return SimpleNamespace(execute=lambda: FakeResponse(None))

    def seed(self, table, *rows):
        """行を追加（id・created_atは省略可）"""
        target = self.tables.setdefault(table, [])
        seeded = []
        for row in rows:
            row = dict(row)
            row.setdefault('id', str(uuid.uuid4()))
            row.setdefault('created_at', now_iso())
            target.append(row)
            seeded.append(row)
        return seeded

    def rows(self, table):
        return self.tables.get(table, [])

@pytest.fixture(autouse=True)
def app_env(monkeypatch):
    monkeypatch.setenv('ADMIN_EMAILS', ADMIN_EMAIL)
    monkeypatch.setenv('APP_TIMEZONE', 'Asia/Seoul')
    monkeypatch.setenv('SESSION_SECRET', SESSION_SECRET)
    monkeypatch.delenv('PORTONE_API_SECRET', raising=False)
    monkeypatch.delenv('HEALTHCHECK_URL', raising=False)

@pytest.fixture
def fake_db():
    db = FakeSupabase()
    Database.set_client(db)
    yield db
    Database.reset_client()

@pytest.fixture
def app(fake_db):
    from main import app
    return app

def _client(app, user=None):
    cookies = {Config.SESSION_COOKIE_NAME: encode_session(user)} if user else None
    return TestClient(app, cookies=cookies)

@pytest.fixture
def anon_client(app):
    return _client(app)

@pytest.fixture
def user_client(app):
    return _client(app, USER)

@pytest.fixture
def admin_client(app):
    return _client(app, ADMIN)
