"""
定期実行ジョブのテスト
"""

import requests
import schedule

import scheduler

def test_low_stock_report(fake_db):
    fake_db.seed('fragrance_inventory', {'fragrance_id': "AC'SCENT 01", 'online_stock_ml': 500})
    alerts = scheduler.run_low_stock_report()
    assert len(alerts) == 29
    assert "AC'SCENT 01" not in {a['fragranceId'] for a in alerts}

def test_low_stock_report_failure_returns_none(fake_db):
    fake_db.errors['fragrance_inventory'] = RuntimeError('boom')
    assert scheduler.run_low_stock_report() is None

def test_realtime_snapshot(fake_db):
    stats = scheduler.run_realtime_snapshot()
    assert stats['activeVisitors'] == 0

def test_keep_alive_pings_healthcheck(fake_db, monkeypatch):
    calls = []

    def fake_get(url, timeout):
        calls.append(url)
        raise requests.ConnectionError('refused')

    monkeypatch.setenv('HEALTHCHECK_URL', 'https://acscent.kr/health')
    monkeypatch.setattr(scheduler.requests, 'get', fake_get)

    assert scheduler.run_keep_alive() is False
    assert calls == ['https://acscent.kr/health']

def test_keep_alive_without_url(fake_db):
    assert scheduler.run_keep_alive() is True

def test_setup_scheduler_registers_jobs():
    schedule.clear()
    try:
        scheduler.setup_scheduler()
        assert len(schedule.get_jobs()) == 3
    finally:
        schedule.clear()
