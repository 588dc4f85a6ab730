#!/usr/bin/env python
# -*- coding: utf-8 -*-
"""
訪問者分析
analytics_sessions / analytics_page_views / analytics_events の集計
"""

import calendar
import logging
from collections import Counter, defaultdict
from datetime import datetime, timedelta
from typing import Dict, List, Optional, Tuple

import pandas as pd
import pytz

from core.utils import get_timezone, parse_timestamp, round_half_up

logger = logging.getLogger(__name__)

PERIOD_DAYS = {'1d': 1, '7d': 7, '30d': 30, '90d': 90}
DEFAULT_PERIOD_DAYS = 7

# PostgRESTの既定件数制限を超えて取得する上限
FETCH_LIMIT = 50000

REALTIME_WINDOW_MINUTES = 5
DIRECT_REFERRER = '직접 유입'

DURATION_BUCKETS = [
    ('0~10초', 0, 10),
    ('10~30초', 10, 30),
    ('30초~1분', 30, 60),
    ('1~3분', 60, 180),
    ('3~5분', 180, 300),
    ('5~10분', 300, 600),
    ('10분+', 600, float('inf')),
]

SESSION_FRAME_COLUMNS = ['date', 'hour', 'day', 'duration', 'page_views', 'device']

def resolve_period(period: Optional[str] = None, start: Optional[str] = None,
                   end: Optional[str] = None, now: Optional[datetime] = None) -> Tuple[datetime, datetime]:
    """集計期間（UTC）

    start/end が両方あればそれを使う。日付のみの場合はローカル日付の0時〜終わりとして扱う。
    """
    now = now or datetime.now(pytz.utc)
    if start and end:
        return _parse_bound(start, end_of_day=False), _parse_bound(end, end_of_day=True)
    days = PERIOD_DAYS.get(period, DEFAULT_PERIOD_DAYS)
    return now - timedelta(days=days), now

def _parse_bound(value: str, end_of_day: bool) -> datetime:
    if 'T' in value:
        return parse_timestamp(value).astimezone(pytz.utc)
    local = get_timezone().localize(datetime.strptime(value, '%Y-%m-%d'))
    if end_of_day:
        local = local + timedelta(days=1) - timedelta(microseconds=1)
    return local.astimezone(pytz.utc)

def calculate_change(current: int, previous: int) -> int:
    """前期間比の増減率 (%)"""
    if previous == 0:
        return 100 if current > 0 else 0
    return round_half_up((current - previous) / previous * 100)

def _duration_seconds(session: Dict) -> float:
    started = parse_timestamp(session.get('started_at'))
    last = parse_timestamp(session.get('last_activity_at'))
    if not started or not last:
        return 0
    return (last - started).total_seconds()

def sessions_frame(sessions: List[Dict]) -> pd.DataFrame:
    """セッションをローカル日付・時間帯付きのDataFrameにする"""
    tz = get_timezone()
    rows = []
    for s in sessions or []:
        started = parse_timestamp(s.get('started_at'))
        if not started:
            continue
        local = started.astimezone(tz)
        rows.append({
            'date': local.strftime('%Y-%m-%d'),
            'hour': local.hour,
            'day': local.day,
            'duration': _duration_seconds(s),
            'page_views': s.get('page_views_count') or 0,
            'device': s.get('device_type') or 'unknown',
        })
    return pd.DataFrame(rows, columns=SESSION_FRAME_COLUMNS)

def _ranked(counter: Dict, limit: Optional[int] = None) -> List[Tuple]:
    """件数の降順（同数は出現順）"""
    items = sorted(counter.items(), key=lambda x: x[1], reverse=True)
    return items[:limit] if limit else items

def summarize(sessions: List[Dict], page_views: int, prev_sessions: int, prev_page_views: int) -> Dict:
    visitors = len(sessions)
    avg_duration = 0
    if visitors:
        avg_duration = round_half_up(sum(_duration_seconds(s) for s in sessions) / visitors)
    bounced = sum(1 for s in sessions if s.get('page_views_count') == 1)

    return {
        "summary": {
            "visitors": visitors,
            "pageViews": page_views,
            "sessions": visitors,
            "avgDuration": avg_duration,
            "bounceRate": round_half_up(bounced / visitors * 100) if visitors else 0,
            "avgPagesPerSession": round_half_up(page_views / visitors, 1) if visitors else 0,
        },
        "comparison": {
            "visitorsChange": calculate_change(visitors, prev_sessions),
            "pageViewsChange": calculate_change(page_views, prev_page_views),
            "sessionsChange": calculate_change(visitors, prev_sessions),
        },
    }

def daily_stats(sessions: List[Dict]) -> List[Dict]:
    """日別の訪問者数とPV（PVはセッションのpage_views_count合計）"""
    df = sessions_frame(sessions)
    if df.empty:
        return []
    grouped = df.groupby('date').agg(visitors=('page_views', 'size'), pageViews=('page_views', 'sum'))
    return [
        {"date": date, "visitors": int(row.visitors), "pageViews": int(row.pageViews)}
        for date, row in grouped.iterrows()
    ]

def hourly_stats(sessions: List[Dict]) -> List[Dict]:
    """0〜23時の時間帯別"""
    df = sessions_frame(sessions)
    visitors = Counter()
    page_views = Counter()
    if not df.empty:
        grouped = df.groupby('hour')['page_views']
        visitors.update({int(h): int(c) for h, c in grouped.size().items()})
        page_views.update({int(h): int(c) for h, c in grouped.sum().items()})
    return [{"hour": h, "visitors": visitors[h], "pageViews": page_views[h]} for h in range(24)]

def top_pages(page_views: List[Dict], limit: int = 20) -> List[Dict]:
    views = Counter()
    visitors = defaultdict(set)
    for pv in page_views:
        views[pv.get('page_path')] += 1
        visitors[pv.get('page_path')].add(pv.get('session_id'))
    return [
        {"page_path": path, "views": count, "unique_visitors": len(visitors[path])}
        for path, count in _ranked(views, limit)
    ]

def referrer_stats(sessions: List[Dict]) -> Dict:
    domains = Counter(s.get('referrer_domain') or DIRECT_REFERRER for s in sessions)
    campaigns = Counter(s['utm_campaign'] for s in sessions if s.get('utm_campaign'))
    total = len(sessions)
    return {
        "referrers": [
            {
                "referrer_domain": domain,
                "sessions": count,
                "percentage": round_half_up(count / total * 100) if total else 0,
            }
            for domain, count in _ranked(domains, 10)
        ],
        "campaigns": [{"campaign": name, "count": count} for name, count in _ranked(campaigns)],
    }

def device_stats(sessions: List[Dict]) -> Dict:
    return {
        "devices": dict(Counter(s.get('device_type') or 'unknown' for s in sessions)),
        "browsers": dict(Counter(s['browser'] for s in sessions if s.get('browser'))),
        "os": dict(Counter(s['os'] for s in sessions if s.get('os'))),
    }

def event_stats(events: List[Dict]) -> List[Dict]:
    counts = Counter(e.get('event_name') for e in events)
    return [{"event_name": name, "count": count} for name, count in _ranked(counts)]

def realtime_stats(active_sessions: List[Dict], recent_page_views: List[Dict],
                   now: Optional[datetime] = None) -> Dict:
    now = now or datetime.now(pytz.utc)
    pages = Counter(pv.get('page_path') for pv in recent_page_views)
    return {
        "activeVisitors": len(active_sessions),
        "currentPages": [{"page_path": path, "count": count} for path, count in _ranked(pages, 5)],
        "lastUpdated": now.isoformat(),
    }

def user_flows(page_views: List[Dict], limit: int = 20) -> List[Dict]:
    """直前ページ -> 現在ページの遷移"""
    flows = Counter(
        (pv['previous_page'], pv.get('page_path'))
        for pv in page_views if pv.get('previous_page')
    )
    return [{"from": src, "to": dst, "count": count} for (src, dst), count in _ranked(flows, limit)]

def month_range(year: int, month: int) -> Tuple[datetime, datetime]:
    """ローカル時刻での月初〜月末（UTC）"""
    tz = get_timezone()
    days = calendar.monthrange(year, month)[1]
    start = tz.localize(datetime(year, month, 1))
    end = tz.localize(datetime(year, month, days, 23, 59, 59, 999999))
    return start.astimezone(pytz.utc), end.astimezone(pytz.utc)

def calendar_stats(year: int, month: int, sessions: List[Dict]) -> Dict:
    """月間カレンダー（日別の訪問者・PV・平均滞在時間）"""
    first_weekday, days_in_month = calendar.monthrange(year, month)
    df = sessions_frame(sessions)
    by_day = {}
    if not df.empty:
        grouped = df.groupby('day').agg(
            visitors=('page_views', 'size'),
            pageViews=('page_views', 'sum'),
            totalDuration=('duration', 'sum'),
        )
        by_day = {int(day): row for day, row in grouped.iterrows()}

    days = []
    for d in range(1, days_in_month + 1):
        row = by_day.get(d)
        if row is None:
            days.append({"day": d, "visitors": 0, "pageViews": 0, "avgDuration": 0})
            continue
        visitors = int(row['visitors'])
        days.append({
            "day": d,
            "visitors": visitors,
            "pageViews": int(row['pageViews']),
            "avgDuration": round_half_up(float(row['totalDuration']) / visitors),
        })

    return {
        "year": year,
        "month": month,
        "daysInMonth": days_in_month,
        # monthrangeは月曜=0なので日曜=0に変換
        "firstDayOfWeek": (first_weekday + 1) % 7,
        "days": days,
    }

def duration_detail(sessions: List[Dict], page_views: List[Dict]) -> Dict:
    """滞在時間の詳細（分布・デバイス別・ページ別・日別推移）"""
    df = sessions_frame(sessions)
    if df.empty:
        return {
            "avgDuration": 0,
            "medianDuration": 0,
            "maxDuration": 0,
            "totalSessions": 0,
            "distribution": [],
            "byDevice": {},
            "byPage": [],
            "dailyTrend": [],
        }

    df['seconds'] = [max(round_half_up(d), 0) for d in df['duration']]
    seconds = df['seconds'].sort_values(kind='mergesort').reset_index(drop=True)
    total = len(df)

    bins = [low for _, low, _ in DURATION_BUCKETS] + [float('inf')]
    labels = [label for label, _, _ in DURATION_BUCKETS]
    bucket_counts = pd.cut(df['seconds'], bins=bins, labels=labels, right=False).value_counts(sort=False)
    distribution = [
        {
            "label": label,
            "count": int(bucket_counts[label]),
            "percentage": round_half_up(int(bucket_counts[label]) / total * 100),
        }
        for label in labels
    ]

    by_device = {}
    for device, group in df.groupby('device', sort=False)['seconds']:
        by_device[device] = {"avg": round_half_up(group.sum() / len(group)), "count": int(len(group))}

    page_time = defaultdict(lambda: [0, 0])
    for pv in page_views:
        time_on_page = pv.get('time_on_page') or 0
        if time_on_page > 0:
            page_time[pv.get('page_path')][0] += time_on_page
            page_time[pv.get('page_path')][1] += 1
    by_page = sorted(
        (
            {"page": page, "avgTime": round_half_up(total_time / count), "views": count}
            for page, (total_time, count) in page_time.items()
        ),
        key=lambda x: x['avgTime'],
        reverse=True,
    )[:10]

    daily = df.groupby('date')['seconds'].agg(['sum', 'size'])
    daily_trend = [
        {"date": date, "avgDuration": round_half_up(float(row['sum']) / int(row['size'])), "sessions": int(row['size'])}
        for date, row in daily.iterrows()
    ]

    return {
        "avgDuration": round_half_up(int(seconds.sum()) / total),
        "medianDuration": int(seconds.iloc[total // 2]),
        "maxDuration": int(seconds.iloc[-1]),
        "totalSessions": total,
        "distribution": distribution,
        "byDevice": by_device,
        "byPage": by_page,
        "dailyTrend": daily_trend,
    }

class VisitorAnalytics:
    """訪問者分析のデータ取得"""

    def __init__(self, client):
        if not client:
            raise Exception("Supabase client not initialized")
        self.client = client

    def _sessions(self, columns: str, start: datetime, end: datetime) -> List[Dict]:
        result = self.client.table('analytics_sessions').select(columns) \
            .gte('started_at', start.isoformat()).lte('started_at', end.isoformat()) \
            .limit(FETCH_LIMIT).execute()
        return result.data or []

    def _page_views(self, columns: str, start: datetime, end: datetime) -> List[Dict]:
        result = self.client.table('analytics_page_views').select(columns) \
            .gte('viewed_at', start.isoformat()).lte('viewed_at', end.isoformat()) \
            .order('viewed_at').limit(FETCH_LIMIT).execute()
        return result.data or []

    def _page_view_count(self, start: datetime, end: datetime) -> int:
        result = self.client.table('analytics_page_views').select('id', count='exact') \
            .gte('viewed_at', start.isoformat()).lte('viewed_at', end.isoformat()).execute()
        return result.count or 0

    def summary(self, start: datetime, end: datetime) -> Dict:
        sessions = self._sessions('id, page_views_count, started_at, last_activity_at', start, end)
        prev_start = start - (end - start)
        prev_sessions = self._sessions('id', prev_start, start)
        return summarize(
            sessions,
            self._page_view_count(start, end),
            len(prev_sessions),
            self._page_view_count(prev_start, start),
        )

    def daily(self, start: datetime, end: datetime) -> Dict:
        return {"daily": daily_stats(self._sessions('started_at, page_views_count', start, end))}

    def hourly(self, start: datetime, end: datetime) -> Dict:
        return {"hourly": hourly_stats(self._sessions('started_at, page_views_count', start, end))}

    def top_pages(self, start: datetime, end: datetime) -> Dict:
        return {"pages": top_pages(self._page_views('page_path, session_id', start, end))}

    def referrers(self, start: datetime, end: datetime) -> Dict:
        return referrer_stats(self._sessions('referrer_domain, utm_source, utm_medium, utm_campaign', start, end))

    def devices(self, start: datetime, end: datetime) -> Dict:
        return device_stats(self._sessions('device_type, browser, os', start, end))

    def events(self, start: datetime, end: datetime) -> Dict:
        result = self.client.table('analytics_events').select('event_name, event_category, page_path') \
            .gte('created_at', start.isoformat()).lte('created_at', end.isoformat()) \
            .limit(FETCH_LIMIT).execute()
        return {"events": event_stats(result.data or [])}

    def realtime(self, now: Optional[datetime] = None) -> Dict:
        now = now or datetime.now(pytz.utc)
        since = (now - timedelta(minutes=REALTIME_WINDOW_MINUTES)).isoformat()
        active = self.client.table('analytics_sessions').select('session_id, device_type') \
            .gte('last_activity_at', since).execute()
        recent = self.client.table('analytics_page_views').select('page_path, session_id') \
            .gte('viewed_at', since).execute()
        return realtime_stats(active.data or [], recent.data or [], now)

    def user_flow(self, start: datetime, end: datetime) -> Dict:
        return {"flows": user_flows(self._page_views('session_id, page_path, previous_page, viewed_at', start, end))}

    def calendar(self, year: Optional[int] = None, month: Optional[int] = None) -> Dict:
        now = datetime.now(get_timezone())
        year = year or now.year
        month = month or now.month
        start, end = month_range(year, month)
        sessions = self._sessions('started_at, page_views_count, last_activity_at', start, end)
        return calendar_stats(year, month, sessions)

    def duration_detail(self, start: datetime, end: datetime) -> Dict:
        sessions = self._sessions('id, started_at, last_activity_at, page_views_count, device_type', start, end)
        page_views = self._page_views('page_path, time_on_page, session_id', start, end)
        return duration_detail(sessions, page_views)
