#!/usr/bin/env python
# -*- coding: utf-8 -*-
"""
ユーティリティ関数
集計・日付・ページネーションのヘルパー
"""

import math
import random
import string
from datetime import datetime, timedelta
from typing import Dict, List, Optional

import pytz

from .config import Config

def round_half_up(value: float, digits: int = 0) -> float:
    """四捨五入（Pythonのroundは偶数丸めのため）

    例: round_half_up(2.5) -> 3, round_half_up(-2.5) -> -2
    """
    if digits == 0:
        return int(math.floor(value + 0.5))
    factor = 10 ** digits
    return math.floor(value * factor + 0.5) / factor

def percentage(part: float, total: float, digits: int = 1) -> float:
    if not total:
        return 0
    return round_half_up(part / total * 100, digits)

def get_timezone():
    return pytz.timezone(Config.get_timezone_name())

def now_local() -> datetime:
    return datetime.now(get_timezone())

def now_iso() -> str:
    return datetime.now(pytz.utc).isoformat()

def today_start() -> datetime:
    """ローカル時刻の本日0時"""
    now = now_local()
    return now.replace(hour=0, minute=0, second=0, microsecond=0)

def parse_timestamp(value: str) -> Optional[datetime]:
    """Supabaseのtimestamptz文字列をaware datetimeに変換"""
    if not value:
        return None
    text = value.replace('Z', '+00:00')
    # マイクロ秒が6桁でない場合に備えて正規化
    if '.' in text:
        head, _, tail = text.partition('.')
        digits = ''.join(ch for ch in tail if ch.isdigit())
        offset = tail[len(digits):]
        text = f"{head}.{digits[:6].ljust(6, '0')}{offset}"
    dt = datetime.fromisoformat(text)
    if dt.tzinfo is None:
        dt = pytz.utc.localize(dt)
    return dt

def end_of_day(date_str: str) -> str:
    """YYYY-MM-DD を当日の終わりまで含める"""
    return f"{date_str}T23:59:59.999Z"

def random_code(length: int, alphabet: str = string.ascii_uppercase + string.digits) -> str:
    return ''.join(random.choice(alphabet) for _ in range(length))

def paginate(page: int, limit: int, total: int) -> Dict:
    """ページネーション情報"""
    return {
        "page": page,
        "limit": limit,
        "total": total,
        "totalPages": math.ceil(total / limit) if limit else 0,
    }

def page_range(page: int, limit: int):
    offset = (page - 1) * limit
    return offset, offset + limit - 1

def count_by(items: List[Dict], key) -> List[Dict]:
    """値ごとの件数を [{name, count}] で降順に返す"""
    counts: Dict[str, int] = {}
    for item in items:
        value = key(item)
        if not value:
            continue
        counts[value] = counts.get(value, 0) + 1
    return [
        {"name": name, "count": count}
        for name, count in sorted(counts.items(), key=lambda x: x[1], reverse=True)
    ]

def days_ago(days: int, base: Optional[datetime] = None) -> datetime:
    base = base or datetime.now(pytz.utc)
    return base - timedelta(days=days)
