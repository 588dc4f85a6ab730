#!/usr/bin/env python
# -*- coding: utf-8 -*-
"""
定期実行スケジューラー
リアルタイム訪問者の集計・在庫不足レポート・Supabaseのキープアライブ
"""

import schedule
import time
import logging

import requests

from core.config import Config
from core.database import Database
from core.inventory import build_inventory_items, low_stock_alerts
from core.utils import now_local
from analytics.visitors import VisitorAnalytics

# ログ設定
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(levelname)s - %(message)s',
    handlers=[
        logging.FileHandler('scheduler.log'),
        logging.StreamHandler()
    ]
)
logger = logging.getLogger(__name__)

def run_realtime_snapshot():
    """直近5分のアクティブ訪問者を記録"""
    try:
        stats = VisitorAnalytics(Database.get_client()).realtime()
        logger.info(
            f"Realtime visitors: {stats['activeVisitors']} "
            f"(pages: {len(stats['currentPages'])})"
        )
        return stats
    except Exception as e:
        logger.error(f"Realtime snapshot failed: {e}")
        return None

def run_low_stock_report():
    """在庫不足の香料を報告"""
    logger.info("=" * 60)
    logger.info(f"Starting low stock report at {now_local():%Y-%m-%d %H:%M}")

    try:
        client = Database.get_client()
        if not client:
            raise Exception("Supabase client not initialized")

        rows = client.table('fragrance_inventory').select('*').execute().data
        alerts = low_stock_alerts(build_inventory_items(rows))

        if alerts:
            logger.warning(f"✗ {len(alerts)} fragrances below threshold")
            for alert in alerts:
                logger.warning(
                    f"  - {alert['fragranceName']} ({alert['fragranceId']}): "
                    f"{alert['currentStock']}ml / {alert['threshold']}ml"
                )
        else:
            logger.info("✓ All fragrances are above threshold")

        logger.info("=" * 60)
        return alerts

    except Exception as e:
        logger.error(f"Low stock report failed: {e}")
        return None

def run_keep_alive():
    """Supabaseと外部ヘルスチェックURLへの定期アクセス"""
    alive = Database.test_connection()
    if alive:
        logger.info("Keep alive: database connected")
    else:
        logger.warning("Keep alive: database unreachable")

    url = Config.get_healthcheck_url()
    if url:
        try:
            response = requests.get(url, timeout=10)
            logger.info(f"Keep alive: {url} -> {response.status_code}")
        except requests.RequestException as e:
            logger.error(f"Keep alive request failed: {e}")
            alive = False

    return alive

def setup_scheduler():
    """スケジューラーの設定"""
    interval = Config.get_realtime_refresh_seconds()
    schedule.every(interval).seconds.do(run_realtime_snapshot)

    # 毎朝9時に在庫不足レポート
    schedule.every().day.at("09:00", Config.get_timezone_name()).do(run_low_stock_report)

    schedule.every().hour.do(run_keep_alive)

    logger.info("Scheduler configured:")
    logger.info(f"- Realtime visitors every {interval} seconds")
    logger.info(f"- Low stock report daily at 09:00 ({Config.get_timezone_name()})")
    logger.info("- Keep alive every hour")

def run_scheduler():
    """スケジューラーのメインループ"""
    logger.info("Starting scheduler...")
    logger.info("Press Ctrl+C to stop")

    setup_scheduler()

    try:
        while True:
            schedule.run_pending()
            time.sleep(1)

    except KeyboardInterrupt:
        logger.info("Scheduler stopped by user")
    except Exception as e:
        logger.error(f"Scheduler error: {str(e)}")
        raise

def run_manual():
    """手動実行"""
    logger.info("Running manual low stock report...")
    alerts = run_low_stock_report()

    if alerts is None:
        print("\nManual execution failed")
    else:
        print("\nManual execution completed")
        print(f"Low stock fragrances: {len(alerts)}")

if __name__ == "__main__":
    import sys

    if len(sys.argv) > 1 and sys.argv[1] == "manual":
        run_manual()
    else:
        run_scheduler()
