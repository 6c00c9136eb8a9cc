#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Restrain Yourself v1.0 - Sync runner
Keeps one user's habits in sync with the Supabase project and logs the state

Version: 1.0.0
Date: 2025-07-10
"""

import argparse
import asyncio
import json
import logging
import signal
import sys
from typing import List, Optional

from config import config
from services import ServiceManager
from utils.logger import setup_logging

logger = logging.getLogger(__name__)

def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Restrain Yourself habit sync runner")
    parser.add_argument('--user-id', required=True, help="Supabase auth user id")
    parser.add_argument('--interval', type=float, default=60.0,
                        help="Seconds between state summaries (default: 60)")
    parser.add_argument('--once', action='store_true',
                        help="Load, print a summary and exit")
    parser.add_argument('--json', action='store_true', help="Print summaries as JSON")
    return parser.parse_args(argv)

def summarize(manager: ServiceManager) -> dict:
    engine = manager.engine
    today_stats = engine.get_today_stats()
    return {
        "user_id": engine.user_id,
        "online": engine.is_online,
        "habits": len(engine.habits),
        "entries": len(engine.entries),
        "today": {
            "completed": today_stats.completed,
            "total": today_stats.total,
            "percentage": today_stats.percentage
        },
        "pending_updates": engine.pending_count,
        "offline_queue": engine.offline_queue_depth,
        "errors": dict(engine.errors),
        "health": manager.health_check()["status"]
    }

def log_summary(manager: ServiceManager, as_json: bool):
    summary = summarize(manager)
    if as_json:
        print(json.dumps(summary, ensure_ascii=False))
        return
    today = summary["today"]
    logger.info(f"📊 {summary['habits']} habits, {summary['entries']} entries, "
                f"today {today['completed']}/{today['total']} ({today['percentage']}%), "
                f"pending {summary['pending_updates']}, queued {summary['offline_queue']}")
    for key, message in summary["errors"].items():
        logger.warning(f"⚠️ {key}: {message}")

async def run(args: argparse.Namespace) -> int:
    manager = ServiceManager()
    stop_event = asyncio.Event()

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop_event.set)
        except NotImplementedError:
            # Windows
            pass

    try:
        await manager.start_session(args.user_id)
        log_summary(manager, args.json)
        if args.once:
            return 0

        while not stop_event.is_set():
            try:
                await asyncio.wait_for(stop_event.wait(), timeout=args.interval)
            except asyncio.TimeoutError:
                log_summary(manager, args.json)

        logger.info("📢 Shutdown signal received")
        return 0
    finally:
        await manager.close()

def main(argv: Optional[List[str]] = None) -> int:
    args = parse_args(argv)
    setup_logging(config)

    try:
        config.require_backend()
    except ValueError as e:
        logger.error(f"❌ {e}")
        return 2

    logger.info(f"🚀 Restrain Yourself sync v1.0 ({config.environment.value})")
    try:
        return asyncio.run(run(args))
    except KeyboardInterrupt:
        logger.info("👋 Stopped by user")
        return 0
    except Exception as e:
        logger.error(f"💥 Fatal error: {e}")
        return 1

if __name__ == "__main__":
    sys.exit(main())
