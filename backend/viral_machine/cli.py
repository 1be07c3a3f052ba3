"""
viral-machine command line.

    viral-machine schedule-all          reconcile every enabled channel
    viral-machine reschedule CHANNEL    reconcile one channel
    viral-machine stats                 queue counters
    viral-machine init-db               create tables (development)
"""
from __future__ import annotations

import argparse
import asyncio
import json
import sys
from typing import Any

from .logging_setup import configure_logging


async def _schedule_all() -> dict[str, Any]:
    from .db import AsyncSessionLocal
    from .services.daily_scheduler import ChannelScheduler
    from .services.video_queue import get_video_queue

    async with AsyncSessionLocal() as session:
        return await ChannelScheduler(session, get_video_queue()).schedule_all_channels()


async def _reschedule(channel_id: str) -> dict[str, Any]:
    from .db import AsyncSessionLocal
    from .services.daily_scheduler import ChannelScheduler
    from .services.video_queue import get_video_queue

    async with AsyncSessionLocal() as session:
        return await ChannelScheduler(session, get_video_queue()).schedule_channel_videos(channel_id)


async def _stats() -> dict[str, Any]:
    from .services.daily_scheduler import get_queue_stats
    from .services.video_queue import get_video_queue

    return await get_queue_stats(get_video_queue())


async def _init_db() -> dict[str, Any]:
    from .db import init_db

    await init_db()
    return {"ok": True}


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="viral-machine",
        description="Daily upload scheduling for faceless YouTube channels",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument("--log-level", default=None, help="Override LOG_LEVEL")
    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("schedule-all", help="Top up every enabled channel to its daily target")
    reschedule = sub.add_parser("reschedule", help="Top up one channel")
    reschedule.add_argument("channel_id")
    sub.add_parser("stats", help="Show queue counters")
    sub.add_parser("init-db", help="Create database tables")
    return parser


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    configure_logging(args.log_level)

    if args.command == "schedule-all":
        result = asyncio.run(_schedule_all())
    elif args.command == "reschedule":
        result = asyncio.run(_reschedule(args.channel_id))
    elif args.command == "stats":
        result = asyncio.run(_stats())
    else:
        result = asyncio.run(_init_db())

    print(json.dumps(result, indent=2, default=str))
    if args.command == "reschedule" and result.get("skipped") == "not_found":
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
