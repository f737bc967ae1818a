#!/usr/bin/env python3
"""
Scheduler entry point - runs the daily inactivity sweep.

Usage:
    python scripts/run_scheduler.py            # start the loop, sweep daily at SWEEP_TIME
    python scripts/run_scheduler.py --once     # run one sweep now and print the report
    python scripts/run_scheduler.py --init-db  # create the registry tables and exit
"""

import argparse
import json
import sys
from pathlib import Path

# Allow running from a checkout without installing
sys.path.insert(0, str(Path(__file__).parent.parent))

from workspace_automation.core.config import get_db_path, get_sweep_time, is_sweep_enabled, validate_config
from workspace_automation.core.db import init_db
from workspace_automation.core.heartbeat import register_daily_task, start, stop
from workspace_automation.core.runtime import build_runtime


def run_once(runtime) -> int:
    report = runtime.sweep.run()
    print(json.dumps(report.to_dict(), indent=2, ensure_ascii=False))
    return 0


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(description="Registry inactivity sweep scheduler")
    parser.add_argument("--once", action="store_true", help="Run one sweep now and exit")
    parser.add_argument("--init-db", action="store_true", help="Create the registry tables and exit")
    parser.add_argument("--db-path", default=None, help=f"SQLite registry (default: {get_db_path()})")
    args = parser.parse_args(argv)

    issues = validate_config()
    if issues:
        for issue in issues:
            print(f"❌ {issue}")
        return 1

    if args.init_db:
        init_db(args.db_path)
        print(f"✓ Registry initialized at {args.db_path or get_db_path()}")
        return 0

    runtime = build_runtime(db_path=args.db_path)

    if args.once:
        return run_once(runtime)

    if not is_sweep_enabled():
        print("Sweep disabled (SWEEP_ENABLED=false). Nothing to schedule.")
        return 0

    try:
        register_daily_task("inactive_user_sweep", get_sweep_time(), runtime.sweep.run)
        print(f"🏃 Daily sweep scheduled at {get_sweep_time()}")
        start()
    except KeyboardInterrupt:
        print("\n👋 Shutting down gracefully...")
        stop()
    except Exception as e:
        print(f"💥 Critical error: {e}")
        stop()
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
