from __future__ import annotations

import argparse
import json
import os
import sys
from datetime import datetime

SCRIPT_DIR = os.path.dirname(os.path.abspath(__file__))
PROJECT_ROOT = os.path.abspath(os.path.join(SCRIPT_DIR, ".."))
if PROJECT_ROOT not in sys.path:
    sys.path.insert(0, PROJECT_ROOT)


def load_env_file(env_path: str) -> None:
    if not os.path.exists(env_path):
        return
    with open(env_path, "r", encoding="utf-8") as env_file:
        for line in env_file:
            line = line.strip()
            if not line or line.startswith("#") or "=" not in line:
                continue
            key, value = line.split("=", 1)
            os.environ.setdefault(key, value)


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description=(
            "Calculate weekly CAMPS trend snapshots for the last completed week. "
            "Intended for cron: 0 1 * * MON"
        )
    )
    parser.add_argument(
        "--env-file",
        default=os.path.join(PROJECT_ROOT, ".env"),
        help="Path to .env file.",
    )
    parser.add_argument(
        "--force",
        action="store_true",
        help="Run even if a completed run already covers the window.",
    )
    parser.add_argument(
        "--start",
        type=datetime.fromisoformat,
        default=None,
        help="Window start (ISO 8601). Requires --end.",
    )
    parser.add_argument(
        "--end",
        type=datetime.fromisoformat,
        default=None,
        help="Window end (ISO 8601). Requires --start.",
    )
    args = parser.parse_args()
    if (args.start is None) != (args.end is None):
        parser.error("--start and --end must be given together")
    return args


def main() -> int:
    args = parse_args()
    load_env_file(os.path.abspath(args.env_file))

    from src.api.dependencies import get_trend_calculation_service
    from src.core.config import get_settings
    from src.core.logging import configure_logging

    configure_logging(get_settings().log_level)
    service = get_trend_calculation_service()
    if args.start is None:
        result = service.run_last_completed_week("scheduled", force=args.force)
    else:
        result = service.run_window("weekly", args.start, args.end, force=args.force, trigger="manual")
    print(json.dumps(result.model_dump(by_alias=True), indent=2, default=str))
    return 1 if result.status == "failed" else 0


if __name__ == "__main__":
    sys.exit(main())
