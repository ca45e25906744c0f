#!/usr/bin/env python3
"""
Pipeline management CLI - talk to a running pipeline through its management API.

Usage: python pipeline_cli.py [--url URL] <command> [options]

Commands:
    status          - Show pipeline and collector status
    metrics [hours] - Show records written per data type (default: 1 hour)
    restart <name>  - Restart one collector
    start           - Start every collector
    stop            - Stop every collector
    watch           - Watch pipeline status (live updates)
"""

import argparse
import asyncio
import os
import sys
from datetime import datetime, timezone
from typing import Any, Dict, Optional

import aiohttp


DEFAULT_URL = os.getenv("PIPELINE_API_URL", "http://127.0.0.1:8080")


class Colors:
    """ANSI color codes for terminal output."""
    GREEN = "\033[92m"
    YELLOW = "\033[93m"
    RED = "\033[91m"
    BLUE = "\033[94m"
    CYAN = "\033[96m"
    WHITE = "\033[97m"
    BOLD = "\033[1m"
    END = "\033[0m"


STATE_COLORS = {
    "running": Colors.GREEN,
    "starting": Colors.YELLOW,
    "stopping": Colors.YELLOW,
    "stopped": Colors.WHITE,
    "errored": Colors.RED,
}


def format_duration(seconds: float) -> str:
    """Format duration in seconds to human readable."""
    if seconds < 60:
        return f"{seconds:.0f}s"
    elif seconds < 3600:
        return f"{seconds/60:.1f}m"
    elif seconds < 86400:
        return f"{seconds/3600:.1f}h"
    else:
        return f"{seconds/86400:.1f}d"


def format_age(iso_timestamp: Optional[str]) -> str:
    if not iso_timestamp:
        return "never"
    then = datetime.fromisoformat(iso_timestamp.replace("Z", "+00:00"))
    if then.tzinfo is None:
        then = then.replace(tzinfo=timezone.utc)
    return f"{format_duration((datetime.now(timezone.utc) - then).total_seconds())} ago"


def colored_state(state: str) -> str:
    return f"{STATE_COLORS.get(state, Colors.WHITE)}{state.upper()}{Colors.END}"


class ApiError(Exception):
    def __init__(self, status: int, message: str):
        super().__init__(f"HTTP {status}: {message}")
        self.status = status


class PipelineApi:
    """Minimal client for the management API."""

    def __init__(self, base_url: str = DEFAULT_URL, timeout: float = 10.0):
        self.base_url = base_url.rstrip("/")
        self._timeout = aiohttp.ClientTimeout(total=timeout)

    async def _request(self, method: str, path: str, **kwargs) -> Dict[str, Any]:
        async with aiohttp.ClientSession(timeout=self._timeout) as session:
            async with session.request(method, f"{self.base_url}{path}", **kwargs) as resp:
                body = await resp.json(content_type=None)
                if resp.status >= 400:
                    raise ApiError(resp.status, (body or {}).get("error", resp.reason))
                return body

    async def status(self) -> Dict[str, Any]:
        return await self._request("GET", "/status")

    async def metrics(self, hours: float) -> Dict[str, Any]:
        return await self._request("GET", "/metrics", params={"hours": str(hours)})

    async def start(self) -> Dict[str, Any]:
        return await self._request("POST", "/start")

    async def stop(self) -> Dict[str, Any]:
        return await self._request("POST", "/stop")

    async def restart(self, name: str) -> Dict[str, Any]:
        return await self._request("POST", f"/collectors/{name}/restart")


def print_collector(collector: Dict[str, Any]) -> None:
    print(f"{colored_state(collector['state'])} {Colors.BOLD}{collector['display_name']}{Colors.END} ({collector['name']})")
    print(f"   Interval: {Colors.WHITE}{format_duration(collector['update_interval_seconds'])}{Colors.END}")
    print(f"   Last Update: {Colors.CYAN}{format_age(collector.get('last_update'))}{Colors.END}")
    print(f"   Records: {Colors.GREEN}{collector['records_processed']}{Colors.END}")

    errors = collector.get("recent_errors") or []
    if errors:
        print(f"   Recent Errors: {Colors.RED}{len(errors)}{Colors.END}")
        for error in errors[-3:]:
            print(f"     {Colors.YELLOW}{error['message'][:100]}{Colors.END}")


def print_status(status: Dict[str, Any]) -> None:
    print(f"{Colors.BOLD}📊 Pipeline Status{Colors.END}")
    print("=" * 50)
    print(f"State: {colored_state(status['state'])}")
    print(f"Checked: {Colors.WHITE}{status['timestamp']}{Colors.END}")
    print()

    collectors = status.get("collectors") or []
    if not collectors:
        print(f"{Colors.YELLOW}No collectors registered{Colors.END}")
        return
    for collector in collectors:
        print_collector(collector)
        print()

    errored = [c["name"] for c in collectors if c["state"] == "errored"]
    if errored:
        print(f"{Colors.RED}❌ Errored: {', '.join(errored)}{Colors.END}")
    elif status["state"] == "running":
        print(f"{Colors.GREEN}✅ System Healthy{Colors.END}")


def print_metrics(metrics: Dict[str, Any]) -> None:
    print(f"{Colors.BOLD}📈 Records in the last {metrics['window_hours']:g} hour(s){Colors.END}")
    print("=" * 60)
    rows = metrics.get("metrics") or []
    if not rows:
        print(f"{Colors.YELLOW}No records written{Colors.END}")
    for row in rows:
        print(f"  {row['data_type']:<16} {row['source']:<16} {Colors.GREEN}{row['count']:>8}{Colors.END}")
    print("-" * 60)
    print(f"  {'Total':<33} {Colors.BOLD}{metrics['total_records']:>8}{Colors.END}")


async def watch_status(api: PipelineApi, interval: float = 5.0) -> None:
    """Redraw the status every ``interval`` seconds until interrupted."""
    while True:
        try:
            status = await api.status()
        except (aiohttp.ClientError, ApiError) as e:
            print(f"{Colors.RED}Cannot reach pipeline: {e}{Colors.END}")
        else:
            print("\033[2J\033[H", end="")
            print_status(status)
            print(f"\n{Colors.BLUE}Refreshing every {interval:g}s, Ctrl+C to exit{Colors.END}")
        await asyncio.sleep(interval)


async def run_command(args: argparse.Namespace) -> int:
    api = PipelineApi(args.url)

    if args.command == "status":
        print_status(await api.status())
    elif args.command == "metrics":
        print_metrics(await api.metrics(args.hours))
    elif args.command == "restart":
        collector = await api.restart(args.name)
        print(f"{Colors.GREEN}✅ Restarted {args.name}{Colors.END}")
        print_collector(collector)
    elif args.command == "start":
        print_status(await api.start())
    elif args.command == "stop":
        print_status(await api.stop())
    elif args.command == "watch":
        await watch_status(api, args.interval)
    return 0


def parse_args(argv=None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Sports data pipeline management CLI")
    parser.add_argument("--url", default=DEFAULT_URL, help=f"Management API URL (default: {DEFAULT_URL})")
    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("status", help="Show pipeline and collector status")
    metrics = sub.add_parser("metrics", help="Show records written per data type")
    metrics.add_argument("hours", nargs="?", type=float, default=1.0)
    restart = sub.add_parser("restart", help="Restart one collector")
    restart.add_argument("name")
    sub.add_parser("start", help="Start every collector")
    sub.add_parser("stop", help="Stop every collector")
    watch = sub.add_parser("watch", help="Watch pipeline status")
    watch.add_argument("--interval", type=float, default=5.0)
    return parser.parse_args(argv)


def main(argv=None) -> int:
    args = parse_args(argv)
    try:
        return asyncio.run(run_command(args))
    except KeyboardInterrupt:
        print(f"\n{Colors.YELLOW}Interrupted{Colors.END}")
        return 130
    except ApiError as e:
        print(f"{Colors.RED}Error: {e}{Colors.END}")
        return 1
    except aiohttp.ClientError as e:
        print(f"{Colors.RED}Cannot reach pipeline at {args.url}: {e}{Colors.END}")
        return 1


if __name__ == "__main__":
    sys.exit(main())
