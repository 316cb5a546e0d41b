"""Main entry point with CLI."""
import argparse
import asyncio
import logging
import sys
from datetime import datetime

import orjson

from shopwatch.config import Config, config
from shopwatch.daemon import Daemon
from shopwatch.gateway import protocol
from shopwatch.gateway.client import GatewayClient
from shopwatch.gateway.server import EventGateway, GatewayError
from shopwatch.logging_conf import setup_logging
from shopwatch.utils.pid import PidFile

logger = logging.getLogger(__name__)


def parse_args(argv=None) -> argparse.Namespace:
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(prog="shopwatch", description="Storefront catalog monitor")
    parser.add_argument(
        "--socket",
        default=None,
        help=f"Gateway socket path (default: {config.IPC_SOCKET_PATH})",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    run_parser = subparsers.add_parser("run", help="Run the monitor in the foreground")
    run_parser.add_argument(
        "--interval",
        type=int,
        default=None,
        help=f"Poll interval in seconds (default: {config.POLL_INTERVAL})",
    )
    run_parser.add_argument(
        "--log-level",
        default=None,
        help=f"Log level (default: {config.LOG_LEVEL})",
    )

    subparsers.add_parser("stop", help="Stop a running monitor")
    subparsers.add_parser("status", help="Show whether the monitor is running")

    poll_parser = subparsers.add_parser("poll", help="Ask the running monitor to poll now")
    poll_parser.add_argument("--item", default=None, help="Only poll this item id")

    history_parser = subparsers.add_parser("history", help="Show notification history")
    history_parser.add_argument("--from", dest="date_from", default=None, help="ISO date or epoch ms")
    history_parser.add_argument("--to", dest="date_to", default=None, help="ISO date or epoch ms")
    history_parser.add_argument("--item", dest="item_id", default=None, help="Filter by item id")
    history_parser.add_argument("--status", choices=["sent", "failed"], default=None)
    history_parser.add_argument("--limit", type=int, default=20)
    history_parser.add_argument("--offset", type=int, default=0)
    history_parser.add_argument("--json", action="store_true", help="Print raw JSON")

    stats_parser = subparsers.add_parser("stats", help="Show notification statistics")
    stats_parser.add_argument("--json", action="store_true", help="Print raw JSON")

    return parser.parse_args(argv)


def _format_ms(value) -> str:
    if not value:
        return "-"
    return datetime.fromtimestamp(value / 1000).strftime("%Y-%m-%d %H:%M:%S")


def _print_json(data) -> None:
    print(orjson.dumps(data, option=orjson.OPT_INDENT_2).decode())


def cmd_run(args: argparse.Namespace) -> int:
    if args.interval:
        Config.POLL_INTERVAL = args.interval
    try:
        Config.validate()
    except ValueError as e:
        logger.error(f"Configuration error: {e}")
        return 1
    Config.ensure_dirs()

    running = PidFile().running_pid()
    if running:
        logger.error(f"Monitor already running (pid {running})")
        return 1

    logger.info("=" * 60)
    logger.info("shopwatch starting")
    logger.info(f"Store: {config.STORE_URL}")
    logger.info(f"Poll interval: {config.POLL_INTERVAL}s")
    logger.info(f"Database: {config.DB_PATH}")
    logger.info(f"Socket: {args.socket or config.IPC_SOCKET_PATH}")
    logger.info("=" * 60)

    gateway = EventGateway(socket_path=args.socket) if args.socket else None
    daemon = Daemon(gateway=gateway, interval=config.POLL_INTERVAL)
    try:
        asyncio.run(daemon.run())
    except GatewayError as e:
        logger.error(str(e))
        return 1
    except KeyboardInterrupt:
        logger.info("Interrupted by user")
        return 1
    except Exception as e:
        logger.error(f"Fatal error: {e}", exc_info=True)
        return 1
    return 0


def cmd_stop(args: argparse.Namespace) -> int:
    pid_file = PidFile()
    pid = pid_file.running_pid()
    if pid is None:
        print("shopwatch is not running")
        return 1
    pid_file.signal()
    print(f"Sent stop signal to shopwatch (pid {pid})")
    return 0


def cmd_status(args: argparse.Namespace) -> int:
    pid = PidFile().running_pid()
    reachable = asyncio.run(GatewayClient(args.socket).is_daemon_reachable())
    if pid is None:
        print("shopwatch is not running")
        return 1
    print(f"shopwatch is running (pid {pid}), gateway {'reachable' if reachable else 'unreachable'}")
    return 0


def cmd_poll(args: argparse.Namespace) -> int:
    result = asyncio.run(GatewayClient(args.socket).force_poll(item_id=args.item))
    if result.get("success"):
        print(
            f"Poll completed: {result.get('item_count', 0)} items, "
            f"{result.get('new_count', 0)} new in {result.get('duration_ms', 0)}ms"
        )
        return 0
    print(f"Poll failed: {result.get('error')}")
    return 1


def cmd_history(args: argparse.Namespace) -> int:
    filters = {
        "date_from": args.date_from,
        "date_to": args.date_to,
        "item_id": args.item_id,
        "status": args.status,
        "limit": args.limit,
        "offset": args.offset,
    }
    result = asyncio.run(GatewayClient(args.socket).request(
        protocol.GET_NOTIFICATION_HISTORY,
        {k: v for k, v in filters.items() if v is not None},
    ))
    if args.json:
        _print_json(result)
        return 0 if result.get("success") else 1
    if not result.get("success"):
        print(f"Failed to get history: {result.get('error')}")
        return 1
    for entry in result.get("history", []):
        status = "sent" if entry.get("sent") else "failed"
        line = f"{_format_ms(entry.get('timestamp'))}  {status:<6}  {entry.get('item_id')}  {entry.get('item_title') or ''}"
        if entry.get("error_message"):
            line += f"  ({entry['error_message']})"
        print(line)
    print(f"{result.get('count', 0)} entries")
    return 0


def cmd_stats(args: argparse.Namespace) -> int:
    result = asyncio.run(GatewayClient(args.socket).request(protocol.GET_NOTIFICATION_STATS))
    if args.json:
        _print_json(result)
        return 0 if result.get("success") else 1
    if not result.get("success"):
        print(f"Failed to get stats: {result.get('error')}")
        return 1
    stats = result.get("stats", {})
    print(f"Sent: {stats.get('total_sent', 0)}  Failed: {stats.get('total_failed', 0)}")
    for entry in stats.get("count_by_item", []):
        print(f"  {entry.get('item_id')}  {entry.get('item_title') or ''}  sent={entry.get('sent_count')} failed={entry.get('failed_count')}")
    return 0


COMMANDS = {
    "run": cmd_run,
    "stop": cmd_stop,
    "status": cmd_status,
    "poll": cmd_poll,
    "history": cmd_history,
    "stats": cmd_stats,
}


def main(argv=None) -> None:
    """Main entry point."""
    args = parse_args(argv)
    setup_logging(level=getattr(args, "log_level", None), console=True)

    try:
        code = COMMANDS[args.command](args)
    except (ConnectionError, FileNotFoundError, OSError, asyncio.TimeoutError) as e:
        logger.error(f"Cannot reach shopwatch daemon: {e}")
        code = 1
    except RuntimeError as e:
        logger.error(str(e))
        code = 1
    sys.exit(code)


if __name__ == "__main__":
    main()
