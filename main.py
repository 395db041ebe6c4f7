"""
Tab session orchestrator – main entry point.

Usage
-----
# Server mode (default) – the browser extension connects to ws://HOST:PORT/extension
python main.py

# Client mode – send one request to a running server and print the response
python main.py --fanout "iphone 13 128gb" --targets CEX eBay --category "smartphones and mobile"
python main.py --lookup 111 222 333
python main.py --mark-listed 111
"""

from __future__ import annotations

import argparse
import json
import pathlib
import sys
from typing import Any, Dict, Optional

import httpx
from dotenv import load_dotenv
from loguru import logger

load_dotenv(override=True)

from config.settings import settings  # noqa: E402 – must be after load_dotenv


def _configure_logging() -> None:
    logger.remove()
    # colorize=False: avoid ANSI escape codes that corrupt non-TTY output.
    logger.add(
        sys.stdout,
        level=settings.log_level,
        colorize=False,
        format="{time:HH:mm:ss} | {level: <8} | {message}",
    )
    if settings.log_file:
        pathlib.Path(settings.log_file).parent.mkdir(parents=True, exist_ok=True)
        logger.add(settings.log_file, level=settings.log_level, rotation="10 MB", retention="7 days")


def _build_message(args: argparse.Namespace) -> Optional[Dict[str, Any]]:
    if args.fanout:
        hints: Dict[str, Any] = {}
        if args.category:
            hints["category"] = args.category
        if args.subcategory:
            hints["subcategory"] = args.subcategory
        return {
            "action": "start-fanout",
            "data": {"query": args.fanout, "targetList": args.targets or [], "categoryHints": hints},
        }
    if args.lookup:
        return {"action": "start-sequential", "data": {"itemList": args.lookup}}
    if args.mark_listed:
        return {"action": "start-mark-listed", "data": {"identifier": args.mark_listed}}
    return None


def _send(message: Dict[str, Any], server: str) -> int:
    """POST one message to a running server; the call lasts as long as the session."""
    timeout = max(settings.fanout_timeout_seconds, settings.sequential_timeout_seconds) + 30
    try:
        with httpx.Client(timeout=httpx.Timeout(timeout)) as client:
            resp = client.post(f"{server}/messages", json=message)
    except httpx.RequestError as exc:
        logger.error(f"Could not reach {server}: {exc}")
        return 2
    print(json.dumps(resp.json(), indent=2))
    if resp.status_code != 200:
        return 1
    return 0 if resp.json().get("success") else 1


def _run_server() -> None:
    import uvicorn

    from app import create_app

    logger.info(f"Serving on http://{settings.server_host}:{settings.server_port} (extension: /extension)")
    uvicorn.run(
        create_app(settings),
        host=settings.server_host,
        port=settings.server_port,
        loop="asyncio",
        log_level=settings.log_level.lower(),
    )


def main() -> None:
    _configure_logging()

    parser = argparse.ArgumentParser(description="Browser tab session orchestrator")
    parser.add_argument("--fanout", type=str, help="Search query to fan out across competitor sites.")
    parser.add_argument("--targets", nargs="+", help="Target names for --fanout (see config/targets.json).")
    parser.add_argument("--category", type=str, help="Category hint for --fanout.")
    parser.add_argument("--subcategory", type=str, help="Subcategory hint for --fanout.")
    parser.add_argument("--lookup", nargs="+", help="Barcodes to look up one after another.")
    parser.add_argument("--mark-listed", type=str, help="Barcode to flag as externally listed.")
    parser.add_argument(
        "--server",
        type=str,
        default=f"http://{settings.server_host}:{settings.server_port}",
        help="Server URL used in client mode.",
    )
    args = parser.parse_args()

    message = _build_message(args)
    if message is None:
        _run_server()
        return
    sys.exit(_send(message, args.server))


if __name__ == "__main__":
    main()
