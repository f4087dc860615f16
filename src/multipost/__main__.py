#!/usr/bin/env python3
"""
Command line entry point: launch Chrome for publishing, or list its targets.
"""
from __future__ import annotations

import argparse
import asyncio
import logging
import sys

from multipost.cdp.client import CDPClient, setup_logging
from multipost.cdp.session import SessionManager
from multipost.core.config import ClientConfig
from multipost.core.errors import CDPError
from multipost.launcher import LaunchedBrowser

logger = logging.getLogger("multipost")


async def launch(config: ClientConfig, url: str) -> int:
    browser = LaunchedBrowser(config, url=url)
    await browser.start()
    try:
        print(f"Chrome listening on {config.host}:{browser.port} (PID {browser.process.pid})")
        print(f"Profile: {config.profile_dir}")
    finally:
        await browser.stop()
    return 0


async def list_targets(config: ClientConfig, domain: str | None = None) -> int:
    async with await CDPClient.connect(config) as client:
        manager = SessionManager(client)
        if domain:
            targets = [await manager.find_page_by_domain(domain)]
        else:
            targets = await manager.list_targets()
    for target in targets:
        print(f"{target.target_id}\t{target.type}\t{target.url}")
    return 0


def _parse_args(argv: list[str]) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="multipost",
        description="Drive Chrome over the DevTools protocol for article publishing.",
    )
    parser.add_argument("--debug", action="store_true", help="Log every CDP command and event.")
    subparsers = parser.add_subparsers(dest="command", required=True)

    launch_parser = subparsers.add_parser("launch", help="Launch Chrome on the first free debug port.")
    launch_parser.add_argument("--url", default="about:blank", help="Page to open (default: about:blank).")
    launch_parser.add_argument(
        "--headless",
        action="store_true",
        help="Run Chrome without a visible window (default: visible window).",
    )
    launch_parser.add_argument("--profile-dir", help="Chrome user data directory.")

    targets_parser = subparsers.add_parser("targets", help="List targets of a running Chrome.")
    targets_parser.add_argument("--host", help="Debug host (default: 127.0.0.1).")
    targets_parser.add_argument("--port", type=int, help="Debug port (default: 9222).")
    targets_parser.add_argument(
        "--transport",
        choices=["websocket", "tcp"],
        help="Wire transport (default: websocket).",
    )
    targets_parser.add_argument("--domain", help="Only show the first target whose URL contains this.")

    return parser.parse_args(argv)


def _config_from_args(args: argparse.Namespace) -> ClientConfig:
    overrides = {}
    for name in ("host", "port", "transport", "profile_dir"):
        value = getattr(args, name, None)
        if value is not None:
            overrides[name] = value
    if getattr(args, "headless", False):
        overrides["headless"] = True
    if args.debug:
        overrides["debug"] = True
    return ClientConfig.from_env(**overrides)


def main(argv: list[str] | None = None) -> int:
    args = _parse_args(sys.argv[1:] if argv is None else argv)
    config = _config_from_args(args)
    setup_logging(debug=config.debug)

    try:
        if args.command == "launch":
            return asyncio.run(launch(config, args.url))
        return asyncio.run(list_targets(config, args.domain))
    except CDPError as e:
        logger.error(str(e))
        return 1


if __name__ == "__main__":
    sys.exit(main())
