"""
Browser launcher - find a free debug port, start Chrome on it, connect.

Chrome keeps a dedicated profile directory so platform logins survive
between publishing runs.
"""
from __future__ import annotations

import asyncio
import dataclasses
import logging
import os
import shutil
import subprocess
import sys
from typing import List, Optional

from multipost.cdp.client import CDPClient
from multipost.cdp.session import SessionManager
from multipost.core.config import ClientConfig
from multipost.core.errors import CDPConnectionError, CDPError
from multipost.utils.retry import retry

logger = logging.getLogger("multipost")

CHROME_NAMES = [
    "google-chrome",
    "google-chrome-stable",
    "chromium",
    "chromium-browser",
    "chrome",
]

FALLBACK_PATHS = {
    "darwin": ["/Applications/Google Chrome.app/Contents/MacOS/Google Chrome"],
    "win32": [r"C:\Program Files\Google\Chrome\Application\chrome.exe"],
    "linux": [
        "/usr/bin/google-chrome",
        "/usr/bin/chromium-browser",
        "/usr/bin/chromium",
        "/snap/bin/chromium",
        "/opt/google/chrome/chrome",
    ],
}


def find_chrome_executable(explicit: Optional[str] = None) -> str:
    """Locate the Chrome binary, preferring an explicitly configured path."""
    if explicit:
        return explicit

    for name in CHROME_NAMES:
        path = shutil.which(name)
        if path:
            return path

    for path in FALLBACK_PATHS.get(sys.platform, FALLBACK_PATHS["linux"]):
        if os.path.exists(path):
            return path

    raise CDPConnectionError(
        "Chrome/Chromium not found. Set MULTI_PLATFORM_CHROME_PATH or install Chrome.",
        method="find_chrome_executable"
    )


async def is_port_in_use(host: str, port: int, probe_timeout: float = 0.1) -> bool:
    """True if something accepts TCP connections on ``host:port``."""
    try:
        _, writer = await asyncio.wait_for(asyncio.open_connection(host, port), probe_timeout)
    except (OSError, asyncio.TimeoutError):
        return False
    writer.close()
    try:
        await writer.wait_closed()
    except OSError:
        pass
    return True


async def find_free_debug_port(host: str = "127.0.0.1", start: int = 9222, end: int = 9230,
                               probe_timeout: float = 0.1) -> int:
    """Return the first port in ``[start, end)`` nothing is listening on."""
    for port in range(start, end):
        if not await is_port_in_use(host, port, probe_timeout):
            return port
        logger.debug(f"Debug port {port} is in use")
    raise CDPConnectionError(
        f"No free debug port in range {start}-{end - 1}",
        method="find_free_debug_port"
    )


def build_chrome_args(executable: str, port: int, profile_dir: str,
                      url: str = "about:blank", headless: bool = False) -> List[str]:
    args = [
        executable,
        f"--remote-debugging-port={port}",
        f"--user-data-dir={profile_dir}",
        "--no-first-run",
        "--no-default-browser-check",
    ]
    if headless:
        args.extend([
            "--headless=new",
            "--disable-gpu",
        ])
    args.append(url)
    return args


def spawn_chrome(config: ClientConfig, port: int, url: str = "about:blank") -> subprocess.Popen:
    """Start Chrome detached from our process group."""
    os.makedirs(config.profile_dir, exist_ok=True)
    args = build_chrome_args(
        find_chrome_executable(config.chrome_path),
        port,
        config.profile_dir,
        url=url,
        headless=config.headless,
    )
    process = subprocess.Popen(
        args,
        stdout=subprocess.DEVNULL,
        stderr=subprocess.DEVNULL,
        start_new_session=True,
    )
    logger.info(f"Launched Chrome (PID: {process.pid}) on debug port {port}")
    return process


async def wait_for_debug_port(config: ClientConfig,
                              process: Optional[subprocess.Popen] = None) -> CDPClient:
    """Connect to ``config.port``, retrying while a fresh browser starts up."""

    async def attempt() -> CDPClient:
        if process is not None and process.poll() is not None:
            raise CDPError(
                f"Chrome process exited unexpectedly with code {process.returncode}",
                method="wait_for_debug_port"
            )
        return await CDPClient.connect(config)

    try:
        return await retry(
            attempt,
            policy=config.connect_policy,
            retry_on=(CDPConnectionError,),
            operation_name=f"connect to debug port {config.port}",
        )
    except CDPConnectionError as e:
        raise CDPConnectionError(
            f"Chrome debug port {config.port} not ready: {e.message}",
            method="wait_for_debug_port"
        ) from e


async def terminate_process(process: subprocess.Popen, timeout: float = 5.0):
    """Terminate a process without blocking the event loop."""
    if process.poll() is not None:
        return
    process.terminate()
    try:
        await asyncio.wait_for(asyncio.to_thread(process.wait), timeout=timeout)
    except asyncio.TimeoutError:
        process.kill()
        await asyncio.wait_for(asyncio.to_thread(process.wait), timeout=2.0)


class LaunchedBrowser:
    """
    A Chrome process plus one CDP connection to it.

    Usage:
        async with LaunchedBrowser(url="https://mp.toutiao.com") as browser:
            session = await browser.sessions.attach_by_domain("toutiao.com")
            await session.send("Page.bringToFront")
    """

    def __init__(self, config: Optional[ClientConfig] = None, url: str = "about:blank"):
        self.config = config or ClientConfig.from_env()
        self.url = url
        self.port: Optional[int] = None
        self.process: Optional[subprocess.Popen] = None
        self.client: Optional[CDPClient] = None
        self.sessions: Optional[SessionManager] = None

    async def __aenter__(self) -> LaunchedBrowser:
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.stop()

    async def start(self):
        self.port = await find_free_debug_port(
            self.config.host,
            self.config.port_range_start,
            self.config.port_range_end,
            self.config.port_probe_timeout,
        )
        self.process = spawn_chrome(self.config, self.port, self.url)
        try:
            self.client = await wait_for_debug_port(
                dataclasses.replace(self.config, port=self.port),
                self.process,
            )
        except CDPError:
            await terminate_process(self.process)
            self.process = None
            raise
        self.sessions = SessionManager(self.client)

    async def stop(self, terminate: bool = False):
        """Close the connection; Chrome keeps running unless ``terminate``."""
        if self.client is not None:
            await self.client.close()
            self.client = None
            self.sessions = None
        if terminate and self.process is not None:
            logger.info("Terminating Chrome process...")
            await terminate_process(self.process)
            self.process = None
