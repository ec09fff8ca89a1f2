"""
Bounded pool of headless Chromium browsers (Playwright).

acquire() hands out an idle browser, launches a new one while the pool is below
its size, and otherwise waits until release() frees one. A background sweep
closes browsers that have been idle longer than the TTL. The pool is owned by
the pipeline that creates it; there is no process-wide instance.
"""

import asyncio
import logging
import time
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Any, AsyncIterator, Awaitable, Callable, List, Optional

from playwright.async_api import Browser, async_playwright

from .config import BrowserPoolSettings

logger = logging.getLogger(__name__)

CHROMIUM_ARGS = [
    "--no-sandbox",
    "--disable-setuid-sandbox",
    "--disable-dev-shm-usage",
    "--disable-gpu",
]


@dataclass
class _PooledBrowser:
    browser: Any
    last_used: float
    in_use: bool = True


class BrowserPool:
    """Lease headless browsers under a fixed upper bound."""

    def __init__(
        self,
        settings: Optional[BrowserPoolSettings] = None,
        launcher: Optional[Callable[[], Awaitable[Browser]]] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.settings = settings or BrowserPoolSettings()
        self._launcher = launcher or self._launch_chromium
        self._clock = clock
        self._entries: List[_PooledBrowser] = []
        self._creating = 0
        self._condition = asyncio.Condition()
        self._playwright = None
        self._playwright_lock = asyncio.Lock()
        self._sweeper: Optional[asyncio.Task] = None
        self._closed = False

    @property
    def size(self) -> int:
        return len(self._entries)

    @property
    def idle_count(self) -> int:
        return sum(1 for entry in self._entries if not entry.in_use)

    async def _launch_chromium(self) -> Browser:
        async with self._playwright_lock:
            if self._playwright is None:
                self._playwright = await async_playwright().start()
        return await self._playwright.chromium.launch(headless=self.settings.headless, args=CHROMIUM_ARGS)

    async def acquire(self) -> Browser:
        """
        Get a browser for exclusive use.

        Waits while every pooled browser is leased and the pool is full.
        Launch failures propagate and free the reserved slot.
        """
        async with self._condition:
            while True:
                if self._closed:
                    raise RuntimeError("Browser pool is closed")
                for entry in self._entries:
                    if not entry.in_use:
                        entry.in_use = True
                        entry.last_used = self._clock()
                        return entry.browser
                if len(self._entries) + self._creating < self.settings.max_size:
                    self._creating += 1
                    break
                await self._condition.wait()

        browser = None
        try:
            browser = await self._launcher()
        finally:
            # the reserved slot is returned on failure and on cancellation
            async with self._condition:
                self._creating -= 1
                if browser is None:
                    self._condition.notify()
                else:
                    self._entries.append(_PooledBrowser(browser=browser, last_used=self._clock()))
        logger.info(f"🔄 Launched browser ({len(self._entries)}/{self.settings.max_size} in pool)")
        return browser

    async def release(self, browser: Browser) -> None:
        """Return a browser to the pool. Unknown handles are ignored."""
        async with self._condition:
            for entry in self._entries:
                if entry.browser is browser:
                    entry.in_use = False
                    entry.last_used = self._clock()
                    self._condition.notify()
                    return
        logger.debug("Release of a browser the pool does not own; ignoring")

    @asynccontextmanager
    async def lease(self) -> AsyncIterator[Browser]:
        browser = await self.acquire()
        try:
            yield browser
        finally:
            await self.release(browser)

    async def sweep(self) -> int:
        """Close browsers idle for longer than the TTL. Returns how many were closed."""
        now = self._clock()
        async with self._condition:
            stale = [
                entry for entry in self._entries
                if not entry.in_use and now - entry.last_used > self.settings.idle_ttl
            ]
            for entry in stale:
                self._entries.remove(entry)
            if stale:
                self._condition.notify(len(stale))
        for entry in stale:
            await self._close_browser(entry.browser)
        if stale:
            logger.info(f"🧹 Closed {len(stale)} idle browser(s)")
        return len(stale)

    async def _sweep_forever(self) -> None:
        while True:
            await asyncio.sleep(self.settings.sweep_interval)
            await self.sweep()

    def start(self) -> None:
        """Start the periodic idle sweep on the running loop."""
        if self._sweeper is None:
            self._sweeper = asyncio.get_running_loop().create_task(self._sweep_forever())

    async def close(self) -> None:
        """Stop the sweep and close every browser, leased or not."""
        self._closed = True
        if self._sweeper is not None:
            self._sweeper.cancel()
            try:
                await self._sweeper
            except asyncio.CancelledError:
                pass
            self._sweeper = None
        async with self._condition:
            entries, self._entries = self._entries, []
            self._condition.notify_all()
        for entry in entries:
            await self._close_browser(entry.browser)
        if self._playwright is not None:
            await self._playwright.stop()
            self._playwright = None

    async def _close_browser(self, browser: Browser) -> None:
        try:
            await browser.close()
        except Exception as e:
            logger.warning(f"⚠️  Error closing browser: {e}")

    async def __aenter__(self) -> "BrowserPool":
        self.start()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()
