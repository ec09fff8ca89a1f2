"""
Content acquisition for a single URL.

Strategies are tried in order until one returns HTML:
1. Direct HTTP GET (requests) with a cache-busting parameter and browser headers
2. Pooled headless Chromium (Playwright) with heavy resources blocked
3. Bare HTTP/1.1 over an asyncio socket with manual redirect handling

Each strategy runs under its own RetryPolicy and every attempt is recorded.
"""

import asyncio
import logging
import re
import ssl
import time
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Dict, List, Optional, Tuple
from urllib.parse import urljoin, urlsplit

import requests
from playwright.async_api import Error as PlaywrightError

from .browser_pool import BrowserPool
from .config import AcquisitionSettings
from .errors import FetchFailure, TradeWizardError
from .html_content import html_to_text
from .retry import Deadline, RetryPolicy

logger = logging.getLogger(__name__)

BROWSER_HEADERS = {
    "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8",
    "Accept-Language": "en-US,en;q=0.9",
    "Cache-Control": "no-cache",
    "Pragma": "no-cache",
}
HTML_CONTENT_TYPES = ("text/html", "application/xhtml+xml")
REDIRECT_STATUSES = {301, 302, 303, 307, 308}

# Errors that mean "this attempt failed, try again or move on"
FETCH_ERRORS = (
    requests.RequestException,
    PlaywrightError,
    OSError,
    asyncio.TimeoutError,
    ValueError,
    RuntimeError,
    TradeWizardError,
)


@dataclass
class FetchAttempt:
    strategy: str
    attempt: int
    success: bool
    error: Optional[str] = None
    elapsed: float = 0.0


@dataclass
class FetchResult:
    """HTML for a URL, or the FetchFailure explaining why there is none."""
    url: str
    html: Optional[str] = None
    strategy: Optional[str] = None
    attempts: List[FetchAttempt] = field(default_factory=list)
    error: Optional[FetchFailure] = None

    @property
    def ok(self) -> bool:
        return self.html is not None


# ============================================================================
# Raw HTTP helpers
# ============================================================================

def _decode_chunked(data: bytes) -> bytes:
    body = bytearray()
    pos = 0
    while True:
        line_end = data.find(b"\r\n", pos)
        if line_end == -1:
            break
        size_token = data[pos:line_end].split(b";", 1)[0].strip()
        try:
            size = int(size_token, 16)
        except ValueError as e:
            raise ValueError(f"Malformed chunk size {size_token!r}") from e
        if size == 0:
            break
        start = line_end + 2
        body += data[start:start + size]
        pos = start + size + 2
    return bytes(body)


def parse_http_response(raw: bytes) -> Tuple[int, Dict[str, str], bytes]:
    """
    Split a raw HTTP/1.x response into (status, lowercase headers, body).

    Chunked bodies are de-chunked.

    Raises:
        ValueError: when the status line or header block is malformed
    """
    head, separator, body = raw.partition(b"\r\n\r\n")
    if not separator:
        raise ValueError("Malformed HTTP response: no header terminator")
    lines = head.decode("iso-8859-1").split("\r\n")
    parts = lines[0].split(" ", 2)
    if len(parts) < 2 or not parts[0].startswith("HTTP/") or not parts[1].isdigit():
        raise ValueError(f"Malformed status line: {lines[0]!r}")
    headers: Dict[str, str] = {}
    for line in lines[1:]:
        name, _, value = line.partition(":")
        if name:
            headers[name.strip().lower()] = value.strip()
    if "chunked" in headers.get("transfer-encoding", "").lower():
        body = _decode_chunked(body)
    return int(parts[1]), headers, body


def decode_body(body: bytes, headers: Dict[str, str]) -> str:
    match = re.search(r"charset=([\w-]+)", headers.get("content-type", ""), re.I)
    charset = match.group(1) if match else "utf-8"
    try:
        return body.decode(charset, errors="replace")
    except LookupError:
        return body.decode("utf-8", errors="replace")


# ============================================================================
# Engine
# ============================================================================

class ContentAcquisitionEngine:
    """Fetches page HTML through a cascade of strategies."""

    stage_name = "acquisition"

    def __init__(
        self,
        pool: Optional[BrowserPool] = None,
        settings: Optional[AcquisitionSettings] = None,
        session: Optional[requests.Session] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.pool = pool
        self.settings = settings or AcquisitionSettings()
        self.session = session or requests.Session()
        self._sleep = sleep

    def _policy(self, attempts: int) -> RetryPolicy:
        return RetryPolicy(
            max_attempts=attempts,
            base_delay=self.settings.backoff_base,
            max_delay=self.settings.backoff_max,
        )

    def strategies(self) -> List[Tuple[str, Callable[[str, Optional[Deadline]], Awaitable[str]], RetryPolicy]]:
        return [
            ("http", self.fetch_direct, self._policy(self.settings.http_attempts)),
            ("browser", self.fetch_with_browser, self._policy(self.settings.browser_attempts)),
            ("socket", self.fetch_with_socket, self._policy(self.settings.socket_attempts)),
        ]

    async def fetch(self, url: str, deadline: Optional[Deadline] = None) -> FetchResult:
        """
        Fetch HTML for a URL, stopping at the first strategy that succeeds.

        Returns:
            FetchResult with html set, or with error set once every strategy failed
        """
        attempts: List[FetchAttempt] = []

        for name, strategy, policy in self.strategies():
            if deadline is not None and deadline.expired:
                logger.warning(f"⚠️  Time budget exhausted before '{name}' strategy for {url}")
                break

            async def _attempt(number: int, name=name, strategy=strategy) -> str:
                started = time.monotonic()
                try:
                    timeout = deadline.timeout() if deadline is not None else None
                    html = await asyncio.wait_for(strategy(url, deadline), timeout=timeout)
                except FETCH_ERRORS as e:
                    attempts.append(FetchAttempt(
                        strategy=name, attempt=number, success=False,
                        error=f"{type(e).__name__}: {e}", elapsed=time.monotonic() - started,
                    ))
                    raise
                attempts.append(FetchAttempt(
                    strategy=name, attempt=number, success=True, elapsed=time.monotonic() - started,
                ))
                return html

            try:
                html = await policy.run(
                    _attempt,
                    description=f"{name} fetch of {url}",
                    retry_on=FETCH_ERRORS,
                    deadline=deadline,
                    sleep=self._sleep,
                )
            except FETCH_ERRORS as e:
                logger.warning(f"⚠️  '{name}' strategy failed for {url}: {type(e).__name__}: {e}")
                continue
            logger.info(f"✅ Fetched {url} via '{name}' ({len(html)} chars)")
            return FetchResult(url=url, html=html, strategy=name, attempts=attempts)

        failure = FetchFailure(url, f"All acquisition strategies failed for {url}", attempts)
        logger.error(f"❌ {failure}")
        return FetchResult(url=url, attempts=attempts, error=failure)

    # ------------------------------------------------------------------
    # Strategy 1: direct HTTP
    # ------------------------------------------------------------------

    def _get_direct(self, url: str, timeout: Optional[float]) -> str:
        response = self.session.get(
            url,
            params={"_": str(int(time.time() * 1000))},
            headers={"User-Agent": self.settings.user_agent, **BROWSER_HEADERS},
            timeout=timeout,
            allow_redirects=True,
        )
        if response.status_code >= 400:
            raise FetchFailure(url, f"HTTP {response.status_code}")
        content_type = response.headers.get("Content-Type", "").lower()
        if not any(kind in content_type for kind in HTML_CONTENT_TYPES):
            raise FetchFailure(url, f"Non-HTML content type '{content_type}'")
        if not response.text.strip():
            raise FetchFailure(url, "Empty response body")
        return response.text

    async def fetch_direct(self, url: str, deadline: Optional[Deadline] = None) -> str:
        timeout = deadline.timeout(self.settings.http_timeout) if deadline else self.settings.http_timeout
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, self._get_direct, url, timeout)

    # ------------------------------------------------------------------
    # Strategy 2: pooled headless browser
    # ------------------------------------------------------------------

    async def _route_request(self, route) -> None:
        if route.request.resource_type in self.settings.blocked_resource_types:
            await route.abort()
        else:
            await route.continue_()

    async def _partial_content(self, page) -> Optional[str]:
        try:
            html = await page.content()
        except PlaywrightError:
            return None
        return html if html_to_text(html) else None

    async def fetch_with_browser(self, url: str, deadline: Optional[Deadline] = None) -> str:
        if self.pool is None:
            raise FetchFailure(url, "No browser pool configured")
        navigation_timeout = self.settings.browser_navigation_timeout
        if deadline is not None:
            navigation_timeout = deadline.timeout(navigation_timeout)

        async with self.pool.lease() as browser:
            context = await browser.new_context(
                user_agent=self.settings.user_agent,
                viewport={"width": 1920, "height": 1080},
            )
            try:
                page = await context.new_page()
                await page.route("**/*", self._route_request)
                try:
                    await page.goto(url, wait_until="networkidle", timeout=navigation_timeout * 1000)
                    await self._sleep(self.settings.browser_settle_delay)
                    html = await page.content()
                except PlaywrightError as e:
                    partial = await self._partial_content(page)
                    if partial:
                        logger.warning(f"⚠️  Navigation to {url} failed ({e}); using partial page content")
                        return partial
                    raise
            finally:
                await context.close()

        if not html or not html.strip():
            raise FetchFailure(url, "Browser returned an empty document")
        return html

    # ------------------------------------------------------------------
    # Strategy 3: bare socket
    # ------------------------------------------------------------------

    async def _raw_get(self, url: str) -> Tuple[int, Dict[str, str], bytes]:
        parts = urlsplit(url)
        if parts.scheme not in ("http", "https") or not parts.hostname:
            raise FetchFailure(url, f"Unsupported URL for socket fetch: {url}")
        secure = parts.scheme == "https"
        port = parts.port or (443 if secure else 80)
        path = parts.path or "/"
        if parts.query:
            path += f"?{parts.query}"
        host_header = parts.hostname if parts.port is None else f"{parts.hostname}:{parts.port}"

        if secure:
            reader, writer = await asyncio.open_connection(
                parts.hostname, port, ssl=ssl.create_default_context(), server_hostname=parts.hostname
            )
        else:
            reader, writer = await asyncio.open_connection(parts.hostname, port)
        try:
            request = (
                f"GET {path} HTTP/1.1\r\n"
                f"Host: {host_header}\r\n"
                f"User-Agent: {self.settings.user_agent}\r\n"
                f"Accept: {BROWSER_HEADERS['Accept']}\r\n"
                f"Accept-Language: {BROWSER_HEADERS['Accept-Language']}\r\n"
                "Accept-Encoding: identity\r\n"
                "Connection: close\r\n\r\n"
            )
            writer.write(request.encode("utf-8"))
            await writer.drain()
            raw = await reader.read()
        finally:
            writer.close()
            try:
                await writer.wait_closed()
            except OSError as e:
                logger.debug(f"Socket close error for {url}: {e}")
        return parse_http_response(raw)

    async def fetch_with_socket(self, url: str, deadline: Optional[Deadline] = None) -> str:
        current = url
        timeout = deadline.timeout(self.settings.socket_timeout) if deadline else self.settings.socket_timeout
        for _ in range(self.settings.max_redirects + 1):
            status, headers, body = await asyncio.wait_for(self._raw_get(current), timeout=timeout)
            if status in REDIRECT_STATUSES and headers.get("location"):
                current = urljoin(current, headers["location"])
                logger.info(f"🔄 Following redirect to {current}")
                continue
            if status >= 400:
                raise FetchFailure(url, f"HTTP {status}")
            text = decode_body(body, headers)
            if not text.strip():
                raise FetchFailure(url, "Empty response body")
            return text
        raise FetchFailure(url, f"Too many redirects (>{self.settings.max_redirects})")
