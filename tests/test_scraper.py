"""
Unit tests for ContentAcquisitionEngine.

Strategies are replaced with AsyncMocks for cascade tests; the direct HTTP
strategy runs against a mocked requests session and the browser strategy
against mocked Playwright objects.
"""

from unittest.mock import AsyncMock, MagicMock

import pytest
import requests
from playwright.async_api import Error as PlaywrightError

from tradewizard.browser_pool import BrowserPool
from tradewizard.errors import FetchFailure
from tradewizard.scraper import ContentAcquisitionEngine, decode_body, parse_http_response

URL = "https://example.com"
PAGE = "<html><body><h1>Example Shop</h1></body></html>"


def _engine(**kwargs) -> ContentAcquisitionEngine:
    kwargs.setdefault("session", MagicMock())
    kwargs.setdefault("sleep", AsyncMock())
    return ContentAcquisitionEngine(**kwargs)


def _response(status=200, content_type="text/html; charset=utf-8", text=PAGE):
    response = MagicMock()
    response.status_code = status
    response.headers = {"Content-Type": content_type}
    response.text = text
    return response


class TestRawHttp:
    """Test raw response parsing for the socket strategy."""

    def test_parse_plain_response(self):
        raw = b"HTTP/1.1 200 OK\r\nContent-Type: text/html\r\nX-Test: a:b\r\n\r\n<html>hi</html>"

        status, headers, body = parse_http_response(raw)

        assert status == 200
        assert headers["content-type"] == "text/html"
        assert headers["x-test"] == "a:b"
        assert body == b"<html>hi</html>"

    def test_parse_chunked_response(self):
        raw = (
            b"HTTP/1.1 200 OK\r\nTransfer-Encoding: chunked\r\n\r\n"
            b"6\r\n<html>\r\n8\r\nhi there\r\n0\r\n\r\n"
        )

        _, _, body = parse_http_response(raw)

        assert body == b"<html>hi there"

    @pytest.mark.parametrize("raw", [b"garbage", b"NOT HTTP\r\n\r\n", b"HTTP/1.1 abc\r\n\r\n"])
    def test_malformed_response(self, raw):
        with pytest.raises(ValueError):
            parse_http_response(raw)

    def test_decode_body_uses_charset(self):
        body = "café".encode("latin-1")

        assert decode_body(body, {"content-type": "text/html; charset=latin-1"}) == "café"
        assert decode_body(b"plain", {}) == "plain"


class TestCascade:
    """Test strategy ordering and retries."""

    @pytest.mark.asyncio
    async def test_first_success_wins(self):
        engine = _engine()
        engine.fetch_direct = AsyncMock(return_value=PAGE)
        engine.fetch_with_browser = AsyncMock()

        result = await engine.fetch(URL)

        assert result.ok
        assert result.strategy == "http"
        engine.fetch_with_browser.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_falls_through_to_browser(self):
        engine = _engine()
        engine.fetch_direct = AsyncMock(side_effect=FetchFailure(URL, "HTTP 503"))
        engine.fetch_with_browser = AsyncMock(return_value=PAGE)
        engine.fetch_with_socket = AsyncMock()

        result = await engine.fetch(URL)

        assert result.strategy == "browser"
        assert result.html == PAGE
        assert [(a.strategy, a.success) for a in result.attempts] == [("http", False), ("browser", True)]
        engine.fetch_with_socket.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_browser_retried_with_backoff(self):
        sleep = AsyncMock()
        engine = _engine(sleep=sleep)
        engine.fetch_direct = AsyncMock(side_effect=requests.ConnectionError("refused"))
        engine.fetch_with_browser = AsyncMock(
            side_effect=[PlaywrightError("net::ERR_TIMED_OUT"), PlaywrightError("net::ERR_TIMED_OUT"), PAGE]
        )

        result = await engine.fetch(URL)

        assert result.strategy == "browser"
        assert engine.fetch_with_browser.await_count == 3
        assert [c.args[0] for c in sleep.await_args_list] == [1.0, 2.0]

    @pytest.mark.asyncio
    async def test_all_strategies_fail(self):
        engine = _engine()
        engine.fetch_direct = AsyncMock(side_effect=requests.ConnectionError("refused"))
        engine.fetch_with_browser = AsyncMock(side_effect=PlaywrightError("crash"))
        engine.fetch_with_socket = AsyncMock(side_effect=OSError("unreachable"))

        result = await engine.fetch(URL)

        assert not result.ok
        assert isinstance(result.error, FetchFailure)
        assert len(result.attempts) == 5
        assert [a.strategy for a in result.attempts] == ["http", "browser", "browser", "browser", "socket"]
        assert all(not a.success for a in result.attempts)


class TestDirectHttp:
    """Test the requests-based strategy."""

    @pytest.mark.asyncio
    async def test_html_response_accepted(self):
        session = MagicMock()
        session.get.return_value = _response()
        engine = _engine(session=session)

        html = await engine.fetch_direct(URL)

        assert html == PAGE
        kwargs = session.get.call_args.kwargs
        assert "_" in kwargs["params"]
        assert "Mozilla" in kwargs["headers"]["User-Agent"]

    @pytest.mark.asyncio
    @pytest.mark.parametrize("response", [
        _response(status=404),
        _response(content_type="application/json", text="{}"),
        _response(text="   "),
    ])
    async def test_rejected_responses(self, response):
        session = MagicMock()
        session.get.return_value = response
        engine = _engine(session=session)

        with pytest.raises(FetchFailure):
            await engine.fetch_direct(URL)


class TestBrowserStrategy:
    """Test the Playwright strategy with mocked browser objects."""

    def _browser(self, goto_error=None, content=PAGE):
        page = MagicMock()
        page.route = AsyncMock()
        page.goto = AsyncMock(side_effect=goto_error)
        page.content = AsyncMock(return_value=content)
        context = MagicMock()
        context.new_page = AsyncMock(return_value=page)
        context.close = AsyncMock()
        browser = MagicMock()
        browser.new_context = AsyncMock(return_value=context)
        return browser, context, page

    @pytest.mark.asyncio
    async def test_page_content_returned(self):
        browser, context, page = self._browser()
        pool = BrowserPool(launcher=AsyncMock(return_value=browser))
        sleep = AsyncMock()
        engine = _engine(pool=pool, sleep=sleep)

        html = await engine.fetch_with_browser(URL)

        assert html == PAGE
        assert page.goto.call_args.kwargs["wait_until"] == "networkidle"
        sleep.assert_awaited_once_with(2.0)
        context.close.assert_awaited_once()
        assert pool.idle_count == 1

    @pytest.mark.asyncio
    async def test_partial_content_after_navigation_error(self):
        partial = "<html><body><h1>Partial Shop</h1></body></html>"
        browser, context, _ = self._browser(goto_error=PlaywrightError("Timeout 60000ms exceeded"), content=partial)
        pool = BrowserPool(launcher=AsyncMock(return_value=browser))
        engine = _engine(pool=pool)

        html = await engine.fetch_with_browser(URL)

        assert "Partial Shop" in html
        context.close.assert_awaited_once()
        assert pool.idle_count == 1

    @pytest.mark.asyncio
    async def test_empty_partial_content_raises(self):
        browser, context, _ = self._browser(
            goto_error=PlaywrightError("Timeout"), content="<html><head></head><body></body></html>"
        )
        pool = BrowserPool(launcher=AsyncMock(return_value=browser))
        engine = _engine(pool=pool)

        with pytest.raises(PlaywrightError):
            await engine.fetch_with_browser(URL)
        context.close.assert_awaited_once()
        assert pool.idle_count == 1

    @pytest.mark.asyncio
    async def test_no_pool_configured(self):
        with pytest.raises(FetchFailure):
            await _engine().fetch_with_browser(URL)

    @pytest.mark.asyncio
    async def test_heavy_resources_blocked(self):
        engine = _engine()
        image, document = MagicMock(), MagicMock()
        image.request.resource_type = "image"
        document.request.resource_type = "document"
        image.abort, image.continue_ = AsyncMock(), AsyncMock()
        document.abort, document.continue_ = AsyncMock(), AsyncMock()

        await engine._route_request(image)
        await engine._route_request(document)

        image.abort.assert_awaited_once()
        document.continue_.assert_awaited_once()
        document.abort.assert_not_awaited()


class TestSocketStrategy:
    """Test redirect handling of the socket strategy."""

    @pytest.mark.asyncio
    async def test_redirect_followed(self):
        engine = _engine()
        engine._raw_get = AsyncMock(side_effect=[
            (301, {"location": "/home"}, b""),
            (200, {"content-type": "text/html"}, PAGE.encode()),
        ])

        html = await engine.fetch_with_socket(URL)

        assert html == PAGE
        assert engine._raw_get.await_args_list[1].args[0] == "https://example.com/home"

    @pytest.mark.asyncio
    async def test_redirect_loop_fails(self):
        engine = _engine()
        engine._raw_get = AsyncMock(return_value=(302, {"location": "/loop"}, b""))

        with pytest.raises(FetchFailure, match="Too many redirects"):
            await engine.fetch_with_socket(URL)

        assert engine._raw_get.await_count == 6

    @pytest.mark.asyncio
    async def test_error_status(self):
        engine = _engine()
        engine._raw_get = AsyncMock(return_value=(500, {}, b"oops"))

        with pytest.raises(FetchFailure):
            await engine.fetch_with_socket(URL)
