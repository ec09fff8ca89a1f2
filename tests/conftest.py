"""
Shared fixtures: in-process fakes for every external collaborator.
"""

import pytest

from tradewizard.browser_pool import BrowserPool
from tradewizard.cache import MemoryStore, ResultCache
from tradewizard.config import EnrichmentSettings, PipelineSettings
from tradewizard.errors import FetchFailure
from tradewizard.models import EntityType, ExtractedEntity, ProductAttributes
from tradewizard.pipeline import AnalysisPipeline
from tradewizard.scraper import FetchAttempt, FetchResult
from tradewizard.services.completion import CompletionClient


HONEY_HTML = """
<html>
  <head><title>Organic Honey Co</title><style>body { color: red; }</style></head>
  <body>
    <nav><a href="/">Home</a> <a href="/cart">Cart</a></nav>
    <div class="product">
      <h2>Organic Honey 500g</h2>
      <p>Raw wildflower honey from local hives.</p>
    </div>
    <script>var tracking = function() { return 1; };</script>
  </body>
</html>
"""


class FakeCompletion(CompletionClient):
    """Returns a canned answer (or raises) and records every request."""

    name = "fake"

    def __init__(self, response: str = "", error: Exception = None):
        self.response = response
        self.error = error
        self.calls = []

    async def complete(self, messages, temperature, max_tokens, deadline=None):
        self.calls.append({"messages": messages, "temperature": temperature, "max_tokens": max_tokens})
        if self.error is not None:
            raise self.error
        return self.response


class FakeAcquisition:
    """Serves fixed HTML, or fails every strategy when html is None."""

    stage_name = "acquisition"

    def __init__(self, html: str = None):
        self.html = html
        self.calls = 0

    async def fetch(self, url, deadline=None):
        self.calls += 1
        if self.html is None:
            attempts = [FetchAttempt(strategy="http", attempt=1, success=False, error="ConnectionError: refused")]
            return FetchResult(url=url, attempts=attempts,
                               error=FetchFailure(url, f"All acquisition strategies failed for {url}", attempts))
        return FetchResult(url=url, html=self.html, strategy="http",
                           attempts=[FetchAttempt(strategy="http", attempt=1, success=True)])


def make_product(name: str, confidence: float = 0.6, **attributes) -> ExtractedEntity:
    return ExtractedEntity(
        type=EntityType.PRODUCT,
        name=name,
        value=name,
        confidence=confidence,
        source="https://example.com",
        attributes=ProductAttributes(**attributes),
    )


def make_business(name: str = "Example Traders", confidence: float = 0.8) -> ExtractedEntity:
    return ExtractedEntity(type=EntityType.BUSINESS, name=name, value=name, confidence=confidence,
                           source="https://example.com")


@pytest.fixture
def honey_html():
    return HONEY_HTML


@pytest.fixture
def product_factory():
    return make_product


@pytest.fixture
def business_factory():
    return make_business


@pytest.fixture
def fake_completion():
    def _make(response: str = "", error: Exception = None) -> FakeCompletion:
        return FakeCompletion(response=response, error=error)
    return _make


@pytest.fixture
def fake_acquisition():
    def _make(html: str = None) -> FakeAcquisition:
        return FakeAcquisition(html=html)
    return _make


@pytest.fixture
def pipeline_factory():
    """Pipeline with no models configured, enrichment off and an in-memory cache."""
    def _make(acquisition, **overrides) -> AnalysisPipeline:
        settings = overrides.pop("settings", None) or PipelineSettings(
            enrichment=EnrichmentSettings(enabled=False)
        )
        overrides.setdefault("cache", ResultCache(MemoryStore()))
        overrides.setdefault("pool", BrowserPool(launcher=_no_browser))
        return AnalysisPipeline(settings, acquisition=acquisition, **overrides)
    return _make


async def _no_browser():
    raise RuntimeError("Browser launches are not allowed in tests")
