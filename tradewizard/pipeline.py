"""
End-to-end website analysis.

AnalysisPipeline.analyze(url) runs acquisition -> extraction -> validation ->
enrichment under a per-URL time budget and returns an ExtractionResult.
Stages report through tagged StageResult values; a stage that blows up is
recorded as failed and the pipeline carries on with the entities it already has.
Only a total acquisition failure produces status "failed", and that result still
names the business after its domain.
"""

import logging
import re
import time
from typing import Awaitable, Callable, List, Optional
from urllib.parse import urlparse

from .browser_pool import BrowserPool
from .cache import FileStore, MemoryStore, ResultCache
from .categorization import CategoryConsolidationEngine
from .config import CacheSettings, PipelineSettings
from .consolidation import ProductConsolidationEngine
from .enrichment import EnrichmentEngine
from .extraction import EntityExtractionEngine, calculate_overall_confidence
from .models import (
    BusinessProfile,
    CategoryResult,
    EntityType,
    ExtractedEntity,
    ExtractionResult,
    ExtractionStatus,
    ProductVariant,
    QualityMetrics,
    StageReport,
    StageResult,
    StageStatus,
)
from .retry import Deadline, RetryPolicy
from .scraper import ContentAcquisitionEngine
from .services.completion import build_completion_client
from .services.embeddings import build_embedding_client
from .services.lookups import ComplianceClient, MarketIntelligenceClient
from .validation import ValidationEngine

logger = logging.getLogger(__name__)

_SCHEME = re.compile(r"^[a-zA-Z][a-zA-Z0-9+.-]*://")
_PRICE = re.compile(r"\d+(?:[.,]\d+)?")


def normalize_url(url: str) -> str:
    """Strip whitespace and default to https:// for bare domains."""
    url = (url or "").strip()
    if not url:
        raise ValueError("URL is required")
    if not _SCHEME.match(url):
        url = f"https://{url}"
    parsed = urlparse(url)
    if parsed.scheme not in ("http", "https") or not parsed.netloc:
        raise ValueError(f"Invalid URL: {url}")
    return url


def build_cache(settings: CacheSettings) -> ResultCache:
    if settings.directory:
        return ResultCache(FileStore(settings.directory), ttl=settings.ttl)
    return ResultCache(MemoryStore(max_entries=settings.max_entries), ttl=settings.ttl)


def _parse_price(price: Optional[str]) -> Optional[float]:
    if not price:
        return None
    match = _PRICE.search(price)
    return float(match.group(0).replace(",", ".")) if match else None


class AnalysisPipeline:
    """Owns the browser pool and the stage engines for a series of analyses."""

    def __init__(
        self,
        settings: Optional[PipelineSettings] = None,
        pool: Optional[BrowserPool] = None,
        acquisition: Optional[ContentAcquisitionEngine] = None,
        extraction: Optional[EntityExtractionEngine] = None,
        validation: Optional[ValidationEngine] = None,
        enrichment: Optional[EnrichmentEngine] = None,
        consolidation: Optional[ProductConsolidationEngine] = None,
        cache: Optional[ResultCache] = None,
        categorization: Optional[CategoryConsolidationEngine] = None,
    ):
        self.settings = settings or PipelineSettings()
        s = self.settings
        self.pool = pool or BrowserPool(s.browser_pool)
        self.acquisition = acquisition or ContentAcquisitionEngine(self.pool, s.acquisition)
        self.extraction = extraction or EntityExtractionEngine(
            build_completion_client(s.extraction_model, "extraction"), s.extraction, s.extraction_model
        )
        self.validation = validation or ValidationEngine(
            build_completion_client(s.validation_model, "validation"), s.validation, s.validation_model
        )
        if enrichment is None:
            lookup_policy = RetryPolicy(max_attempts=s.enrichment.max_attempts)
            enrichment = EnrichmentEngine(
                ComplianceClient(s.enrichment.compliance_url, s.enrichment.timeout, lookup_policy),
                MarketIntelligenceClient(s.enrichment.market_intelligence_url, s.enrichment.timeout, lookup_policy),
                s.enrichment,
            )
        self.enrichment = enrichment
        self.consolidation = consolidation or ProductConsolidationEngine(s.consolidation)
        self.cache = cache if cache is not None else build_cache(s.cache)
        self.categorization = categorization or CategoryConsolidationEngine(
            embeddings=build_embedding_client(s.embedding_model),
            completion=build_completion_client(s.extraction_model, "categorization"),
            store=self.cache.store,
            settings=s.categorization,
        )

    @classmethod
    def from_env(cls) -> "AnalysisPipeline":
        return cls(PipelineSettings.from_env())

    async def __aenter__(self) -> "AnalysisPipeline":
        self.pool.start()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    async def close(self) -> None:
        await self.pool.close()

    async def _run_stage(
        self,
        name: str,
        call: Callable[[], Awaitable[StageResult]],
        stages: List[StageReport],
        deadline: Optional[Deadline] = None,
    ) -> Optional[StageResult]:
        if deadline is not None and deadline.expired:
            logger.warning(f"⚠️  Skipping {name}: time budget exhausted")
            stages.append(StageReport(name=name, status=StageStatus.SKIPPED.value, error="Time budget exhausted"))
            return None
        started = time.monotonic()
        try:
            result = await call()
        except Exception as e:
            logger.error(f"❌ Stage {name} failed: {e}", exc_info=True)
            stages.append(StageReport(
                name=name, status=StageStatus.FAILURE.value, error=str(e), elapsed=time.monotonic() - started
            ))
            return None
        stages.append(StageReport(
            name=name, status=result.status.value, error=result.error, elapsed=time.monotonic() - started
        ))
        return result

    async def analyze(self, url: str, use_cache: bool = True) -> ExtractionResult:
        """
        Analyze a business website.

        Args:
            url: Website URL; bare domains get https://
            use_cache: Return a cached result when one is fresh

        Returns:
            ExtractionResult (status completed, partial or failed)

        Raises:
            ValueError: for an empty or malformed URL
        """
        url = normalize_url(url)
        started = time.monotonic()

        if use_cache:
            cached = self.cache.get(url)
            if cached is not None:
                logger.info(f"📋 Cache hit for {url}")
                cached.quality_metrics.from_cache = True
                return cached

        logger.info(f"🔄 Analyzing {url}")
        deadline = Deadline(self.settings.budget)
        stages: List[StageReport] = []

        fetch_started = time.monotonic()
        fetched = await self.acquisition.fetch(url, deadline)
        stages.append(StageReport(
            name=self.acquisition.stage_name,
            status=(StageStatus.SUCCESS if fetched.ok else StageStatus.FAILURE).value,
            error=str(fetched.error) if fetched.error else None,
            elapsed=time.monotonic() - fetch_started,
        ))
        if not fetched.ok:
            return self._failed_result(url, str(fetched.error), len(fetched.attempts), stages, started)

        extraction = await self._run_stage(
            self.extraction.stage_name, lambda: self.extraction.extract(fetched.html, url, deadline), stages
        )
        if extraction is not None:
            entities = extraction.output
        else:
            entities = self.extraction.extract_partial(fetched.html, url)

        validation = await self._run_stage(
            self.validation.stage_name, lambda: self.validation.validate(entities, url, deadline), stages, deadline
        )
        if validation is not None:
            entities = validation.output

        enrichment = await self._run_stage(
            self.enrichment.stage_name, lambda: self.enrichment.enrich(entities, url, deadline), stages, deadline
        )
        if enrichment is not None:
            entities = enrichment.output

        json_parsed = bool(extraction and extraction.metadata.get("json_parsed"))
        has_products = any(e.type == EntityType.PRODUCT for e in entities)
        completed = extraction is not None and extraction.status == StageStatus.SUCCESS
        status = ExtractionStatus.COMPLETED if completed else ExtractionStatus.PARTIAL

        result = ExtractionResult(
            source_url=url,
            raw_content=extraction.metadata.get("raw_content", "") if extraction else "",
            entities=entities,
            confidence=calculate_overall_confidence(entities),
            processing_time=time.monotonic() - started,
            status=status,
            error=extraction.error if extraction else "Extraction stage failed",
            quality_metrics=QualityMetrics(
                extraction_attempts=len(fetched.attempts),
                has_products=has_products,
                has_business=any(e.type == EntityType.BUSINESS for e in entities),
                partial_extraction=status == ExtractionStatus.PARTIAL,
                json_parsed=json_parsed,
                fallback_mode=not json_parsed,
                error_type=None if completed else ("no_products" if json_parsed else "fallback_extraction"),
            ),
            stages=stages,
        )
        self.cache.set(url, result)
        logger.info(
            f"✅ Analysis of {url} {status.value}: {len(entities)} entities, "
            f"confidence {result.confidence:.2f}, {result.processing_time:.1f}s"
        )
        return result

    def _failed_result(
        self, url: str, error: str, attempts: int, stages: List[StageReport], started: float
    ) -> ExtractionResult:
        entities = self.extraction.extract_partial("", url)
        logger.error(f"❌ Analysis of {url} failed: {error}")
        return ExtractionResult(
            source_url=url,
            entities=entities,
            confidence=calculate_overall_confidence(entities),
            processing_time=time.monotonic() - started,
            status=ExtractionStatus.FAILED,
            error=error,
            quality_metrics=QualityMetrics(
                extraction_attempts=attempts,
                has_business=True,
                partial_extraction=True,
                fallback_mode=True,
                error_type="fetch_failure",
            ),
            stages=stages,
        )

    def build_profile(self, result: ExtractionResult) -> BusinessProfile:
        """Condense a result into a BusinessProfile with consolidated product groups."""
        business = next(e for e in result.entities if e.type == EntityType.BUSINESS)
        location = next((e for e in result.entities if e.type == EntityType.LOCATION), None)
        products: List[ExtractedEntity] = result.entities_of(EntityType.PRODUCT)

        variants = [
            ProductVariant(
                id=p.id,
                name=p.name,
                description=p.attributes.description,
                price=_parse_price(p.attributes.price),
                attributes={"category": p.attributes.category} if p.attributes.category else {},
                selected=p.verified,
            )
            for p in products
        ]
        groups = self.consolidation.consolidate(variants).output or []

        return BusinessProfile(
            source_url=result.source_url,
            business_name=business.name,
            description=business.attributes.description,
            business_type=business.attributes.business_type,
            business_confidence=business.confidence,
            extracted_from_url=business.attributes.extracted_from_url,
            location=location.attributes if location else None,
            contacts=result.entities_of(EntityType.CONTACT),
            products=products,
            product_groups=groups,
            confidence=result.confidence,
            status=result.status,
        )

    async def analyze_profile(self, url: str, use_cache: bool = True) -> BusinessProfile:
        return self.build_profile(await self.analyze(url, use_cache=use_cache))

    async def categorize(self, variants: List[ProductVariant]) -> StageResult[List[CategoryResult]]:
        """Sort products into trade categories under the pipeline's time budget."""
        return await self.categorization.consolidate(variants, Deadline(self.settings.budget))
