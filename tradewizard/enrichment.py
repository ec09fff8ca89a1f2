"""
Product enrichment from the compliance and market-intelligence services.

Products are enriched concurrently through a bounded worker pool. Each product
calls the compliance service, then the market service (passing the HS code it
just obtained). A failed call never aborts its siblings: the product gets explicit
fallback values and an error marker instead.
"""

import asyncio
import logging
import re
from typing import List, Optional

from .config import EnrichmentSettings
from .errors import TradeWizardError
from .models import (
    ComplianceRequest,
    CrossReferenceResult,
    EnrichmentFlagsAttributes,
    EntityType,
    ExtractedEntity,
    MarketIntelligenceRequest,
    StageResult,
    StageStatus,
)
from .retry import Deadline
from .services.lookups import ComplianceClient, MarketIntelligenceClient

logger = logging.getLogger(__name__)

COMPLIANCE_FALLBACK_NOTES = "Failed to retrieve compliance data. Using estimated values."
UNKNOWN = "Unknown"

# HS chapter (first two digits) -> keywords expected in a consistent market category
HS_CHAPTER_CATEGORIES = {
    "04": ["dairy", "honey", "egg", "milk", "cheese", "food"],
    "08": ["fruit", "nut", "food"],
    "09": ["coffee", "tea", "spice", "food"],
    "16": ["meat", "fish", "sausage", "prepared", "food"],
    "17": ["sugar", "confectionery", "candy", "food"],
    "19": ["bakery", "cereal", "pasta", "snack", "food"],
    "20": ["vegetable", "fruit", "preserved", "food"],
    "21": ["sauce", "condiment", "supplement", "food"],
    "22": ["beverage", "drink", "wine", "spirits", "water"],
    "30": ["pharmaceutical", "medicine", "health"],
    "33": ["cosmetic", "beauty", "fragrance", "personal care"],
    "42": ["leather", "bag", "luggage", "accessories"],
    "61": ["apparel", "clothing", "textile"],
    "62": ["apparel", "clothing", "textile"],
    "64": ["footwear", "shoe"],
    "84": ["electronics", "machinery", "computer"],
    "85": ["electronics", "electrical", "device"],
    "94": ["furniture", "lighting", "bedding"],
    "95": ["toy", "game", "sport"],
}


class EnrichmentEngine:
    """Fans product entities out to the lookup services."""

    stage_name = "enrichment"

    def __init__(
        self,
        compliance: Optional[ComplianceClient] = None,
        market: Optional[MarketIntelligenceClient] = None,
        settings: Optional[EnrichmentSettings] = None,
    ):
        self.compliance = compliance
        self.market = market
        self.settings = settings or EnrichmentSettings()

    @staticmethod
    def read_flags(entities: List[ExtractedEntity]) -> EnrichmentFlagsAttributes:
        """Enrichment flags from the metadata entity; everything enabled when absent."""
        for entity in entities:
            if entity.type == EntityType.METADATA and isinstance(entity.attributes, EnrichmentFlagsAttributes):
                return entity.attributes
        return EnrichmentFlagsAttributes()

    async def enrich(
        self, entities: List[ExtractedEntity], url: str, deadline: Optional[Deadline] = None
    ) -> StageResult[List[ExtractedEntity]]:
        """Enrich every product in place and return the same list."""
        if not self.settings.enabled:
            return StageResult(stage=self.stage_name, status=StageStatus.SKIPPED, output=entities,
                               error="Enrichment disabled")
        products = [e for e in entities if e.type == EntityType.PRODUCT]
        flags = self.read_flags(entities)
        if not products or not (flags.needs_compliance_data or flags.needs_market_intelligence):
            return StageResult(stage=self.stage_name, status=StageStatus.SKIPPED, output=entities,
                               error="No products require enrichment")

        logger.info(f"🔄 Enriching {len(products)} product(s) for {url}")
        semaphore = asyncio.Semaphore(max(1, self.settings.concurrency))

        async def _bounded(product: ExtractedEntity) -> bool:
            async with semaphore:
                return await self.enrich_product(product, flags, deadline)

        results = await asyncio.gather(*(_bounded(p) for p in products), return_exceptions=True)

        failed = 0
        for product, result in zip(products, results):
            if isinstance(result, BaseException):
                logger.error(f"❌ Unexpected enrichment error for '{product.name}': {result}")
                product.attributes.extensions["enrichment_error"] = str(result)
                self._fallback_unfinished(product, flags, result)
                failed += 1
            elif not result:
                failed += 1

        if failed == 0:
            status = StageStatus.SUCCESS
        elif failed < len(products):
            status = StageStatus.PARTIAL
        else:
            status = StageStatus.FAILURE
        logger.info(f"✅ Enrichment finished: {len(products) - failed}/{len(products)} products fully enriched")
        return StageResult(
            stage=self.stage_name,
            status=status,
            output=entities,
            error=f"{failed} product(s) used fallback values" if failed else None,
            metadata={"products": len(products), "failed": failed},
        )

    async def enrich_product(
        self, product: ExtractedEntity, flags: EnrichmentFlagsAttributes, deadline: Optional[Deadline] = None
    ) -> bool:
        """Returns False when any lookup fell back to estimated values."""
        ok = True
        if flags.needs_compliance_data and self.compliance is not None:
            ok = await self._apply_compliance(product, deadline) and ok
        if flags.needs_market_intelligence and self.market is not None:
            ok = await self._apply_market(product, deadline) and ok
        if self.settings.enable_cross_referencing:
            self.cross_reference(product)
        return ok

    async def _apply_compliance(self, product: ExtractedEntity, deadline: Optional[Deadline]) -> bool:
        attributes = product.attributes
        request = ComplianceRequest(
            product_name=product.name,
            description=attributes.description or "",
            category=attributes.category or "",
            product_type=attributes.product_type or "",
            keywords=attributes.keywords,
        )
        try:
            response = await self.compliance.lookup(request, deadline)
        except TradeWizardError as e:
            logger.warning(f"⚠️  Compliance lookup failed for '{product.name}': {e}")
            self._compliance_fallback(product, e)
            return False

        attributes.hs_code = response.hs_code or attributes.potential_hs_code
        attributes.required_documents = list(response.required_documents)
        attributes.tariff_rates = dict(response.tariff_rates)
        attributes.compliance_notes = response.notes
        attributes.compliance_confidence = response.confidence
        product.confidence = (product.confidence + response.confidence) / 2
        product.touch()
        return True

    async def _apply_market(self, product: ExtractedEntity, deadline: Optional[Deadline]) -> bool:
        attributes = product.attributes
        request = MarketIntelligenceRequest(
            product_name=product.name,
            description=attributes.description or "",
            category=attributes.category or "",
            product_type=attributes.product_type or "",
            keywords=attributes.keywords,
            hs_code=attributes.hs_code,
        )
        try:
            response = await self.market.lookup(request, deadline)
        except TradeWizardError as e:
            logger.warning(f"⚠️  Market lookup failed for '{product.name}': {e}")
            self._market_fallback(product, e)
            return False

        attributes.market_size = response.market_size
        attributes.market_growth = response.market_growth
        attributes.competitors = list(response.competitors)
        attributes.market_category = response.category or attributes.category
        attributes.market_trends = list(response.trends)
        attributes.market_confidence = response.confidence
        product.confidence = (product.confidence + response.confidence) / 2
        product.touch()
        return True

    def _compliance_fallback(self, product: ExtractedEntity, error: BaseException) -> None:
        attributes = product.attributes
        attributes.compliance_error = str(error) or type(error).__name__
        attributes.hs_code = attributes.hs_code or attributes.potential_hs_code
        attributes.required_documents = []
        attributes.tariff_rates = {}
        attributes.compliance_notes = COMPLIANCE_FALLBACK_NOTES
        attributes.compliance_confidence = self.settings.fallback_confidence
        product.touch()

    def _market_fallback(self, product: ExtractedEntity, error: BaseException) -> None:
        attributes = product.attributes
        attributes.market_error = str(error) or type(error).__name__
        attributes.market_size = UNKNOWN
        attributes.market_growth = UNKNOWN
        attributes.competitors = []
        attributes.market_category = attributes.category
        attributes.market_trends = []
        attributes.market_confidence = self.settings.fallback_confidence
        product.touch()

    def _fallback_unfinished(
        self, product: ExtractedEntity, flags: EnrichmentFlagsAttributes, error: BaseException
    ) -> None:
        """Mark the lookups an unexpected error left without a result."""
        attributes = product.attributes
        if flags.needs_compliance_data and self.compliance is not None and attributes.compliance_confidence is None:
            self._compliance_fallback(product, error)
        if flags.needs_market_intelligence and self.market is not None and attributes.market_confidence is None:
            self._market_fallback(product, error)

    def cross_reference(self, product: ExtractedEntity) -> Optional[CrossReferenceResult]:
        """
        Check that the HS chapter agrees with the market category.

        Inconsistent products lose 20% confidence, consistent ones gain 10%
        (capped at 1.0). Chapters without a keyword mapping are recorded as
        undetermined and leave confidence alone.
        """
        attributes = product.attributes
        if not attributes.hs_code or not attributes.market_category or attributes.market_error:
            return None

        chapter = re.sub(r"\D", "", attributes.hs_code)[:2]
        keywords = HS_CHAPTER_CATEGORIES.get(chapter)
        if keywords is None:
            result = CrossReferenceResult(
                is_consistent=None,
                notes=f"HS chapter {chapter or '?'} has no category mapping; consistency not checked",
            )
        else:
            haystack = " ".join(
                filter(None, [attributes.market_category, attributes.product_type, attributes.category])
            ).lower()
            if any(keyword in haystack for keyword in keywords):
                result = CrossReferenceResult(is_consistent=True, notes=f"HS chapter {chapter} matches market category")
                product.confidence = min(1.0, product.confidence * self.settings.consistency_boost)
            else:
                result = CrossReferenceResult(
                    is_consistent=False,
                    notes=(
                        f"HS code {attributes.hs_code} (chapter {chapter}) is inconsistent with "
                        f"market category '{attributes.market_category}'"
                    ),
                )
                product.confidence = product.confidence * self.settings.inconsistency_penalty
                logger.warning(f"⚠️  {result.notes} for '{product.name}'")
        attributes.cross_reference = result
        product.touch()
        return result
