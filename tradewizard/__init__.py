"""
TradeWizard website analysis pipeline.

Turns a business website into a confidence-scored catalog of business facts and
products for export-compliance work:
- scraper / browser_pool: tiered content acquisition
- extraction: model-based entity extraction with heuristic fallback
- validation: secondary model validation with minimum-result preservation
- enrichment: compliance and market-intelligence lookups
- consolidation: grouping of product variants into product families
- pipeline: the end-to-end AnalysisPipeline
"""

from .models import (
    BusinessProfile,
    EntityType,
    ExtractedEntity,
    ExtractionResult,
    ExtractionStatus,
    ProductGroup,
    ProductVariant,
    StageResult,
    StageStatus,
)
from .pipeline import AnalysisPipeline

__version__ = "0.1.0"

__all__ = [
    "AnalysisPipeline",
    "BusinessProfile",
    "EntityType",
    "ExtractedEntity",
    "ExtractionResult",
    "ExtractionStatus",
    "ProductGroup",
    "ProductVariant",
    "StageResult",
    "StageStatus",
]
