"""
Pipeline configuration.

Values come from the environment (a local .env file is loaded with python-dotenv)
and are held in pydantic models so each engine receives only its own section.
The numeric defaults are empirically tuned; override them per deployment.
"""

import logging
import os
from typing import Optional

import dotenv
from pydantic import BaseModel, Field

dotenv.load_dotenv()

DEFAULT_USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
)


def log_level() -> int:
    """Logging level named by LOG_LEVEL, INFO when unset or unknown."""
    level = logging.getLevelName(os.getenv("LOG_LEVEL", "INFO").strip().upper())
    return level if isinstance(level, int) else logging.INFO


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None or raw == "":
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    return float(raw) if raw else default


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    return int(raw) if raw else default


class BrowserPoolSettings(BaseModel):
    max_size: int = 3
    idle_ttl: float = Field(30 * 60, description="Seconds before an idle browser is closed")
    sweep_interval: float = Field(5 * 60, description="Seconds between idle sweeps")
    headless: bool = True


class AcquisitionSettings(BaseModel):
    user_agent: str = DEFAULT_USER_AGENT
    http_timeout: float = 30.0
    http_attempts: int = 1
    browser_attempts: int = 3
    browser_navigation_timeout: float = 60.0
    browser_settle_delay: float = 2.0
    socket_timeout: float = 20.0
    socket_attempts: int = 1
    max_redirects: int = 5
    backoff_base: float = 1.0
    backoff_max: float = 10.0
    blocked_resource_types: tuple = ("image", "stylesheet", "font", "media")


class CompletionSettings(BaseModel):
    api_key: Optional[str] = None
    base_url: Optional[str] = None
    model: str = "gpt-4o-mini"
    temperature: float = 0.2
    max_tokens: int = 4000
    timeout: float = 60.0
    max_attempts: int = 3


class ExtractionSettings(BaseModel):
    max_content_chars: int = 20000
    general_threshold: float = 0.2
    product_threshold: float = 0.3
    llm_business_default_confidence: float = 0.5
    url_business_confidence: float = 0.6
    partial_business_confidence: float = 0.7
    heuristic_product_confidence: float = 0.4
    max_heuristic_products: int = 15


class ValidationSettings(BaseModel):
    verification_threshold: float = 0.35
    min_preserved: int = 2
    preserve_ratio: float = 0.3
    # weights applied to the validator's confidence; they sum to 1.0
    weights: tuple = (0.4, 0.3, 0.3)


class EnrichmentSettings(BaseModel):
    enabled: bool = True
    enable_cross_referencing: bool = False
    compliance_url: str = "http://localhost:3001/api/compliance"
    market_intelligence_url: str = "http://localhost:3002/api/market-intelligence"
    timeout: float = 10.0
    max_attempts: int = 1
    concurrency: int = 5
    fallback_confidence: float = 0.2
    inconsistency_penalty: float = 0.8
    consistency_boost: float = 1.1


class ConsolidationSettings(BaseModel):
    similarity_threshold: float = 0.75
    compatibility_gate: float = 0.5
    enable_fuzzy_matching: bool = True
    max_variants_per_group: int = 10
    majority_ratio: float = 0.3
    name_weight: float = 0.5
    variant_weight: float = 0.3
    attribute_weight: float = 0.2


class EmbeddingSettings(BaseModel):
    api_key: Optional[str] = None
    base_url: Optional[str] = None
    model: str = "text-embedding-3-small"
    dimensions: Optional[int] = Field(None, description="Reduced vector size; model default when unset")
    timeout: float = 30.0
    max_attempts: int = 3


class CategorizationSettings(BaseModel):
    similarity_threshold: float = Field(0.75, description="Average-linkage similarity needed to merge clusters")
    confidence_threshold: float = 0.75
    enable_llm: bool = True
    use_caching: bool = True
    cache_ttl: float = 30 * 24 * 60 * 60
    batch_size: int = 10
    temperature: float = 0.2
    max_tokens: int = 2000
    size_bonus_per_product: float = 0.02
    max_size_bonus: float = 0.1
    max_confidence: float = 0.98


class CacheSettings(BaseModel):
    ttl: float = 24 * 60 * 60
    max_entries: int = 100
    directory: Optional[str] = None


class PipelineSettings(BaseModel):
    """All settings for one AnalysisPipeline."""
    budget: Optional[float] = Field(120.0, description="Per-URL wall-clock budget in seconds")
    browser_pool: BrowserPoolSettings = Field(default_factory=BrowserPoolSettings)
    acquisition: AcquisitionSettings = Field(default_factory=AcquisitionSettings)
    extraction_model: CompletionSettings = Field(default_factory=CompletionSettings)
    validation_model: CompletionSettings = Field(
        default_factory=lambda: CompletionSettings(
            base_url="https://api.perplexity.ai", model="sonar", temperature=0.1, max_tokens=2000
        )
    )
    extraction: ExtractionSettings = Field(default_factory=ExtractionSettings)
    validation: ValidationSettings = Field(default_factory=ValidationSettings)
    enrichment: EnrichmentSettings = Field(default_factory=EnrichmentSettings)
    consolidation: ConsolidationSettings = Field(default_factory=ConsolidationSettings)
    categorization: CategorizationSettings = Field(default_factory=CategorizationSettings)
    embedding_model: EmbeddingSettings = Field(default_factory=EmbeddingSettings)
    cache: CacheSettings = Field(default_factory=CacheSettings)

    @classmethod
    def from_env(cls) -> "PipelineSettings":
        """Build settings from environment variables."""
        budget = os.getenv("PIPELINE_BUDGET_SECONDS")
        return cls(
            budget=float(budget) if budget else 120.0,
            browser_pool=BrowserPoolSettings(
                max_size=_env_int("BROWSER_POOL_SIZE", 3),
                headless=_env_bool("BROWSER_HEADLESS", True),
            ),
            acquisition=AcquisitionSettings(
                http_timeout=_env_float("HTTP_TIMEOUT_SECONDS", 30.0),
                user_agent=os.getenv("SCRAPER_USER_AGENT", DEFAULT_USER_AGENT),
            ),
            extraction_model=CompletionSettings(
                api_key=os.getenv("OPENAI_API_KEY"),
                base_url=os.getenv("OPENAI_BASE_URL") or None,
                model=os.getenv("OPENAI_MODEL", "gpt-4o-mini"),
                max_tokens=_env_int("AI_MODEL_MAX_TOKENS", 4000),
            ),
            validation_model=CompletionSettings(
                api_key=os.getenv("PERPLEXITY_API_KEY"),
                base_url=os.getenv("PERPLEXITY_BASE_URL", "https://api.perplexity.ai"),
                model=os.getenv("PERPLEXITY_MODEL", "sonar"),
                temperature=0.1,
                max_tokens=2000,
            ),
            enrichment=EnrichmentSettings(
                enabled=_env_bool("ENABLE_ENRICHMENT", True),
                enable_cross_referencing=_env_bool("ENABLE_CROSS_REFERENCING", False),
                compliance_url=os.getenv("COMPLIANCE_MCP_URL", "http://localhost:3001/api/compliance"),
                market_intelligence_url=os.getenv(
                    "MARKET_INTELLIGENCE_MCP_URL", "http://localhost:3002/api/market-intelligence"
                ),
            ),
            cache=CacheSettings(
                ttl=_env_float("CACHE_TTL_SECONDS", 24 * 60 * 60),
                directory=os.getenv("CACHE_DIR") or None,
            ),
            categorization=CategorizationSettings(
                enable_llm=_env_bool("ENABLE_CATEGORY_LLM", True),
            ),
            embedding_model=EmbeddingSettings(
                api_key=os.getenv("OPENAI_API_KEY"),
                base_url=os.getenv("OPENAI_BASE_URL") or None,
                model=os.getenv("EMBEDDING_MODEL", "text-embedding-3-small"),
                dimensions=_env_int("EMBEDDING_DIMENSION", 0) or None,
            ),
        )
