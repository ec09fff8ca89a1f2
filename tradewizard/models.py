"""
Pydantic models for the website analysis pipeline.

This module defines the structured data passed between stages:
- ExtractedEntity: a business fact with typed, per-kind attributes
- ExtractionResult: the output of one analyze() call (also the cache value)
- ProductVariant / ProductGroup: consolidation input and output
- ProductCategory / CategoryResult: category definitions and category-based consolidation output
- BusinessProfile: a condensed view built from an ExtractionResult
- Wire models for the compliance, market-intelligence and validation collaborators
- StageStatus / StageResult: tagged results returned by every stage
"""

import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Generic, List, Literal, Optional, TypeVar, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator

logger = logging.getLogger(__name__)


class EntityType(str, Enum):
    """Kind of extracted entity."""
    BUSINESS = "business"
    PRODUCT = "product"
    LOCATION = "location"
    CONTACT = "contact"
    PERSON = "person"
    SERVICE = "service"
    METADATA = "metadata"


class ExtractionStatus(str, Enum):
    """Overall status of an analysis run."""
    COMPLETED = "completed"
    PARTIAL = "partial"
    FAILED = "failed"


# ============================================================================
# Entity attributes
# ============================================================================

class BusinessAttributes(BaseModel):
    kind: Literal["business"] = "business"
    description: Optional[str] = None
    business_type: Optional[str] = None
    years_in_operation: Optional[str] = None
    needs_enrichment: bool = False
    extracted_from_url: bool = False
    partial_extraction: bool = False
    web_presence: Optional[Union[str, bool]] = None
    validation_notes: Optional[str] = None
    extensions: Dict[str, Any] = Field(default_factory=dict)


class CrossReferenceResult(BaseModel):
    """Outcome of the HS-chapter vs market-category consistency check."""
    is_consistent: Optional[bool] = Field(None, description="None when the HS chapter is not in the allow-list")
    notes: str = ""


class Competitor(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    name: str
    market_share: Optional[Union[str, float]] = Field(None, alias="marketShare")
    strengths: List[str] = Field(default_factory=list)


class ProductAttributes(BaseModel):
    kind: Literal["product"] = "product"
    description: Optional[str] = None
    price: Optional[str] = None
    category: Optional[str] = None
    product_type: Optional[str] = None
    keywords: List[str] = Field(default_factory=list)
    potential_hs_code: Optional[str] = None
    specifications: Dict[str, Any] = Field(default_factory=dict)
    url: Optional[str] = None
    needs_enrichment: bool = False
    enrichment_notes: Optional[str] = None
    priority: Literal["high", "normal"] = "normal"
    partial_extraction: bool = False

    # secondary validation
    validation_notes: Optional[str] = None
    market_presence: Optional[Union[str, bool]] = None
    competitor_products: List[str] = Field(default_factory=list)
    validation_confidence: Optional[float] = None
    low_confidence: bool = False
    validation_warning: Optional[str] = None
    forced_verification: bool = False

    # compliance lookup
    hs_code: Optional[str] = None
    required_documents: List[str] = Field(default_factory=list)
    tariff_rates: Dict[str, Any] = Field(default_factory=dict)
    compliance_notes: Optional[str] = None
    compliance_confidence: Optional[float] = None
    compliance_error: Optional[str] = None

    # market intelligence lookup
    market_size: Optional[str] = None
    market_growth: Optional[str] = None
    competitors: List[Competitor] = Field(default_factory=list)
    market_category: Optional[str] = None
    market_trends: List[str] = Field(default_factory=list)
    market_confidence: Optional[float] = None
    market_error: Optional[str] = None

    cross_reference: Optional[CrossReferenceResult] = None
    extensions: Dict[str, Any] = Field(default_factory=dict)


class LocationAttributes(BaseModel):
    kind: Literal["location"] = "location"
    address: Optional[str] = None
    city: Optional[str] = None
    province: Optional[str] = None
    country: Optional[str] = None
    postal_code: Optional[str] = None
    extensions: Dict[str, Any] = Field(default_factory=dict)


class ContactAttributes(BaseModel):
    kind: Literal["contact"] = "contact"
    contact_type: Optional[str] = None
    platform: Optional[str] = None
    extensions: Dict[str, Any] = Field(default_factory=dict)


class QualityAttributes(BaseModel):
    """Attributes of the "Extraction Quality" metadata entity."""
    kind: Literal["quality"] = "quality"
    json_parsed: bool = False
    fallback_mode: bool = False
    partial_extraction: bool = False
    has_products: bool = False
    has_business: bool = False
    general_threshold: Optional[float] = None
    product_threshold: Optional[float] = None
    raw_response_length: Optional[int] = None
    extensions: Dict[str, Any] = Field(default_factory=dict)


class EnrichmentFlagsAttributes(BaseModel):
    """Attributes of the "Enrichment Flags" metadata entity."""
    kind: Literal["enrichment_flags"] = "enrichment_flags"
    needs_compliance_data: bool = True
    needs_market_intelligence: bool = True
    priority_products: List[int] = Field(default_factory=list)
    extensions: Dict[str, Any] = Field(default_factory=dict)


class GenericAttributes(BaseModel):
    kind: Literal["generic"] = "generic"
    description: Optional[str] = None
    extensions: Dict[str, Any] = Field(default_factory=dict)


EntityAttributes = Union[
    BusinessAttributes,
    ProductAttributes,
    LocationAttributes,
    ContactAttributes,
    QualityAttributes,
    EnrichmentFlagsAttributes,
    GenericAttributes,
]

_DEFAULT_ATTRIBUTE_KIND = {
    EntityType.BUSINESS: "business",
    EntityType.PRODUCT: "product",
    EntityType.LOCATION: "location",
    EntityType.CONTACT: "contact",
    EntityType.METADATA: "quality",
}


def _new_entity_id() -> str:
    return f"ent_{uuid.uuid4().hex[:12]}"


class ExtractedEntity(BaseModel):
    """A single business fact extracted from a website."""
    model_config = ConfigDict(validate_assignment=True)

    id: str = Field(default_factory=_new_entity_id, description="Opaque entity identifier")
    type: EntityType = Field(..., description="Entity kind")
    name: str = Field("", description="Display name; required for every non-metadata entity")
    value: str = Field("", description="Primary value (business name, product name, address, contact value)")
    confidence: float = Field(0.0, description="Confidence in [0, 1]")
    source: str = Field("", description="URL the entity was extracted from")
    verified: bool = False
    user_modified: bool = False
    attributes: EntityAttributes = Field(..., discriminator="kind")
    created_at: datetime = Field(default_factory=datetime.now)
    updated_at: datetime = Field(default_factory=datetime.now)

    @model_validator(mode="before")
    @classmethod
    def _default_attributes(cls, data: Any) -> Any:
        if isinstance(data, dict) and data.get("attributes") is None:
            entity_type = EntityType(data.get("type"))
            data = {**data, "attributes": {"kind": _DEFAULT_ATTRIBUTE_KIND.get(entity_type, "generic")}}
        return data

    @field_validator("confidence", mode="before")
    @classmethod
    def _clamp_confidence(cls, value: Any) -> float:
        if value is None:
            return 0.0
        value = float(value)
        if value != value:  # NaN
            return 0.0
        return max(0.0, min(1.0, value))

    @model_validator(mode="after")
    def _require_name(self) -> "ExtractedEntity":
        if self.type != EntityType.METADATA and not self.name.strip():
            raise ValueError(f"{self.type.value} entity requires a non-empty name")
        return self

    def touch(self) -> None:
        """Mark the entity as updated now."""
        self.updated_at = datetime.now()


# ============================================================================
# Results
# ============================================================================

class QualityMetrics(BaseModel):
    extraction_attempts: int = 0
    has_products: bool = False
    has_business: bool = False
    partial_extraction: bool = False
    json_parsed: bool = False
    fallback_mode: bool = False
    error_type: Optional[str] = None
    from_cache: bool = False


class StageReport(BaseModel):
    """Summary of one pipeline stage, kept on the result for diagnostics."""
    name: str
    status: str
    error: Optional[str] = None
    elapsed: float = 0.0


class ExtractionResult(BaseModel):
    """Output of one analysis run."""
    id: str = Field(default_factory=lambda: f"ext_{uuid.uuid4().hex[:12]}")
    source_url: str
    source_type: Literal["website"] = "website"
    raw_content: str = Field("", description="Projected page text sent to the completion model")
    entities: List[ExtractedEntity] = Field(default_factory=list)
    confidence: float = 0.0
    processing_time: float = Field(0.0, description="Wall-clock seconds")
    status: ExtractionStatus = ExtractionStatus.COMPLETED
    error: Optional[str] = None
    quality_metrics: QualityMetrics = Field(default_factory=QualityMetrics)
    stages: List[StageReport] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=datetime.now)
    updated_at: datetime = Field(default_factory=datetime.now)

    def entities_of(self, entity_type: EntityType) -> List[ExtractedEntity]:
        return [e for e in self.entities if e.type == entity_type]


class ProductVariant(BaseModel):
    """A single product as offered for consolidation."""
    id: Optional[str] = None
    name: str
    description: Optional[str] = None
    sku: Optional[str] = None
    price: Optional[float] = None
    attributes: Dict[str, Any] = Field(default_factory=dict)
    selected: bool = False


class ProductGroup(BaseModel):
    """A consolidated family of product variants."""
    base_type: str
    description: str = ""
    confidence: float = 1.0
    variants: List[ProductVariant] = Field(default_factory=list)
    attributes: Dict[str, Any] = Field(default_factory=dict)


class CategoryAttribute(BaseModel):
    """An attribute a product category expects, e.g. main_ingredient for food."""
    name: str
    display_name: str
    type: Literal["string", "number", "boolean", "array"] = "string"
    required: bool = False
    allowed_values: List[str] = Field(default_factory=list)


class ProductCategory(BaseModel):
    """A trade category products are sorted into."""
    id: str
    name: str
    description: str = ""
    examples: List[str] = Field(default_factory=list)
    alternate_names: List[str] = Field(default_factory=list)
    attributes: List[CategoryAttribute] = Field(default_factory=list)
    keywords: List[str] = Field(default_factory=list)
    hs_code_hints: List[str] = Field(default_factory=list)
    priority: int = 0
    metadata: Dict[str, Any] = Field(default_factory=dict)


class CategoryResult(BaseModel):
    """Products consolidated under one category."""
    id: str
    name: str
    category_id: str
    products: List[ProductVariant] = Field(default_factory=list)
    confidence: float = 0.0
    source: str = Field("text_similarity", description="llm, cache, text_similarity or fallback")
    attributes: Dict[str, Any] = Field(default_factory=dict)


class BusinessProfile(BaseModel):
    """Condensed business view built from an ExtractionResult."""
    source_url: str
    business_name: str
    description: Optional[str] = None
    business_type: Optional[str] = None
    business_confidence: float = 0.0
    extracted_from_url: bool = False
    location: Optional[LocationAttributes] = None
    contacts: List[ExtractedEntity] = Field(default_factory=list)
    products: List[ExtractedEntity] = Field(default_factory=list)
    product_groups: List[ProductGroup] = Field(default_factory=list)
    confidence: float = 0.0
    status: ExtractionStatus = ExtractionStatus.COMPLETED


# ============================================================================
# Collaborator wire models
# ============================================================================

class ComplianceRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    product_name: str = Field(..., alias="productName")
    description: str = ""
    category: str = ""
    product_type: str = Field("", alias="productType")
    keywords: List[str] = Field(default_factory=list)


class ComplianceResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    hs_code: Optional[str] = Field(None, alias="hsCode")
    required_documents: List[str] = Field(default_factory=list, alias="requiredDocuments")
    tariff_rates: Dict[str, Any] = Field(default_factory=dict, alias="tariffRates")
    notes: Optional[str] = None
    confidence: float = 0.0


class MarketIntelligenceRequest(ComplianceRequest):
    hs_code: Optional[str] = Field(None, alias="hsCode")


class MarketIntelligenceResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    market_size: Optional[str] = Field(None, alias="marketSize")
    market_growth: Optional[str] = Field(None, alias="marketGrowth")
    competitors: List[Competitor] = Field(default_factory=list)
    category: Optional[str] = None
    trends: List[str] = Field(default_factory=list)
    confidence: float = 0.0


class BusinessValidation(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    is_valid: bool = Field(False, alias="isValid")
    corrected_name: Optional[str] = Field(None, alias="correctedName")
    confidence: float = 0.0
    web_presence: Optional[Union[str, bool]] = Field(None, alias="webPresence")
    notes: Optional[str] = None

    @field_validator("is_valid", "confidence", mode="before")
    @classmethod
    def _null_as_default(cls, value: Any) -> Any:
        return 0 if value is None else value


class ProductValidation(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    index: int
    is_valid: bool = Field(False, alias="isValid")
    corrected_name: Optional[str] = Field(None, alias="correctedName")
    confidence: float = 0.0
    market_presence: Optional[Union[str, bool]] = Field(None, alias="marketPresence")
    competitor_products: List[str] = Field(default_factory=list, alias="competitorProducts")
    notes: Optional[str] = None

    @field_validator("is_valid", "confidence", mode="before")
    @classmethod
    def _null_as_default(cls, value: Any) -> Any:
        return 0 if value is None else value

    @field_validator("competitor_products", mode="before")
    @classmethod
    def _competitor_list(cls, value: Any) -> Any:
        if value is None:
            return []
        if isinstance(value, str):
            return [value]
        return value


class ValidationPayload(BaseModel):
    """
    Validator answer. Product items are validated one at a time so a single
    malformed item does not discard the rest.
    """
    model_config = ConfigDict(populate_by_name=True)

    business_validation: Optional[BusinessValidation] = Field(None, alias="businessValidation")
    product_validations: List[ProductValidation] = Field(default_factory=list, alias="productValidations")

    @field_validator("product_validations", mode="before")
    @classmethod
    def _drop_malformed_items(cls, value: Any) -> Any:
        if value is None:
            return []
        if not isinstance(value, list):
            return value
        items = []
        for position, item in enumerate(value):
            try:
                items.append(ProductValidation.model_validate(item))
            except ValidationError as e:
                logger.warning(f"⚠️  Skipping malformed product validation #{position}: {e.error_count()} error(s)")
        return items


class CategorizationItem(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    category_id: str = Field(alias="categoryId")
    confidence: float = 0.0
    products: List[int] = Field(default_factory=list)
    attributes: Dict[str, Any] = Field(default_factory=dict)
    reasoning: Optional[str] = None

    @field_validator("confidence", mode="before")
    @classmethod
    def _percent_to_ratio(cls, value: Any) -> Any:
        if value is None:
            return 0.0
        if not isinstance(value, (int, float, str)):
            return value
        value = float(value)
        # the model is asked for a percentage
        return value / 100 if value > 1 else value

    @field_validator("products", mode="before")
    @classmethod
    def _product_indexes(cls, value: Any) -> Any:
        if value is None:
            return []
        if not isinstance(value, list):
            return value
        return [i for i in value if isinstance(i, int) and not isinstance(i, bool)]

    @field_validator("attributes", mode="before")
    @classmethod
    def _attribute_dict(cls, value: Any) -> Any:
        return value if isinstance(value, dict) else {}


class CategorizationPayload(BaseModel):
    """Categorizer answer; malformed items are dropped one at a time."""
    categorizations: List[CategorizationItem] = Field(default_factory=list)

    @field_validator("categorizations", mode="before")
    @classmethod
    def _drop_malformed_items(cls, value: Any) -> Any:
        if not isinstance(value, list):
            return value
        items = []
        for position, item in enumerate(value):
            try:
                items.append(CategorizationItem.model_validate(item))
            except ValidationError as e:
                logger.warning(f"⚠️  Skipping malformed categorization #{position}: {e.error_count()} error(s)")
        return items


# ============================================================================
# Tagged stage results
# ============================================================================

T = TypeVar("T")


class StageStatus(str, Enum):
    """Status of a pipeline stage."""
    SUCCESS = "success"
    PARTIAL = "partial"
    FAILURE = "failure"
    SKIPPED = "skipped"


@dataclass
class StageResult(Generic[T]):
    """Result from running a pipeline stage."""
    stage: str
    status: StageStatus
    output: Optional[T] = None
    error: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)
    timestamp: datetime = field(default_factory=datetime.now)

    @property
    def ok(self) -> bool:
        return self.status in (StageStatus.SUCCESS, StageStatus.PARTIAL)
