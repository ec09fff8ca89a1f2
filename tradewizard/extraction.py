"""
Entity extraction from website HTML.

The page text is sent to a completion model that answers with a JSON profile of
the business and its products. Model output is untrusted: the first {...} span is
located by regex, parsed tolerantly, and every entity is re-checked against
confidence thresholds and the navigation / code-like rejectors. When the model
is unavailable or its answer cannot be parsed, products are pulled directly from
the markup and the business is named after the domain.
"""

import json
import logging
import re
from typing import Any, Dict, List, Optional, Tuple

from .config import CompletionSettings, ExtractionSettings
from .errors import CollaboratorFailure, DeadlineExceeded, ParseFailure
from .html_content import (
    business_name_from_url,
    extract_product_candidates,
    html_to_text,
    infer_business_type,
    is_plausible_product_name,
)
from .models import (
    BusinessAttributes,
    ContactAttributes,
    EnrichmentFlagsAttributes,
    EntityType,
    ExtractedEntity,
    LocationAttributes,
    ProductAttributes,
    QualityAttributes,
    StageResult,
    StageStatus,
)
from .prompts import load_prompt, render_prompt
from .retry import Deadline
from .services.completion import CompletionClient

logger = logging.getLogger(__name__)

TYPE_WEIGHTS = {
    EntityType.BUSINESS: 0.4,
    EntityType.PRODUCT: 0.3,
    EntityType.LOCATION: 0.2,
    EntityType.CONTACT: 0.1,
    EntityType.PERSON: 0.1,
    EntityType.SERVICE: 0.3,
    EntityType.METADATA: 0.1,
}
DEFAULT_TYPE_WEIGHT = 0.1

QUALITY_ENTITY_NAME = "Extraction Quality"
FLAGS_ENTITY_NAME = "Enrichment Flags"
PARTIAL_PRODUCT_DESCRIPTION = "Extracted in partial mode - needs verification"

_JSON_OBJECT = re.compile(r"\{.*\}", re.DOTALL)


def calculate_overall_confidence(entities: List[ExtractedEntity]) -> float:
    """Type-weighted mean confidence; 0 for an empty list."""
    if not entities:
        return 0.0
    total_weight = 0.0
    weighted = 0.0
    for entity in entities:
        weight = TYPE_WEIGHTS.get(entity.type, DEFAULT_TYPE_WEIGHT)
        total_weight += weight
        weighted += entity.confidence * weight
    return weighted / total_weight if total_weight else 0.0


def parse_json_object(text: str) -> Dict[str, Any]:
    """
    Parse the first {...} span of a model answer.

    Raises:
        ParseFailure: no object found, malformed JSON, or a non-object top level
    """
    match = _JSON_OBJECT.search(text or "")
    if not match:
        raise ParseFailure("No JSON object found in model output")
    try:
        data = json.loads(match.group(0))
    except json.JSONDecodeError as e:
        raise ParseFailure(f"Malformed JSON in model output: {e}") from e
    if not isinstance(data, dict):
        raise ParseFailure("Model output is not a JSON object")
    return data


def _as_confidence(value: Any) -> Optional[float]:
    if isinstance(value, bool) or value is None:
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def _value_and_confidence(node: Any) -> Tuple[str, Optional[float]]:
    """Fields may arrive as a plain string or as {"value": ..., "confidence": ...}."""
    if isinstance(node, dict):
        value = node.get("value")
        return (str(value).strip() if value is not None else ""), _as_confidence(node.get("confidence"))
    if node is None:
        return "", None
    return str(node).strip(), None


def _text(value: Any) -> Optional[str]:
    text, _ = _value_and_confidence(value)
    return text or None


def _keywords(value: Any) -> List[str]:
    if isinstance(value, str):
        return [k.strip() for k in value.split(",") if k.strip()]
    if isinstance(value, list):
        return [str(k).strip() for k in value if str(k).strip()]
    return []


class EntityExtractionEngine:
    """Turns raw HTML into a list of ExtractedEntity objects."""

    stage_name = "extraction"

    def __init__(
        self,
        completion: Optional[CompletionClient] = None,
        settings: Optional[ExtractionSettings] = None,
        model_settings: Optional[CompletionSettings] = None,
    ):
        self.completion = completion
        self.settings = settings or ExtractionSettings()
        self.model_settings = model_settings or CompletionSettings()

    def build_messages(self, content: str, url: str) -> List[Dict[str, str]]:
        return [
            {"role": "system", "content": load_prompt("extraction_system")},
            {"role": "user", "content": render_prompt("extraction_user", url=url, content=content)},
        ]

    async def extract(
        self, html: str, url: str, deadline: Optional[Deadline] = None
    ) -> StageResult[List[ExtractedEntity]]:
        """
        Extract entities from a page.

        Returns:
            StageResult whose output always holds a metadata entity first and a
            business entity; status is SUCCESS only when the model answer parsed
            and produced products.
        """
        content = html_to_text(html, self.settings.max_content_chars)
        error: Optional[str] = None
        json_parsed = False

        if self.completion is None:
            logger.warning(f"⚠️  No completion model configured; using heuristic extraction for {url}")
            error = "No completion model configured"
            entities = self.extract_partial(html, url)
        else:
            response = ""
            try:
                response = await self.completion.complete(
                    self.build_messages(content, url),
                    temperature=self.model_settings.temperature,
                    max_tokens=self.model_settings.max_tokens,
                    deadline=deadline,
                )
                entities = self.parse_response(response, url)
                json_parsed = True
            except (CollaboratorFailure, ParseFailure, DeadlineExceeded) as e:
                logger.warning(f"⚠️  Model extraction failed for {url} ({type(e).__name__}: {e}); falling back to heuristics")
                error = str(e)
                entities = self.extract_partial(html, url, raw_response_length=len(response))

        products = [e for e in entities if e.type == EntityType.PRODUCT]
        status = StageStatus.SUCCESS if json_parsed and products else StageStatus.PARTIAL
        if json_parsed and not products:
            error = "Model answer contained no products"
            products = self._heuristic_products(html, url)
            if products:
                logger.info(f"📋 Model found no products; merged {len(products)} heuristic product(s)")
                entities.extend(products)
                entities[0].attributes.has_products = True

        logger.info(
            f"✅ Extracted {len(entities)} entities ({len(products)} products) from {url} "
            f"[{status.value}, confidence {calculate_overall_confidence(entities):.2f}]"
        )
        return StageResult(
            stage=self.stage_name,
            status=status,
            output=entities,
            error=error,
            metadata={
                "raw_content": content,
                "json_parsed": json_parsed,
                "fallback_mode": not json_parsed,
                "attempts": 1,
            },
        )

    # ========================================================================
    # Model answer
    # ========================================================================

    def parse_response(self, response: str, url: str) -> List[ExtractedEntity]:
        """
        Build entities from a model answer.

        Raises:
            ParseFailure: when no JSON object can be read from the answer
        """
        data = parse_json_object(response)
        quality = ExtractedEntity(
            type=EntityType.METADATA,
            name=QUALITY_ENTITY_NAME,
            confidence=1.0,
            source=url,
            attributes=QualityAttributes(
                json_parsed=True,
                general_threshold=self.settings.general_threshold,
                product_threshold=self.settings.product_threshold,
                raw_response_length=len(response),
            ),
        )
        entities = [quality, self._business(data, url)]
        entities.extend(self._location(data, url))
        entities.extend(self._contacts(data, url))
        products = self._products(data, url)
        entities.extend(products)

        flags = data.get("mcpEnrichmentFlags")
        if isinstance(flags, dict):
            priority = flags.get("priorityProducts") or []
            entities.append(ExtractedEntity(
                type=EntityType.METADATA,
                name=FLAGS_ENTITY_NAME,
                confidence=1.0,
                source=url,
                attributes=EnrichmentFlagsAttributes(
                    needs_compliance_data=bool(flags.get("needsComplianceData", True)),
                    needs_market_intelligence=bool(flags.get("needsMarketIntelligence", True)),
                    priority_products=[i for i in priority if isinstance(i, int) and not isinstance(i, bool)],
                ),
            ))

        quality.attributes.has_business = True
        quality.attributes.has_products = bool(products)
        return entities

    def _business(self, data: Dict[str, Any], url: str) -> ExtractedEntity:
        name, confidence = _value_and_confidence(data.get("businessName"))
        description = _text(data.get("description"))
        business_type = _text(data.get("businessType"))
        years = _text(data.get("yearsInOperation"))
        if name:
            return ExtractedEntity(
                type=EntityType.BUSINESS,
                name=name,
                value=name,
                confidence=confidence if confidence is not None else self.settings.llm_business_default_confidence,
                source=url,
                attributes=BusinessAttributes(
                    description=description,
                    business_type=business_type,
                    years_in_operation=years,
                ),
            )
        fallback_name = business_name_from_url(url)
        logger.info(f"📋 No business name in model answer; using domain-derived '{fallback_name}'")
        return ExtractedEntity(
            type=EntityType.BUSINESS,
            name=fallback_name,
            value=fallback_name,
            confidence=self.settings.url_business_confidence,
            source=url,
            attributes=BusinessAttributes(
                description=description or f"Business operating at {url}",
                business_type=business_type,
                years_in_operation=years,
                needs_enrichment=True,
                extracted_from_url=True,
            ),
        )

    def _location(self, data: Dict[str, Any], url: str) -> List[ExtractedEntity]:
        location = data.get("location")
        if not isinstance(location, dict):
            return []
        address, confidence = _value_and_confidence(location.get("address"))
        if not address or confidence is None or confidence < self.settings.general_threshold:
            return []
        return [ExtractedEntity(
            type=EntityType.LOCATION,
            name="Primary Location",
            value=address,
            confidence=confidence,
            source=url,
            attributes=LocationAttributes(
                address=address,
                city=_text(location.get("city")),
                province=_text(location.get("province")),
                country=_text(location.get("country")),
                postal_code=_text(location.get("postalCode")),
            ),
        )]

    def _contacts(self, data: Dict[str, Any], url: str) -> List[ExtractedEntity]:
        contacts = data.get("contactInfo")
        if not isinstance(contacts, list):
            return []
        entities = []
        for contact in contacts:
            if not isinstance(contact, dict):
                continue
            value = _text(contact.get("value"))
            confidence = _as_confidence(contact.get("confidence"))
            if not value or confidence is None or confidence < self.settings.general_threshold:
                continue
            contact_type = _text(contact.get("type")) or "contact"
            entities.append(ExtractedEntity(
                type=EntityType.CONTACT,
                name=contact_type.capitalize(),
                value=value,
                confidence=confidence,
                source=url,
                attributes=ContactAttributes(contact_type=contact_type, platform=_text(contact.get("platform"))),
            ))
        return entities

    def _products(self, data: Dict[str, Any], url: str) -> List[ExtractedEntity]:
        products = data.get("products")
        if not isinstance(products, list):
            return []
        flags = data.get("mcpEnrichmentFlags") if isinstance(data.get("mcpEnrichmentFlags"), dict) else {}
        priority = set(i for i in flags.get("priorityProducts") or [] if isinstance(i, int) and not isinstance(i, bool))

        entities = []
        for index, product in enumerate(products):
            if not isinstance(product, dict):
                continue
            name = _text(product.get("name"))
            confidence = _as_confidence(product.get("confidence"))
            if not name or confidence is None or confidence < self.settings.product_threshold:
                continue
            if not is_plausible_product_name(name):
                logger.info(f"Rejected product candidate '{name}' (navigation or code-like)")
                continue
            specifications = product.get("specifications")
            entities.append(ExtractedEntity(
                type=EntityType.PRODUCT,
                name=name,
                value=name,
                confidence=confidence,
                source=url,
                attributes=ProductAttributes(
                    description=_text(product.get("description")),
                    price=_text(product.get("price")),
                    category=_text(product.get("category")),
                    product_type=_text(product.get("productType")),
                    keywords=_keywords(product.get("keywords")),
                    potential_hs_code=_text(product.get("potentialHSCode")),
                    specifications=specifications if isinstance(specifications, dict) else {},
                    url=_text(product.get("url")),
                    needs_enrichment=bool(product.get("needsMCPEnrichment", True)),
                    enrichment_notes=_text(product.get("mcpEnrichmentNotes")),
                    priority="high" if index in priority else "normal",
                ),
            ))
        return entities

    # ========================================================================
    # Heuristic fallback
    # ========================================================================

    def _heuristic_products(self, html: str, url: str) -> List[ExtractedEntity]:
        names = extract_product_candidates(html, url, limit=self.settings.max_heuristic_products)
        return [
            ExtractedEntity(
                type=EntityType.PRODUCT,
                name=name,
                value=name,
                confidence=self.settings.heuristic_product_confidence,
                source=url,
                attributes=ProductAttributes(
                    description=PARTIAL_PRODUCT_DESCRIPTION,
                    needs_enrichment=True,
                    partial_extraction=True,
                ),
            )
            for name in names
        ]

    def extract_partial(
        self, html: str, url: str, raw_response_length: Optional[int] = None
    ) -> List[ExtractedEntity]:
        """Entities recovered without the model: domain-named business plus markup products."""
        products = self._heuristic_products(html, url)
        name = business_name_from_url(url)
        quality = ExtractedEntity(
            type=EntityType.METADATA,
            name=QUALITY_ENTITY_NAME,
            confidence=0.3,
            source=url,
            attributes=QualityAttributes(
                json_parsed=False,
                fallback_mode=True,
                partial_extraction=True,
                has_business=True,
                has_products=bool(products),
                general_threshold=self.settings.general_threshold,
                product_threshold=self.settings.product_threshold,
                raw_response_length=raw_response_length,
            ),
        )
        business = ExtractedEntity(
            type=EntityType.BUSINESS,
            name=name,
            value=name,
            confidence=self.settings.partial_business_confidence,
            source=url,
            attributes=BusinessAttributes(
                description=f"Business operating at {url}",
                business_type=infer_business_type(url),
                needs_enrichment=True,
                extracted_from_url=True,
                partial_extraction=True,
            ),
        )
        return [quality, business] + products
