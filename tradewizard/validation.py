"""
Secondary validation of extracted entities by a research-capable model.

The validator is asked whether the business and each product plausibly exist.
Its answer adjusts product confidence and the verified flag, may correct names,
and records notes. Validation never shrinks the catalog below a floor: if too few
products survive, the most confident ones are force-verified and tagged.
"""

import logging
import math
from typing import Dict, List, Optional

from pydantic import ValidationError

from .config import CompletionSettings, ValidationSettings
from .errors import CollaboratorFailure, DeadlineExceeded, ParseFailure
from .extraction import parse_json_object
from .html_content import is_plausible_product_name
from .models import (
    BusinessValidation,
    EntityType,
    ExtractedEntity,
    ProductValidation,
    StageResult,
    StageStatus,
    ValidationPayload,
)
from .prompts import load_prompt, render_prompt
from .retry import Deadline
from .services.completion import CompletionClient

logger = logging.getLogger(__name__)

LOW_CONFIDENCE_WARNING = "Product could not be verified by secondary validation"
FORCED_WARNING = "Verification forced to preserve minimum products"


class ValidationEngine:
    """Cross-checks extracted entities against a second model."""

    stage_name = "validation"

    def __init__(
        self,
        completion: Optional[CompletionClient] = None,
        settings: Optional[ValidationSettings] = None,
        model_settings: Optional[CompletionSettings] = None,
    ):
        self.completion = completion
        self.settings = settings or ValidationSettings()
        self.model_settings = model_settings or CompletionSettings(temperature=0.1, max_tokens=2000)

    def build_messages(self, entities: List[ExtractedEntity], url: str) -> List[Dict[str, str]]:
        business = next((e for e in entities if e.type == EntityType.BUSINESS), None)
        products = [e for e in entities if e.type == EntityType.PRODUCT]

        if business is not None:
            business_block = (
                f"Name: {business.name}\n"
                f"Description: {business.attributes.description or 'n/a'}\n"
                f"Type: {business.attributes.business_type or 'n/a'}"
            )
        else:
            business_block = "Not identified"
        product_lines = [
            f"{i}. {p.name}" + (f" - {p.attributes.description}" if p.attributes.description else "")
            for i, p in enumerate(products)
        ]
        return [
            {"role": "system", "content": load_prompt("validation_system")},
            {
                "role": "user",
                "content": render_prompt(
                    "validation_user",
                    url=url,
                    business=business_block,
                    products="\n".join(product_lines) or "None",
                ),
            },
        ]

    async def validate(
        self, entities: List[ExtractedEntity], url: str, deadline: Optional[Deadline] = None
    ) -> StageResult[List[ExtractedEntity]]:
        """
        Validate entities; on any failure the input list is returned unchanged.
        """
        if not any(e.type in (EntityType.BUSINESS, EntityType.PRODUCT) for e in entities):
            return StageResult(stage=self.stage_name, status=StageStatus.SKIPPED, output=entities,
                               error="Nothing to validate")
        if self.completion is None:
            logger.info("Validation model not configured; skipping validation")
            return StageResult(stage=self.stage_name, status=StageStatus.SKIPPED, output=entities,
                               error="No validation model configured")

        try:
            response = await self.completion.complete(
                self.build_messages(entities, url),
                temperature=self.model_settings.temperature,
                max_tokens=self.model_settings.max_tokens,
                deadline=deadline,
            )
            validated = self.apply_validation(entities, response)
        except (CollaboratorFailure, ParseFailure, DeadlineExceeded) as e:
            logger.warning(f"⚠️  Validation failed for {url}; keeping original entities: {e}")
            return StageResult(stage=self.stage_name, status=StageStatus.FAILURE, output=entities, error=str(e))

        products = [e for e in validated if e.type == EntityType.PRODUCT]
        verified = sum(1 for p in products if p.verified)
        forced = sum(1 for p in products if p.attributes.forced_verification)
        logger.info(f"✅ Validation complete: {verified}/{len(products)} products verified ({forced} forced)")
        return StageResult(
            stage=self.stage_name,
            status=StageStatus.SUCCESS,
            output=validated,
            metadata={"verified": verified, "forced": forced, "products": len(products)},
        )

    def apply_validation(self, entities: List[ExtractedEntity], response: str) -> List[ExtractedEntity]:
        """
        Apply a validator answer to deep copies of the entities.

        Raises:
            ParseFailure: when the answer is not the expected JSON shape
        """
        data = parse_json_object(response)
        try:
            payload = ValidationPayload.model_validate(data)
        except ValidationError as e:
            raise ParseFailure(f"Unexpected validation payload: {e}") from e

        copies = [entity.model_copy(deep=True) for entity in entities]
        products = [e for e in copies if e.type == EntityType.PRODUCT]
        original_confidence = {p.id: p.confidence for p in products}

        business = next((e for e in copies if e.type == EntityType.BUSINESS), None)
        if business is not None and payload.business_validation is not None:
            self._apply_business(business, payload.business_validation)

        for validation in payload.product_validations:
            if 0 <= validation.index < len(products):
                self._apply_product(products[validation.index], validation)
            else:
                logger.debug(f"Ignoring validation for unknown product index {validation.index}")

        self.enforce_minimum(products, original_confidence)
        return copies

    def _apply_business(self, business: ExtractedEntity, validation: BusinessValidation) -> None:
        business.attributes.web_presence = validation.web_presence
        business.attributes.validation_notes = validation.notes
        business.verified = validation.is_valid and validation.confidence > self.settings.verification_threshold
        corrected = (validation.corrected_name or "").strip()
        if validation.is_valid and corrected and corrected != business.name:
            logger.info(f"Business name corrected: '{business.name}' -> '{corrected}'")
            business.name = corrected
            business.value = corrected
        business.touch()

    def _apply_product(self, product: ExtractedEntity, validation: ProductValidation) -> None:
        reported = validation.confidence
        combined = sum(weight * reported for weight in self.settings.weights)
        product.confidence = combined
        product.verified = product.confidence > self.settings.verification_threshold

        corrected = (validation.corrected_name or "").strip()
        if validation.is_valid and corrected and is_plausible_product_name(corrected):
            product.name = corrected
            product.value = corrected

        attributes = product.attributes
        attributes.validation_notes = validation.notes
        attributes.market_presence = validation.market_presence
        attributes.competitor_products = list(validation.competitor_products)
        attributes.validation_confidence = reported
        if not product.verified:
            attributes.low_confidence = True
            attributes.validation_warning = LOW_CONFIDENCE_WARNING
        product.touch()

    def enforce_minimum(self, products: List[ExtractedEntity], original_confidence: Dict[str, float]) -> int:
        """
        Force-verify products until max(min_preserved, ceil(ratio * n)) are verified.

        Candidates are taken by descending original confidence, ties in input order.
        Returns the number of products forced.
        """
        total = len(products)
        if total == 0:
            return 0
        target = min(total, max(self.settings.min_preserved, math.ceil(self.settings.preserve_ratio * total)))
        verified = sum(1 for p in products if p.verified)
        if verified >= target:
            return 0

        unverified = [p for p in products if not p.verified]
        unverified.sort(key=lambda p: original_confidence.get(p.id, p.confidence), reverse=True)
        forced = unverified[: target - verified]
        for product in forced:
            product.verified = True
            product.attributes.forced_verification = True
            product.attributes.validation_warning = FORCED_WARNING
            product.touch()
        logger.warning(f"⚠️  Only {verified}/{total} products verified; forced {len(forced)} to keep the catalog")
        return len(forced)
