"""
Category-based product consolidation.

1. Clustering: products are merged bottom-up by average-linkage similarity
   (embedding cosine when an embedding model is configured, core-name
   similarity otherwise) until no pair of clusters clears the threshold.
2. Categorization: each cluster is assigned to trade categories by the
   completion model. Products the model leaves out, or whole clusters when the
   model is unavailable, are matched to the category whose keyword profile they
   overlap most.
3. Formatting: assignments are merged per category, category attributes
   (main ingredient, preparation, storage) are derived, and the categories are
   ordered by confidence.

Embeddings and cluster answers are cached. If the run fails outright, products
are sorted into simple rule categories instead.
"""

import hashlib
import json
import logging
import math
import re
from collections import Counter
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Pattern, Tuple

from pydantic import ValidationError

from .attributes import core_name
from .cache import KeyValueStore
from .categories import UNCATEGORIZED, default_categories
from .config import CategorizationSettings
from .consolidation import string_similarity
from .errors import CollaboratorFailure, DeadlineExceeded, ParseFailure
from .extraction import parse_json_object
from .models import (
    CategorizationPayload,
    CategoryResult,
    ProductCategory,
    ProductVariant,
    StageResult,
    StageStatus,
)
from .prompts import load_prompt, render_prompt
from .retry import Deadline
from .services.completion import CompletionClient
from .services.embeddings import EmbeddingClient

logger = logging.getLogger(__name__)

CACHE_PREFIX = "category-consolidation:"

STOPWORDS = {
    "a", "an", "the", "and", "or", "but", "is", "are", "was", "were", "be", "been", "being",
    "in", "on", "at", "to", "for", "with", "about", "of", "that", "this", "these", "those",
    "from", "by", "as", "into", "over", "it", "its",
}
_PUNCTUATION = re.compile(r"[^\w\s]")

FALLBACK_RULES: List[Tuple[Pattern, str]] = [
    (re.compile(r"\bcorn ?dogs?\b", re.I), "Corn Dogs"),
    (re.compile(r"\bcheese\b", re.I), "Cheese Products"),
    (re.compile(r"\b(snack|pocket|wrap)s?\b", re.I), "Snack Items"),
    (re.compile(r"\bchicken\b", re.I), "Chicken Products"),
    (re.compile(r"\bbeef\b", re.I), "Beef Products"),
]
OTHER_PRODUCTS = "Other Products"
FALLBACK_CONFIDENCE = 0.7
NAME_MATCH_MINIMUM = 0.4
NAME_MATCH_CONFIDENCE = 0.6
DEFAULT_MATCH_CONFIDENCE = 0.5

INGREDIENTS = [
    "chicken", "beef", "pork", "fish", "grapes", "apple", "orange", "cheese", "milk", "cream",
    "butter", "chocolate", "coffee", "tomato", "potato", "wheat", "rice", "corn", "soy",
]
PREPARATIONS = [
    "frozen", "canned", "dried", "fresh", "smoked", "cured", "fermented", "roasted", "baked", "fried", "breaded",
]


def tokenize(text: str) -> List[str]:
    """Lowercased words without punctuation, stopwords or single letters."""
    words = _PUNCTUATION.sub("", text.lower()).split()
    return [w for w in words if len(w) > 1 and w not in STOPWORDS]


def text_similarity(text: str, profile: str) -> float:
    """
    Share of the text's tokens found in the profile, words longer than three
    letters counting double.
    """
    tokens = set(tokenize(text))
    profile_tokens = set(tokenize(profile))

    def weight(token: str) -> int:
        return 2 if len(token) > 3 else 1

    possible = sum(weight(t) for t in tokens)
    if possible == 0:
        return 0.0
    return sum(weight(t) for t in tokens & profile_tokens) / possible


def word_overlap(a: str, b: str) -> float:
    """Jaccard similarity of whitespace-separated words."""
    words_a = set(a.lower().split())
    words_b = set(b.lower().split())
    union = len(words_a | words_b)
    return len(words_a & words_b) / union if union else 0.0


def cosine_similarity(a: List[float], b: List[float]) -> float:
    if len(a) != len(b):
        raise ValueError("Vectors must have the same dimension")
    dot = sum(x * y for x, y in zip(a, b))
    norm_a = math.sqrt(sum(x * x for x in a))
    norm_b = math.sqrt(sum(y * y for y in b))
    if norm_a == 0 or norm_b == 0:
        return 0.0
    return dot / (norm_a * norm_b)


def product_text(variant: ProductVariant) -> str:
    """Name, description and string attribute values of a product."""
    parts = [variant.name, variant.description or ""]
    parts.extend(v for v in variant.attributes.values() if isinstance(v, str))
    return " ".join(p for p in parts if p)


def slugify(name: str) -> str:
    return re.sub(r"[^a-z0-9]", "-", name.lower())


def _digest(text: str) -> str:
    return hashlib.sha256(text.encode("utf-8")).hexdigest()


def _most_common(values: List[Any]) -> Optional[Any]:
    values = [v for v in values if v not in (None, "")]
    if not values:
        return None
    return Counter(values).most_common(1)[0][0]


def guess_main_ingredient(text: str) -> Optional[str]:
    text = text.lower()
    return next((i.capitalize() for i in INGREDIENTS if i in text), None)


def guess_preparation_type(text: str) -> Optional[str]:
    text = text.lower()
    return next((p.capitalize() for p in PREPARATIONS if p in text), None)


def guess_storage_type(text: str) -> Optional[str]:
    text = text.lower()
    if "frozen" in text or "freezer" in text:
        return "frozen"
    if "refrigerat" in text or "chilled" in text or "cold" in text:
        return "refrigerated"
    if "shelf" in text or "ambient" in text or "pantry" in text:
        return "ambient"
    return None


_GUESSERS: Dict[str, Callable[[str], Optional[str]]] = {
    "main_ingredient": guess_main_ingredient,
    "preparation_type": guess_preparation_type,
    "storage_type": guess_storage_type,
}


@dataclass
class _Assignment:
    category_id: str
    products: List[ProductVariant]
    confidence: float
    source: str
    attributes: Dict[str, Any] = field(default_factory=dict)


class CategoryConsolidationEngine:
    """Sorts products into trade categories."""

    stage_name = "categorization"

    def __init__(
        self,
        embeddings: Optional[EmbeddingClient] = None,
        completion: Optional[CompletionClient] = None,
        store: Optional[KeyValueStore] = None,
        settings: Optional[CategorizationSettings] = None,
        categories: Optional[List[ProductCategory]] = None,
    ):
        self.embeddings = embeddings
        self.completion = completion
        self.store = store
        self.settings = settings or CategorizationSettings()
        self.categories = categories if categories is not None else default_categories()
        self._by_id = {c.id: c for c in self.categories}
        self._by_id.setdefault(UNCATEGORIZED.id, UNCATEGORIZED)

    @property
    def caching(self) -> bool:
        return self.settings.use_caching and self.store is not None

    async def consolidate(
        self, variants: List[ProductVariant], deadline: Optional[Deadline] = None
    ) -> StageResult[List[CategoryResult]]:
        """
        Group products by category. When the run fails outright every product is
        sorted by the fallback rules and the status is partial.
        """
        if not variants:
            return StageResult(stage=self.stage_name, status=StageStatus.SUCCESS, output=[])

        logger.info(f"🔄 Categorizing {len(variants)} products")
        errors: List[str] = []
        try:
            clusters, cluster_error = await self._cluster(variants, deadline)
            if cluster_error:
                errors.append(cluster_error)
            assignments: List[_Assignment] = []
            for number, cluster in enumerate(clusters, start=1):
                logger.debug(f"Categorizing cluster {number}/{len(clusters)} with {len(cluster)} products")
                found, error = await self._categorize_cluster([variants[i] for i in cluster], deadline)
                assignments.extend(found)
                if error:
                    errors.append(error)
            results = self._format(assignments)
        except Exception as e:
            logger.error(f"❌ Categorization failed, using rule categories: {e}", exc_info=True)
            return StageResult(
                stage=self.stage_name,
                status=StageStatus.PARTIAL,
                output=self.fallback_categorization(variants),
                error=str(e),
            )

        logger.info(f"✅ Categorized {len(variants)} products into {len(results)} categories")
        return StageResult(
            stage=self.stage_name,
            status=StageStatus.PARTIAL if errors else StageStatus.SUCCESS,
            output=results,
            error="; ".join(errors) or None,
            metadata={"products": len(variants), "clusters": len(clusters), "categories": len(results)},
        )

    # ------------------------------------------------------------------
    # Clustering
    # ------------------------------------------------------------------

    async def _cluster(
        self, variants: List[ProductVariant], deadline: Optional[Deadline]
    ) -> Tuple[List[List[int]], Optional[str]]:
        if len(variants) == 1:
            return [[0]], None

        error = None
        similarity: Optional[Callable[[int, int], float]] = None
        if self.embeddings is not None:
            try:
                vectors = await self._embed(variants, deadline)
                similarity = lambda i, j: cosine_similarity(vectors[i], vectors[j])
            except (CollaboratorFailure, DeadlineExceeded) as e:
                logger.warning(f"⚠️  Embeddings unavailable, clustering by name: {e}")
                error = f"Embeddings unavailable: {e}"
        if similarity is None:
            cores = [core_name(v.name) for v in variants]
            similarity = lambda i, j: string_similarity(cores[i], cores[j])

        clusters = self.cluster(len(variants), similarity)
        logger.info(f"Clustered {len(variants)} products into {len(clusters)} clusters")
        return clusters, error

    def cluster(self, count: int, similarity: Callable[[int, int], float]) -> List[List[int]]:
        """
        Average-linkage agglomerative clustering of item indexes.

        The most similar pair of clusters is merged until the best average
        similarity drops below the threshold. Clusters come back sorted by
        their first index, members in index order.
        """
        matrix = [[1.0] * count for _ in range(count)]
        for i in range(count):
            for j in range(i + 1, count):
                matrix[i][j] = matrix[j][i] = similarity(i, j)

        clusters: List[List[int]] = [[i] for i in range(count)]
        while len(clusters) > 1:
            best, pair = -1.0, (0, 0)
            for a in range(len(clusters)):
                for b in range(a + 1, len(clusters)):
                    total = sum(matrix[i][j] for i in clusters[a] for j in clusters[b])
                    average = total / (len(clusters[a]) * len(clusters[b]))
                    if average > best:
                        best, pair = average, (a, b)
            if best < self.settings.similarity_threshold:
                break
            a, b = pair
            merged = clusters[a] + clusters[b]
            clusters = [c for k, c in enumerate(clusters) if k not in pair] + [merged]

        return sorted((sorted(c) for c in clusters), key=lambda c: c[0])

    async def _embed(self, variants: List[ProductVariant], deadline: Optional[Deadline]) -> List[List[float]]:
        texts = [product_text(v) for v in variants]
        vectors: List[Optional[List[float]]] = [None] * len(texts)
        if self.caching:
            for i, text in enumerate(texts):
                cached = self.store.get(f"{CACHE_PREFIX}embedding:{_digest(text)}")
                if isinstance(cached, list):
                    vectors[i] = cached

        missing = [i for i, vector in enumerate(vectors) if vector is None]
        batch_size = max(1, self.settings.batch_size)
        for start in range(0, len(missing), batch_size):
            batch = missing[start:start + batch_size]
            embedded = await self.embeddings.embed([texts[i] for i in batch], deadline)
            for i, vector in zip(batch, embedded):
                vectors[i] = vector
                if self.caching:
                    self.store.set(f"{CACHE_PREFIX}embedding:{_digest(texts[i])}", vector, ttl=self.settings.cache_ttl)
        logger.debug(f"Embedded {len(missing)} products ({len(texts) - len(missing)} cached)")
        return vectors

    # ------------------------------------------------------------------
    # Categorization
    # ------------------------------------------------------------------

    def _cluster_key(self, members: List[ProductVariant]) -> str:
        keys = sorted(v.id or product_text(v) for v in members)
        return f"{CACHE_PREFIX}cluster:{_digest(json.dumps(keys))}"

    async def _categorize_cluster(
        self, members: List[ProductVariant], deadline: Optional[Deadline]
    ) -> Tuple[List[_Assignment], Optional[str]]:
        if self.caching:
            cached = self._from_cache(self.store.get(self._cluster_key(members)), members)
            if cached is not None:
                return cached, None

        if self.completion is None or not self.settings.enable_llm:
            return self.match_by_text(members), None

        try:
            assignments = await self._ask_model(members, deadline)
        except (CollaboratorFailure, ParseFailure, DeadlineExceeded) as e:
            logger.warning(f"⚠️  Cluster categorization failed, matching by keywords: {e}")
            return self.match_by_text(members), f"Categorization failed: {e}"

        if self.caching:
            self.store.set(self._cluster_key(members), self._to_cache(assignments), ttl=self.settings.cache_ttl)
        return assignments, None

    def _to_cache(self, assignments: List[_Assignment]) -> List[Dict[str, Any]]:
        return [
            {
                "category_id": a.category_id,
                "products": [v.id or product_text(v) for v in a.products],
                "confidence": a.confidence,
                "attributes": a.attributes,
            }
            for a in assignments
        ]

    def _from_cache(self, cached: Any, members: List[ProductVariant]) -> Optional[List[_Assignment]]:
        if not isinstance(cached, list):
            return None
        by_key = {v.id or product_text(v): v for v in members}
        assignments = []
        try:
            for entry in cached:
                products = [by_key[key] for key in entry["products"]]
                if entry["category_id"] not in self._by_id:
                    return None
                assignments.append(_Assignment(
                    category_id=entry["category_id"],
                    products=products,
                    confidence=float(entry["confidence"]),
                    source="cache",
                    attributes=dict(entry.get("attributes") or {}),
                ))
        except (KeyError, TypeError, ValueError) as e:
            logger.warning(f"⚠️  Ignoring unusable cached categorization: {e}")
            return None
        logger.info(f"📋 Cached categorization for a cluster of {len(members)} products")
        return assignments

    def build_messages(self, members: List[ProductVariant]) -> List[Dict[str, str]]:
        product_blocks = []
        for i, variant in enumerate(members):
            product_blocks.append(
                f"{i}. {variant.name}\n"
                f"   Description: {variant.description or 'N/A'}\n"
                f"   Attributes: {json.dumps(variant.attributes) if variant.attributes else 'N/A'}"
            )
        category_blocks = [
            f"{c.id}: {c.name}\n   Description: {c.description}\n   Examples: {', '.join(c.examples)}"
            for c in self.categories
        ]
        return [
            {"role": "system", "content": load_prompt("categorization_system")},
            {
                "role": "user",
                "content": render_prompt(
                    "categorization_user",
                    products="\n".join(product_blocks),
                    categories="\n".join(category_blocks),
                ),
            },
        ]

    async def _ask_model(self, members: List[ProductVariant], deadline: Optional[Deadline]) -> List[_Assignment]:
        response = await self.completion.complete(
            self.build_messages(members),
            temperature=self.settings.temperature,
            max_tokens=self.settings.max_tokens,
            deadline=deadline,
        )
        data = parse_json_object(response)
        try:
            payload = CategorizationPayload.model_validate(data)
        except ValidationError as e:
            raise ParseFailure(f"Unexpected categorization payload: {e}") from e

        assigned = set()
        assignments = []
        for item in payload.categorizations:
            if item.category_id not in self._by_id:
                logger.warning(f"⚠️  Ignoring unknown category '{item.category_id}'")
                continue
            indexes = [i for i in item.products if 0 <= i < len(members) and i not in assigned]
            if not indexes:
                continue
            assigned.update(indexes)
            assignments.append(_Assignment(
                category_id=item.category_id,
                products=[members[i] for i in indexes],
                confidence=max(0.0, min(1.0, item.confidence)),
                source="llm",
                attributes={k: v for k, v in item.attributes.items() if v not in (None, "")},
            ))

        leftover = [v for i, v in enumerate(members) if i not in assigned]
        if leftover:
            logger.info(f"{len(leftover)} product(s) not placed by the model; matching by keywords")
            assignments.extend(self.match_by_text(leftover))
        return assignments

    def _profile(self, category: ProductCategory) -> str:
        return " ".join(
            [category.name, category.description, *category.keywords, *category.examples, *category.alternate_names]
        )

    def best_name_match(self, text: str) -> Optional[str]:
        """Category whose name or alternate name shares enough words with the text."""
        best_id, best_score = None, 0.0
        for category in self.categories:
            score = max(word_overlap(text, name) for name in [category.name, *category.alternate_names])
            if score > best_score:
                best_id, best_score = category.id, score
        return best_id if best_score > NAME_MATCH_MINIMUM else None

    def match_category(self, variant: ProductVariant) -> Tuple[str, float]:
        """(category id, similarity) for one product by keyword-profile overlap."""
        text = product_text(variant)
        best_id, best_score = None, 0.0
        for category in self.categories:
            score = text_similarity(text, self._profile(category))
            if score > best_score:
                best_id, best_score = category.id, score

        if best_id is None or best_score < self.settings.confidence_threshold / 2:
            name_match = self.best_name_match(text)
            if name_match is not None:
                return name_match, NAME_MATCH_CONFIDENCE
            if best_id is None:
                return UNCATEGORIZED.id, DEFAULT_MATCH_CONFIDENCE
        return best_id, best_score

    def match_by_text(self, members: List[ProductVariant]) -> List[_Assignment]:
        grouped: Dict[str, Tuple[List[ProductVariant], List[float]]] = {}
        for variant in members:
            category_id, score = self.match_category(variant)
            products, scores = grouped.setdefault(category_id, ([], []))
            products.append(variant)
            scores.append(score)

        assignments = []
        for category_id, (products, scores) in grouped.items():
            bonus = min(self.settings.max_size_bonus, len(products) * self.settings.size_bonus_per_product)
            confidence = min(self.settings.max_confidence, sum(scores) / len(scores) + bonus)
            assignments.append(_Assignment(category_id, products, confidence, source="text_similarity"))
        return assignments

    # ------------------------------------------------------------------
    # Results
    # ------------------------------------------------------------------

    def category_attributes(self, products: List[ProductVariant], category: ProductCategory) -> Dict[str, Any]:
        """Most common value of each attribute the category defines, guessed from text where missing."""
        attributes: Dict[str, Any] = {}
        for definition in category.attributes:
            guess = _GUESSERS.get(definition.name)
            values = []
            for variant in products:
                value = variant.attributes.get(definition.name)
                if value in (None, "") and guess is not None:
                    value = guess(f"{variant.name} {variant.description or ''}")
                values.append(value)
            common = _most_common(values)
            if common is not None:
                attributes[definition.name] = common
        return attributes

    def _format(self, assignments: List[_Assignment]) -> List[CategoryResult]:
        merged: Dict[str, List[_Assignment]] = {}
        for assignment in assignments:
            if assignment.products:
                merged.setdefault(assignment.category_id, []).append(assignment)

        results = []
        for category_id, parts in merged.items():
            category = self._by_id[category_id]
            products = [v for part in parts for v in part.products]
            confidence = sum(part.confidence * len(part.products) for part in parts) / len(products)
            attributes: Dict[str, Any] = {"item_count": len(products)}
            attributes.update(self.category_attributes(products, category))
            for part in parts:
                for key, value in part.attributes.items():
                    attributes.setdefault(key, value)
            results.append(CategoryResult(
                id=slugify(category.name),
                name=category.name,
                category_id=category.id,
                products=products,
                confidence=round(confidence, 4),
                source=_most_common([part.source for part in parts]),
                attributes=attributes,
            ))

        results.sort(key=lambda r: r.confidence, reverse=True)
        return results

    def fallback_categorization(self, variants: List[ProductVariant]) -> List[CategoryResult]:
        """Rule categories by product name, everything else under Other Products."""
        grouped: Dict[str, List[ProductVariant]] = {}
        for variant in variants:
            name = next((label for pattern, label in FALLBACK_RULES if pattern.search(variant.name)), OTHER_PRODUCTS)
            grouped.setdefault(name, []).append(variant)
        return [
            CategoryResult(
                id=slugify(name),
                name=name,
                category_id=slugify(name),
                products=products,
                confidence=FALLBACK_CONFIDENCE,
                source="fallback",
                attributes={"item_count": len(products)},
            )
            for name, products in grouped.items()
        ]
