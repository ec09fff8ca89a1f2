"""
Tests for category-based product consolidation.
"""

import json
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from tradewizard.cache import MemoryStore
from tradewizard.categorization import (
    CategoryConsolidationEngine,
    cosine_similarity,
    text_similarity,
    tokenize,
)
from tradewizard.config import CategorizationSettings, EmbeddingSettings
from tradewizard.errors import CollaboratorFailure
from tradewizard.models import CategorizationPayload, ProductVariant, StageStatus
from tradewizard.services.embeddings import EmbeddingClient, OpenAIEmbeddingClient, build_embedding_client


class FakeEmbeddings(EmbeddingClient):
    """Vector of the first keyword found in each text; records every batch."""

    def __init__(self, vectors=None, error: Exception = None):
        self.vectors = vectors or {"corn dog": [1.0, 0.0], "wine": [0.0, 1.0]}
        self.error = error
        self.calls = []

    async def embed(self, texts, deadline=None):
        self.calls.append(list(texts))
        if self.error is not None:
            raise self.error
        return [next(v for word, v in self.vectors.items() if word in t.lower()) for t in texts]


CORN_DOGS = [
    ProductVariant(id="p1", name="Corn Dog Classic", description="Frozen breaded corn dogs"),
    ProductVariant(id="p2", name="Corn Dog Mini", description="Frozen mini corn dogs"),
]


def food_answer(products, category_id="food_products"):
    return json.dumps({"categorizations": [{
        "categoryId": category_id,
        "confidence": 90,
        "products": products,
        "attributes": {"main_ingredient": "Corn", "storage_type": "frozen", "target_market": ""},
        "reasoning": "Frozen snack foods",
    }]})


class TestTextHelpers:
    """Test tokenization and similarity scoring."""

    def test_tokenize_drops_stopwords_and_punctuation(self):
        assert tokenize("The best organic red wine over the hills!") == ["best", "organic", "red", "wine", "hills"]

    def test_text_similarity(self):
        profile = "Wine beverages including red wine and white wine from various regions"

        assert text_similarity("Organic red wine from South Africa", profile) > 0.3
        assert text_similarity("Cotton t-shirt in blue", profile) == 0.0

    def test_cosine_similarity(self):
        assert cosine_similarity([1.0, 0.0], [0.0, 1.0]) == 0.0
        assert cosine_similarity([1.0, 2.0], [2.0, 4.0]) == pytest.approx(1.0)

    def test_cosine_similarity_dimension_mismatch(self):
        with pytest.raises(ValueError):
            cosine_similarity([1.0, 0.0], [1.0, 0.0, 0.0])


class TestClustering:
    """Test average-linkage clustering."""

    def test_merges_until_threshold(self):
        similar = {(0, 2): 0.9, (1, 3): 0.8}
        engine = CategoryConsolidationEngine(settings=CategorizationSettings(similarity_threshold=0.75))

        clusters = engine.cluster(4, lambda i, j: similar.get((i, j), 0.1))

        assert clusters == [[0, 2], [1, 3]]

    def test_nothing_similar_keeps_singletons(self):
        engine = CategoryConsolidationEngine()

        assert engine.cluster(3, lambda i, j: 0.0) == [[0], [1], [2]]


class TestTextMatching:
    """Test categorization without any model configured."""

    @pytest.mark.asyncio
    async def test_products_sorted_by_keywords(self):
        engine = CategoryConsolidationEngine()

        result = await engine.consolidate([
            ProductVariant(name="Red Wine 750ml", description="Dry red wine"),
            ProductVariant(name="Red Wine 1.5L"),
            ProductVariant(name="Cotton T-Shirt", description="Unisex cotton shirt"),
        ])

        assert result.status == StageStatus.SUCCESS
        assert [c.name for c in result.output] == ["Beverages", "Ready-to-Wear"]
        beverages = result.output[0]
        assert beverages.id == "beverages"
        assert beverages.category_id == "beverages"
        assert beverages.source == "text_similarity"
        assert [p.name for p in beverages.products] == ["Red Wine 750ml", "Red Wine 1.5L"]
        assert beverages.attributes == {"item_count": 2}
        assert result.metadata["clusters"] == 2

    @pytest.mark.asyncio
    async def test_unmatched_product_is_uncategorized(self):
        result = await CategoryConsolidationEngine().consolidate([ProductVariant(name="Xyzzy Widget")])

        category = result.output[0]
        assert category.category_id == "uncategorized"
        assert category.name == "Uncategorized Products"
        assert category.confidence == pytest.approx(0.52)

    @pytest.mark.asyncio
    async def test_confidence_is_capped(self):
        result = await CategoryConsolidationEngine().consolidate([ProductVariant(name="Wine")])

        assert result.output[0].confidence == pytest.approx(0.98)

    def test_name_match(self):
        engine = CategoryConsolidationEngine()

        assert engine.best_name_match("home goods") == "home_goods"
        assert engine.best_name_match("cotton socks") is None

    @pytest.mark.asyncio
    async def test_empty_input(self):
        result = await CategoryConsolidationEngine().consolidate([])

        assert result.status == StageStatus.SUCCESS
        assert result.output == []


class TestModelCategorization:
    """Test cluster categorization through the completion model."""

    @pytest.mark.asyncio
    async def test_cluster_assigned_by_model(self, fake_completion):
        completion = fake_completion(food_answer([0, 1]))
        embeddings = FakeEmbeddings()
        engine = CategoryConsolidationEngine(embeddings=embeddings, completion=completion)

        result = await engine.consolidate(CORN_DOGS)

        assert result.status == StageStatus.SUCCESS
        assert len(completion.calls) == 1
        prompt = completion.calls[0]["messages"][1]["content"]
        assert "0. Corn Dog Classic" in prompt
        assert "food_products: Food Products" in prompt
        assert len(result.output) == 1
        category = result.output[0]
        assert category.name == "Food Products"
        assert category.source == "llm"
        assert category.confidence == pytest.approx(0.9)
        assert category.attributes == {
            "item_count": 2,
            "main_ingredient": "Corn",
            "preparation_type": "Frozen",
            "storage_type": "frozen",
        }

    @pytest.mark.asyncio
    async def test_unplaced_product_matched_by_keywords(self, fake_completion):
        engine = CategoryConsolidationEngine(embeddings=FakeEmbeddings(), completion=fake_completion(food_answer([0])))

        result = await engine.consolidate(CORN_DOGS)

        category = result.output[0]
        assert [p.name for p in category.products] == ["Corn Dog Classic", "Corn Dog Mini"]
        assert category.source == "llm"
        assert 0.5 < category.confidence < 0.9

    @pytest.mark.asyncio
    async def test_unknown_category_ignored(self, fake_completion):
        engine = CategoryConsolidationEngine(
            embeddings=FakeEmbeddings(), completion=fake_completion(food_answer([0, 1], category_id="toys"))
        )

        result = await engine.consolidate(CORN_DOGS)

        assert result.status == StageStatus.SUCCESS
        assert result.output[0].category_id == "food_products"
        assert result.output[0].source == "text_similarity"

    @pytest.mark.asyncio
    async def test_model_failure_falls_back_to_keywords(self, fake_completion):
        completion = fake_completion(error=CollaboratorFailure("categorization", "service unavailable"))
        engine = CategoryConsolidationEngine(embeddings=FakeEmbeddings(), completion=completion)

        result = await engine.consolidate(CORN_DOGS)

        assert result.status == StageStatus.PARTIAL
        assert "Categorization failed" in result.error
        assert result.output[0].category_id == "food_products"
        assert result.output[0].source == "text_similarity"

    @pytest.mark.asyncio
    async def test_unparseable_answer_falls_back_to_keywords(self, fake_completion):
        engine = CategoryConsolidationEngine(embeddings=FakeEmbeddings(), completion=fake_completion("no idea"))

        result = await engine.consolidate(CORN_DOGS)

        assert result.status == StageStatus.PARTIAL
        assert result.output[0].category_id == "food_products"

    @pytest.mark.asyncio
    async def test_model_disabled(self, fake_completion):
        completion = fake_completion(food_answer([0, 1]))
        engine = CategoryConsolidationEngine(
            completion=completion, settings=CategorizationSettings(enable_llm=False)
        )

        result = await engine.consolidate(CORN_DOGS)

        assert completion.calls == []
        assert result.output[0].source == "text_similarity"


class TestCaching:
    """Test reuse of embeddings and cluster answers."""

    @pytest.mark.asyncio
    async def test_second_run_served_from_cache(self, fake_completion):
        completion = fake_completion(food_answer([0, 1]))
        embeddings = FakeEmbeddings()
        engine = CategoryConsolidationEngine(embeddings=embeddings, completion=completion, store=MemoryStore())

        await engine.consolidate(CORN_DOGS)
        result = await engine.consolidate(CORN_DOGS)

        assert len(completion.calls) == 1
        assert len(embeddings.calls) == 1
        category = result.output[0]
        assert category.source == "cache"
        assert category.confidence == pytest.approx(0.9)
        assert category.attributes["storage_type"] == "frozen"

    @pytest.mark.asyncio
    async def test_failed_answer_not_cached(self, fake_completion):
        store = MemoryStore()
        failing = CategoryConsolidationEngine(
            embeddings=FakeEmbeddings(), completion=fake_completion("no idea"), store=store
        )
        await failing.consolidate(CORN_DOGS)

        completion = fake_completion(food_answer([0, 1]))
        engine = CategoryConsolidationEngine(embeddings=FakeEmbeddings(), completion=completion, store=store)
        result = await engine.consolidate(CORN_DOGS)

        assert len(completion.calls) == 1
        assert result.output[0].source == "llm"

    @pytest.mark.asyncio
    async def test_caching_disabled(self, fake_completion):
        store = MemoryStore()
        engine = CategoryConsolidationEngine(
            embeddings=FakeEmbeddings(),
            completion=fake_completion(food_answer([0, 1])),
            store=store,
            settings=CategorizationSettings(use_caching=False),
        )

        await engine.consolidate(CORN_DOGS)

        assert len(store) == 0


class TestDegradedRuns:
    """Test embedding failures and the rule fallback."""

    @pytest.mark.asyncio
    async def test_embedding_failure_clusters_by_name(self):
        embeddings = FakeEmbeddings(error=CollaboratorFailure("embeddings", "quota exceeded"))
        engine = CategoryConsolidationEngine(embeddings=embeddings)

        result = await engine.consolidate([
            ProductVariant(name="Red Wine 750ml"),
            ProductVariant(name="Red Wine 1.5L"),
        ])

        assert result.status == StageStatus.PARTIAL
        assert "Embeddings unavailable" in result.error
        assert result.metadata["clusters"] == 1
        assert result.output[0].name == "Beverages"

    @pytest.mark.asyncio
    async def test_unexpected_error_uses_rule_categories(self):
        engine = CategoryConsolidationEngine()
        variants = [
            ProductVariant(name="Corn Dog Classic"),
            ProductVariant(name="Cheddar Cheese Bites"),
            ProductVariant(name="Beef Jerky"),
            ProductVariant(name="Olive Oil"),
        ]

        with patch.object(engine, "cluster", side_effect=RuntimeError("matrix exploded")):
            result = await engine.consolidate(variants)

        assert result.status == StageStatus.PARTIAL
        assert result.error == "matrix exploded"
        assert [c.name for c in result.output] == ["Corn Dogs", "Cheese Products", "Beef Products", "Other Products"]
        assert all(c.source == "fallback" and c.confidence == 0.7 for c in result.output)
        assert result.output[0].id == "corn-dogs"


class TestCategoryAttributes:
    """Test attribute derivation for a category."""

    def test_most_common_value_with_guesses(self):
        engine = CategoryConsolidationEngine()
        food = next(c for c in engine.categories if c.id == "food_products")
        products = [
            ProductVariant(name="Patty", attributes={"main_ingredient": "Beef"}),
            ProductVariant(name="Strips", description="Breaded chicken strips"),
            ProductVariant(name="Burger", description="Beef patties kept in the freezer"),
        ]

        attributes = engine.category_attributes(products, food)

        assert attributes["main_ingredient"] == "Beef"
        assert attributes["preparation_type"] == "Breaded"
        assert attributes["storage_type"] == "frozen"


class TestCategorizationPayload:
    """Test parsing of the categorizer answer."""

    def test_percent_confidence_and_index_filtering(self):
        payload = CategorizationPayload.model_validate({"categorizations": [
            {"categoryId": "beverages", "confidence": 85, "products": [0, "1", True, 2]},
            {"confidence": 50, "products": [1]},
        ]})

        assert len(payload.categorizations) == 1
        item = payload.categorizations[0]
        assert item.category_id == "beverages"
        assert item.confidence == pytest.approx(0.85)
        assert item.products == [0, 2]


class TestEmbeddingClient:
    """Test the OpenAI-compatible embedding client."""

    def test_no_key_means_no_client(self):
        assert build_embedding_client(EmbeddingSettings()) is None

    @pytest.mark.asyncio
    async def test_vectors_returned_in_input_order(self):
        client = MagicMock()
        client.embeddings.create = AsyncMock(return_value=SimpleNamespace(data=[
            SimpleNamespace(index=1, embedding=[0.0, 1.0]),
            SimpleNamespace(index=0, embedding=[1.0, 0.0]),
        ]))
        embedder = OpenAIEmbeddingClient(api_key="test", dimensions=2, client=client)

        vectors = await embedder.embed(["first", "second"])

        assert vectors == [[1.0, 0.0], [0.0, 1.0]]
        kwargs = client.embeddings.create.call_args.kwargs
        assert kwargs["dimensions"] == 2
        assert kwargs["input"] == ["first", "second"]

    @pytest.mark.asyncio
    async def test_count_mismatch_is_failure(self):
        client = MagicMock()
        client.embeddings.create = AsyncMock(return_value=SimpleNamespace(data=[
            SimpleNamespace(index=0, embedding=[1.0, 0.0]),
        ]))
        embedder = OpenAIEmbeddingClient(api_key="test", client=client)

        with pytest.raises(CollaboratorFailure):
            await embedder.embed(["first", "second"])
