"""
Text-embedding collaborator used to cluster similar products.
"""

import logging
from abc import ABC, abstractmethod
from typing import List, Optional

from openai import APIConnectionError, APIError, APITimeoutError, AsyncOpenAI, RateLimitError

from ..config import EmbeddingSettings
from ..errors import CollaboratorFailure
from ..retry import Deadline, RetryPolicy

logger = logging.getLogger(__name__)


class EmbeddingClient(ABC):
    """Anything that turns texts into vectors, one vector per text in order."""

    name: str = "embeddings"

    @abstractmethod
    async def embed(self, texts: List[str], deadline: Optional[Deadline] = None) -> List[List[float]]:
        pass


class OpenAIEmbeddingClient(EmbeddingClient):
    def __init__(
        self,
        api_key: str,
        model: str = "text-embedding-3-small",
        base_url: Optional[str] = None,
        dimensions: Optional[int] = None,
        timeout: float = 30.0,
        retry_policy: Optional[RetryPolicy] = None,
        client: Optional[AsyncOpenAI] = None,
    ):
        self.model = model
        self.dimensions = dimensions
        self.timeout = timeout
        self.retry_policy = retry_policy or RetryPolicy(max_attempts=3, base_delay=0.2, max_delay=30.0, jitter=1.0)
        self.client = client or AsyncOpenAI(api_key=api_key, base_url=base_url)

    async def embed(self, texts: List[str], deadline: Optional[Deadline] = None) -> List[List[float]]:
        if not texts:
            return []
        timeout = deadline.timeout(self.timeout) if deadline else self.timeout

        async def _call(attempt: int) -> List[List[float]]:
            params = {"input": texts, "model": self.model, "timeout": timeout}
            # only reduced sizes need the dimensions parameter
            if self.dimensions:
                params["dimensions"] = self.dimensions
            response = await self.client.embeddings.create(**params)
            ordered = sorted(response.data, key=lambda item: item.index)
            return [list(item.embedding) for item in ordered]

        try:
            vectors = await self.retry_policy.run(
                _call,
                description=f"{self.name} request",
                retry_on=(RateLimitError, APIConnectionError, APITimeoutError),
                deadline=deadline,
            )
        except APIError as e:
            logger.error(f"❌ Embedding request failed: {type(e).__name__}: {e}")
            raise CollaboratorFailure(self.name, str(e)) from e

        if len(vectors) != len(texts):
            raise CollaboratorFailure(self.name, f"Expected {len(texts)} vectors, got {len(vectors)}")
        return vectors


def build_embedding_client(settings: EmbeddingSettings) -> Optional[EmbeddingClient]:
    """Client for the configured embedding model, or None when no API key is set."""
    if not settings.api_key:
        logger.warning("⚠️  No API key configured for embeddings; products are clustered by name similarity")
        return None
    return OpenAIEmbeddingClient(
        api_key=settings.api_key,
        model=settings.model,
        base_url=settings.base_url,
        dimensions=settings.dimensions,
        timeout=settings.timeout,
        retry_policy=RetryPolicy(max_attempts=settings.max_attempts, base_delay=0.2, max_delay=30.0, jitter=1.0),
    )
