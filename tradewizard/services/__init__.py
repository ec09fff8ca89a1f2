"""
External collaborator clients.

- completion: OpenAI-compatible chat completions (extraction, validation and categorization models)
- embeddings: OpenAI-compatible text embeddings for product clustering
- lookups: compliance and market-intelligence JSON services
"""

from .completion import CompletionClient, OpenAICompletionClient, build_completion_client
from .embeddings import EmbeddingClient, OpenAIEmbeddingClient, build_embedding_client
from .lookups import ComplianceClient, MarketIntelligenceClient

__all__ = [
    "CompletionClient",
    "OpenAICompletionClient",
    "build_completion_client",
    "EmbeddingClient",
    "OpenAIEmbeddingClient",
    "build_embedding_client",
    "ComplianceClient",
    "MarketIntelligenceClient",
]
