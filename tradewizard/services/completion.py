"""
Text-completion collaborators.

Both the extraction model and the validation model speak the OpenAI chat
completions protocol (Perplexity exposes a compatible endpoint), so one client
class serves both; only the base URL, model and key differ.
"""

import logging
from abc import ABC, abstractmethod
from typing import Dict, List, Optional

from openai import APIConnectionError, APIError, APITimeoutError, AsyncOpenAI, RateLimitError

from ..config import CompletionSettings
from ..errors import CollaboratorFailure
from ..retry import Deadline, RetryPolicy

logger = logging.getLogger(__name__)

Messages = List[Dict[str, str]]


class CompletionClient(ABC):
    """Anything that turns chat messages into a text completion."""

    name: str = "completion"

    @abstractmethod
    async def complete(
        self,
        messages: Messages,
        temperature: float,
        max_tokens: int,
        deadline: Optional[Deadline] = None,
    ) -> str:
        """
        Return the completion text.

        Raises:
            CollaboratorFailure: on network, auth or quota errors
        """
        pass


class OpenAICompletionClient(CompletionClient):
    """Chat completions over the OpenAI SDK, with backoff on transient errors."""

    def __init__(
        self,
        api_key: str,
        model: str,
        base_url: Optional[str] = None,
        name: str = "openai",
        timeout: float = 60.0,
        retry_policy: Optional[RetryPolicy] = None,
        client: Optional[AsyncOpenAI] = None,
    ):
        self.name = name
        self.model = model
        self.timeout = timeout
        self.retry_policy = retry_policy or RetryPolicy(max_attempts=3, base_delay=1.0, max_delay=10.0, jitter=1.0)
        self.client = client or AsyncOpenAI(api_key=api_key, base_url=base_url)

    async def complete(
        self,
        messages: Messages,
        temperature: float,
        max_tokens: int,
        deadline: Optional[Deadline] = None,
    ) -> str:
        timeout = deadline.timeout(self.timeout) if deadline else self.timeout

        async def _call(attempt: int) -> str:
            response = await self.client.chat.completions.create(
                model=self.model,
                messages=messages,
                temperature=temperature,
                max_tokens=max_tokens,
                timeout=timeout,
            )
            return response.choices[0].message.content or ""

        try:
            content = await self.retry_policy.run(
                _call,
                description=f"{self.name} completion",
                retry_on=(RateLimitError, APIConnectionError, APITimeoutError),
                deadline=deadline,
            )
        except APIError as e:
            logger.error(f"❌ {self.name} completion failed: {type(e).__name__}: {e}")
            raise CollaboratorFailure(self.name, str(e)) from e

        logger.info(f"✅ {self.name} returned {len(content)} characters")
        return content


def build_completion_client(settings: CompletionSettings, name: str) -> Optional[CompletionClient]:
    """Client for the configured model, or None when no API key is set."""
    if not settings.api_key:
        logger.warning(f"⚠️  No API key configured for {name}; that stage will run without it")
        return None
    return OpenAICompletionClient(
        api_key=settings.api_key,
        model=settings.model,
        base_url=settings.base_url,
        name=name,
        timeout=settings.timeout,
        retry_policy=RetryPolicy(max_attempts=settings.max_attempts, base_delay=1.0, max_delay=10.0, jitter=1.0),
    )
