"""
Clients for the compliance and market-intelligence lookup services.

Both are JSON-over-HTTP POST endpoints. requests is blocking, so each call runs
in the default executor; no pipeline state is touched from the worker thread.
"""

import asyncio
import logging
from typing import Any, Dict, Optional

import requests
from pydantic import ValidationError

from ..errors import CollaboratorFailure
from ..models import (
    ComplianceRequest,
    ComplianceResponse,
    MarketIntelligenceRequest,
    MarketIntelligenceResponse,
)
from ..retry import Deadline, RetryPolicy

logger = logging.getLogger(__name__)


class LookupClient:
    """Base JSON POST client."""

    name = "lookup"

    def __init__(
        self,
        url: str,
        timeout: float = 10.0,
        retry_policy: Optional[RetryPolicy] = None,
        session: Optional[requests.Session] = None,
    ):
        self.url = url
        self.timeout = timeout
        self.retry_policy = retry_policy or RetryPolicy(max_attempts=1)
        self.session = session or requests.Session()

    def _post_sync(self, payload: Dict[str, Any], timeout: Optional[float]) -> Dict[str, Any]:
        response = self.session.post(
            self.url,
            json=payload,
            headers={"Content-Type": "application/json"},
            timeout=timeout,
        )
        response.raise_for_status()
        return response.json()

    async def _post(self, payload: Dict[str, Any], deadline: Optional[Deadline] = None) -> Dict[str, Any]:
        loop = asyncio.get_running_loop()
        timeout = deadline.timeout(self.timeout) if deadline else self.timeout

        async def _call(attempt: int) -> Dict[str, Any]:
            return await loop.run_in_executor(None, self._post_sync, payload, timeout)

        try:
            return await self.retry_policy.run(
                _call,
                description=f"{self.name} lookup",
                retry_on=(requests.ConnectionError, requests.Timeout),
                deadline=deadline,
            )
        except (requests.RequestException, ValueError) as e:
            logger.warning(f"⚠️  {self.name} service error: {e}")
            raise CollaboratorFailure(self.name, str(e)) from e


class ComplianceClient(LookupClient):
    name = "compliance"

    async def lookup(self, request: ComplianceRequest, deadline: Optional[Deadline] = None) -> ComplianceResponse:
        data = await self._post(request.model_dump(by_alias=True), deadline)
        try:
            return ComplianceResponse.model_validate(data)
        except ValidationError as e:
            raise CollaboratorFailure(self.name, f"unexpected response shape: {e}") from e


class MarketIntelligenceClient(LookupClient):
    name = "market_intelligence"

    async def lookup(
        self, request: MarketIntelligenceRequest, deadline: Optional[Deadline] = None
    ) -> MarketIntelligenceResponse:
        data = await self._post(request.model_dump(by_alias=True, exclude_none=True), deadline)
        try:
            return MarketIntelligenceResponse.model_validate(data)
        except ValidationError as e:
            raise CollaboratorFailure(self.name, f"unexpected response shape: {e}") from e
