"""
oracle.py — Completion oracle used by the subject classifier.

CompletionOracle is the seam the classifier depends on; tests pass an AsyncMock
with the same `complete` signature. MistralOracle is the production adapter:

  - one Mistral client per process (HTTP connection pool reuse)
  - asyncio.Semaphore created lazily inside the running loop, never at import
  - every client failure re-raised as UpstreamUnavailableError

No HTTPException here — callers decide how to degrade.
"""
import asyncio
import logging
from typing import Optional, Protocol

from mistralai import Mistral

from studytrack.errors import UpstreamUnavailableError

logger = logging.getLogger(__name__)

ORACLE_TEMPERATURE = 0.0   # Deterministic classification
DEFAULT_MAX_TOKENS = 300


class CompletionOracle(Protocol):
    async def complete(
        self,
        prompt: str,
        *,
        system: Optional[str] = None,
        max_tokens: int = DEFAULT_MAX_TOKENS,
    ) -> str:
        ...


class MistralOracle:
    """CompletionOracle backed by mistralai's async chat completion."""

    def __init__(
        self,
        api_key: str,
        model: str = "mistral-small-latest",
        concurrency: int = 2,
        client: Optional[Mistral] = None,
    ):
        self.model = model
        self.concurrency = concurrency
        self._client = client if client is not None else (Mistral(api_key=api_key) if api_key else None)
        self._semaphore: Optional[asyncio.Semaphore] = None

    @property
    def available(self) -> bool:
        return self._client is not None

    def _get_semaphore(self) -> asyncio.Semaphore:
        if self._semaphore is None:
            self._semaphore = asyncio.Semaphore(self.concurrency)
        return self._semaphore

    async def complete(
        self,
        prompt: str,
        *,
        system: Optional[str] = None,
        max_tokens: int = DEFAULT_MAX_TOKENS,
    ) -> str:
        if self._client is None:
            raise UpstreamUnavailableError("Mistral API key not configured")

        messages = []
        if system:
            messages.append({"role": "system", "content": system})
        messages.append({"role": "user", "content": prompt})

        logger.debug("Calling Mistral API model=%s max_tokens=%d", self.model, max_tokens)
        async with self._get_semaphore():
            try:
                response = await self._client.chat.complete_async(
                    model=self.model,
                    messages=messages,
                    temperature=ORACLE_TEMPERATURE,
                    max_tokens=max_tokens,
                )
            except Exception as exc:
                raise UpstreamUnavailableError(f"Mistral completion failed: {type(exc).__name__}") from exc

        if not response or not response.choices:
            return ""
        content = response.choices[0].message.content
        return content if isinstance(content, str) else ""
