import asyncio
from typing import List, Sequence

import openai
from openai import AsyncOpenAI

from ..config import Settings, settings as default_settings
from ..errors import ConfigurationError, EmbeddingServiceError
from ..logging_config import get_logger

logger = get_logger(__name__)


class EmbeddingClient:
    """One embedding call per text; vectors must all have `dimension` floats."""

    def __init__(self, client: AsyncOpenAI | None = None, settings: Settings | None = None):
        self.settings = settings or default_settings
        self.model = self.settings.OPENAI_EMBED_MODEL
        self.dimension = self.settings.EMBED_DIM
        self.concurrency = max(1, self.settings.EMBED_CONCURRENCY)
        self._client = client

    def get_client(self) -> AsyncOpenAI:
        if self._client is None:
            if not self.settings.OPENAI_API_KEY:
                raise ConfigurationError(
                    "OPENAI_API_KEY is not set. Please configure OPENAI_API_KEY in environment variables."
                )
            # SDK retries off: one request per embedding
            self._client = AsyncOpenAI(
                api_key=self.settings.OPENAI_API_KEY, timeout=self.settings.EMBED_TIMEOUT, max_retries=0
            )
        return self._client

    async def embed(self, text: str) -> List[float]:
        client = self.get_client()
        try:
            resp = await client.embeddings.create(model=self.model, input=[text])
        except openai.OpenAIError as e:
            logger.error("Embedding request failed: %s", e)
            raise EmbeddingServiceError("Failed to generate embedding", details=str(e)) from e
        vector = list(resp.data[0].embedding)
        if len(vector) != self.dimension:
            raise ConfigurationError(
                f"Embedding model {self.model} returned {len(vector)} dimensions, expected {self.dimension}"
            )
        return vector

    async def embed_batch(self, texts: Sequence[str]) -> List[List[float]]:
        """Embed texts in input order, sequentially unless EMBED_CONCURRENCY > 1."""
        if self.concurrency == 1:
            return [await self.embed(t) for t in texts]

        sem = asyncio.Semaphore(self.concurrency)

        async def _one(text: str) -> List[float]:
            async with sem:
                return await self.embed(text)

        # gather keeps results aligned with the input order
        return list(await asyncio.gather(*(_one(t) for t in texts)))
