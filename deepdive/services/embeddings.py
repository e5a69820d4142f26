from __future__ import annotations

import asyncio
from typing import Any, Protocol

from deepdive.config import settings
from deepdive.errors import EmbeddingFailure


class EmbeddingService(Protocol):
    async def embed(self, text: str) -> list[float]: ...


class LocalEmbeddingService:
    """sentence-transformers model loaded lazily on first use."""

    def __init__(self, model_name: str | None = None, batch_size: int | None = None):
        self.model_name = model_name or settings.local_embed_model
        self.batch_size = batch_size or int(settings.local_embed_batch_size)
        self._model: Any | None = None
        self._lock = asyncio.Lock()

    async def embed(self, text: str) -> list[float]:
        vectors = await self.embed_texts([text])
        return vectors[0]

    async def embed_texts(self, texts: list[str]) -> list[list[float]]:
        if not texts:
            return []
        async with self._lock:
            if self._model is None:
                await asyncio.to_thread(self._load_model)
        try:
            return await asyncio.to_thread(self._embed_sync, texts)
        except Exception as exc:
            raise EmbeddingFailure(f"local embedding failed: {exc}") from exc

    def _load_model(self) -> None:
        from sentence_transformers import SentenceTransformer

        self._model = SentenceTransformer(self.model_name)

    def _embed_sync(self, texts: list[str]) -> list[list[float]]:
        vectors = self._model.encode(
            texts,
            batch_size=self.batch_size,
            normalize_embeddings=True,
            show_progress_bar=False,
        )
        return [list(map(float, row)) for row in vectors]


class OpenAIEmbeddingService:
    """Any OpenAI-compatible /embeddings endpoint."""

    def __init__(self, client: Any | None = None, model: str | None = None):
        self.model = model or settings.embedding_model
        self._client = client

    def _get_client(self) -> Any:
        if self._client is None:
            from openai import AsyncOpenAI

            self._client = AsyncOpenAI(
                api_key=settings.embedding_api_key,
                base_url=settings.embedding_base_url,
            )
        return self._client

    async def embed(self, text: str) -> list[float]:
        try:
            response = await self._get_client().embeddings.create(model=self.model, input=text)
        except Exception as exc:
            raise EmbeddingFailure(f"embedding request failed: {exc}") from exc
        data = getattr(response, "data", None) or []
        if not data:
            raise EmbeddingFailure("embedding response contained no vectors")
        return [float(v) for v in data[0].embedding]


_service: EmbeddingService | None = None


def get_embedding_service() -> EmbeddingService:
    global _service
    if _service is None:
        backend = settings.embedding_backend.lower().strip()
        if backend == "local":
            _service = LocalEmbeddingService()
        elif backend == "openai":
            _service = OpenAIEmbeddingService()
        else:
            raise ValueError(f"Unsupported EMBEDDING_BACKEND: {settings.embedding_backend}")
    return _service
