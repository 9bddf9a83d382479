"""
Embedding Service for Semantic Ranking

Provides embedding generation with multiple provider support:
- OpenAI (API, default)
- SentenceTransformers (local, optional extra)

Used by the hybrid ranker to compute query/paper similarity.
"""

from abc import ABC, abstractmethod
from typing import Dict, List, Optional
import asyncio
import hashlib
import logging

from paperrank.services.paper_ranking.errors import EmbeddingUnavailable

logger = logging.getLogger(__name__)


class EmbeddingProvider(ABC):
    """Abstract base class for embedding providers."""

    @property
    @abstractmethod
    def model_name(self) -> str:
        """Model identifier string."""
        ...

    @property
    @abstractmethod
    def dimensions(self) -> int:
        """Embedding vector dimensions."""
        ...

    @abstractmethod
    async def embed(self, text: str) -> List[float]:
        """Generate embedding for a single text."""
        ...

    @abstractmethod
    async def embed_batch(self, texts: List[str]) -> List[List[float]]:
        """Generate embeddings for multiple texts."""
        ...


class OpenAIEmbeddingProvider(EmbeddingProvider):
    """
    OpenAI embeddings via API.

    Model: text-embedding-3-small
    - Dimensions: 1536
    - One request per batch
    """

    MODEL = "text-embedding-3-small"
    DIMENSIONS = 1536

    def __init__(self, api_key: str, model: Optional[str] = None, timeout: float = 20.0):
        from openai import AsyncOpenAI
        self._model = model or self.MODEL
        self._client = AsyncOpenAI(api_key=api_key, timeout=timeout, max_retries=1)

    @property
    def model_name(self) -> str:
        return self._model

    @property
    def dimensions(self) -> int:
        return self.DIMENSIONS

    async def embed(self, text: str) -> List[float]:
        response = await self._client.embeddings.create(model=self._model, input=text)
        return response.data[0].embedding

    async def embed_batch(self, texts: List[str]) -> List[List[float]]:
        if not texts:
            return []

        # OpenAI supports up to 2048 texts per batch
        response = await self._client.embeddings.create(model=self._model, input=texts)
        ordered = sorted(response.data, key=lambda item: item.index)
        return [item.embedding for item in ordered]


class SentenceTransformerProvider(EmbeddingProvider):
    """
    Local embeddings via sentence-transformers.

    Model: all-MiniLM-L6-v2 (384 dims). Vectors are L2-normalized.
    """

    MODEL = "all-MiniLM-L6-v2"
    DIMENSIONS = 384

    def __init__(self):
        self._model = None
        self._lock = asyncio.Lock()

    def _load_model(self):
        """Lazy load the model on first use."""
        if self._model is None:
            from sentence_transformers import SentenceTransformer
            logger.info("[EmbeddingService] Loading SentenceTransformer model: %s", self.MODEL)
            self._model = SentenceTransformer(self.MODEL)
        return self._model

    @property
    def model_name(self) -> str:
        return self.MODEL

    @property
    def dimensions(self) -> int:
        return self.DIMENSIONS

    async def embed(self, text: str) -> List[float]:
        vectors = await self.embed_batch([text])
        return vectors[0]

    async def embed_batch(self, texts: List[str]) -> List[List[float]]:
        if not texts:
            return []

        async with self._lock:
            model = self._load_model()
            loop = asyncio.get_running_loop()
            embeddings = await loop.run_in_executor(
                None,
                lambda: model.encode(texts, normalize_embeddings=True, batch_size=32)
            )
            return embeddings.tolist()


class EmbeddingService:
    """
    Embedding service with an in-memory content cache.

    Papers recur across queries, so their vectors are cached by content hash
    and only unseen texts are sent to the provider. Provider failures are
    raised as ``EmbeddingUnavailable``.
    """

    CACHE_SIZE = 5000

    def __init__(self, provider: EmbeddingProvider, use_cache: bool = True):
        self.provider = provider
        self.use_cache = use_cache
        self._cache: Dict[str, List[float]] = {}

        logger.info(
            "[EmbeddingService] Initialized with provider=%s, dims=%s, cache=%s",
            self.provider.model_name, self.provider.dimensions, use_cache,
        )

    @property
    def model_name(self) -> str:
        return self.provider.model_name

    @property
    def dimensions(self) -> int:
        return self.provider.dimensions

    @staticmethod
    def content_hash(text: str) -> str:
        """Generate SHA-256 hash for content deduplication."""
        normalized = text.strip().lower()
        return hashlib.sha256(normalized.encode('utf-8')).hexdigest()

    @staticmethod
    def prepare_paper_text(title: str, abstract: Optional[str] = None, max_abstract_len: int = 2000) -> str:
        """
        Prepare paper text for embedding: title followed by abstract.

        Truncates abstract to prevent token overflow.
        """
        text = title or ""
        if abstract:
            truncated = abstract[:max_abstract_len]
            if len(abstract) > max_abstract_len:
                truncated = truncated.rsplit(' ', 1)[0] + "..."
            text = f"{text} {truncated}"
        return text.strip()

    async def embed(self, text: str) -> List[float]:
        vectors = await self.embed_batch([text])
        return vectors[0]

    async def embed_batch(self, texts: List[str]) -> List[List[float]]:
        """
        Generate embeddings for multiple texts.

        Empty texts get an empty vector, which scores as "no similarity".
        """
        if not texts:
            return []

        results: List[Optional[List[float]]] = [None] * len(texts)
        to_embed_indices: List[int] = []
        to_embed_texts: List[str] = []

        for i, text in enumerate(texts):
            if not text or not text.strip():
                results[i] = []
                continue

            if self.use_cache:
                cached = self._cache.get(self.content_hash(text))
                if cached is not None:
                    results[i] = cached
                    continue

            to_embed_indices.append(i)
            to_embed_texts.append(text)

        if to_embed_texts:
            try:
                embeddings = await self.provider.embed_batch(to_embed_texts)
            except Exception as exc:
                raise EmbeddingUnavailable(f"{self.provider.model_name}: {exc}") from exc

            if len(embeddings) != len(to_embed_texts):
                raise EmbeddingUnavailable(
                    f"{self.provider.model_name}: expected {len(to_embed_texts)} vectors, got {len(embeddings)}"
                )

            for idx, orig_idx in enumerate(to_embed_indices):
                embedding = list(embeddings[idx]) if embeddings[idx] is not None else []
                results[orig_idx] = embedding
                if self.use_cache and embedding:
                    if len(self._cache) >= self.CACHE_SIZE:
                        # Drop the oldest quarter
                        for key in list(self._cache.keys())[:self.CACHE_SIZE // 4]:
                            del self._cache[key]
                    self._cache[self.content_hash(to_embed_texts[idx])] = embedding

        return [r if r is not None else [] for r in results]

    def clear_cache(self):
        """Clear the in-memory cache."""
        self._cache.clear()
        logger.info("[EmbeddingService] Cache cleared")


def build_embedding_service(settings) -> Optional[EmbeddingService]:
    """
    Create the embedding service selected by ``EMBEDDING_PROVIDER``.

    Returns None (pure-lexical ranking) when embeddings are disabled or the
    OpenAI provider is selected without an API key.
    """
    choice = (settings.EMBEDDING_PROVIDER or "none").lower()
    if choice == "none":
        logger.info("[EmbeddingService] Embeddings disabled; ranking is lexical only")
        return None

    if choice == "local":
        return EmbeddingService(provider=SentenceTransformerProvider())

    if not settings.OPENAI_API_KEY:
        logger.warning("[EmbeddingService] OPENAI_API_KEY not set; ranking is lexical only")
        return None

    provider = OpenAIEmbeddingProvider(
        settings.OPENAI_API_KEY,
        model=settings.OPENAI_EMBEDDING_MODEL,
        timeout=settings.RANKING_EMBEDDING_TIMEOUT,
    )
    return EmbeddingService(provider=provider)
