import asyncio
import os
from typing import Callable, List, Optional, Protocol, Sequence, Union
from fastembed import TextEmbedding

from vectorindex.config import settings
from vectorindex.core.exceptions import ConfigurationError
from vectorindex.core.logging import get_logger

logger = get_logger(__name__)

DEFAULT_EMBEDDING_MODEL = "text-embedding-3-small"

OPENAI_DIMENSIONS = {
    "text-embedding-3-small": 1536,
    "text-embedding-3-large": 3072,
    "text-embedding-ada-002": 1536,
}

# Factory used to create or return the embedding service singleton. This indirection
# allows tests to swap in stubs without triggering API calls or model downloads.
_embedding_service_factory: Callable[[Optional[str]], "EmbeddingService"]


class EmbeddingClient(Protocol):
    """What the pipeline and query service need from an embedding provider."""

    @property
    def available(self) -> bool:
        ...

    async def create_embedding(self, content: Union[str, Sequence[str]]) -> List[float]:
        ...


class EmbeddingService:
    """
    Embedding provider contract used by indexing and querying.

    Provider is picked from the model name:
    - OpenAI models: text-embedding-3-small, text-embedding-3-large, text-embedding-ada-002
    - FastEmbed models: BAAI/bge-*, snowflake/*, mixedbread-ai/*, etc.

    `available` is False when the provider cannot be used (no OpenAI key).
    Callers never get a degraded result: create_embedding raises
    ConfigurationError instead.
    """
    _instances = {}

    def __new__(cls, model: Optional[str] = None):
        embedding_model = model or settings.embedding_model or DEFAULT_EMBEDDING_MODEL

        if embedding_model not in cls._instances:
            instance = super().__new__(cls)
            instance._initialize(embedding_model)
            cls._instances[embedding_model] = instance

        return cls._instances[embedding_model]

    def _initialize(self, model: str):
        self.model = model
        self.provider = "openai" if model.startswith("text-embedding-") else "fastembed"
        self._client = None
        self._embeddings = None

    @property
    def available(self) -> bool:
        if self.provider == "openai":
            return bool(self._openai_api_key())
        return True

    @staticmethod
    def _openai_api_key() -> Optional[str]:
        return settings.openai_api_key or os.getenv("OPENAI_API_KEY")

    def _require_available(self):
        if not self.available:
            raise ConfigurationError(
                f"Embedding service unavailable for model {self.model} (missing OPENAI_API_KEY)"
            )

    def _fastembed(self) -> TextEmbedding:
        """Initialize FastEmbed (local, free) on first use."""
        if self._embeddings is None:
            self._embeddings = TextEmbedding(model_name=self.model)
            logger.info("fastembed_initialized", model=self.model)
        return self._embeddings

    def _openai(self):
        """Initialize the OpenAI client on first use."""
        if self._client is None:
            from openai import OpenAI

            self._client = OpenAI(api_key=self._openai_api_key())
            logger.info("openai_embeddings_initialized", model=self.model, dimensions=self.get_dimensions())
        return self._client

    def embed_query(self, text: str) -> List[float]:
        """Embed a single query string."""
        return self.embed_documents([text])[0]

    def embed_documents(self, texts: List[str]) -> List[List[float]]:
        """Embed a list of documents."""
        self._require_available()
        if not texts:
            return []
        if self.provider == "openai":
            return self._embed_openai(texts)
        # FastEmbed returns a generator of numpy arrays
        return [embedding.tolist() for embedding in self._fastembed().embed(texts)]

    def _embed_openai(self, texts: List[str]) -> List[List[float]]:
        response = self._openai().embeddings.create(
            model=self.model,
            input=texts,
            encoding_format="float"
        )
        embeddings = [item.embedding for item in response.data]

        logger.debug(
            "openai_embedding_created",
            texts=len(texts),
            dimensions=len(embeddings[0]) if embeddings else 0,
        )
        return embeddings

    async def create_embedding(self, content: Union[str, Sequence[str]]) -> List[float]:
        """
        Embed one indexable unit. A list of lines is joined with newlines so
        a record always maps to exactly one vector.
        """
        self._require_available()
        text = content if isinstance(content, str) else "\n".join(content)
        return await asyncio.to_thread(self.embed_query, text)

    def get_dimensions(self) -> int:
        """Get the dimensionality of embeddings produced by this model."""
        if self.provider == "openai":
            if self.model not in OPENAI_DIMENSIONS:
                logger.warning("unknown_openai_model_dimensions", model=self.model, assumed=1536)
            return OPENAI_DIMENSIONS.get(self.model, 1536)
        return len(self.embed_query("test"))


def set_embedding_service_factory(factory: Callable[[Optional[str]], "EmbeddingService"]):
    """Override the factory used to create EmbeddingService instances."""
    global _embedding_service_factory
    _embedding_service_factory = factory


def reset_embedding_service_singleton():
    """Reset the singleton instances (useful for tests)."""
    EmbeddingService._instances = {}


def reset_embedding_service_factory():
    """Reset the embedding service factory to the default singleton creator."""
    set_embedding_service_factory(EmbeddingService)


def get_embedding_service(embedding_model: Optional[str] = None) -> EmbeddingService:
    """Get the embedding service via the current factory."""
    return _embedding_service_factory(embedding_model)


reset_embedding_service_factory()
