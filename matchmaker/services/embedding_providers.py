"""
Embedding Providers - Pluggable backends for onboarding embeddings

Every provider turns serialized onboarding text into a dense vector of a
fixed length. The orchestrator only depends on the EmbeddingProvider
interface, so a real model can replace the default without touching it.

Provider Comparison:
    | Provider                  | Network | Deterministic | Dimensions   |
    |---------------------------|---------|---------------|--------------|
    | hash (default)            | No      | Yes           | configurable |
    | openai text-embedding-3-s | Yes     | No            | 1536         |
    | openai text-embedding-3-l | Yes     | No            | 3072         |

Key Classes:
    - EmbeddingProvider: Provider interface (Protocol)
    - HashEmbeddingProvider: Token hashing embeddings, no model required
    - OpenAIEmbeddings: OpenAI API provider (extension point)

Length contract:
    A provider must return exactly `dimensions` floats per text. Callers
    validate the length and discard anything else.
"""

import hashlib
import logging
import re
from typing import List, Optional, Dict, Any, Protocol, runtime_checkable

import numpy as np

from matchmaker.exceptions import EmbeddingDimensionError

logger = logging.getLogger(__name__)

DEFAULT_DIMENSIONS = 1536

# Available models by provider
AVAILABLE_MODELS: Dict[str, List[str]] = {
    "openai": [
        "text-embedding-3-small",
        "text-embedding-3-large",
        "text-embedding-ada-002",
    ],
    "hash": ["md5-token-hashing"],
}

# Native model dimensions
MODEL_DIMENSIONS: Dict[str, int] = {
    "text-embedding-3-small": 1536,
    "text-embedding-3-large": 3072,
    "text-embedding-ada-002": 1536,
}

# Substituted for text without any tokens so the vector is never all zeros
EMPTY_TOKEN = "empty"

TOKEN_PATTERN = re.compile(r"\w+", re.UNICODE)


@runtime_checkable
class EmbeddingProvider(Protocol):
    """
    What the matching engine needs from an embedding backend.

    - dimensions: length of every returned vector
    - embed(): one serialized onboarding text
    - embed_batch(): several texts, same order as given
    """

    @property
    def dimensions(self) -> int:
        """Length of every vector this provider returns."""
        ...

    def embed(self, text: str) -> List[float]:
        """Vector for one text."""
        ...

    def embed_batch(self, texts: List[str]) -> List[List[float]]:
        """Embed multiple text strings."""
        ...


class HashEmbeddingProvider:
    """
    Deterministic embeddings from hashed tokens.

    Each lower-cased word token is hashed with MD5 into a bucket and a
    sign; the accumulated vector is L2-normalized. Texts sharing words end
    up with positive cosine similarity. Same text, same vector, every call.

    Attributes:
        dimensions: Configurable embedding dimensions

    Example:
        >>> provider = HashEmbeddingProvider(dimensions=1536)
        >>> len(provider.embed("industries: Fintech"))
        1536
    """

    name = "hash"

    def __init__(self, dimensions: int = DEFAULT_DIMENSIONS) -> None:
        if dimensions <= 0:
            raise ValueError("dimensions must be positive")
        self._dimensions = dimensions

    @property
    def dimensions(self) -> int:
        """Return configured dimensions."""
        return self._dimensions

    def _text_to_embedding(self, text: str) -> List[float]:
        tokens = TOKEN_PATTERN.findall((text or "").lower()) or [EMPTY_TOKEN]

        vector = np.zeros(self._dimensions, dtype=float)
        for token in tokens:
            digest = hashlib.md5(token.encode("utf-8")).digest()
            index = int.from_bytes(digest[:4], "big") % self._dimensions
            sign = 1.0 if digest[4] & 1 else -1.0
            vector[index] += sign

        norm = np.linalg.norm(vector)
        if norm > 0:
            vector = vector / norm
        return vector.tolist()

    def embed(self, text: str) -> List[float]:
        """Embed text using deterministic token hashing."""
        return self._text_to_embedding(text)

    def embed_batch(self, texts: List[str]) -> List[List[float]]:
        """Vectors for several texts."""
        return [self._text_to_embedding(t) for t in texts]


class OpenAIEmbeddings:
    """
    Embeddings from the OpenAI API.

    text-embedding-3 models are asked for the configured length directly
    (they support shortening); older models must already match it. Every
    returned vector is length-checked.

    Example:
        >>> provider = OpenAIEmbeddings(api_key="sk-...")
        >>> embedding = provider.embed("industries: Fintech")
    """

    name = "openai"

    def __init__(
        self,
        api_key: str,
        model: str = "text-embedding-3-small",
        dimensions: Optional[int] = None,
    ) -> None:
        self.api_key = api_key
        self.model = model
        self._dimensions = dimensions or MODEL_DIMENSIONS.get(model, DEFAULT_DIMENSIONS)
        self._client = None

    def _get_client(self):
        """Get or create the OpenAI client."""
        if self._client is None:
            from openai import OpenAI
            self._client = OpenAI(api_key=self.api_key)
        return self._client

    @property
    def dimensions(self) -> int:
        return self._dimensions

    def _request_kwargs(self) -> Dict[str, Any]:
        kwargs: Dict[str, Any] = {"model": self.model}
        if self.model.startswith("text-embedding-3"):
            kwargs["dimensions"] = self._dimensions
        return kwargs

    def _check(self, embedding: List[float]) -> List[float]:
        if len(embedding) != self._dimensions:
            raise EmbeddingDimensionError(len(embedding), self._dimensions)
        return embedding

    def embed(self, text: str) -> List[float]:
        """
        Raises:
            EmbeddingDimensionError: If the API returns a different length
        """
        text = text.replace("\n", " ").strip() or EMPTY_TOKEN

        client = self._get_client()
        response = client.embeddings.create(input=[text], **self._request_kwargs())
        return self._check(response.data[0].embedding)

    def embed_batch(
        self,
        texts: List[str],
        batch_size: int = 100
    ) -> List[List[float]]:
        """Embed texts, at most batch_size per API request, preserving order."""
        cleaned_texts = [t.replace("\n", " ").strip() or EMPTY_TOKEN for t in texts]
        client = self._get_client()

        all_embeddings: List[List[float]] = []
        for i in range(0, len(cleaned_texts), batch_size):
            batch = cleaned_texts[i:i + batch_size]
            response = client.embeddings.create(input=batch, **self._request_kwargs())
            all_embeddings.extend(self._check(d.embedding) for d in response.data)

        return all_embeddings


def get_embedding_provider(
    provider_name: str = "hash",
    api_key: Optional[str] = None,
    model_name: Optional[str] = None,
    dimensions: int = DEFAULT_DIMENSIONS,
) -> EmbeddingProvider:
    """
    Factory function to create embedding provider instances.

    Args:
        provider_name: Provider type - "hash" or "openai"
        api_key: API key for cloud providers (required for OpenAI)
        model_name: Optional model name override
        dimensions: Required embedding length

    Returns:
        EmbeddingProvider instance

    Raises:
        ValueError: If provider is unknown or required args missing

    Example:
        >>> provider = get_embedding_provider("hash", dimensions=1536)
        >>> provider = get_embedding_provider("openai", api_key="sk-...")
    """
    provider_name = provider_name.lower()

    if provider_name == "hash":
        return HashEmbeddingProvider(dimensions=dimensions)

    elif provider_name == "openai":
        if not api_key:
            raise ValueError("OpenAI embeddings require api_key")
        return OpenAIEmbeddings(
            api_key=api_key,
            model=model_name or "text-embedding-3-small",
            dimensions=dimensions,
        )

    else:
        raise ValueError(
            f"Unknown embedding provider: {provider_name}. "
            f"Supported: hash, openai"
        )
