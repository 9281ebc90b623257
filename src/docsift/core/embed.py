"""OpenAI embedding helpers for chunk text and search queries; batched with retry."""

import os
import logging
from dataclasses import dataclass
from typing import List, Optional
import numpy as np
from tenacity import retry, stop_after_attempt, wait_exponential
from dotenv import load_dotenv

import openai

from .errors import ConfigurationError

# Load environment variables
load_dotenv()

logger = logging.getLogger(__name__)


@dataclass
class EmbeddingConfig:
    """Configuration for embedding generation."""
    model: str = "text-embedding-3-small"
    dimensions: int = 1536
    batch_size: int = 100
    max_tokens: int = 8191  # Max tokens for text-embedding-3-small


def get_embedding_config(model: Optional[str] = None, batch_size: Optional[int] = None) -> EmbeddingConfig:
    """Get embedding configuration from arguments, then environment."""
    model = model or os.getenv("EMBED_MODEL", "text-embedding-3-small")

    # Set dimensions based on model
    if model == "text-embedding-3-large":
        dimensions = 3072
    else:
        dimensions = 1536

    return EmbeddingConfig(
        model=model,
        dimensions=dimensions,
        batch_size=batch_size or int(os.getenv("EMBED_BATCH_SIZE", "100")),
        max_tokens=8191
    )


@retry(
    stop=stop_after_attempt(3),
    wait=wait_exponential(multiplier=1, min=4, max=10)
)
def generate_embeddings_batch(
    texts: List[str],
    config: EmbeddingConfig,
    client: openai.OpenAI
) -> List[List[float]]:
    """
    Generate embeddings for a batch of texts using OpenAI API.

    Args:
        texts: List of text strings to embed
        config: Embedding configuration
        client: OpenAI client instance

    Returns:
        List of embedding vectors
    """
    truncated_texts = []
    for text in texts:
        # Simple token approximation: ~4 chars per token
        if len(text) > config.max_tokens * 4:
            truncated_texts.append(text[:config.max_tokens * 4])
            logger.warning(f"Truncated text from {len(text)} to {config.max_tokens * 4} characters")
        else:
            truncated_texts.append(text)

    response = client.embeddings.create(
        model=config.model,
        input=truncated_texts,
        dimensions=config.dimensions
    )
    return [item.embedding for item in response.data]


class OpenAIEmbedder:
    """Callable turning a list of texts into a (n, dimensions) float32 matrix."""

    def __init__(self, config: Optional[EmbeddingConfig] = None, client: Optional[openai.OpenAI] = None):
        self.config = config or get_embedding_config()
        if client is None:
            api_key = os.getenv("OPENAI_API_KEY")
            if not api_key:
                raise ConfigurationError("OpenAI API key not found in environment variables")
            client = openai.OpenAI(api_key=api_key)
        self.client = client

    @property
    def dimensions(self) -> int:
        return self.config.dimensions

    def __call__(self, texts: List[str]) -> np.ndarray:
        vectors: List[List[float]] = []
        for i in range(0, len(texts), self.config.batch_size):
            batch = texts[i:i + self.config.batch_size]
            logger.info(f"Processing embedding batch {i // self.config.batch_size + 1}: {len(batch)} texts")
            vectors.extend(generate_embeddings_batch(batch, self.config, self.client))

        if not vectors:
            return np.zeros((0, self.config.dimensions), dtype=np.float32)
        return np.array(vectors, dtype=np.float32)
