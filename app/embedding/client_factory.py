from __future__ import annotations

from typing import TYPE_CHECKING

from app.config import EmbedProvider
from app.embedding.embedder import Embedder

if TYPE_CHECKING:
    from app.config import Config


def create_embedder(config: Config) -> Embedder:
    """Instantiate the correct embedding client based on the configured provider."""
    if config.embed_provider == EmbedProvider.OLLAMA:
        from app.embedding.ollama_client import OllamaEmbedder

        return OllamaEmbedder(
            base_url=config.embed_base_url,
            embed_model=config.embed_model,
        )
    from app.embedding.openai_client import OpenAICompatibleEmbedder

    return OpenAICompatibleEmbedder(
        base_url=config.embed_base_url,
        embed_model=config.embed_model,
        api_key=config.embed_api_key,
    )
