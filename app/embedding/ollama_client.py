from __future__ import annotations

import json
import logging
import urllib.error
import urllib.request

from app.embedding.embedder import EmbeddingError, validate_vector

logger = logging.getLogger(__name__)


class OllamaEmbedder:
    def __init__(self, base_url: str, embed_model: str) -> None:
        self._base_url = base_url.rstrip("/")
        self._embed_model = embed_model

    def embed(self, text: str) -> list[float]:
        logger.debug(
            f"Embedding text (length={len(text)} chars, first 50: '{text[:50]}...')"
        )
        payload = {"model": self._embed_model, "prompt": text}
        try:
            data = self._post_json("/api/embeddings", payload)
        except (urllib.error.URLError, OSError, json.JSONDecodeError) as exc:
            raise EmbeddingError(f"Failed to generate embedding: {exc}") from exc
        return validate_vector(data.get("embedding"))

    def _post_json(self, path: str, payload: dict) -> dict:
        url = f"{self._base_url}{path}"
        body = json.dumps(payload).encode("utf-8")
        request = urllib.request.Request(
            url, data=body, headers={"Content-Type": "application/json"}, method="POST"
        )
        with urllib.request.urlopen(request, timeout=120) as response:
            raw = response.read().decode("utf-8")
        return json.loads(raw)
