from __future__ import annotations

import json
import logging
import urllib.error
import urllib.request

from app.embedding.embedder import EmbeddingError, validate_vector

logger = logging.getLogger(__name__)


class OpenAICompatibleEmbedder:
    """HTTP client for any OpenAI-compatible embeddings endpoint.

    Works with: OpenAI, LM Studio (local), any custom OpenAI-compatible server.
    """

    def __init__(
        self,
        base_url: str,
        embed_model: str,
        api_key: str = "",
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._embed_model = embed_model
        self._api_key = api_key

    def _make_headers(self) -> dict[str, str]:
        headers: dict[str, str] = {"Content-Type": "application/json"}
        if self._api_key:
            headers["Authorization"] = f"Bearer {self._api_key}"
        return headers

    def _post_json(self, path: str, payload: dict) -> dict:  # type: ignore[type-arg]
        url = f"{self._base_url}{path}"
        data = json.dumps(payload).encode()
        headers = self._make_headers()
        req = urllib.request.Request(url, data=data, headers=headers, method="POST")
        with urllib.request.urlopen(req, timeout=60) as resp:
            return json.loads(resp.read().decode())  # type: ignore[no-any-return]

    def embed(self, text: str) -> list[float]:
        payload = {"model": self._embed_model, "input": text}
        try:
            response = self._post_json("/v1/embeddings", payload)
        except (urllib.error.URLError, OSError, json.JSONDecodeError) as exc:
            raise EmbeddingError(f"Embedding request failed: {exc}") from exc
        try:
            embedding = response["data"][0]["embedding"]
        except (KeyError, IndexError, TypeError) as exc:
            raise EmbeddingError("Malformed embedding response") from exc
        vector = validate_vector(embedding)
        logger.debug(f"Generated embedding (dimension={len(vector)})")
        return vector
