from __future__ import annotations

import math
from typing import Protocol, runtime_checkable


class EmbeddingError(RuntimeError):
    pass


@runtime_checkable
class Embedder(Protocol):
    def embed(self, text: str) -> list[float]: ...


def note_text(title: str, content: str | None) -> str:
    """Text that gets embedded for a note."""
    return f"{title}\n\n{content or ''}"


def validate_vector(embedding: object) -> list[float]:
    """Check an embedding from a provider response and return it as floats."""
    if not isinstance(embedding, list) or not embedding:
        raise EmbeddingError(f"Invalid embedding in response: {type(embedding)}")
    for i, val in enumerate(embedding):
        if not isinstance(val, (int, float)) or isinstance(val, bool):
            raise EmbeddingError(f"Invalid value type at index {i}: {type(val)}")
        if math.isnan(val) or math.isinf(val):
            raise EmbeddingError(f"Invalid value at index {i}: {val} (NaN or Inf)")
    return [float(v) for v in embedding]
