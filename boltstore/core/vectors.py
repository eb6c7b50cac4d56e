"""pgvector text literal helpers.

Embeddings travel to Postgres as '[0.1,0.2,...]' with a ::vector cast and come
back as the same text form (selected as embedding::text), so no driver codec
registration is needed.
"""

import math
from collections.abc import Sequence

from boltstore.core.constants import Embedding
from boltstore.core.errors import ValidationError


def validate_embedding(values: Sequence[float], dimensions: int = Embedding.DIMENSIONS) -> list[float]:
    """Return the embedding as a list of floats or raise ValidationError."""
    if isinstance(values, (str, bytes)):
        raise ValidationError("embedding must be a sequence of numbers")
    if len(values) != dimensions:
        raise ValidationError(f"embedding must have exactly {dimensions} dimensions, got {len(values)}")
    floats: list[float] = []
    for value in values:
        if isinstance(value, bool):
            raise ValidationError("embedding components must be numbers")
        try:
            number = float(value)
        except (TypeError, ValueError):
            raise ValidationError("embedding components must be numbers")
        if not math.isfinite(number):
            raise ValidationError("embedding components must be finite")
        floats.append(number)
    return floats


def to_vector_literal(values: Sequence[float]) -> str:
    # repr() keeps the shortest string that round-trips to the same float.
    return "[" + ",".join(repr(float(v)) for v in values) + "]"


def parse_vector(raw: str | Sequence[float] | None) -> list[float] | None:
    """Parse a pgvector text value back into floats. None stays None."""
    if raw is None:
        return None
    if not isinstance(raw, str):
        return [float(v) for v in raw]
    body = raw.strip()
    if body.startswith("[") and body.endswith("]"):
        body = body[1:-1]
    if not body.strip():
        return []
    return [float(part) for part in body.split(",")]


def optional_vector_literal(values: Sequence[float] | None) -> str | None:
    """Validate and encode an optional embedding for a ::vector parameter."""
    if values is None:
        return None
    return to_vector_literal(validate_embedding(values))
