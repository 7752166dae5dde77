from __future__ import annotations

import math
from numbers import Real
from typing import Any, List, Optional

from src.shared.errors import InvalidEmbeddingError


def validate_embedding(vector: Any, *, expected_dims: Optional[int] = None) -> List[float]:
    """
    Check that an embedding is a non-empty sequence of finite numbers.

    Returns the vector as a plain ``List[float]``.

    Raises:
        InvalidEmbeddingError: for any other shape (None, empty, nested,
            non-numeric, NaN/inf, wrong dimensionality)
    """
    if vector is None or isinstance(vector, (str, bytes, dict)):
        raise InvalidEmbeddingError(
            f"Embedding must be a list of numbers, got {type(vector).__name__}"
        )
    try:
        values = list(vector)
    except TypeError as exc:
        raise InvalidEmbeddingError(
            f"Embedding must be a list of numbers, got {type(vector).__name__}"
        ) from exc
    if not values:
        raise InvalidEmbeddingError("Embedding vector is empty")

    cleaned: List[float] = []
    for idx, value in enumerate(values):
        if isinstance(value, bool) or not isinstance(value, Real):
            raise InvalidEmbeddingError(
                f"Embedding component {idx} is not a number: {value!r}"
            )
        as_float = float(value)
        if not math.isfinite(as_float):
            raise InvalidEmbeddingError(
                f"Embedding component {idx} is not finite: {value!r}"
            )
        cleaned.append(as_float)

    if expected_dims is not None and len(cleaned) != expected_dims:
        raise InvalidEmbeddingError(
            f"Embedding has {len(cleaned)} dimensions, expected {expected_dims}",
            details={"dims": len(cleaned), "expected_dims": expected_dims},
        )
    return cleaned
