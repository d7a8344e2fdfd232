"""Vector distance used to rank embedding records."""

import math
from collections.abc import Sequence


def cosine_distance(a: Sequence[float], b: Sequence[float]) -> float | None:
    """Return ``1 - cosine_similarity(a, b)``, in ``[0, 2]``.

    Returns None when the vectors differ in length or either has zero
    norm; such records cannot be ranked.
    """
    if len(a) != len(b) or not a:
        return None
    dot = sum(x * y for x, y in zip(a, b, strict=True))
    norm = math.sqrt(sum(x * x for x in a)) * math.sqrt(sum(y * y for y in b))
    if norm == 0:
        return None
    return min(2.0, max(0.0, 1.0 - dot / norm))
