from __future__ import annotations

import math
from typing import Hashable, Mapping, TypeVar

K = TypeVar("K", bound=Hashable)


def largest_remainder(weights: Mapping[K, float], total: int) -> dict[K, int]:
    """Split `total` across keys proportionally to `weights`, summing exactly to `total`.

    Floors each share, then hands the leftover units to the largest fractional
    remainders. Ties go to the key that appears first in `weights`.
    """
    keys = list(weights)
    if not keys:
        return {}
    total = max(0, int(total))
    clean = {k: max(0.0, float(weights[k])) for k in keys}
    weight_sum = sum(clean.values())
    if weight_sum <= 0:
        clean = {k: 1.0 for k in keys}
        weight_sum = float(len(keys))

    exact = {k: total * clean[k] / weight_sum for k in keys}
    counts = {k: int(math.floor(exact[k])) for k in keys}
    leftover = total - sum(counts.values())
    order = sorted(keys, key=lambda k: (-(exact[k] - counts[k]), keys.index(k)))
    for k in order[:leftover]:
        counts[k] += 1
    return counts
