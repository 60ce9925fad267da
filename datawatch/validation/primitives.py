from __future__ import annotations

import math
import statistics
from typing import Iterable, Optional


def mean(values: Iterable[float]) -> Optional[float]:
    values_list = list(values)
    if not values_list:
        return None
    return statistics.fmean(values_list)


def pstddev(values: Iterable[float]) -> Optional[float]:
    """Population standard deviation (divides by n, no Bessel correction)."""
    values_list = list(values)
    if not values_list:
        return None
    if len(values_list) == 1:
        return 0.0
    return statistics.pstdev(values_list)


def deviation_in_stddevs(value: float, center: float, spread: float) -> float:
    """Distance of *value* from *center* measured in units of *spread*.

    With zero spread any difference is infinitely far and no difference is
    zero distance.
    """
    distance = abs(value - center)
    if spread == 0:
        return 0.0 if distance == 0 else math.inf
    return distance / spread


def percent_difference(value: float, reference: float) -> float:
    """``|value - reference| / reference * 100``.

    A zero reference gives 0.0 when *value* is also zero and infinity
    otherwise.
    """
    diff = abs(value - reference)
    if reference == 0:
        return 0.0 if diff == 0 else math.inf
    return diff / reference * 100
