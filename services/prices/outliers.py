"""Read-time outlier repair for price-history series.

Outliers are detected with the modified z-score (Iglewicz & Hoaglin):

    z = 0.6745 * (price - median) / MAD

where MAD is the median absolute deviation from the median. Each flagged
point is replaced by the mean of its nearest unflagged neighbors in date
order (one neighbor if only one side has one, the median if none). The
stored series is never modified; callers get corrected copies.
"""

import logging
from collections.abc import Sequence
from statistics import median
from typing import TypeVar

from services.prices.schema import PricePoint

logger = logging.getLogger(__name__)

DEFAULT_THRESHOLD = 3.5
MODIFIED_Z_SCALE = 0.6745

P = TypeVar("P", bound=PricePoint)


def modified_z_scores(values: Sequence[float]) -> list[float] | None:
    """Modified z-score per value, or None when the MAD is zero."""
    center = median(values)
    mad = median(abs(value - center) for value in values)
    if mad == 0:
        return None
    return [MODIFIED_Z_SCALE * (value - center) / mad for value in values]


def _replacement(index: int, values: Sequence[float], flagged: Sequence[bool], fallback: float) -> float:
    previous = next((values[i] for i in range(index - 1, -1, -1) if not flagged[i]), None)
    following = next((values[i] for i in range(index + 1, len(values)) if not flagged[i]), None)
    if previous is not None and following is not None:
        return (previous + following) / 2
    if previous is not None:
        return previous
    if following is not None:
        return following
    return fallback


def correct_price_outliers(series: Sequence[P], threshold: float = DEFAULT_THRESHOLD) -> list[P]:
    """Replace statistical outliers in a price series.

    Args:
        series: Price points in any order
        threshold: Absolute modified z-score above which a point is an outlier

    Returns:
        Points in input order; outliers carry the interpolated price

    Raises:
        ValueError: If threshold is not positive
    """
    if threshold <= 0:
        raise ValueError(f"Outlier threshold must be positive, got {threshold}")
    if not series:
        return []

    # Stable sort: points sharing a date keep their input order
    order = sorted(range(len(series)), key=lambda index: series[index].date_effective)
    values = [series[index].price_per_base_unit_net for index in order]

    if all(value == values[0] for value in values):
        return list(series)

    scores = modified_z_scores(values)
    if scores is None:
        return list(series)

    flagged = [abs(score) > threshold for score in scores]
    if not any(flagged):
        return list(series)

    center = median(values)
    corrected: list[P] = list(series)
    for position, original_index in enumerate(order):
        if not flagged[position]:
            continue
        replacement = _replacement(position, values, flagged, center)
        point = series[original_index]
        logger.debug(
            f"Price outlier on {point.date_effective}: "
            f"{point.price_per_base_unit_net} -> {replacement} (z={scores[position]:.2f})"
        )
        corrected[original_index] = point.model_copy(update={"price_per_base_unit_net": replacement})

    logger.info(f"Corrected {sum(flagged)} of {len(series)} price point(s)")
    return corrected
