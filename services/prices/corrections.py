"""Explicit, user-confirmed corrections of stored price-history rows.

Unlike the read-time outlier repair, a correction targets one stored row.
Arguments are validated before anything else happens; writing the
corrected row back is left to the persistence layer.
"""

import logging

from services.prices.schema import PriceCorrection, PriceCorrectionResult, PriceHistoryRecord

logger = logging.getLogger(__name__)

PRICE_PRECISION = 4


def validate_price_correction(history_id: int, price_per_base_unit_net: float) -> PriceCorrection:
    """Validate and normalize a correction request.

    Args:
        history_id: Id of the price-history row
        price_per_base_unit_net: Corrected price per base unit

    Returns:
        PriceCorrection with the price rounded to 4 decimals

    Raises:
        ValueError: If the id is not a positive integer or the price is not
            a positive finite number (pydantic ValidationError is a ValueError)
    """
    correction = PriceCorrection(history_id=history_id, price_per_base_unit_net=price_per_base_unit_net)
    # Validated again so a price that rounds to zero is rejected too
    return PriceCorrection(
        history_id=correction.history_id,
        price_per_base_unit_net=round(correction.price_per_base_unit_net, PRICE_PRECISION),
    )


def apply_price_correction(record: PriceHistoryRecord, correction: PriceCorrection) -> PriceCorrectionResult:
    """Build the corrected version of a stored row.

    Raises:
        ValueError: If the correction targets a different row
    """
    if correction.history_id != record.id:
        raise ValueError(
            f"Correction for history row {correction.history_id} applied to row {record.id}"
        )

    previous = record.price_per_base_unit_net
    did_update = previous != correction.price_per_base_unit_net
    if did_update:
        logger.info(
            f"Price history row {record.id} (product {record.product_id}): "
            f"{previous} -> {correction.price_per_base_unit_net}"
        )
    updated = record.model_copy(update={"price_per_base_unit_net": correction.price_per_base_unit_net})
    return PriceCorrectionResult(
        record=updated,
        previous_price_per_base_unit_net=previous,
        did_update=did_update,
    )
