"""Surcharge allocation and allocation policy resolution.

A pooled surcharge (energy fees, freight, ...) is spread over the product
lines of one invoice at a uniform rate per base unit:

    surcharge_per_unit = total_surcharge_net / sum(qty_base of eligible lines)

Eligible lines are the kg-based lines for ``per_kg`` and the piece-based
lines for ``per_piece``; all other lines, and every line under ``none``,
get 0. For ``per_kg`` and ``per_piece`` the shares therefore add back up to
the pooled amount whenever at least one eligible line has a quantity.
"""

import logging
from collections.abc import Iterable, Sequence
from datetime import date

from services.costing.schema import (
    ELIGIBLE_BASE_UOM,
    AllocationMode,
    AllocationPolicyRow,
    AllocationShare,
    PreparedAllocationItem,
)

logger = logging.getLogger(__name__)


def parse_allocation_mode(mode: AllocationMode | str) -> AllocationMode:
    """Coerce a mode string into AllocationMode.

    Raises:
        ValueError: If the mode is unknown
    """
    if isinstance(mode, AllocationMode):
        return mode
    try:
        return AllocationMode(mode)
    except ValueError:
        available = ", ".join(member.value for member in AllocationMode)
        raise ValueError(f"Unknown allocation mode: '{mode}'. Available modes: {available}") from None


def allocate_surcharges(
    items: Sequence[PreparedAllocationItem],
    total_surcharge_net: float,
    mode: AllocationMode | str,
) -> list[AllocationShare]:
    """Distribute a pooled surcharge over prepared product lines.

    Args:
        items: Prepared product lines in base units
        total_surcharge_net: Pooled surcharge amount (net)
        mode: per_kg, per_piece or none

    Returns:
        One AllocationShare per input item, in input order

    Raises:
        ValueError: If ``mode`` is unknown
    """
    resolved = parse_allocation_mode(mode)
    eligible_uom = ELIGIBLE_BASE_UOM[resolved]

    rate = 0.0
    if eligible_uom is not None and total_surcharge_net:
        denominator = sum(item.qty_base for item in items if item.base_uom == eligible_uom)
        if denominator > 0:
            rate = total_surcharge_net / denominator
        else:
            logger.warning(
                f"Surcharge of {total_surcharge_net:.2f} not allocable: "
                f"no {eligible_uom} quantity among {len(items)} line(s)"
            )

    shares: list[AllocationShare] = []
    for item in items:
        surcharge = rate if item.base_uom == eligible_uom else 0.0
        shares.append(
            AllocationShare(
                product_id=item.product_id,
                surcharge_per_unit=surcharge,
                price_per_unit=round(item.base_price_per_unit + surcharge, 4),
            )
        )
    return shares


def resolve_allocation_policy(
    policies: Iterable[AllocationPolicyRow],
    supplier: str,
    invoice_date: date | None = None,
    mode: AllocationMode | str | None = None,
) -> AllocationMode:
    """Pick the allocation mode for an invoice.

    An explicit ``mode`` always wins. Otherwise the supplier's most recent
    policy with ``active_from <= invoice_date`` applies, and ``none`` when
    no such policy exists. A missing invoice date means today.
    """
    if mode is not None:
        return parse_allocation_mode(mode)

    reference = invoice_date or date.today()
    wanted = (supplier or "").strip().casefold()
    candidates = [
        row
        for row in policies
        if row.supplier.strip().casefold() == wanted and row.active_from <= reference
    ]
    if not candidates:
        logger.info(f"No cost allocation policy for supplier '{supplier}', using 'none'")
        return AllocationMode.NONE

    latest = max(candidates, key=lambda row: row.active_from)
    logger.info(
        f"Cost allocation policy for '{supplier}': {latest.policy.value} "
        f"(active from {latest.active_from.isoformat()})"
    )
    return latest.policy
