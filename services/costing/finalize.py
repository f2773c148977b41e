"""Price-history rows for a reviewed invoice draft."""

import logging
from collections.abc import Iterable, Mapping
from datetime import date

from services.costing.allocation import allocate_surcharges, resolve_allocation_policy
from services.costing.conversion import prepare_allocation_items
from services.costing.schema import (
    AllocationMode,
    AllocationPolicyRow,
    PriceHistoryBatch,
    PriceHistoryEntry,
    ProductUnitInfo,
)
from services.parsing.schema import InvoiceDraft

logger = logging.getLogger(__name__)

# Line types whose totals form the pooled surcharge
POOLED_LINE_TYPES = frozenset({"surcharge", "shipping"})


def pooled_surcharge(draft: InvoiceDraft) -> float:
    """Sum of all surcharge and shipping line totals."""
    return round(sum(item.line_total_net for item in draft.items if item.line_type in POOLED_LINE_TYPES), 4)


def invoice_date_of(draft: InvoiceDraft) -> date | None:
    """The draft's invoice date, or None if it is missing or not ISO formatted."""
    try:
        return date.fromisoformat(draft.invoice_date) if draft.invoice_date else None
    except ValueError:
        return None


def build_price_history(
    draft: InvoiceDraft,
    products: Mapping[int, ProductUnitInfo],
    policies: Iterable[AllocationPolicyRow] = (),
    mode: AllocationMode | str | None = None,
) -> PriceHistoryBatch:
    """Convert, allocate and derive price-history rows for a finalized draft.

    Args:
        draft: Reviewed and validated invoice draft
        products: Catalog unit facts by product id
        policies: Supplier cost allocation settings
        mode: Explicit allocation mode; resolved from ``policies`` when omitted

    Returns:
        PriceHistoryBatch. Lines without a base quantity (unit conflicts)
        produce no entry, only a warning.

    Raises:
        ValueError: If an explicit ``mode`` is unknown
    """
    invoice_date = invoice_date_of(draft)
    effective_date = invoice_date or date.today()
    resolved = resolve_allocation_policy(policies, draft.supplier, invoice_date, mode)

    prepared, warnings = prepare_allocation_items(draft, products)
    total_surcharge = pooled_surcharge(draft)
    shares = allocate_surcharges(prepared, total_surcharge, resolved)

    entries: list[PriceHistoryEntry] = []
    for item, share in zip(prepared, shares, strict=True):
        if item.qty_base <= 0:
            continue
        entries.append(
            PriceHistoryEntry(
                product_id=item.product_id,
                date_effective=effective_date,
                uom=item.base_uom,
                price_per_base_unit_net=share.price_per_unit,
                qty_in_base_units=round(item.qty_base, 4),
                line_no=item.line_no or 0,
            )
        )

    logger.info(
        f"Invoice '{draft.invoice_no}': {len(entries)} price history row(s), "
        f"surcharge {total_surcharge:.2f} allocated {resolved.value}"
    )
    return PriceHistoryBatch(
        mode=resolved,
        total_surcharge_net=total_surcharge,
        entries=tuple(entries),
        warnings=tuple(warnings),
    )
