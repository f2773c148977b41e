"""Conversion of invoice quantities into a product's base unit.

Rules:
- kg-based products only accept KG lines (factor 1)
- piece-based products accept STUECK (factor 1) and TU when the product
  has a known pieces-per-TU value (factor = pieces per TU)

Any other combination is a conflict. Conflicts never raise: the result has
no factor, zero quantity and price, and a warning, so the line is simply
left out of the price history.
"""

import logging
from collections.abc import Mapping

from services.costing.schema import ConversionResult, PreparedAllocationItem, ProductUnitInfo
from services.parsing.schema import InvoiceDraft

logger = logging.getLogger(__name__)


def conversion_factor(product: ProductUnitInfo, uom: str) -> float | None:
    """Factor turning one ``uom`` into base units, or None on a unit conflict."""
    unit = (uom or "").upper()
    if product.base_uom == "kg":
        return 1.0 if unit == "KG" else None
    if unit == "STUECK":
        return 1.0
    if unit == "TU" and product.pieces_per_tu:
        return float(product.pieces_per_tu)
    return None


def _conflict_warning(product: ProductUnitInfo, uom: str) -> str:
    if product.base_uom == "piece" and (uom or "").upper() == "TU":
        return f"product {product.product_id}: TU without pieces per TU cannot be converted to pieces"
    return f"product {product.product_id}: unit {uom} cannot be converted to base unit {product.base_uom}"


def convert_to_base(
    product: ProductUnitInfo, qty: float, uom: str, unit_price_net: float
) -> ConversionResult:
    """Convert one invoice line into the product's base unit.

    Args:
        product: Catalog unit facts
        qty: Quantity in invoice units
        uom: Invoice unit (KG, TU, STUECK)
        unit_price_net: Net price per invoice unit

    Returns:
        ConversionResult; ``factor`` is None on a unit conflict
    """
    factor = conversion_factor(product, uom)
    if factor is None:
        warning = _conflict_warning(product, uom)
        logger.warning(warning)
        return ConversionResult(factor=None, qty_base=0.0, base_price_per_unit=0.0, warnings=(warning,))

    return ConversionResult(
        factor=factor,
        qty_base=qty * factor,
        base_price_per_unit=round(unit_price_net / factor, 4),
    )


def prepare_allocation_items(
    draft: InvoiceDraft, products: Mapping[int, ProductUnitInfo]
) -> tuple[list[PreparedAllocationItem], list[str]]:
    """Convert every assigned product line of a draft into base units.

    Lines without a product id or unknown to the catalog are skipped with a
    warning. Conflicting units keep the line with ``qty_base == 0`` so the
    caller can see it, but it receives no surcharge share.

    Returns:
        Tuple of (prepared items in document order, warnings)
    """
    prepared: list[PreparedAllocationItem] = []
    warnings: list[str] = []

    for item in draft.items:
        if item.line_type != "product":
            continue
        if item.product_id is None:
            warnings.append(f"line {item.line_no}: no product assigned, skipped")
            continue
        product = products.get(item.product_id)
        if product is None:
            warnings.append(f"line {item.line_no}: product {item.product_id} not in catalog, skipped")
            continue

        if item.qty < 0:
            warnings.append(f"line {item.line_no}: negative quantity, skipped")
            continue

        result = convert_to_base(product, item.qty, item.uom, item.unit_price_net)
        warnings.extend(f"line {item.line_no}: {warning}" for warning in result.warnings)
        prepared.append(
            PreparedAllocationItem(
                product_id=product.product_id,
                base_uom=product.base_uom,
                qty_base=result.qty_base,
                base_price_per_unit=result.base_price_per_unit,
                line_no=item.line_no,
            )
        )

    return prepared, warnings
