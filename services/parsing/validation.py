"""Draft validation and reconciliation.

``validate_draft`` is a pure recompute-and-replace step: it never mutates
its input, keeps item order and line numbers, and returns the same draft
when applied to its own output.
"""

import logging

from services.parsing.coercion import REDUCED_TAX_RATE, SHIPPING_TAX_RATE
from services.parsing.schema import ALLOWED_UOMS, InvoiceDraft, InvoiceLineDraft, InvoiceTotals
from services.parsing.text import merge_warnings

logger = logging.getLogger(__name__)

DEFAULT_VARIANCE_WARNING_PERCENT = 0.5

MISSING_SKU_ISSUE = "article number missing"
MISSING_NAME_ISSUE = "product name missing"
SHIPPING_TAX_ISSUE = "shipping should be taxed at 19 %"
HIGH_TAX_ISSUE = "product line with tax above 7 % detected"

MISSING_SKU_CONFIDENCE = 0.7
MISSING_NAME_CONFIDENCE = 0.6
INVALID_UOM_CONFIDENCE = 0.4


def invalid_uom_issue(uom: str) -> str:
    return f"unit {uom} not allowed"


def variance_warning(variance_percent: float) -> str:
    return f"totals deviate by {variance_percent:.2f} % - please check header values"


def recalc_line(item: InvoiceLineDraft, index: int) -> InvoiceLineDraft:
    """Recompute the line total and downgrade confidence for missing or invalid fields."""
    issues = list(item.issues)
    confidence = max(0.0, min(1.0, item.confidence))

    if not item.product_sku:
        issues.append(MISSING_SKU_ISSUE)
        confidence = min(confidence, MISSING_SKU_CONFIDENCE)
    if not item.product_name:
        issues.append(MISSING_NAME_ISSUE)
        confidence = min(confidence, MISSING_NAME_CONFIDENCE)
    if item.uom not in ALLOWED_UOMS:
        issues.append(invalid_uom_issue(item.uom))
        confidence = min(confidence, INVALID_UOM_CONFIDENCE)

    return item.model_copy(
        update={
            "line_no": item.line_no or index + 1,
            "line_total_net": round(item.qty * item.unit_price_net, 4),
            "issues": merge_warnings(issues),
            "confidence": confidence,
        }
    )


def recalc_totals(draft: InvoiceDraft) -> InvoiceDraft:
    """Recompute every line total and the document totals.

    ``net`` and ``tax`` are summed unrounded and rounded to cents at the end;
    ``gross`` is the sum of the rounded values so ``gross == net + tax``
    holds exactly on the stored figures.
    """
    items = tuple(recalc_line(item, index) for index, item in enumerate(draft.items))

    net = round(sum(item.line_total_net for item in items), 2)
    tax = round(sum(item.line_total_net * item.tax_rate_percent / 100 for item in items), 2)
    gross = round(net + tax, 2)

    reported = draft.totals.reported_gross
    variance = None
    if reported is not None and reported > 0:
        variance = round(abs(gross - reported) / reported * 100, 2)

    totals = InvoiceTotals(
        net=net,
        tax=tax,
        gross=gross,
        reported_gross=reported,
        variance_percent=variance,
    )
    return draft.model_copy(update={"items": items, "totals": totals})


def tax_policy_issues(item: InvoiceLineDraft) -> list[str]:
    """Flag tax rates that contradict the line type."""
    issues: list[str] = []
    if item.line_type == "shipping" and item.tax_rate_percent < SHIPPING_TAX_RATE:
        issues.append(SHIPPING_TAX_ISSUE)
    if item.line_type != "shipping" and item.tax_rate_percent > REDUCED_TAX_RATE:
        issues.append(HIGH_TAX_ISSUE)
    return issues


def validate_draft(
    draft: InvoiceDraft, variance_warning_percent: float = DEFAULT_VARIANCE_WARNING_PERCENT
) -> InvoiceDraft:
    """Recompute totals and attach line and document diagnostics.

    Args:
        draft: Draft as produced by a template (or edited by a reviewer)
        variance_warning_percent: Deviation from the printed gross that triggers a warning

    Returns:
        New validated draft; the input is left untouched
    """
    recomputed = recalc_totals(draft)
    warnings = list(recomputed.warnings)

    variance = recomputed.totals.variance_percent
    if variance is not None and variance > variance_warning_percent:
        logger.info(f"Invoice '{draft.invoice_no}': computed gross deviates by {variance:.2f} %")
        warnings.append(variance_warning(variance))

    items = tuple(
        item.model_copy(update={"issues": merge_warnings(item.issues, tax_policy_issues(item))})
        for item in recomputed.items
    )
    return recomputed.model_copy(update={"items": items, "warnings": merge_warnings(warnings)})
