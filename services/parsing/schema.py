"""Invoice draft data models produced by the template parsers.

All models are frozen: every stage of the pipeline (template parsing,
feedback matching, validation) builds a new draft with ``model_copy``
instead of mutating the previous one.
"""

from datetime import datetime
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field

LineType = Literal["product", "surcharge", "shipping"]
AllowedUom = Literal["KG", "TU", "STUECK"]

ALLOWED_UOMS: tuple[str, ...] = ("KG", "TU", "STUECK")


class LineSource(BaseModel):
    """Provenance of a parsed line.

    Attributes:
        raw: Original text span the line was parsed from (used for feedback keying)
        template_hint: Template that produced the line, if known
    """

    model_config = ConfigDict(frozen=True)

    raw: str | None = None
    template_hint: str | None = None


class InvoiceLineDraft(BaseModel):
    """One parsed invoice line awaiting human review."""

    model_config = ConfigDict(frozen=True)

    line_no: int = Field(..., description="Sequence number within the document (parse order)")
    position: int | None = Field(None, description="Position number printed on the invoice")
    line_type: LineType = "product"
    product_sku: str | None = None
    product_name: str | None = None
    product_id: int | None = None
    qty: float = 0.0
    # Kept as plain text so the validator can flag units outside ALLOWED_UOMS
    uom: str = "STUECK"
    unit_price_net: float = 0.0
    tax_rate_percent: float = 0.0
    line_total_net: float = 0.0
    pack_definition_hint: str | None = None
    notes: str | None = None
    confidence: float = Field(0.0, ge=0, le=1)
    issues: tuple[str, ...] = ()
    source: LineSource = Field(default_factory=LineSource)


class InvoiceTotals(BaseModel):
    """Document totals. ``gross`` is always ``net + tax`` and only set by the validator."""

    model_config = ConfigDict(frozen=True)

    net: float = 0.0
    tax: float = 0.0
    gross: float = 0.0
    reported_gross: float | None = Field(None, description="Gross total printed on the invoice")
    variance_percent: float | None = None


class ParserMeta(BaseModel):
    """Which template produced the draft and what it noticed along the way."""

    model_config = ConfigDict(frozen=True)

    template: str
    version: str
    used_ocr: bool = False
    warnings: tuple[str, ...] = ()


class InvoiceMetaField(BaseModel):
    """Free-form header field (customer number, delivery note, ...)."""

    model_config = ConfigDict(frozen=True)

    key: str
    label: str
    value: str


class InvoiceDraft(BaseModel):
    """Machine-produced interpretation of a supplier invoice."""

    model_config = ConfigDict(frozen=True)

    supplier: str
    invoice_no: str = ""
    invoice_date: str = Field("", description="ISO date (YYYY-MM-DD) or the raw value if unparseable")
    currency: str = "EUR"
    totals: InvoiceTotals = Field(default_factory=InvoiceTotals)
    parser: ParserMeta
    meta: tuple[InvoiceMetaField, ...] = ()
    warnings: tuple[str, ...] = ()
    errors: tuple[str, ...] = ()
    items: tuple[InvoiceLineDraft, ...] = ()


class ParserFeedbackEntry(BaseModel):
    """A previously confirmed manual assignment, read from the feedback table."""

    model_config = ConfigDict(frozen=True)

    supplier: str
    detected_description: str
    detected_sku: str | None = None
    assigned_product_id: int | None = None
    assigned_product_sku: str | None = None
    assigned_product_name: str | None = None
    assigned_uom: AllowedUom | None = None
    updated_at: datetime | None = None
