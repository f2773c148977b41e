"""Price history data models."""

from datetime import date

from pydantic import BaseModel, ConfigDict, Field


class PricePoint(BaseModel):
    """One price observation for a product.

    Additional keys (uom, source ids, ...) are kept untouched so callers
    can pass their own history rows through the outlier corrector.
    """

    model_config = ConfigDict(frozen=True, extra="allow")

    date_effective: date
    price_per_base_unit_net: float = Field(..., allow_inf_nan=False)


class PriceHistoryRecord(BaseModel):
    """A stored price-history row as read from the persistence layer."""

    model_config = ConfigDict(frozen=True)

    id: int
    product_id: int
    date_effective: date
    uom: str | None = None
    price_per_base_unit_net: float
    qty_in_base_units: float | None = None
    source_item_id: int | None = None


class PriceCorrection(BaseModel):
    """A user-confirmed fix for one price-history row.

    Attributes:
        history_id: Id of the price-history row (positive integer)
        price_per_base_unit_net: Corrected price (positive, finite)
    """

    model_config = ConfigDict(frozen=True)

    history_id: int = Field(..., gt=0, strict=True)
    price_per_base_unit_net: float = Field(..., gt=0, allow_inf_nan=False)


class PriceCorrectionResult(BaseModel):
    """A price-history row after applying a correction."""

    model_config = ConfigDict(frozen=True)

    record: PriceHistoryRecord
    previous_price_per_base_unit_net: float
    did_update: bool
