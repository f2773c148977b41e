"""Data models for unit conversion, surcharge allocation and price history."""

from datetime import date
from enum import Enum
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field

BaseUom = Literal["kg", "piece"]


class AllocationMode(str, Enum):
    """How a pooled surcharge is spread over product lines."""

    PER_KG = "per_kg"
    PER_PIECE = "per_piece"
    NONE = "none"


# Base unit whose lines are eligible for a share under each mode
ELIGIBLE_BASE_UOM: dict[AllocationMode, BaseUom | None] = {
    AllocationMode.PER_KG: "kg",
    AllocationMode.PER_PIECE: "piece",
    AllocationMode.NONE: None,
}


class ProductUnitInfo(BaseModel):
    """Catalog facts needed to convert invoice quantities into base units.

    Attributes:
        product_id: Catalog product id
        base_uom: Unit in which the product's cost is tracked long-term
        pieces_per_tu: Pieces per transport unit (case), if known
    """

    model_config = ConfigDict(frozen=True)

    product_id: int
    base_uom: BaseUom
    pieces_per_tu: float | None = Field(None, gt=0)


class ConversionResult(BaseModel):
    """Outcome of converting one invoice line into the product's base unit.

    ``factor`` is None when the units conflict; ``qty_base`` and
    ``base_price_per_unit`` are 0 in that case.
    """

    model_config = ConfigDict(frozen=True)

    factor: float | None
    qty_base: float
    base_price_per_unit: float
    warnings: tuple[str, ...] = ()

    @property
    def convertible(self) -> bool:
        return self.factor is not None


class PreparedAllocationItem(BaseModel):
    """One product line ready for surcharge allocation."""

    model_config = ConfigDict(frozen=True)

    product_id: int
    base_uom: BaseUom
    qty_base: float = Field(..., ge=0)
    base_price_per_unit: float
    line_no: int | None = None


class AllocationShare(BaseModel):
    """Surcharge share of one prepared item, in input order."""

    model_config = ConfigDict(frozen=True)

    product_id: int
    surcharge_per_unit: float
    price_per_unit: float


class AllocationPolicyRow(BaseModel):
    """One row of the supplier specific cost allocation settings."""

    model_config = ConfigDict(frozen=True)

    supplier: str
    active_from: date
    policy: AllocationMode


class PriceHistoryEntry(BaseModel):
    """A price-history row derived from a finalized invoice line."""

    model_config = ConfigDict(frozen=True)

    product_id: int
    date_effective: date
    uom: BaseUom
    price_per_base_unit_net: float
    qty_in_base_units: float
    line_no: int


class PriceHistoryBatch(BaseModel):
    """Result of finalizing a draft: history rows plus conversion diagnostics."""

    model_config = ConfigDict(frozen=True)

    mode: AllocationMode
    total_surcharge_net: float
    entries: tuple[PriceHistoryEntry, ...] = ()
    warnings: tuple[str, ...] = ()
