#!/usr/bin/env python3
"""Parse a supplier invoice from the command line.

Accepts either a PDF (text layer with OCR fallback) or a plain text file
that already holds the extracted invoice text, and prints the validated
draft as JSON. Optionally allocates the pooled surcharges when a product
catalog is given.

Usage:
    python scripts/parse_invoice.py invoice.pdf --supplier "Meyer & Horn"
    python scripts/parse_invoice.py invoice.txt --supplier Beyers --feedback feedback.json
    python scripts/parse_invoice.py invoice.pdf --supplier Beyers --products products.json --mode per_kg
"""

import json
import logging
from pathlib import Path

from services.costing.finalize import build_price_history
from services.costing.schema import ProductUnitInfo
from services.ingest.service import parse_invoice_document
from services.parsing.schema import InvoiceDraft, ParserFeedbackEntry
from services.parsing.service import parse_invoice_text
from services.shared.config import Settings

logging.basicConfig(level=logging.INFO, format="%(levelname)s: %(message)s")
logger = logging.getLogger(__name__)


def load_feedback(feedback_file: Path | None) -> list[ParserFeedbackEntry]:
    """Load a feedback snapshot (JSON list of feedback entries).

    Raises:
        FileNotFoundError: If the file doesn't exist
    """
    if feedback_file is None:
        return []
    if not feedback_file.exists():
        raise FileNotFoundError(f"Feedback file not found: {feedback_file}")
    with open(feedback_file, encoding="utf-8") as f:
        data = json.load(f)
    return [ParserFeedbackEntry.model_validate(item) for item in data]


def load_products(products_file: Path) -> dict[int, ProductUnitInfo]:
    """Load catalog unit facts (JSON list of {product_id, base_uom, pieces_per_tu}).

    Raises:
        FileNotFoundError: If the file doesn't exist
    """
    if not products_file.exists():
        raise FileNotFoundError(f"Products file not found: {products_file}")
    with open(products_file, encoding="utf-8") as f:
        data = json.load(f)
    products = [ProductUnitInfo.model_validate(item) for item in data]
    return {product.product_id: product for product in products}


def parse_file(
    invoice_file: Path,
    supplier: str,
    feedback: list[ParserFeedbackEntry],
    settings: Settings,
) -> InvoiceDraft:
    """Parse a PDF or a text file into a validated draft.

    Raises:
        FileNotFoundError: If the invoice file doesn't exist
    """
    if not invoice_file.exists():
        raise FileNotFoundError(f"Invoice file not found: {invoice_file}")

    if invoice_file.suffix.lower() == ".pdf":
        logger.info(f"Reading PDF {invoice_file}")
        return parse_invoice_document(invoice_file.read_bytes(), supplier, feedback, settings=settings)

    logger.info(f"Reading extracted text {invoice_file}")
    return parse_invoice_text(
        invoice_file.read_text(encoding="utf-8"), supplier, feedback, settings=settings
    )


if __name__ == "__main__":
    import argparse

    parser = argparse.ArgumentParser(description="Parse a supplier invoice into a draft")
    parser.add_argument("invoice", type=Path, help="Invoice PDF or extracted text file")
    parser.add_argument("--supplier", required=True, help="Supplier name, e.g. 'Meyer & Horn'")
    parser.add_argument(
        "--feedback",
        type=Path,
        default=None,
        help="JSON file with prior feedback entries",
    )
    parser.add_argument(
        "--products",
        type=Path,
        default=None,
        help="JSON file with product unit facts; enables surcharge allocation",
    )
    parser.add_argument(
        "--mode",
        choices=["per_kg", "per_piece", "none"],
        default=None,
        help="Surcharge allocation mode (requires --products)",
    )

    args = parser.parse_args()
    settings = Settings()

    draft = parse_file(args.invoice, args.supplier, load_feedback(args.feedback), settings)
    print(draft.model_dump_json(indent=2))

    if args.products is not None:
        batch = build_price_history(draft, load_products(args.products), mode=args.mode)
        print(batch.model_dump_json(indent=2))
