"""Evaluation harness for invoice templates.

Runs the parsing pipeline on a gold dataset and computes metrics. Used as
a regression check whenever template rules change.
"""

import json
from pathlib import Path
from typing import Any

from pipeline.eval.metrics import GoldSample, evaluate_templates
from services.parsing.service import parse_invoice_text
from services.shared.config import get_settings


def load_gold_dataset(gold_file: Path) -> list[GoldSample]:
    """Load gold dataset from JSON file.

    Args:
        gold_file: Path to gold dataset JSON (list of {supplier, text, expected})

    Returns:
        List of gold samples
    """
    with open(gold_file, encoding="utf-8") as f:
        data = json.load(f)
    return [GoldSample.model_validate(item) for item in data]


def run_evaluation(gold_file: Path) -> dict[str, Any]:
    """Run evaluation on gold dataset.

    Args:
        gold_file: Path to gold dataset JSON file

    Returns:
        Evaluation results dict
    """
    settings = get_settings()
    samples = load_gold_dataset(gold_file)

    drafts = [parse_invoice_text(sample.text, sample.supplier, settings=settings) for sample in samples]
    report = evaluate_templates([sample.expected for sample in samples], drafts)

    return {
        "total_samples": report.total_samples,
        "macro_f1": round(report.macro_f1, 4),
        "item_recall": round(report.item_recall, 4),
        "field_metrics": {
            field: {
                "precision": round(metrics.precision, 4),
                "recall": round(metrics.recall, 4),
                "f1": round(metrics.f1, 4),
                "support": metrics.support,
            }
            for field, metrics in report.field_metrics.items()
        },
    }


if __name__ == "__main__":
    gold_file = Path("data/gold/invoices.json")
    results = run_evaluation(gold_file)

    print("\n" + "=" * 60)
    print("INVOICE TEMPLATE EVALUATION RESULTS")
    print("=" * 60)
    print(f"\nTotal Samples: {results['total_samples']}")
    print(f"Macro F1 Score: {results['macro_f1']:.1%}")
    print(f"Line Item Recall: {results['item_recall']:.1%}\n")

    print("Per-Field Metrics:")
    print("-" * 60)
    print(f"{'Field':<20} {'Precision':<12} {'Recall':<12} {'F1':<12}")
    print("-" * 60)

    for field, metrics in results["field_metrics"].items():
        print(
            f"{field:<20} {metrics['precision']:<12.1%} "
            f"{metrics['recall']:<12.1%} {metrics['f1']:<12.1%}"
        )

    print("=" * 60)
