"""
Classification metrics calculator.

=== EVALUATION METRICS EXPLAINED ===

Each attempt ends with a report comparing what the model predicted (under
the user's prompt) against the human labels. Here's what each number means:

PRECISION: "When the model says 'humanitarian', how often is it right?"
  precision = true_positives / (true_positives + false_positives)
  High precision = few false alarms.

RECALL: "Of all truly humanitarian tweets, how many did the model catch?"
  recall = true_positives / (true_positives + false_negatives)
  High recall = few missed items.

F1 SCORE: The harmonic mean of precision and recall.
  f1 = 2 * (precision * recall) / (precision + recall)

MACRO AVERAGE: Unweighted mean of a per-class metric across all classes.
  A prompt that labels everything "not_humanitarian" may score decent
  accuracy on an imbalanced set, but its macro F1 exposes it.

ACCURACY: exact positional matches / total records.

=== WHICH CLASSES GET A ROW? ===

Every label that appears in the truth OR in the predictions, in order of
first appearance (truth first). A label the model invented still gets a row
with support 0, and it drags the macro averages down. That's intended: it
tells the user their prompt let the model drift off the label set.

A missing prediction (None) never matches anything. It is a false negative
for the true class, and it is also scored as a class of its own under the
key "null": precision, recall and F1 are all 0 there, so unmatched items
pull the macro averages down the same way invented labels do.
"""

from typing import Dict, List, Optional, Sequence

from promptlab.core.errors import ValidationError
from promptlab.models.report import ClassificationReport, ClassMetrics, OverallMetrics

# Row key for items that got no prediction
NO_PREDICTION = "null"


def _safe_div(numerator: float, denominator: float) -> float:
    return numerator / denominator if denominator > 0 else 0.0


def classification_report(
    true_labels: Sequence[str],
    predicted_labels: Sequence[Optional[str]],
) -> ClassificationReport:
    """
    Compute per-class and macro-averaged metrics.

    Args:
        true_labels: Ground truth labels
        predicted_labels: Model predictions, None where nothing came back

    Raises:
        ValidationError: The two sequences differ in length
    """
    if len(true_labels) != len(predicted_labels):
        raise ValidationError(
            f"Length mismatch: true={len(true_labels)}, pred={len(predicted_labels)}"
        )

    n = len(true_labels)

    # dict keeps first-appearance order
    classes: Dict[Optional[str], None] = {}
    for label in list(true_labels) + list(predicted_labels):
        classes.setdefault(label, None)

    per_class: Dict[str, ClassMetrics] = {}
    pairs = list(zip(true_labels, predicted_labels))

    for cls in classes:
        tp = sum(1 for t, p in pairs if t == cls and p == cls)
        fp = sum(1 for t, p in pairs if p == cls and t != cls)
        fn = sum(1 for t, p in pairs if t == cls and p != cls)
        support = sum(1 for t, _ in pairs if t == cls)

        precision = _safe_div(tp, tp + fp)
        recall = _safe_div(tp, tp + fn)
        f1 = _safe_div(2 * precision * recall, precision + recall)

        per_class[NO_PREDICTION if cls is None else cls] = ClassMetrics(
            precision=precision,
            recall=recall,
            f1=f1,
            support=support,
        )

    # "Macro" = each class counts equally, regardless of support
    num_classes = len(per_class)
    macro_precision = _safe_div(sum(m.precision for m in per_class.values()), num_classes)
    macro_recall = _safe_div(sum(m.recall for m in per_class.values()), num_classes)
    macro_f1 = _safe_div(sum(m.f1 for m in per_class.values()), num_classes)

    accuracy = _safe_div(sum(1 for t, p in pairs if p is not None and t == p), n)

    return ClassificationReport(
        classes=per_class,
        overall=OverallMetrics(
            accuracy=accuracy,
            macro_precision=macro_precision,
            macro_recall=macro_recall,
            macro_f1=macro_f1,
        ),
    )


def performance_summary(report: ClassificationReport) -> str:
    """One-line summary used when comparing attempts."""
    o = report.overall
    return (
        f"Accuracy {o.accuracy:.1%}, macro precision {o.macro_precision:.1%}, "
        f"macro recall {o.macro_recall:.1%}, macro F1 {o.macro_f1:.1%}"
    )


def format_report(report: ClassificationReport, unmatched_count: int = 0) -> str:
    """Format a ClassificationReport as a readable text table."""
    width = max([len("Macro average")] + [len(c) for c in report.classes]) + 2

    lines = []
    lines.append(f"{'Class':<{width}} {'Precision':>9} {'Recall':>9} {'F1':>9} {'Support':>9}")
    lines.append(f"{'-'*width} {'-'*9} {'-'*9} {'-'*9} {'-'*9}")
    for name, m in report.classes.items():
        lines.append(
            f"{name:<{width}} {m.precision:>9.4f} {m.recall:>9.4f} "
            f"{m.f1:>9.4f} {m.support:>9d}"
        )
    lines.append(f"{'-'*width} {'-'*9} {'-'*9} {'-'*9} {'-'*9}")
    o = report.overall
    lines.append(
        f"{'Macro average':<{width}} {o.macro_precision:>9.4f} {o.macro_recall:>9.4f} {o.macro_f1:>9.4f}"
    )
    lines.append(f"\nAccuracy: {o.accuracy:.4f}")
    if unmatched_count:
        lines.append(f"Items without a prediction: {unmatched_count}")

    return "\n".join(lines)
