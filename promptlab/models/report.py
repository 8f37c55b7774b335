"""
Classification report models.

The stored/served shape mirrors the report the frontend already reads:

    {
      "humanitarian":     {"precision": .., "recall": .., "f1": .., "support": 4},
      "not_humanitarian": {...},
      "overall": {"accuracy": .., "macroPrecision": .., "macroRecall": .., "macroF1": ..}
    }

`to_dict()` produces that flat mapping. Internally the per-class rows and
the overall block are kept apart so a label can never collide with "overall".
"""

from pydantic import BaseModel, ConfigDict, Field
from typing import Dict


class ClassMetrics(BaseModel):
    """Precision/recall/F1 for one class."""
    precision: float
    recall: float
    f1: float
    support: int     # Number of true instances of this class


class OverallMetrics(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    accuracy: float
    macro_precision: float = Field(alias="macroPrecision")
    macro_recall: float = Field(alias="macroRecall")
    macro_f1: float = Field(alias="macroF1")


class ClassificationReport(BaseModel):
    classes: Dict[str, ClassMetrics]
    overall: OverallMetrics

    def to_dict(self) -> dict:
        data = {label: m.model_dump() for label, m in self.classes.items()}
        data["overall"] = self.overall.model_dump(by_alias=True)
        return data
