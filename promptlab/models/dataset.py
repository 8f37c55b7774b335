from pydantic import BaseModel, ConfigDict
from enum import Enum
from typing import List, Optional, Union


class TaskType(str, Enum):
    BINARY = "binary"
    MULTICLASS = "multiclass"
    MULTILABEL = "multilabel"


# Canonical labels of the built-in binary task
HUMANITARIAN = "humanitarian"
NOT_HUMANITARIAN = "not_humanitarian"
BINARY_LABELS = [HUMANITARIAN, NOT_HUMANITARIAN]


class Sample(BaseModel):
    """One labeled dataset row. `id` may be a number or a string."""
    model_config = ConfigDict(frozen=True)

    id: Union[int, str]
    text: str
    label: str

    @property
    def key(self) -> str:
        # Models echo numeric ids back as strings; compare on str(id)
        return str(self.id)


class DatasetMetadata(BaseModel):
    row_count: int
    original_filename: Optional[str] = None
    labels: List[str] = []


class StoredDataset(BaseModel):
    user_id: str
    samples: List[Sample]
    metadata: DatasetMetadata
