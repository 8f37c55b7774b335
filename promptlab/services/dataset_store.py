"""
Datasets: the user's uploaded CSV, or a built-in tweet sample.

load_dataset(user_id, task_type) prefers the user's own dataset; without one
it falls back to the JSON sample shipped in promptlab/data for the task type:

    binary      → binary_sample.json       humanitarian / not_humanitarian
    multiclass  → multiclass_sample.json   CrisisMMD humanitarian categories

CSV uploads accept a few column spellings (id|tweet_id, text|tweet_text,
label|class_label); headers are trimmed and lowercased before matching.

Like the attempt store this is synchronous SQLAlchemy; see attempt_store.py
for how the HTTP routes keep it off the event loop.
"""

import io
import json
import logging
from abc import ABC, abstractmethod
from functools import lru_cache
from pathlib import Path
from typing import Dict, List, Optional

import pandas as pd
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import sessionmaker

from promptlab.core.database import DatasetRow
from promptlab.core.errors import NotFoundError, ServiceError, ValidationError
from promptlab.models.dataset import DatasetMetadata, Sample, StoredDataset, TaskType

logger = logging.getLogger(__name__)

BUILTIN_FILES = {
    TaskType.BINARY.value: "binary_sample.json",
    TaskType.MULTICLASS.value: "multiclass_sample.json",
}

ID_COLUMNS = ("id", "tweet_id")
TEXT_COLUMNS = ("text", "tweet_text")
LABEL_COLUMNS = ("label", "class_label")


@lru_cache(maxsize=8)
def _read_builtin(path: Path) -> tuple:
    with open(path, "r", encoding="utf-8") as f:
        rows = json.load(f)
    return tuple(Sample(**row) for row in rows)


def load_builtin_dataset(task_type: str, data_dir: Path) -> List[Sample]:
    filename = BUILTIN_FILES.get(task_type)
    if filename is None:
        raise NotFoundError(f"Unknown task type '{task_type}' and no custom dataset uploaded")
    return list(_read_builtin(data_dir / filename))


def _first_column(columns, candidates) -> Optional[str]:
    return next((c for c in candidates if c in columns), None)


def parse_dataset_csv(content: bytes) -> List[Sample]:
    """
    Parse an uploaded CSV into samples.

    Raises:
        ValidationError: Unreadable file, no rows, or missing columns
    """
    try:
        df = pd.read_csv(
            io.BytesIO(content),
            dtype=str,
            keep_default_na=False,
            skip_blank_lines=True,
            encoding="utf-8",
        )
    except pd.errors.EmptyDataError as e:
        raise ValidationError("CSV file is empty") from e
    except (pd.errors.ParserError, UnicodeDecodeError) as e:
        raise ValidationError(f"Error parsing CSV: {e}") from e

    df.columns = [str(c).strip().lower() for c in df.columns]

    id_col = _first_column(df.columns, ID_COLUMNS)
    text_col = _first_column(df.columns, TEXT_COLUMNS)
    label_col = _first_column(df.columns, LABEL_COLUMNS)
    if not (id_col and text_col and label_col):
        raise ValidationError(
            "CSV must contain columns: text (or tweet_text), label (or class_label), "
            f"and id (or tweet_id). Found: {list(df.columns)}"
        )

    if df.empty:
        raise ValidationError("CSV file is empty")

    samples = []
    for index, values in enumerate(df.to_dict(orient="records")):
        text = str(values.get(text_col, "")).strip()
        label = str(values.get(label_col, "")).strip()
        if not text or not label:
            logger.debug(f"Skipping CSV row {index}: missing text or label")
            continue
        sample_id = str(values.get(id_col, "")).strip() or index
        samples.append(Sample(id=sample_id, text=text, label=label))

    if not samples:
        raise ValidationError("CSV file has no rows with both text and label")

    return samples


def unique_labels(samples: List[Sample]) -> List[str]:
    seen: Dict[str, None] = {}
    for s in samples:
        seen.setdefault(s.label, None)
    return list(seen)


class DatasetStore(ABC):

    def __init__(self, data_dir: Path):
        self.data_dir = data_dir

    def load_dataset(self, user_id: str, task_type: str) -> List[Sample]:
        """The user's custom dataset if present, else the built-in one."""
        custom = self.find_dataset(user_id)
        if custom is not None:
            logger.info(f"Using custom dataset for user {user_id} ({len(custom.samples)} rows)")
            return list(custom.samples)
        return load_builtin_dataset(task_type, self.data_dir)

    def get_dataset(self, user_id: str) -> StoredDataset:
        dataset = self.find_dataset(user_id)
        if dataset is None:
            raise NotFoundError("No custom dataset found")
        return dataset

    def save_dataset(
        self, user_id: str, samples: List[Sample], original_filename: Optional[str] = None
    ) -> StoredDataset:
        dataset = StoredDataset(
            user_id=user_id,
            samples=samples,
            metadata=DatasetMetadata(
                row_count=len(samples),
                original_filename=original_filename,
                labels=unique_labels(samples),
            ),
        )
        self._store(dataset)
        return dataset

    @abstractmethod
    def find_dataset(self, user_id: str) -> Optional[StoredDataset]:
        pass

    @abstractmethod
    def _store(self, dataset: StoredDataset):
        pass

    @abstractmethod
    def delete_dataset(self, user_id: str):
        """Raises NotFoundError when the user has no dataset."""
        pass


class InMemoryDatasetStore(DatasetStore):

    def __init__(self, data_dir: Path):
        super().__init__(data_dir)
        self._datasets: Dict[str, StoredDataset] = {}

    def find_dataset(self, user_id: str) -> Optional[StoredDataset]:
        return self._datasets.get(user_id)

    def _store(self, dataset: StoredDataset):
        self._datasets[dataset.user_id] = dataset

    def delete_dataset(self, user_id: str):
        if self._datasets.pop(user_id, None) is None:
            raise NotFoundError("No dataset found to delete")


class SqlDatasetStore(DatasetStore):

    def __init__(self, data_dir: Path, session_factory: sessionmaker):
        super().__init__(data_dir)
        self.session_factory = session_factory

    def find_dataset(self, user_id: str) -> Optional[StoredDataset]:
        try:
            with self.session_factory() as db:
                row = db.get(DatasetRow, user_id)
                if row is None:
                    return None
                return StoredDataset(
                    user_id=row.user_id,
                    samples=[Sample(**s) for s in json.loads(row.samples_json)],
                    metadata=DatasetMetadata.model_validate_json(row.metadata_json),
                )
        except SQLAlchemyError as e:
            logger.error(f"Error loading dataset for user {user_id}: {e}")
            raise ServiceError(f"Failed to load dataset: {e}") from e

    def _store(self, dataset: StoredDataset):
        samples_json = json.dumps([s.model_dump() for s in dataset.samples])
        metadata_json = dataset.metadata.model_dump_json()
        try:
            with self.session_factory() as db:
                row = db.get(DatasetRow, dataset.user_id)
                if row:
                    row.samples_json = samples_json
                    row.metadata_json = metadata_json
                else:
                    db.add(DatasetRow(
                        user_id=dataset.user_id,
                        samples_json=samples_json,
                        metadata_json=metadata_json,
                    ))
                db.commit()
        except SQLAlchemyError as e:
            logger.error(f"Error saving dataset for user {dataset.user_id}: {e}")
            raise ServiceError(f"Failed to save dataset: {e}") from e

    def delete_dataset(self, user_id: str):
        try:
            with self.session_factory() as db:
                deleted = db.execute(
                    select(DatasetRow).where(DatasetRow.user_id == user_id)
                ).scalar_one_or_none()
                if deleted is None:
                    raise NotFoundError("No dataset found to delete")
                db.delete(deleted)
                db.commit()
        except SQLAlchemyError as e:
            logger.error(f"Error deleting dataset for user {user_id}: {e}")
            raise ServiceError(f"Failed to delete dataset: {e}") from e
