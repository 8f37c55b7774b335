"""
Data models for one prompt attempt.

=== FROM MODEL OUTPUT TO STORED ATTEMPT ===

    model text ──parse──► PredictionRecord[]        {id, pred}
                              │
                    merge by id onto Sample[]
                              ▼
                        MergedRecord[]              sample + predicted_label
                              │
                       metrics + feedback
                              ▼
                        AttemptRecord               one per (user_id, attempt)

AttemptRecord is the unit of persistence. Writing it again for the same
(user_id, attempt) replaces the previous record entirely.
"""

from pydantic import BaseModel, Field
from datetime import datetime
from typing import Dict, List, Literal, Optional, Union

from promptlab.models.llm import TokenUsage
from promptlab.models.report import ClassificationReport


class PredictionRecord(BaseModel):
    id: Union[int, str]
    pred: str


class MergedRecord(BaseModel):
    id: Union[int, str]
    text: str
    label: str
    predicted_label: Optional[str] = None   # None = no prediction came back for this id


class ChatMessage(BaseModel):
    role: Literal["user", "assistant", "system"]
    content: str
    timestamp: datetime = Field(default_factory=datetime.utcnow)


class ProgressEvent(BaseModel):
    status: str                 # chunking, processing, merging, calculating, complete, ...
    message: str
    current: Optional[int] = None
    total: Optional[int] = None


class ClassificationResult(BaseModel):
    merged: List[MergedRecord]
    report: ClassificationReport
    usage: TokenUsage
    unmatched_count: int = 0


class FeedbackResult(BaseModel):
    feedback: str
    usage: TokenUsage = Field(default_factory=TokenUsage)


class PreviousAttempt(BaseModel):
    """Summary of an earlier attempt, handed to the coach for comparison."""
    attempt: int
    performance: str


class AttemptMetadata(BaseModel):
    classification_usage: TokenUsage = Field(default_factory=TokenUsage)
    feedback_usage: TokenUsage = Field(default_factory=TokenUsage)
    total_usage: TokenUsage = Field(default_factory=TokenUsage)
    timings_ms: Dict[str, float] = {}
    unmatched_count: int = 0
    provider: Optional[str] = None
    model: Optional[str] = None
    demo_mode: bool = False
    technique: Optional[str] = None


class AttemptRecord(BaseModel):
    user_id: str
    attempt: int = Field(ge=1, le=3)
    prompt: str
    llm_output: str             # formatted classification report
    feedback: str
    chat_history: List[ChatMessage] = []
    predictions: List[MergedRecord] = []
    metrics: ClassificationReport
    metadata: AttemptMetadata = Field(default_factory=AttemptMetadata)
    task_type: str = "binary"
    feedback_level: str = "llm"
    completed: bool = True
    updated_at: datetime = Field(default_factory=datetime.utcnow)


class AttemptResult(BaseModel):
    """What the coordinator hands back to the caller."""
    record: AttemptRecord
    raw_attempt_number: int
    demo_mode: bool = False
