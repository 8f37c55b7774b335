from fastapi import FastAPI, Depends, File, Form, Request, UploadFile
from fastapi.concurrency import run_in_threadpool
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, StreamingResponse
from pydantic import BaseModel, Field
from typing import Optional, Set
from datetime import datetime
import asyncio
import json
import logging

from promptlab.core.config import settings
from promptlab.core.dependencies import (
    get_coordinator,
    get_dataset_store,
    get_llm_provider,
)
from promptlab.core.errors import NotFoundError, ParseError, PromptLabError, ServiceError, ValidationError
from promptlab.models.attempt import AttemptRecord, AttemptResult
from promptlab.models.dataset import TaskType
from promptlab.services.attempt_coordinator import AttemptCoordinator
from promptlab.services.dataset_store import DatasetStore, parse_dataset_csv
from promptlab.services.llm_provider import LLMProvider
from promptlab.services.prompt_techniques import get_available_techniques

# Logging setup
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

MAX_UPLOAD_BYTES = 5 * 1024 * 1024

app = FastAPI(
    title="Prompt Lab",
    description="Practice writing classification prompts and get AI coaching feedback",
    version="1.0.0"
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
    allow_headers=["Content-Type", "Authorization", "Accept"],
)

# Attempts that outlive a closed event stream keep a reference here until done
_background_attempts: Set[asyncio.Task] = set()

_ERROR_STATUS = {
    ValidationError: 400,
    NotFoundError: 404,
    ParseError: 422,
    ServiceError: 502,
}


class SubmitAttemptRequest(BaseModel):
    user_id: str = Field(..., min_length=1, max_length=100)
    prompt: str = Field(..., min_length=10, max_length=2000)
    attempt_number: int = Field(default=1, ge=1)
    task_type: TaskType = TaskType.BINARY
    feedback_level: str = "llm"
    technique: Optional[str] = None


def _attempt_payload(record: AttemptRecord) -> dict:
    data = record.model_dump(mode="json")
    data["metrics"] = record.metrics.to_dict()
    return data


def _result_payload(result: AttemptResult) -> dict:
    return {
        **_attempt_payload(result.record),
        "raw_attempt_number": result.raw_attempt_number,
        "demo_mode": result.demo_mode,
    }


@app.exception_handler(PromptLabError)
async def prompt_lab_error_handler(request: Request, exc: PromptLabError):
    status = next((code for cls, code in _ERROR_STATUS.items() if isinstance(exc, cls)), 500)
    return JSONResponse(
        status_code=status,
        content={"success": False, "error": type(exc).__name__, "message": exc.message},
    )


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    return JSONResponse(
        status_code=400,
        content={"success": False, "error": "Validation failed", "details": json.loads(json.dumps(exc.errors(), default=str))},
    )


@app.get("/")
async def root():
    return {
        "message": "Prompt Lab API",
        "version": "1.0.0",
        "endpoints": {
            "health": "/health",
            "attempts": "/api/attempts",
            "dataset": "/api/dataset",
            "techniques": "/api/techniques",
        },
    }


@app.get("/health")
async def health_check(provider: LLMProvider = Depends(get_llm_provider)):
    return {
        "status": "healthy",
        "service": "prompt-lab",
        "version": "1.0.0",
        "timestamp": datetime.now().isoformat(),
        "services": {
            "llm": "demo mode" if provider.is_demo else "configured",
            "provider": provider.get_provider_name(),
            "model": provider.get_model_name(),
        },
    }


@app.get("/api/techniques")
async def list_techniques():
    return {"success": True, "data": get_available_techniques()}


@app.post("/api/attempts/submit")
async def submit_attempt(
    body: SubmitAttemptRequest,
    coordinator: AttemptCoordinator = Depends(get_coordinator),
):
    logger.info(
        f"Received attempt submission: user={body.user_id}, attempt={body.attempt_number}, "
        f"prompt_length={len(body.prompt)}, task={body.task_type.value}, feedback={body.feedback_level}"
    )
    result = await coordinator.process_attempt(
        body.user_id,
        body.prompt,
        body.attempt_number,
        task_type=body.task_type.value,
        feedback_level=body.feedback_level,
        technique=body.technique,
    )
    return {"success": True, "message": "Prompt processed successfully", "data": _result_payload(result)}


def _sse(payload: dict) -> str:
    return f"data: {json.dumps(payload, default=str)}\n\n"


def _attempt_finished(task: asyncio.Task):
    _background_attempts.discard(task)
    if task.cancelled():
        logger.warning("Streamed attempt was cancelled before it finished")
    elif task.exception() is not None:
        logger.error(f"Streamed attempt crashed: {task.exception()}")


@app.post("/api/attempts/submit-stream")
async def submit_attempt_stream(
    body: SubmitAttemptRequest,
    coordinator: AttemptCoordinator = Depends(get_coordinator),
):
    """
    Same as /submit, streamed as server-sent events:
    connected → progress... → complete | error → close.

    The attempt runs in its own task. If the client goes away mid-stream the
    attempt still finishes (and is saved); only the event delivery stops.
    """
    connection_id = f"{body.user_id}-{int(datetime.now().timestamp() * 1000)}"
    queue: asyncio.Queue = asyncio.Queue()

    def on_progress(event):
        queue.put_nowait({"type": "progress", **event.model_dump(exclude_none=True)})

    async def run():
        try:
            result = await coordinator.process_attempt(
                body.user_id,
                body.prompt,
                body.attempt_number,
                task_type=body.task_type.value,
                feedback_level=body.feedback_level,
                technique=body.technique,
                on_progress=on_progress,
            )
            queue.put_nowait({"type": "complete", "data": _result_payload(result)})
        except PromptLabError as e:
            queue.put_nowait({"type": "error", "message": e.message})
        finally:
            queue.put_nowait(None)

    task = asyncio.create_task(run())
    _background_attempts.add(task)
    task.add_done_callback(_attempt_finished)

    async def events():
        yield _sse({"type": "connected", "connectionId": connection_id})
        while True:
            item = await queue.get()
            if item is None:
                break
            yield _sse(item)
        yield _sse({"type": "close"})

    return StreamingResponse(
        events(),
        media_type="text/event-stream",
        headers={
            "Cache-Control": "no-cache",
            "Connection": "keep-alive",
            "X-Accel-Buffering": "no",
        },
    )


@app.get("/api/attempts/user/{user_id}")
def get_attempts(user_id: str, coordinator: AttemptCoordinator = Depends(get_coordinator)):
    attempts = coordinator.get_user_attempts(user_id)
    return {
        "success": True,
        "message": "Attempts retrieved successfully",
        "data": [_attempt_payload(a) for a in attempts],
    }


@app.get("/api/attempts/user/{user_id}/attempt/{attempt_number}/chat")
def get_chat_history(
    user_id: str,
    attempt_number: int,
    coordinator: AttemptCoordinator = Depends(get_coordinator),
):
    history = coordinator.get_chat_history(user_id, attempt_number)
    return {
        "success": True,
        "message": "Chat history retrieved successfully",
        "data": [m.model_dump(mode="json") for m in history],
    }


@app.post("/api/dataset/upload")
async def upload_dataset(
    file: UploadFile = File(...),
    user_id: str = Form(...),
    store: DatasetStore = Depends(get_dataset_store),
):
    filename = file.filename or ""
    if file.content_type != "text/csv" and not filename.endswith(".csv"):
        raise ValidationError("Only CSV files are allowed")

    content = await file.read()
    if len(content) > MAX_UPLOAD_BYTES:
        raise ValidationError("File too large (max 5MB)")

    samples = await run_in_threadpool(parse_dataset_csv, content)
    dataset = await run_in_threadpool(store.save_dataset, user_id, samples, original_filename=filename)
    logger.info(f"Stored dataset for user {user_id}: {dataset.metadata.row_count} rows")

    return {
        "success": True,
        "message": "Dataset uploaded successfully",
        "data": {
            "row_count": dataset.metadata.row_count,
            "labels": dataset.metadata.labels,
            "sample_data": [s.model_dump() for s in samples[:5]],
        },
    }


@app.get("/api/dataset/user/{user_id}")
def get_dataset(user_id: str, store: DatasetStore = Depends(get_dataset_store)):
    dataset = store.get_dataset(user_id)
    return {
        "success": True,
        "message": "Dataset retrieved successfully",
        "data": [s.model_dump() for s in dataset.samples],
        "metadata": dataset.metadata.model_dump(),
    }


@app.delete("/api/dataset/user/{user_id}")
def delete_dataset(user_id: str, store: DatasetStore = Depends(get_dataset_store)):
    store.delete_dataset(user_id)
    return {"success": True, "message": "Dataset deleted successfully"}
