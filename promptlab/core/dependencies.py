import logging
from functools import lru_cache
from typing import Optional

from sqlalchemy.orm import sessionmaker

from promptlab.core.config import settings, Settings
from promptlab.core.database import make_engine, make_session_factory
from promptlab.services.attempt_coordinator import AttemptCoordinator
from promptlab.services.attempt_store import AttemptStore, SqlAttemptStore
from promptlab.services.chunked_classifier import ChunkedClassifier
from promptlab.services.dataset_store import DatasetStore, SqlDatasetStore
from promptlab.services.feedback import FeedbackOrchestrator
from promptlab.services.llm_provider import LLMProvider, OpenAIProvider, ClaudeProvider, DemoProvider
from promptlab.services.llm_usage_logger import LLMUsageLogger

logger = logging.getLogger(__name__)


@lru_cache()
def get_settings() -> Settings:
    return settings


def build_llm_provider(config: Settings) -> LLMProvider:
    """Provider for the configured backend, or the demo provider without a key."""
    if not config.api_key:
        logger.warning(f"No API key for LLM provider '{config.llm_provider}' - running in demo mode")
        return DemoProvider()
    if config.llm_provider == "anthropic":
        return ClaudeProvider(api_key=config.api_key, model=config.resolved_model)
    return OpenAIProvider(api_key=config.api_key, model=config.resolved_model)


def build_coordinator(
    config: Settings,
    provider: LLMProvider,
    attempt_store: AttemptStore,
    dataset_store: DatasetStore,
    usage_logger: Optional[LLMUsageLogger] = None,
    log_dir=None,
) -> AttemptCoordinator:
    classifier = ChunkedClassifier(
        provider,
        num_chunks=config.num_chunks,
        temperature=config.classification_temperature,
        max_tokens=config.classification_max_tokens,
        usage_logger=usage_logger,
    )
    feedback = FeedbackOrchestrator(
        provider,
        temperature=config.feedback_temperature,
        max_tokens=config.feedback_max_tokens,
        history_limit=config.chat_history_limit,
        usage_logger=usage_logger,
    )
    return AttemptCoordinator(
        classifier,
        feedback,
        attempt_store,
        dataset_store,
        history_limit=config.chat_history_limit,
        log_dir=log_dir,
    )


@lru_cache()
def get_llm_provider() -> LLMProvider:
    """Shared provider; stateless, safe across concurrent requests."""
    return build_llm_provider(get_settings())


@lru_cache()
def get_session_factory() -> sessionmaker:
    return make_session_factory(make_engine(get_settings().sqlalchemy_url))


def get_attempt_store() -> AttemptStore:
    return SqlAttemptStore(get_session_factory())


def get_dataset_store() -> DatasetStore:
    return SqlDatasetStore(get_settings().data_dir, get_session_factory())


def get_coordinator() -> AttemptCoordinator:
    config = get_settings()
    return build_coordinator(
        config,
        get_llm_provider(),
        get_attempt_store(),
        get_dataset_store(),
        usage_logger=LLMUsageLogger(config.logs_dir),
        log_dir=config.logs_dir,
    )
