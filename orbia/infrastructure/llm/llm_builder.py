"""Chat model and embedding construction from settings."""

from typing import Any, Dict

import structlog
from langchain_core.embeddings import Embeddings
from langchain_core.language_models import BaseChatModel
from langchain_openai import ChatOpenAI, OpenAIEmbeddings

from orbia.config import Settings

logger = structlog.get_logger(__name__)


def build_chat_model(settings: Settings, temperature: float = 0, json_mode: bool = False) -> BaseChatModel:
    """Build the OpenAI chat model used by the executor and the fact extractor.

    Raises:
        ValueError: If no API key is configured.
    """

    if not settings.openai_api_key:
        raise ValueError("OPENAI_API_KEY is required to build the chat model")

    kwargs: Dict[str, Any] = {
        "model": settings.chat_model,
        "temperature": temperature,
        "api_key": settings.openai_api_key,
        "timeout": settings.model_timeout,
    }
    if json_mode:
        kwargs["model_kwargs"] = {"response_format": {"type": "json_object"}}

    logger.info("Building chat model", model=settings.chat_model, json_mode=json_mode)
    return ChatOpenAI(**kwargs)


def build_embeddings(settings: Settings) -> Embeddings:
    if not settings.openai_api_key:
        raise ValueError("OPENAI_API_KEY is required to build the embedding model")

    logger.info("Building embedding model", model=settings.embedding_model)
    return OpenAIEmbeddings(model=settings.embedding_model, api_key=settings.openai_api_key)
