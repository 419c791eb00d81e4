"""Pytest configuration and shared fixtures for testing."""

import asyncio
import hashlib
import json
import math
import re
from datetime import datetime, timedelta
from typing import Any, AsyncIterator, Callable, List, Optional, Union

import httpx
import pytest
from langchain_core.embeddings import Embeddings
from langchain_core.language_models import BaseChatModel
from langchain_core.messages import AIMessage, AIMessageChunk, BaseMessage
from langchain_core.outputs import ChatGeneration, ChatGenerationChunk, ChatResult

from orbia.config import Settings
from orbia.domain.context.memory import InMemoryGraphStore, InMemorySemanticStore, MemoryService
from orbia.domain.context.state import InMemoryCheckpointStore, ThreadManager
from orbia.domain.orchestration.core import AgentExecutor
from orbia.domain.tool import build_tool_registry
from orbia.infrastructure.persistence import Database
from orbia.infrastructure.security import InMemoryCredentialProvider, Principal

TEST_USER_ID = "user-1"
OTHER_USER_ID = "user-2"
GOOGLE_TOKEN = "ya29.test-token"

ScriptedReply = Union[AIMessage, List[str]]


class ScriptedChatModel(BaseChatModel):
    """Chat model that replays scripted replies in order.

    A reply is an AIMessage, or a list of text fragments which streams one
    chunk per fragment.
    """

    replies: List[Any] = []
    prompts: List[Any] = []
    cursor: int = 0
    bound_tools: List[Any] = []

    @property
    def _llm_type(self) -> str:
        return "scripted"

    def bind_tools(self, tools, **kwargs):
        self.bound_tools = list(tools)
        return self

    def _next_reply(self, messages: List[BaseMessage]) -> ScriptedReply:
        self.prompts.append(list(messages))
        if self.cursor >= len(self.replies):
            raise AssertionError("ScriptedChatModel ran out of replies")
        reply = self.replies[self.cursor]
        self.cursor += 1
        return reply

    @staticmethod
    def _as_message(reply: ScriptedReply) -> AIMessage:
        if isinstance(reply, AIMessage):
            return reply
        return AIMessage(content="".join(reply))

    def _generate(self, messages, stop=None, run_manager=None, **kwargs) -> ChatResult:
        message = self._as_message(self._next_reply(messages))
        return ChatResult(generations=[ChatGeneration(message=message)])

    async def _agenerate(self, messages, stop=None, run_manager=None, **kwargs) -> ChatResult:
        return self._generate(messages, stop=stop, **kwargs)

    async def _astream(self, messages, stop=None, run_manager=None, **kwargs) -> AsyncIterator[ChatGenerationChunk]:
        reply = self._next_reply(messages)
        if isinstance(reply, AIMessage):
            yield ChatGenerationChunk(message=AIMessageChunk(
                content=reply.content,
                tool_call_chunks=[
                    {"name": call["name"], "args": json.dumps(call["args"]), "id": call["id"], "index": i}
                    for i, call in enumerate(reply.tool_calls)
                ]
            ))
            return
        for fragment in reply:
            await asyncio.sleep(0)
            yield ChatGenerationChunk(message=AIMessageChunk(content=fragment))


class KeywordEmbeddings(Embeddings):
    """Deterministic bag-of-words vectors; texts sharing words are similar"""

    def __init__(self, dimensions: int = 64):
        self.dimensions = dimensions

    def _embed(self, text: str) -> List[float]:
        vector = [0.0] * self.dimensions
        for token in re.findall(r"[a-z0-9]+", text.lower()):
            index = int(hashlib.md5(token.encode()).hexdigest(), 16) % self.dimensions
            vector[index] += 1.0
        norm = math.sqrt(sum(v * v for v in vector)) or 1.0
        return [v / norm for v in vector]

    def embed_documents(self, texts: List[str]) -> List[List[float]]:
        return [self._embed(t) for t in texts]

    def embed_query(self, text: str) -> List[float]:
        return self._embed(text)

    async def aembed_documents(self, texts: List[str]) -> List[List[float]]:
        return self.embed_documents(texts)

    async def aembed_query(self, text: str) -> List[float]:
        return self.embed_query(text)


class MutableClock:
    """Injectable clock that tests advance by hand"""

    def __init__(self, start: Optional[datetime] = None):
        self.now = start or datetime(2025, 1, 1, 12, 0, 0)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **delta: float) -> datetime:
        self.now = self.now + timedelta(**delta)
        return self.now


class RecordingTransport:
    """httpx transport that records requests and answers through a handler"""

    def __init__(self, handler: Optional[Callable[[httpx.Request], httpx.Response]] = None):
        self.requests: List[httpx.Request] = []
        self.handler = handler or (lambda request: httpx.Response(200, json={}))

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        return self.handler(request)


def tool_call(name: str, args: dict, call_id: str = "call_1") -> AIMessage:
    return AIMessage(content="", tool_calls=[{"name": name, "args": args, "id": call_id}])


# --- Infrastructure Fixtures ---


@pytest.fixture
def settings() -> Settings:
    return Settings(
        store_backend="memory",
        graph_backend="memory",
        openai_api_key="test-key",
        llm_extract_facts=False,
        tool_timeout=5.0,
        store_timeout=5.0,
        model_timeout=5.0,
        checkpoint_sweep_interval_seconds=3600,
    )


@pytest.fixture
def clock() -> MutableClock:
    return MutableClock()


@pytest.fixture
async def database():
    """In-memory SQLite database with all tables created"""
    db = Database("sqlite+aiosqlite:///:memory:")
    await db.initialize()
    yield db
    await db.close()


@pytest.fixture
def transport() -> RecordingTransport:
    return RecordingTransport()


@pytest.fixture
async def http(transport: RecordingTransport):
    client = httpx.AsyncClient(transport=httpx.MockTransport(transport))
    yield client
    await client.aclose()


@pytest.fixture
def credentials() -> InMemoryCredentialProvider:
    provider = InMemoryCredentialProvider()
    provider.link(TEST_USER_ID, GOOGLE_TOKEN)
    return provider


@pytest.fixture
def principal() -> Principal:
    return Principal(user_id=TEST_USER_ID)


# --- Domain Fixtures ---


@pytest.fixture
def embeddings() -> KeywordEmbeddings:
    return KeywordEmbeddings()


@pytest.fixture
def semantic_store() -> InMemorySemanticStore:
    return InMemorySemanticStore()


@pytest.fixture
def graph_store() -> InMemoryGraphStore:
    return InMemoryGraphStore()


@pytest.fixture
def memory_service(semantic_store, graph_store, embeddings) -> MemoryService:
    return MemoryService(semantic_store, graph_store, embeddings, timeout=5.0)


@pytest.fixture
def checkpoint_store() -> InMemoryCheckpointStore:
    return InMemoryCheckpointStore()


@pytest.fixture
def thread_manager(checkpoint_store, clock) -> ThreadManager:
    return ThreadManager(checkpoint_store, clock=clock, timeout=5.0)


@pytest.fixture
def registry(settings, credentials, http, memory_service):
    return build_tool_registry(settings, credentials, http, memory=memory_service)


@pytest.fixture
def llm() -> ScriptedChatModel:
    return ScriptedChatModel(replies=[], prompts=[])


@pytest.fixture
async def executor(thread_manager, registry, llm, memory_service, clock):
    agent = AgentExecutor(
        thread_manager,
        registry,
        llm,
        memory=memory_service,
        max_tool_rounds=3,
        memory_search_threshold=0.3,
        save_retries=2,
        model_timeout=5.0,
        clock=clock
    )
    yield agent
    await agent.drain()
