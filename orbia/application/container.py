"""Process-wide service wiring, owned by the FastAPI lifespan."""

from datetime import datetime, timedelta
from typing import Callable, Optional
import asyncio

import httpx
import structlog
from langchain_core.embeddings import Embeddings
from langchain_core.language_models import BaseChatModel

from orbia.config import Settings
from orbia.domain.context.memory import (
    GraphMemoryStore, InMemoryGraphStore, InMemorySemanticStore, LLMFactExtractor, MemoryService,
    SemanticMemoryStore, UserMessageExtractor
)
from orbia.domain.context.state import CheckpointStore, InMemoryCheckpointStore, ThreadManager
from orbia.domain.orchestration.core import AgentExecutor
from orbia.domain.tool import ToolRegistry, build_tool_registry
from orbia.infrastructure.graph import Neo4jGraphStore
from orbia.infrastructure.llm import build_chat_model, build_embeddings
from orbia.infrastructure.persistence import Database, SqlCheckpointStore, SqlSemanticMemoryStore
from orbia.infrastructure.security import (
    CredentialProvider, InMemoryCredentialProvider, InMemorySessionProvider, SessionProvider,
    SqlCredentialProvider, SqlSessionProvider
)

logger = structlog.get_logger(__name__)


class ServiceContainer:
    """Builds every client handle once and hands them to request handlers.

    Any collaborator can be passed in explicitly; the rest are built from
    settings in ``start``.
    """

    def __init__(
        self,
        settings: Settings,
        llm: Optional[BaseChatModel] = None,
        embeddings: Optional[Embeddings] = None,
        credentials: Optional[CredentialProvider] = None,
        sessions: Optional[SessionProvider] = None,
        http: Optional[httpx.AsyncClient] = None,
        graph_store: Optional[GraphMemoryStore] = None,
        clock: Callable[[], datetime] = datetime.utcnow,
        start_sweeper: bool = True
    ):
        self.settings = settings
        self.llm = llm
        self.embeddings = embeddings
        self.credentials = credentials
        self.sessions = sessions
        self.http = http
        self.graph_store = graph_store
        self.clock = clock
        self.start_sweeper = start_sweeper

        self.database: Optional[Database] = None
        self.checkpoint_store: Optional[CheckpointStore] = None
        self.semantic_store: Optional[SemanticMemoryStore] = None
        self.thread_manager: Optional[ThreadManager] = None
        self.memory: Optional[MemoryService] = None
        self.registry: Optional[ToolRegistry] = None
        self.executor: Optional[AgentExecutor] = None

        self._owns_http = http is None
        self._sweeper: Optional["asyncio.Task[None]"] = None

    async def start(self) -> "ServiceContainer":
        settings = self.settings

        if settings.store_backend == "sql":
            self.database = Database(settings.database_url, echo=settings.database_echo)
            await self.database.initialize()
            self.checkpoint_store = SqlCheckpointStore(self.database)
            self.semantic_store = SqlSemanticMemoryStore(self.database)
            self.credentials = self.credentials or SqlCredentialProvider(self.database, clock=self.clock)
            self.sessions = self.sessions or SqlSessionProvider(self.database, clock=self.clock)
        else:
            logger.warning("Using in-memory stores; state is lost on restart")
            self.checkpoint_store = InMemoryCheckpointStore()
            self.semantic_store = InMemorySemanticStore()
            self.credentials = self.credentials or InMemoryCredentialProvider()
            self.sessions = self.sessions or InMemorySessionProvider()

        if self.graph_store is None:
            self.graph_store = await self._build_graph_store()

        if self.http is None:
            self.http = httpx.AsyncClient(timeout=settings.tool_timeout)

        self.llm = self.llm or build_chat_model(settings)
        self.embeddings = self.embeddings or build_embeddings(settings)

        extractor = LLMFactExtractor(self.llm) if settings.llm_extract_facts else UserMessageExtractor()
        self.memory = MemoryService(
            self.semantic_store,
            self.graph_store,
            self.embeddings,
            extractor=extractor,
            timeout=settings.store_timeout,
            relate_threshold=settings.memory_relate_threshold,
            max_pending_links=settings.memory_max_pending_links
        )

        self.thread_manager = ThreadManager(
            self.checkpoint_store,
            ttl=timedelta(seconds=settings.checkpoint_ttl_seconds),
            clock=self.clock,
            timeout=settings.store_timeout
        )

        self.registry = build_tool_registry(settings, self.credentials, self.http, memory=self.memory)

        self.executor = AgentExecutor(
            self.thread_manager,
            self.registry,
            self.llm,
            memory=self.memory,
            max_tool_rounds=settings.max_tool_rounds,
            memory_search_limit=settings.memory_search_limit,
            memory_search_threshold=settings.memory_search_threshold,
            save_retries=settings.checkpoint_save_retries,
            model_timeout=settings.model_timeout,
            clock=self.clock
        )

        if self.start_sweeper:
            self._sweeper = asyncio.create_task(
                self.thread_manager.run_sweeper(settings.checkpoint_sweep_interval_seconds)
            )

        logger.info(
            "Service container started",
            store_backend=settings.store_backend,
            graph_backend=settings.graph_backend,
            tools=len(self.registry.tools)
        )
        return self

    async def stop(self) -> None:
        if self._sweeper is not None:
            self._sweeper.cancel()
            try:
                await self._sweeper
            except asyncio.CancelledError:
                pass
            self._sweeper = None

        if self.executor is not None:
            await self.executor.drain()
        if self.graph_store is not None:
            await self.graph_store.close()
        if self.http is not None and self._owns_http:
            await self.http.aclose()
        if self.database is not None:
            await self.database.close()

        logger.info("Service container stopped")

    async def _build_graph_store(self) -> GraphMemoryStore:
        settings = self.settings
        if settings.graph_backend != "neo4j":
            return InMemoryGraphStore()

        store = Neo4jGraphStore(
            settings.neo4j_uri,
            settings.neo4j_user,
            settings.neo4j_password,
            database=settings.neo4j_database,
            query_timeout=settings.store_timeout
        )
        try:
            await store.initialize()
        except Exception as e:
            # Graph writes are best-effort; the driver reconnects on first use
            logger.warning("Neo4j unavailable at startup", uri=settings.neo4j_uri, error=str(e))
        return store
