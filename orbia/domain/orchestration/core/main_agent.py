from typing import TypedDict, Annotated, List, Dict, Any, Optional, Literal, AsyncIterator, Callable, Set
import asyncio
import json
import operator
import uuid
from datetime import datetime

from langgraph.graph import StateGraph, END
from langchain_core.language_models import BaseChatModel
from langchain_core.messages import AIMessage, BaseMessage, HumanMessage, SystemMessage, ToolMessage
from langchain_core.runnables import RunnableConfig
import structlog

from orbia.domain.context.memory.memory_service import MemoryService
from orbia.domain.context.state.state_manager import ThreadManager
from orbia.domain.errors import (
    AgentExecutionError, CheckpointConflictError, ErrorCode, InvalidRequestError, OrbiaError
)
from orbia.domain.messages.adapter import from_langchain, normalize, text_content, to_langchain, to_memory_format
from orbia.domain.models.agent_state import AgentResponse, Checkpoint, Message, MessageRole, new_message_id
from orbia.domain.streaming.streaming_handler import BufferedChannel, ResponseChannel, StreamingChannel
from orbia.domain.tool.tool_registry import ToolRegistry
from orbia.infrastructure.observability.logging import agent_logger, bind_request_context
from orbia.infrastructure.security.session import Principal
from .prompts import (
    GREETING, INITIALIZATION_MESSAGE, SUGGESTED_PROMPTS, build_memory_context, build_system_prompt
)

logger = structlog.get_logger(__name__)

# Tool failures that end the invocation instead of going back to the model
FATAL_TOOL_CODES = frozenset({ErrorCode.UNAUTHENTICATED})


class WorkflowState(TypedDict):
    """State for the workflow graph"""
    messages: Annotated[List[BaseMessage], operator.add]
    context: List[BaseMessage]
    user_id: str
    tool_rounds: int
    fatal_error: Optional[Dict[str, Any]]


def is_initialization(messages: List[Message]) -> bool:
    return len(messages) == 1 and messages[0].content == INITIALIZATION_MESSAGE


class AgentExecutor:
    """Load, Augment, Plan/Act and Respond for one thread per invocation.

    The graph runs without a LangGraph checkpointer; the thread's checkpoint
    is loaded before the run and saved once after the final fragment.
    """

    def __init__(
        self,
        thread_manager: ThreadManager,
        registry: ToolRegistry,
        llm: BaseChatModel,
        memory: Optional[MemoryService] = None,
        max_tool_rounds: int = 8,
        memory_search_limit: int = 5,
        memory_search_threshold: Optional[float] = None,
        save_retries: int = 3,
        model_timeout: float = 120.0,
        clock: Callable[[], datetime] = datetime.utcnow
    ):
        self.thread_manager = thread_manager
        self.registry = registry
        self.llm = llm
        self.memory = memory
        self.max_tool_rounds = max_tool_rounds
        self.memory_search_limit = memory_search_limit
        self.memory_search_threshold = memory_search_threshold
        self.save_retries = save_retries
        self.model_timeout = model_timeout
        self.clock = clock

        tool_definitions = registry.as_tool_definitions()
        self.tool_llm = llm.bind_tools(tool_definitions) if tool_definitions else llm
        self.workflow = self._create_workflow()
        self._background: Set["asyncio.Task[None]"] = set()

    def _create_workflow(self):
        """Create the augment -> agent <-> tools graph"""

        workflow = StateGraph(WorkflowState)

        workflow.add_node("augment", self.augment_node)
        workflow.add_node("agent", self.agent_node)
        workflow.add_node("tools", self.tool_execution_node)

        workflow.set_entry_point("augment")
        workflow.add_edge("augment", "agent")

        workflow.add_conditional_edges(
            "agent",
            self.route_after_agent,
            {
                "tools": "tools",
                "respond": END
            }
        )

        workflow.add_conditional_edges(
            "tools",
            self.route_after_tools,
            {
                "continue": "agent",
                "fatal": END
            }
        )

        return workflow.compile()

    # Public entry points

    async def invoke(
        self,
        raw_messages: Optional[List[Any]],
        principal: Principal,
        voice: bool = False
    ) -> AgentResponse:
        """Synchronous delivery: run to completion, save, return one response"""

        channel = BufferedChannel()
        return await self._run_guarded(normalize(raw_messages), principal, channel, voice)

    def stream(self, raw_messages: Optional[List[Any]], principal: Principal) -> AsyncIterator[str]:
        """Streaming delivery: fragments as produced; closing the iterator aborts the run"""

        channel = StreamingChannel()
        return channel.relay(self._produce(normalize(raw_messages), principal, channel))

    async def drain(self) -> None:
        """Wait for scheduled memory writes"""

        if self._background:
            await asyncio.gather(*list(self._background), return_exceptions=True)

    # Invocation

    async def _produce(self, messages: List[Message], principal: Principal, channel: StreamingChannel):
        try:
            await self._run_guarded(messages, principal, channel, voice=False)
        except OrbiaError as e:
            await channel.fail(e)

    async def _run_guarded(
        self,
        messages: List[Message],
        principal: Principal,
        channel: ResponseChannel,
        voice: bool
    ) -> AgentResponse:
        try:
            return await self._run(messages, principal, channel, voice)
        except OrbiaError:
            raise
        except Exception as e:
            logger.exception("Agent invocation failed", user_id=principal.user_id)
            raise AgentExecutionError("Agent invocation failed", code=ErrorCode.INTERNAL_ERROR) from e

    async def _run(
        self,
        messages: List[Message],
        principal: Principal,
        channel: ResponseChannel,
        voice: bool
    ) -> AgentResponse:
        if is_initialization(messages):
            logger.info("Voice session initialization", user_id=principal.user_id)
            await channel.emit(GREETING)
            await channel.complete()
            return AgentResponse(
                message=Message(role=MessageRole.ASSISTANT, content=GREETING),
                suggestions=list(SUGGESTED_PROMPTS)
            )

        if not messages:
            raise InvalidRequestError(
                "At least one user, assistant or system message is required",
                fields={"messages": "No valid messages"}
            )

        user_id = principal.user_id
        thread_id = await self.thread_manager.get_or_create_thread(user_id)
        bind_request_context(user_id=user_id, thread_id=thread_id)

        async with self.thread_manager.thread_lock(thread_id):
            await self.thread_manager.touch(thread_id)

            # Load
            checkpoint = await self.thread_manager.load_checkpoint(thread_id)
            history = checkpoint.messages if checkpoint else []
            working = [to_langchain(m) for m in history + messages]
            agent_logger.log_thread_event("load", thread_id, history=len(history), new=len(messages))

            final_state = await self.workflow.ainvoke(
                {
                    "messages": working,
                    "context": [],
                    "user_id": user_id,
                    "tool_rounds": 0,
                    "fatal_error": None,
                },
                config={
                    "configurable": {"principal": principal, "channel": channel, "voice": voice},
                    "recursion_limit": 2 * self.max_tool_rounds + 6,
                }
            )

            fatal = final_state.get("fatal_error")
            if fatal:
                logger.warning("Invocation terminated by fatal tool failure", thread_id=thread_id, **fatal)
                raise AgentExecutionError(
                    fatal.get("error") or "Tool failure",
                    code=ErrorCode(fatal["code"]),
                    details={"tool": fatal.get("tool")}
                )

            generated = [from_langchain(m) for m in final_state["messages"][len(working):]]
            reply = self._final_reply(generated)

            # Respond: persist before signalling completion
            await self._persist(thread_id, checkpoint, messages + generated)

        await channel.complete()
        self._schedule_memory_write(user_id, thread_id, messages, reply)

        return AgentResponse(
            thread_id=thread_id,
            message=reply,
            tool_results=[self._tool_summary(m) for m in generated if m.role == MessageRole.TOOL]
        )

    async def _persist(self, thread_id: str, loaded: Optional[Checkpoint], appended: List[Message]) -> Checkpoint:
        """Save the checkpoint once, re-reading and re-appending on version conflicts"""

        base = loaded or Checkpoint.empty(thread_id)
        expected = loaded.version if loaded else None

        for attempt in range(self.save_retries + 1):
            candidate = base.with_messages(base.messages + appended)
            try:
                saved = await self.thread_manager.save_checkpoint(thread_id, candidate, expected)
                agent_logger.log_thread_event("checkpoint_saved", thread_id, version=saved.version)
                return saved
            except CheckpointConflictError as e:
                logger.warning(
                    "Checkpoint save conflict",
                    thread_id=thread_id,
                    attempt=attempt + 1,
                    expected_version=e.expected_version,
                    current_version=e.current_version
                )
                latest = await self.thread_manager.load_checkpoint(thread_id)
                base = latest or Checkpoint.empty(thread_id)
                expected = latest.version if latest else None

        raise AgentExecutionError(
            "Could not save conversation state",
            code=ErrorCode.INTERNAL_ERROR,
            details={"thread_id": thread_id, "attempts": self.save_retries + 1}
        )

    # Graph nodes

    async def augment_node(self, state: WorkflowState, config: RunnableConfig) -> Dict[str, Any]:
        """System prompt plus relevant memories; never persisted"""

        voice = config["configurable"].get("voice", False)
        context: List[BaseMessage] = [SystemMessage(content=build_system_prompt(self.clock(), voice=voice))]

        query = next(
            (text_content(m.content) for m in reversed(state["messages"]) if isinstance(m, HumanMessage)),
            ""
        )
        if self.memory is not None and query.strip():
            try:
                hits = await self.memory.search(
                    query, state["user_id"], limit=self.memory_search_limit, threshold=self.memory_search_threshold
                )
            except OrbiaError as e:
                logger.warning("Memory augmentation skipped", user_id=state["user_id"], error=e.message)
                hits = []
            if hits:
                context.append(SystemMessage(content=build_memory_context([h.record.content for h in hits])))

        agent_logger.log_workflow_transition(None, "augment", "agent", state_summary={"context": len(context)})
        return {"context": context}

    async def agent_node(self, state: WorkflowState, config: RunnableConfig) -> Dict[str, Any]:
        """Call the chat model; tools are offered while tool rounds remain"""

        channel: ResponseChannel = config["configurable"]["channel"]
        tools_allowed = state["tool_rounds"] < self.max_tool_rounds
        model = self.tool_llm if tools_allowed else self.llm
        prompt = state["context"] + state["messages"]

        try:
            if channel.streaming:
                response = await asyncio.wait_for(self._stream_model(model, prompt, channel), self.model_timeout)
            else:
                response = await asyncio.wait_for(model.ainvoke(prompt), self.model_timeout)
                await channel.emit(text_content(response.content))
        except asyncio.TimeoutError:
            raise AgentExecutionError("Model call timed out", code=ErrorCode.UPSTREAM_ERROR)

        return {"messages": [self._as_ai_message(response, tools_allowed)]}

    async def tool_execution_node(self, state: WorkflowState, config: RunnableConfig) -> Dict[str, Any]:
        """Execute requested tools in order; results go back to the model as data"""

        principal: Principal = config["configurable"]["principal"]
        request = state["messages"][-1]
        outputs: List[BaseMessage] = []
        fatal = None

        for call in request.tool_calls:
            result = await self.registry.execute(call["name"], principal, call.get("args"))
            outputs.append(ToolMessage(
                content=result.to_json(),
                tool_call_id=call["id"],
                name=call["name"],
                id=new_message_id()
            ))
            if not result.success and result.code in FATAL_TOOL_CODES:
                fatal = {"code": result.code.value, "error": result.error, "tool": call["name"]}
                break

        return {"messages": outputs, "tool_rounds": state["tool_rounds"] + 1, "fatal_error": fatal}

    def route_after_agent(self, state: WorkflowState) -> Literal["tools", "respond"]:
        last = state["messages"][-1]
        route = "tools" if isinstance(last, AIMessage) and last.tool_calls else "respond"
        agent_logger.log_workflow_transition(None, "agent", route, state_summary={"tool_rounds": state["tool_rounds"]})
        return route

    def route_after_tools(self, state: WorkflowState) -> Literal["continue", "fatal"]:
        return "fatal" if state.get("fatal_error") else "continue"

    # Helpers

    async def _stream_model(self, model: Any, prompt: List[BaseMessage], channel: ResponseChannel) -> BaseMessage:
        accumulated = None
        async for chunk in model.astream(prompt):
            await channel.emit(text_content(chunk.content))
            accumulated = chunk if accumulated is None else accumulated + chunk
        return accumulated if accumulated is not None else AIMessage(content="")

    @staticmethod
    def _as_ai_message(response: BaseMessage, tools_allowed: bool) -> AIMessage:
        tool_calls = []
        if tools_allowed:
            for call in getattr(response, "tool_calls", None) or []:
                tool_calls.append({
                    "id": call.get("id") or f"call_{uuid.uuid4().hex[:12]}",
                    "name": call["name"],
                    "args": call.get("args") or {},
                })
        return AIMessage(
            content=text_content(response.content),
            tool_calls=tool_calls,
            id=response.id or new_message_id()
        )

    @staticmethod
    def _final_reply(generated: List[Message]) -> Message:
        for message in reversed(generated):
            if message.role == MessageRole.ASSISTANT:
                return message
        raise AgentExecutionError("Model produced no reply", code=ErrorCode.INTERNAL_ERROR)

    @staticmethod
    def _tool_summary(message: Message) -> Dict[str, Any]:
        try:
            result = json.loads(message.content)
        except ValueError:
            result = {}
        return {"tool": message.name, "success": result.get("success"), "code": result.get("code")}

    def _schedule_memory_write(self, user_id: str, thread_id: str, messages: List[Message], reply: Message):
        if self.memory is None:
            return
        payload = to_memory_format([m for m in messages if m.role == MessageRole.USER] + [reply])
        if not payload:
            return
        task = asyncio.create_task(self._write_memories(user_id, thread_id, payload))
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    async def _write_memories(self, user_id: str, thread_id: str, payload: List[Dict[str, str]]):
        try:
            await self.memory.add(payload, user_id, metadata={"source": "conversation", "thread_id": thread_id})
        except Exception as e:
            logger.error("Background memory write failed", user_id=user_id, error=str(e))
