import structlog
import logging
import sys
from typing import Dict, Any, Optional

from orbia import __version__

# Request-scoped ids lifted from contextvars onto every event
REQUEST_CONTEXT_KEYS = ("request_id", "user_id", "thread_id")

NOISY_LOGGERS = ("httpx", "httpcore", "neo4j", "openai", "aiosqlite")


def setup_logging(
    log_level: str = "INFO",
    log_format: str = "json",
    service_name: str = "orbia-agent"
) -> None:
    """Setup structured logging configuration"""

    level = getattr(logging, log_level.upper(), logging.INFO)
    logging.basicConfig(format="%(message)s", stream=sys.stdout, level=level)
    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(max(level, logging.WARNING))

    processors = [
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        add_request_context,
        structlog.dev.ConsoleRenderer() if log_format == "console" else structlog.processors.JSONRenderer(),
    ]

    structlog.configure(
        processors=processors,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    structlog.contextvars.clear_contextvars()
    structlog.contextvars.bind_contextvars(service=service_name, version=__version__)


def add_request_context(logger: logging.Logger, method_name: str, event_dict: Dict[str, Any]) -> Dict[str, Any]:
    """Copy service and request ids from contextvars; explicit event fields win"""

    for key, value in structlog.contextvars.get_contextvars().items():
        if value is not None:
            event_dict.setdefault(key, value)
    return event_dict


def bind_request_context(**values: Any) -> None:
    """Bind ids of the current request so every log line carries them"""
    structlog.contextvars.bind_contextvars(**{k: v for k, v in values.items() if v is not None})


def clear_request_context(*keys: str) -> None:
    structlog.contextvars.unbind_contextvars(*(keys or REQUEST_CONTEXT_KEYS))


class AgentLogger:
    """Specialized logger for agent operations"""

    def __init__(self, name: str):
        self.logger = structlog.get_logger(name)

    def log_thread_event(self, event_type: str, thread_id: Optional[str], **data: Any):
        """Thread lifecycle: load, checkpoint_saved"""

        self.logger.info("thread_event", event_type=event_type, thread_id=thread_id, **data)

    def log_tool_execution(
        self,
        tool_name: str,
        user_id: Optional[str],
        input_data: Dict[str, Any],
        duration_ms: Optional[float] = None,
        success: bool = True,
        code: Optional[str] = None,
        error: Optional[str] = None
    ):
        # Argument values may hold mail bodies or tokens; only keys are logged
        log = self.logger.info if success else self.logger.warning
        log(
            "tool_execution",
            tool_name=tool_name,
            user_id=user_id,
            input_keys=sorted(input_data),
            duration_ms=duration_ms,
            success=success,
            code=code,
            error=error
        )

    def log_workflow_transition(
        self,
        thread_id: Optional[str],
        from_node: Optional[str],
        to_node: str,
        state_summary: Optional[Dict[str, Any]] = None
    ):
        self.logger.debug(
            "workflow_transition",
            thread_id=thread_id,
            from_node=from_node,
            to_node=to_node,
            state_summary=state_summary or {}
        )


agent_logger = AgentLogger("orbia.agent")
