from .main_agent import AgentExecutor, FATAL_TOOL_CODES, is_initialization

__all__ = ["AgentExecutor", "FATAL_TOOL_CODES", "is_initialization"]
