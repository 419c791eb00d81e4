from .base import GoogleApiClient, GoogleTool, LocalTool, ProviderError, Tool, map_status
from .tool_registry import ToolRegistry, build_tool_registry
from .tool_validator import ToolParameterValidator, ValidationResult

__all__ = [
    "GoogleApiClient",
    "GoogleTool",
    "LocalTool",
    "ProviderError",
    "Tool",
    "ToolParameterValidator",
    "ToolRegistry",
    "ValidationResult",
    "build_tool_registry",
    "map_status",
]
