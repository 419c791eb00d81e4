from .requests import (
    AddMemoryRequest,
    AgentRequest,
    CreateEventRequest,
    SearchMemoryRequest,
    SendMailRequest,
    UpdateMemoryRequest,
)

__all__ = [
    "AddMemoryRequest",
    "AgentRequest",
    "CreateEventRequest",
    "SearchMemoryRequest",
    "SendMailRequest",
    "UpdateMemoryRequest",
]
