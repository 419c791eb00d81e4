from typing import Any, Dict, List, Optional
from pydantic import BaseModel, ConfigDict, Field


class AgentRequest(BaseModel):
    """Body of an agent invocation.

    ``messages`` is kept as raw items; malformed entries are dropped by the
    message adapter rather than rejected here.
    """
    model_config = ConfigDict(populate_by_name=True)

    messages: List[Any] = Field(default_factory=list)
    user_id: Optional[str] = Field(None, alias="userId")
    voice: bool = False
    stream: bool = False


class AddMemoryRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    messages: List[Any] = Field(default_factory=list)
    user_id: Optional[str] = Field(None, alias="userId")
    metadata: Dict[str, Any] = Field(default_factory=dict)


class SearchMemoryRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    query: Optional[str] = None
    user_id: Optional[str] = Field(None, alias="userId")
    limit: int = Field(10, ge=1, le=100)
    threshold: Optional[float] = Field(None, ge=0.0, le=1.0)


class UpdateMemoryRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    data: Optional[str] = None
    user_id: Optional[str] = Field(None, alias="userId")


class CreateEventRequest(BaseModel):
    summary: Optional[str] = None
    start: Optional[str] = None
    end: Optional[str] = None
    description: Optional[str] = None
    attendees: List[str] = Field(default_factory=list)


class SendMailRequest(BaseModel):
    to: Optional[str] = None
    subject: Optional[str] = None
    body: Optional[str] = None
    cc: Optional[str] = None
    bcc: Optional[str] = None
