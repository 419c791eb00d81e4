from typing import Any, Dict, Optional
from pydantic import BaseModel, Field
import json

from orbia.domain.errors import ErrorCode, OrbiaError


class ToolResult(BaseModel):
    """Uniform success/error envelope returned by every tool operation"""
    success: bool
    data: Optional[Any] = None
    error: Optional[str] = None
    code: Optional[ErrorCode] = None
    details: Optional[Any] = None
    fields: Optional[Dict[str, str]] = Field(None, description="Per-field validation problems")

    @classmethod
    def ok(cls, data: Any = None) -> "ToolResult":
        return cls(success=True, data=data)

    @classmethod
    def fail(
        cls,
        code: ErrorCode,
        error: str,
        details: Optional[Any] = None,
        fields: Optional[Dict[str, str]] = None
    ) -> "ToolResult":
        return cls(success=False, code=code, error=error, details=details, fields=fields)

    @classmethod
    def from_error(cls, exc: OrbiaError) -> "ToolResult":
        return cls.fail(exc.code, exc.message, details=exc.details, fields=exc.fields)

    def to_wire(self) -> Dict[str, Any]:
        return self.model_dump(mode="json", exclude_none=True)

    def to_json(self) -> str:
        return json.dumps(self.to_wire(), default=str)
