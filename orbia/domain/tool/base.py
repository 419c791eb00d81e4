"""
Tool base classes.

Every tool call ends in a ToolResult. A provider tool runs in this order:
principal check, argument validation, credential resolution, remote call.
Nothing past a failed step is attempted, so an unlinked account or invalid
arguments never reach the network.
"""

from abc import ABC, abstractmethod
from typing import Any, Dict, Optional
import time
from urllib.parse import quote

import httpx
import structlog

from orbia.domain.errors import CredentialError, ErrorCode, OrbiaError
from orbia.domain.models.tool_result import ToolResult
from orbia.infrastructure.observability.logging import agent_logger
from orbia.infrastructure.security.credentials import GOOGLE_PROVIDER, CredentialProvider
from orbia.infrastructure.security.session import Principal
from .tool_validator import ToolParameterValidator

logger = structlog.get_logger(__name__)


class ProviderError(Exception):
    """Non-success outcome of a remote provider call"""

    def __init__(self, code: ErrorCode, message: str, details: Optional[Any] = None):
        super().__init__(message)
        self.code = code
        self.message = message
        self.details = details


def map_status(status_code: int) -> ErrorCode:
    if status_code in (401, 403):
        return ErrorCode.INVALID_TOKEN
    if status_code == 404:
        return ErrorCode.NOT_FOUND
    if 400 <= status_code < 500:
        return ErrorCode.INVALID_REQUEST
    return ErrorCode.UPSTREAM_ERROR


class GoogleApiClient:
    """Thin authenticated JSON client over one shared httpx.AsyncClient"""

    def __init__(self, http: httpx.AsyncClient, access_token: str, timeout: float):
        self.http = http
        self.access_token = access_token
        self.timeout = timeout

    async def request(
        self,
        method: str,
        url: str,
        params: Optional[Dict[str, Any]] = None,
        json: Optional[Dict[str, Any]] = None
    ) -> Any:
        try:
            response = await self.http.request(
                method,
                url,
                params={k: v for k, v in (params or {}).items() if v is not None},
                json=json,
                headers={"Authorization": f"Bearer {self.access_token}"},
                timeout=self.timeout
            )
        except httpx.TimeoutException as e:
            raise ProviderError(ErrorCode.UPSTREAM_ERROR, "Provider request timed out", details=str(e))
        except httpx.TransportError as e:
            raise ProviderError(ErrorCode.UPSTREAM_ERROR, "Provider unreachable", details=str(e))

        if response.is_error:
            code = map_status(response.status_code)
            raise ProviderError(code, _error_message(code), details=_error_details(response))

        if response.status_code == 204 or not response.content:
            return None
        return response.json()

    async def get(self, url: str, **params: Any) -> Any:
        return await self.request("GET", url, params=params)

    async def post(self, url: str, json: Dict[str, Any], **params: Any) -> Any:
        return await self.request("POST", url, params=params, json=json)

    async def delete(self, url: str) -> Any:
        return await self.request("DELETE", url)


def _error_message(code: ErrorCode) -> str:
    return {
        ErrorCode.INVALID_TOKEN: "Google authentication failed. Please reconnect your Google account.",
        ErrorCode.NOT_FOUND: "Resource not found",
        ErrorCode.INVALID_REQUEST: "Provider rejected the request",
    }.get(code, "Provider request failed")


def _error_details(response: httpx.Response) -> Dict[str, Any]:
    details: Dict[str, Any] = {"status": response.status_code}
    try:
        body = response.json()
    except ValueError:
        return details
    if isinstance(body, dict) and isinstance(body.get("error"), dict):
        details["message"] = body["error"].get("message")
    return details


class Tool(ABC):
    """A named capability the agent can invoke"""

    name: str = ""
    description: str = ""
    category: str = "general"
    parameters_schema: Dict[str, Any] = {"type": "object", "properties": {}}
    requires_authentication: bool = True

    def custom_validation(self, arguments: Dict[str, Any]) -> Dict[str, str]:
        return {}

    async def execute(self, principal: Principal, arguments: Dict[str, Any]) -> ToolResult:
        """Run the tool; never raises"""

        started = time.monotonic()
        result = await self._execute(principal, arguments)
        agent_logger.log_tool_execution(
            tool_name=self.name,
            user_id=principal.user_id,
            input_data=arguments,
            duration_ms=round((time.monotonic() - started) * 1000, 2),
            success=result.success,
            code=result.code.value if result.code else None,
            error=result.error
        )
        return result

    async def _execute(self, principal: Principal, arguments: Dict[str, Any]) -> ToolResult:
        if self.requires_authentication and not principal.authenticated:
            return ToolResult.fail(ErrorCode.UNAUTHENTICATED, "No authenticated session")

        validation = ToolParameterValidator.validate_tool_call(
            self.parameters_schema, arguments, self.custom_validation
        )
        if not validation.is_valid:
            return ToolResult.fail(ErrorCode.INVALID_REQUEST, "Missing or invalid fields", fields=validation.fields)

        return await self.invoke(principal, arguments)

    @abstractmethod
    async def invoke(self, principal: Principal, arguments: Dict[str, Any]) -> ToolResult:
        """Perform the call once the principal and arguments are accepted"""
        pass


class LocalTool(Tool):
    """Tool that runs in-process; exceptions are folded into the result"""

    async def invoke(self, principal: Principal, arguments: Dict[str, Any]) -> ToolResult:
        try:
            return ToolResult.ok(await self.run(principal, arguments))
        except OrbiaError as e:
            return ToolResult.from_error(e)
        except Exception as e:
            logger.exception("Unexpected tool failure", tool=self.name)
            return ToolResult.fail(ErrorCode.INTERNAL_ERROR, f"{self.name} failed unexpectedly", details=str(e))

    @abstractmethod
    async def run(self, principal: Principal, arguments: Dict[str, Any]) -> Any:
        """Perform the operation and return provider-agnostic data"""
        pass


class GoogleTool(Tool):
    """Tool backed by a Google REST API"""

    provider = GOOGLE_PROVIDER

    def __init__(self, credentials: CredentialProvider, http: httpx.AsyncClient, base_url: str, timeout: float = 20.0):
        self.credentials = credentials
        self.http = http
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout

    async def invoke(self, principal: Principal, arguments: Dict[str, Any]) -> ToolResult:
        try:
            token = await self.credentials.get_access_token(principal.user_id, self.provider)
        except CredentialError as e:
            return ToolResult.fail(ErrorCode.INVALID_TOKEN, e.message)
        if not token:
            return ToolResult.fail(ErrorCode.NO_ACCOUNT_LINKED, "No Google account connected")

        client = GoogleApiClient(self.http, token, self.timeout)
        try:
            return ToolResult.ok(await self.call(client, arguments))
        except ProviderError as e:
            return ToolResult.fail(e.code, e.message, details=e.details)
        except Exception as e:
            logger.exception("Unexpected tool failure", tool=self.name)
            return ToolResult.fail(ErrorCode.INTERNAL_ERROR, f"{self.name} failed unexpectedly", details=str(e))

    @abstractmethod
    async def call(self, client: GoogleApiClient, arguments: Dict[str, Any]) -> Any:
        pass

    def url(self, path: str) -> str:
        return f"{self.base_url}/{path.lstrip('/')}"


def path_segment(value: Any) -> str:
    """Escape an id for use as a single URL path segment"""
    return quote(str(value), safe="")
