"""
HTTP client for the remote tool-dispatch service.

The service exposes two endpoints:
- **GET  /v1/tools?userId=..&projectId=..** - tool catalog for a user/project.
- **POST /v1/tools/execute**                - run ``{"name", "action", "args"}``.

:class:`ToolServiceClient` implements both the registry and the executor contracts so one
instance can be handed to the engine twice.
"""

import logging
from typing import (
    Any,
    Dict,
    List,
)

import httpx
from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    ValidationError,
)

from keel.core.errors import ToolServiceError
from keel.core.interfaces import (
    ToolExecutor,
    ToolRegistry,
)
from keel.core.schema import (
    ToolAction,
    ToolCall,
    ToolDef,
    ToolResult,
)

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Wire models
# ---------------------------------------------------------------------------
class _WireAction(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    name: str
    description: str = ""
    input_schema: str = Field("", alias="inputSchema")


class _WireTool(BaseModel):
    name: str
    description: str = ""
    actions: List[_WireAction] = Field(default_factory=list)


class _WireResult(BaseModel):
    success: bool = False
    data: Dict[str, Any] | None = None
    message: str = ""


# ---------------------------------------------------------------------------
# Client
# ---------------------------------------------------------------------------
class ToolServiceClient(ToolRegistry, ToolExecutor):
    """Async client for the tool service."""

    def __init__(
        self,
        base_url: str = "http://localhost:9100",
        auth_token: str | None = None,
        timeout: float = 15.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.base_url = (base_url or "http://localhost:9100").rstrip("/")
        self._auth_token = auth_token
        self._timeout = timeout
        self._transport = transport

    def _headers(self) -> Dict[str, str]:
        headers = {"Accept": "application/json"}
        if self._auth_token:
            headers["Authorization"] = f"Bearer {self._auth_token}"
        return headers

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=self.base_url,
            headers=self._headers(),
            timeout=self._timeout,
            transport=self._transport,
        )

    async def list_tools(self, user_id: str, project_id: str) -> List[ToolDef]:
        params = {}
        if user_id:
            params["userId"] = user_id
        if project_id:
            params["projectId"] = project_id

        try:
            async with self._client() as client:
                resp = await client.get("/v1/tools", params=params)
        except httpx.HTTPError as exc:
            logger.warning("Tool service list failed: %s", exc)
            raise ToolServiceError(f"tool service list failed: {exc}") from exc

        if resp.status_code >= 300:
            raise ToolServiceError(f"tool service list failed: HTTP {resp.status_code}")

        try:
            payload = resp.json() or []
            tools = [_WireTool.model_validate(item) for item in payload]
        except (ValueError, TypeError, ValidationError) as exc:
            logger.warning("Tool service list decode failed: %s", exc)
            raise ToolServiceError(f"tool service returned an invalid catalog: {exc}") from exc

        return [
            ToolDef(
                name=t.name,
                description=t.description,
                actions=[
                    ToolAction(name=a.name, description=a.description, input_schema=a.input_schema)
                    for a in t.actions
                ],
            )
            for t in tools
        ]

    async def execute(self, call: ToolCall) -> ToolResult:
        body = {"name": call.name, "action": call.action, "args": call.args}
        try:
            async with self._client() as client:
                resp = await client.post("/v1/tools/execute", json=body)
        except httpx.HTTPError as exc:
            raise ToolServiceError(f"tool service execute failed: {exc}") from exc

        if resp.status_code >= 300:
            raise ToolServiceError(f"tool service execute failed: HTTP {resp.status_code}")

        try:
            result = _WireResult.model_validate(resp.json())
        except (ValueError, ValidationError) as exc:
            raise ToolServiceError(f"tool service returned an invalid result: {exc}") from exc

        return ToolResult(success=result.success, data=result.data or {}, message=result.message)
