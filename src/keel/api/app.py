"""
REST API for Keel.

Thin HTTP surface over :class:`~keel.agent.engine.Engine`.  It exposes the following endpoints:
- **GET /health** - liveness probe for health checks.
- **GET /tools**  - tool catalog visible to ``user_id`` / ``project_id``.
- **POST /agent** - one request through the engine: {"message": "...", "session_id": "..."}

Errors map to status codes: invalid request -> 400, no convergence -> 422, any other engine
failure -> 502.
"""

import logging
import uuid
from typing import List

from fastapi import (
    Depends,
    FastAPI,
    HTTPException,
)
from fastapi.middleware.cors import CORSMiddleware

from keel.agent.engine import Engine
from keel.agent.factory import build_engine
from keel.api.models import (
    AgentRequest,
    AgentResponse,
    ToolActionModel,
    ToolModel,
)
from keel.common import (
    AnsiColors,
    colored_print,
)
from keel.config import settings
from keel.core.errors import (
    ConvergenceError,
    InvalidRequestError,
    KeelError,
)

logger = logging.getLogger(__name__)

_engine: Engine | None = None

app = FastAPI(title="Keel API", version="0.1.0", description="Keel agent orchestration API")

app.add_middleware(
    CORSMiddleware,
    allow_origins=[f"http://localhost:{settings.API_PORT}"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# ---------------------------------------------------------------------------
# Dependencies
# ---------------------------------------------------------------------------
def get_engine() -> Engine:
    """Process-wide engine, built from settings on first use."""
    global _engine  # pylint: disable=global-statement
    if _engine is None:
        _engine = build_engine(settings)
    return _engine


# ---------------------------------------------------------------------------
# Routes
# ---------------------------------------------------------------------------
@app.get("/health", summary="Health check")
async def health() -> dict[str, str]:
    """Return a simple liveness payload."""
    return {"status": "ok"}


@app.get("/tools", response_model=List[ToolModel], summary="List available tools")
async def list_tools(
    user_id: str = "", project_id: str = "", engine: Engine = Depends(get_engine)
) -> List[ToolModel]:
    """List the tool catalog as the engine would see it for this user and project."""
    try:
        tools = await engine.tools.list_tools(user_id, project_id)
    except KeelError as exc:
        logger.warning("Tool listing failed: %s", exc)
        raise HTTPException(status_code=502, detail=str(exc)) from exc
    return [
        ToolModel(
            name=t.name,
            description=t.description,
            actions=[
                ToolActionModel(
                    name=a.name, description=a.description, input_schema=a.input_schema
                )
                for a in t.actions
            ],
        )
        for t in tools
    ]


@app.post("/agent", response_model=AgentResponse, summary="Process a message")
async def agent_endpoint(req: AgentRequest, engine: Engine = Depends(get_engine)) -> AgentResponse:
    """Run a user message through the engine within a (possibly new) session."""
    if not req.session_id:
        req = req.model_copy(update={"session_id": uuid.uuid4().hex})
    logger.debug("Agent request: %s", req.model_dump())

    try:
        response = await engine.run(req.to_request())
    except InvalidRequestError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    except ConvergenceError as exc:
        logger.warning("Request did not converge: %s", exc)
        raise HTTPException(status_code=422, detail=str(exc)) from exc
    except KeelError as exc:
        logger.error("Engine failure: %s", exc)
        raise HTTPException(status_code=502, detail=str(exc)) from exc

    return AgentResponse.from_response(response)


# ---------------------------------------------------------------------------
# Public helper to launch the API (imported by main.py)
# ---------------------------------------------------------------------------
def run_api(
    host: str = "0.0.0.0", port: int = 8000, reload: bool = False, log_level: str | None = None
) -> None:
    """Start a uvicorn server hosting *app*.

    Parameters
    ----------
    host, port:
        Bind address for the HTTP server.
    reload:
        If *True*, enable auto-reload (useful in development).
    log_level:
        Logging level to use (default from settings if not provided).
    """

    # Lazy import - keeps uvicorn out of the import path for library users
    import uvicorn  # pylint: disable=import-outside-toplevel

    if log_level is None:
        log_level = settings.LOG_LEVEL

    logger.info(
        "Starting Keel API at %s:%d (reload=%s, log_level=%s)", host, port, reload, log_level
    )
    colored_print(f"Keel API is running at http://localhost:{port}.", AnsiColors.GREEN)
    colored_print(f"Visit http://localhost:{port}/docs for API documentation.", AnsiColors.BLUE)
    uvicorn.run(
        "keel.api.app:app",
        host=host,
        port=port,
        reload=reload,
        log_level=log_level,
    )


# ---------------------------------------------------------------------------
# `python -m keel.api.app` helper
# ---------------------------------------------------------------------------
if __name__ == "__main__":
    run_api(reload=True)
