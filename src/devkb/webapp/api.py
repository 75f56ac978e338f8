"""REST API for the DevKB editor integration.

Every response uses the same envelope:

    {"success": true,  "data": ..., "error": null}
    {"success": false, "data": null, "error": "human-readable message"}

Handlers are plain functions, so FastAPI runs them in its worker thread pool
and reads proceed concurrently; the store serializes writes itself.
"""

from __future__ import annotations

import logging
from typing import Any

from fastapi import APIRouter, FastAPI, Query, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from .. import __version__
from .._logging import configure_logging
from ..config import ServiceConfig, load_config
from ..core import KnowledgeBase
from ..errors import DevKBError, ErrorCode, ValidationError
from ..models import ENTRY_TYPES, AskRequest, EntryCreate

log = logging.getLogger(__name__)

router = APIRouter(prefix="/api")


# =============================================================================
# Envelope helpers
# =============================================================================


def _ok(data: Any, status_code: int = 200) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={"success": True, "data": jsonable_encoder(data, by_alias=True), "error": None},
    )


def _fail(message: str, status_code: int) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={"success": False, "data": None, "error": message},
    )


def _kb(request: Request) -> KnowledgeBase:
    return request.app.state.kb


def _check_type(type: str | None) -> str | None:
    if type is None:
        return None
    normalized = type.strip().lower()
    if normalized not in ENTRY_TYPES:
        raise ValidationError(
            f"Invalid entry type: {type!r}. Expected one of: {', '.join(ENTRY_TYPES)}",
            code=ErrorCode.INVALID_ENTRY_TYPE,
        )
    return normalized


def _format_request_errors(exc: RequestValidationError) -> str:
    parts = []
    for error in exc.errors():
        loc = [str(x) for x in error.get("loc", ()) if x not in ("body", "query", "path")]
        field = ".".join(loc)
        msg = error.get("msg", "Invalid value")
        parts.append(f"{field}: {msg}" if field else msg)
    return "Invalid request: " + "; ".join(parts) if parts else "Invalid request"


# =============================================================================
# Exception handlers
# =============================================================================


async def _handle_devkb_error(request: Request, exc: DevKBError) -> JSONResponse:
    if exc.status_code >= 500:
        log.error(
            "%s %s failed: %s", request.method, request.url.path, exc.__cause__ or exc.message
        )
    return _fail(exc.message, exc.status_code)


async def _handle_request_validation(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    return _fail(_format_request_errors(exc), 400)


async def _handle_http_error(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    return _fail(str(exc.detail), exc.status_code)


async def _handle_unexpected(request: Request, exc: Exception) -> JSONResponse:
    log.exception("Unhandled error in %s %s", request.method, request.url.path)
    return _fail("Internal server error", 500)


# =============================================================================
# API Routes
# =============================================================================


@router.post("/ask")
def ask(body: AskRequest, request: Request):
    """Answer a question from the best-matching entries."""
    answer = _kb(request).ask(body.question)
    return _ok(answer)


@router.get("/search")
def search(
    request: Request,
    q: str | None = Query(None, description="Search query"),
    limit: int | None = Query(None, description="Maximum number of results"),
    type: str | None = Query(None, description="Only entries of this type"),
    tag: str | None = Query(None, description="Only entries with this tag"),
):
    """Search the knowledge base."""
    if q is None or not q.strip():
        raise ValidationError("Query parameter 'q' is required", code=ErrorCode.EMPTY_QUERY)
    hits = _kb(request).search(q, limit=limit, type=_check_type(type), tag=tag)
    return _ok([hit.to_scored_entry() for hit in hits])


@router.post("/entries")
def create_entry(body: EntryCreate, request: Request):
    """Create a knowledge entry."""
    entry = _kb(request).create_entry(
        type=body.type,
        title=body.title,
        content=body.content,
        tags=body.tags,
        source=body.source,
    )
    return _ok(entry, status_code=201)


@router.get("/entries")
def list_entries(
    request: Request,
    type: str | None = Query(None),
    tag: str | None = Query(None),
):
    """List entries, newest first."""
    return _ok(_kb(request).list_entries(type=_check_type(type), tag=tag))


@router.get("/entries/{entry_id}")
def get_entry(entry_id: str, request: Request):
    """Get a single entry."""
    return _ok(_kb(request).get_entry(entry_id))


@router.delete("/entries/{entry_id}")
def delete_entry(entry_id: str, request: Request):
    """Delete an entry."""
    return _ok(_kb(request).remove_entry(entry_id))


@router.get("/stats")
def get_stats(request: Request):
    """Get knowledge base statistics."""
    return _ok(_kb(request).stats())


@router.get("/tags")
def get_tags(request: Request):
    """Get all tags with counts."""
    return _ok(_kb(request).tags())


@router.get("/history")
def get_history(request: Request):
    """Get recorded searches, oldest first."""
    return _ok(_kb(request).search_history())


@router.get("/health")
def health():
    return _ok({"status": "ok", "version": __version__})


# =============================================================================
# Application factory
# =============================================================================


def create_app(config: ServiceConfig | None = None, kb: KnowledgeBase | None = None) -> FastAPI:
    """Build the API application.

    Args:
        config: Service configuration. Loaded from the environment if omitted.
        kb: Pre-built knowledge base (tests). Built from config if omitted.
    """
    if kb is None:
        kb = KnowledgeBase(config or load_config())

    app = FastAPI(
        title="DevKB",
        description="Knowledge base service for editor integrations",
        version=__version__,
    )
    app.state.kb = kb

    # The editor extension calls from its own origin
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.add_exception_handler(DevKBError, _handle_devkb_error)
    app.add_exception_handler(RequestValidationError, _handle_request_validation)
    app.add_exception_handler(StarletteHTTPException, _handle_http_error)
    app.add_exception_handler(Exception, _handle_unexpected)

    app.include_router(router)
    return app


def serve(config: ServiceConfig) -> None:
    """Run the API server until interrupted."""
    import uvicorn

    configure_logging(config.log_level)
    app = create_app(config)
    log.info("Serving DevKB API on %s (data: %s)", config.api_url, config.data_dir)
    uvicorn.run(app, host=config.host, port=config.port, log_level=config.log_level.lower())


def main():
    """Run the webapp server from the environment configuration."""
    serve(load_config())


if __name__ == "__main__":
    main()
