"""FastAPI application factory for the NIM proxy."""

import logging
from typing import Optional, Sequence

import httpx
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from .api.routes import chat_completions, health, list_models, proxy_chat_completions
from .config_loader import load_config, resolve_project_path
from .core.exceptions import InvalidRequestError, ProxyError, UpstreamError, error_envelope
from .core.router import ProxyRouter
from .logging import setup_logging
from .lorebook import count_entries, load_lorebooks
from .settings import ProxySettings, load_settings
from .types.lorebook import LoreSource

logger = logging.getLogger("nimproxy")


def _enabled(flag: bool) -> str:
    return "ENABLED" if flag else "DISABLED"


async def _upstream_error_handler(request: Request, exc: UpstreamError) -> JSONResponse:
    return JSONResponse(
        status_code=exc.status_code,
        content=error_envelope(exc.message or "Internal server error", exc.status_code),
    )


async def _invalid_request_handler(request: Request, exc: InvalidRequestError) -> JSONResponse:
    logger.warning(f"Rejected request to {request.url.path} ({exc.code}): {exc.message}")
    return JSONResponse(status_code=400, content=error_envelope(exc.message, 400))


async def _proxy_error_handler(request: Request, exc: ProxyError) -> JSONResponse:
    logger.error(f"Proxy error on {request.url.path}: {exc.message}")
    return JSONResponse(status_code=500, content=error_envelope(exc.message, 500))


async def _http_error_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    if exc.status_code in {404, 405}:
        return JSONResponse(
            status_code=404,
            content=error_envelope(f"Endpoint {request.url.path} not found", 404),
        )
    return JSONResponse(
        status_code=exc.status_code,
        content=error_envelope(str(exc.detail), exc.status_code),
        headers=getattr(exc, "headers", None),
    )


def create_app(
    settings: Optional[ProxySettings] = None,
    lore_sources: Optional[Sequence[LoreSource]] = None,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> FastAPI:
    """Build the proxy application.

    Args:
        settings: Resolved settings; loaded from config file and environment
            when omitted.
        lore_sources: Preloaded lorebooks; read from ``settings.lorebook_dir``
            when omitted and lorebooks are enabled; a relative directory is
            taken from the project root.
        transport: Optional httpx transport for backend calls (tests use an
            in-process fake backend).

    Returns:
        The configured FastAPI application instance.
    """
    if settings is None:
        settings = load_settings(load_config())
    setup_logging(settings.log_level)

    if lore_sources is None:
        lore_sources = (
            load_lorebooks(resolve_project_path(settings.lorebook_dir))
            if settings.enable_lorebook
            else []
        )

    router = ProxyRouter(settings, lore_sources, transport=transport)
    if not settings.api_key:
        logger.warning("NIM_API_KEY is not set; backend requests will be unauthenticated")

    app = FastAPI(title="NIM Proxy")
    app.state.settings = settings
    app.state.router = router

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.add_exception_handler(UpstreamError, _upstream_error_handler)
    app.add_exception_handler(InvalidRequestError, _invalid_request_handler)
    app.add_exception_handler(ProxyError, _proxy_error_handler)
    app.add_exception_handler(StarletteHTTPException, _http_error_handler)

    # Register routes
    app.get("/health")(health)
    app.get("/v1/models")(list_models)
    app.post("/v1/chat/completions")(chat_completions)
    app.post("/proxy/v1/chat/completions")(proxy_chat_completions)

    @app.on_event("startup")
    async def startup_event():
        """Handle application startup."""
        logger.info(f"OpenAI to NVIDIA NIM Proxy starting on port {settings.port}")
        logger.info(f"Backend: {settings.api_base}")
        logger.info(f"Reasoning display: {_enabled(settings.show_reasoning)}")
        logger.info(f"Thinking mode: {_enabled(settings.enable_thinking_mode)}")
        logger.info(f"Lorebook: {_enabled(settings.enable_lorebook)}")
        if settings.enable_lorebook:
            logger.info(
                f"Lorebooks loaded: {len(router.lore_sources)} "
                f"with {count_entries(router.lore_sources)} total entries"
            )

    return app


__all__ = ["create_app"]
