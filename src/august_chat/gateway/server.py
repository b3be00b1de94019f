"""FastAPI application exposing the completion gateway over HTTP."""

from __future__ import annotations

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
import logging
from typing import Any

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse, PlainTextResponse, Response
import httpx

from .. import __version__
from ..config import ServerConfig, ServerSecrets
from ..exceptions import GatewayError
from .service import CompletionGateway, TokenVerifier

LOGGER = logging.getLogger(__name__)

ROUTE_METHODS = ["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"]


def cors_headers(origin: str | None) -> dict[str, str]:
    return {
        "Access-Control-Allow-Origin": origin or "*",
        "Access-Control-Allow-Headers": "authorization, x-client-info, apikey, content-type",
        "Access-Control-Allow-Methods": "POST, OPTIONS",
    }


def create_app(
    config: dict[str, Any] | None = None,
    *,
    secrets: ServerSecrets | None = None,
    http_client: httpx.AsyncClient | None = None,
    verifier: TokenVerifier | None = None,
) -> FastAPI:
    """Build the gateway app.

    ``config`` is the loaded configuration mapping (only ``server`` is read);
    secrets default to the process environment.
    """
    server_config = ServerConfig.model_validate((config or {}).get("server", {}))
    owns_client = http_client is None
    gateway = CompletionGateway(
        server_config,
        secrets or ServerSecrets.from_env(),
        http_client=http_client,
        verifier=verifier,
    )

    @asynccontextmanager
    async def lifespan(_: FastAPI) -> AsyncIterator[None]:
        LOGGER.info(
            "gateway.started",
            extra={"event": "gateway.started", "path": server_config.path},
        )
        yield
        if owns_client:
            await gateway.aclose()

    app = FastAPI(title="August Chat Gateway", version=__version__, lifespan=lifespan)
    app.state.gateway = gateway

    async def gateway_error_handler(request: Request, exc: GatewayError) -> JSONResponse:
        LOGGER.warning(
            "gateway.request.failed",
            extra={
                "event": "gateway.request.failed",
                "status": exc.status,
                "error": exc.error,
            },
        )
        return JSONResponse(
            status_code=exc.status,
            content=exc.to_dict(),
            headers=cors_headers(request.headers.get("origin")),
        )

    app.add_exception_handler(GatewayError, gateway_error_handler)

    @app.api_route(server_config.path, methods=ROUTE_METHODS)
    async def chat(request: Request) -> Response:
        origin = request.headers.get("origin")
        if request.method == "OPTIONS":
            return PlainTextResponse("ok", headers=cors_headers(origin))
        if request.method != "POST":
            return JSONResponse(
                status_code=405,
                content={"error": "Method not allowed"},
                headers={**cors_headers(origin), "Allow": "POST, OPTIONS"},
            )
        content = await gateway.complete(
            request.headers.get("authorization"), await request.body()
        )
        return JSONResponse(content={"content": content}, headers=cors_headers(origin))

    return app
