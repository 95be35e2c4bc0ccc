"""
HTTP boundary for chatstream.

Provides HTTP API endpoints for:
- Streaming chat completions proxied to the model provider (/api/chat)
- Ephemeral ChatKit session credentials (/api/chatkit/session)
- Health checks
"""

from __future__ import annotations

import argparse
import logging
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Any, Dict, List, Optional

import httpx
import uvicorn
from dotenv import load_dotenv
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, StreamingResponse
from starlette.background import BackgroundTask

from ...core.config import Settings, load_settings
from ...core.exceptions import ConfigurationError, UpstreamError
from ...core.models import ChatKitSessionRequest, ChatKitSessionResponse, ChatRequest, HealthResponse

logger = logging.getLogger(__name__)

SERVICE_NAME = "chatstream HTTP boundary"
UNPARSEABLE_DEVICE_ID = "default-user"
ANONYMOUS_DEVICE_ID = "anonymous-user"


def _error(message: str, status_code: int) -> JSONResponse:
    return JSONResponse({"error": message}, status_code=status_code)


async def _drain_text(response: httpx.Response) -> str:
    try:
        await response.aread()
        return response.text
    finally:
        await response.aclose()


class ChatProxyServer:
    """FastAPI server that forwards chat streams to the model provider."""

    def __init__(self, settings: Settings, upstream: Optional[httpx.AsyncClient] = None):
        self.settings = settings
        self.fallback_policy = settings.fallback_policy()
        self.upstream = upstream or httpx.AsyncClient(
            timeout=httpx.Timeout(None, connect=settings.connect_timeout)
        )
        self.app = self._create_app()

    def _create_app(self) -> FastAPI:
        @asynccontextmanager
        async def lifespan(app: FastAPI):
            await self.startup()
            yield
            await self.shutdown()

        app = FastAPI(
            title="chatstream HTTP boundary",
            version="0.1.0",
            description="Streaming chat proxy for the chatstream client",
            lifespan=lifespan,
        )

        app.add_middleware(
            CORSMiddleware,
            allow_origins=["*"],
            allow_credentials=True,
            allow_methods=["*"],
            allow_headers=["*"],
        )

        self._register_routes(app)
        return app

    def _url(self, path: str) -> str:
        return f"{self.settings.api_base_url.rstrip('/')}/{path.lstrip('/')}"

    def _auth_headers(self) -> Dict[str, str]:
        return {
            "Content-Type": "application/json",
            "Authorization": f"Bearer {self.settings.api_key}",
        }

    async def _open_completion(self, model: str, messages: List[Dict[str, Any]]) -> httpx.Response:
        request = self.upstream.build_request(
            "POST",
            self._url("/chat/completions"),
            headers=self._auth_headers(),
            json={"model": model, "messages": messages, "stream": True},
        )
        return await self.upstream.send(request, stream=True)

    async def open_chat_stream(self, messages: List[Dict[str, Any]]) -> httpx.Response:
        """Open an upstream completion stream, retrying once with the fallback model.

        Returns:
            A successful, still-open streaming response

        Raises:
            UpstreamError: If the upstream (and, where applicable, the fallback)
                request is rejected
        """
        model = self.settings.effective_model
        response = await self._open_completion(model, messages)
        if response.is_success:
            return response

        error_text = await _drain_text(response)
        fallback = self.fallback_policy.fallback_for(model, response.status_code)
        if fallback is None:
            raise UpstreamError(error_text, response.status_code)

        logger.warning(
            "Model %s rejected with status %d, retrying once with %s",
            model, response.status_code, fallback,
        )
        response = await self._open_completion(fallback, messages)
        if response.is_success:
            return response
        raise UpstreamError(await _drain_text(response), response.status_code)

    async def create_chatkit_session(self, device_id: str) -> str:
        response = await self.upstream.post(
            self._url("/chatkit/sessions"),
            headers=self._auth_headers(),
            json={"workflow": {"id": self.settings.workflow_id}, "user": device_id},
        )
        if not response.is_success:
            raise UpstreamError(response.text, response.status_code)
        return response.json()["client_secret"]

    def _register_routes(self, app: FastAPI) -> None:
        """Register API routes."""

        @app.post("/api/chat")
        async def chat_endpoint(request: ChatRequest):
            """Stream a chat completion as server-sent events."""
            if not self.settings.api_key:
                return _error("Missing OPENAI_API_KEY", 500)
            try:
                upstream = await self.open_chat_stream(
                    [m.model_dump() for m in request.messages]
                )
            except UpstreamError as e:
                logger.warning("Upstream rejected chat request (%d): %s", e.status_code, e)
                return _error(str(e), e.status_code)
            except Exception as e:
                logger.error("Chat endpoint error: %s", e, exc_info=True)
                return _error(str(e), 500)

            return StreamingResponse(
                upstream.aiter_raw(),
                media_type="text/event-stream",
                background=BackgroundTask(upstream.aclose),
            )

        @app.post("/api/chatkit/session", response_model=ChatKitSessionResponse)
        async def chatkit_session_endpoint(request: Request):
            """Issue ephemeral session credentials for a device."""
            if not self.settings.api_key:
                return _error("Missing OPENAI_API_KEY", 500)
            if not self.settings.workflow_id:
                return _error("Missing CHATKIT_WORKFLOW_ID", 500)

            try:
                body = await request.json()
            except ValueError:
                body = {"deviceId": UNPARSEABLE_DEVICE_ID}
            payload = ChatKitSessionRequest.model_validate(body if isinstance(body, dict) else {})
            device_id = payload.device_id or ANONYMOUS_DEVICE_ID

            try:
                client_secret = await self.create_chatkit_session(device_id)
            except UpstreamError as e:
                return _error(str(e), e.status_code)
            except Exception as e:
                logger.error("ChatKit session error: %s", e, exc_info=True)
                return _error(str(e), 500)
            return ChatKitSessionResponse(client_secret=client_secret)

        @app.get("/health", response_model=HealthResponse)
        async def health_endpoint() -> HealthResponse:
            """Health check endpoint."""
            return HealthResponse(status="healthy", service=SERVICE_NAME)

    async def startup(self):
        logger.info("Starting %s (model: %s)", SERVICE_NAME, self.settings.effective_model)

    async def shutdown(self):
        logger.info("Shutting down %s", SERVICE_NAME)
        await self.upstream.aclose()


def create_app(settings: Optional[Settings] = None, upstream: Optional[httpx.AsyncClient] = None) -> FastAPI:
    """Factory function to create the FastAPI application."""
    server = ChatProxyServer(settings or load_settings(), upstream=upstream)
    return server.app


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="chatstream HTTP boundary")
    parser.add_argument("--config", type=Path, help="Configuration YAML file")
    parser.add_argument("--host", help="Host to bind to (default: from config)")
    parser.add_argument("--port", type=int, help="Port to bind to (default: from config)")
    parser.add_argument(
        "--log-level",
        choices=["critical", "error", "warning", "info", "debug"],
        help="Log level (default: from config)",
    )
    return parser.parse_args(argv)


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point for the server."""
    args = parse_args(argv)
    load_dotenv()

    try:
        settings = load_settings(args.config)
    except ConfigurationError as e:
        print(f"Configuration error: {e}")
        return 1

    log_level = (args.log_level or settings.log_level).upper()
    logging.basicConfig(
        level=log_level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    )

    host = args.host or settings.host
    port = args.port or settings.port
    logger.info("Starting chatstream HTTP server on %s:%d", host, port)
    uvicorn.run(create_app(settings), host=host, port=port, log_level=log_level.lower())
    return 0
