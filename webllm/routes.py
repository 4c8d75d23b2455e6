import time
from contextlib import asynccontextmanager

from fastapi import Depends, FastAPI, Header, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse, StreamingResponse

from .accounts import AccountDirectory
from .auth import AuthenticatedAPIKey, require_api_key
from .browser.driver import PlaywrightDriver
from .browser.session_pool import SessionPool
from .deps import get_orchestrator
from .errors import GatewayError, InvalidRequest, error_response
from .gate import ProviderGate
from .logging_config import logger
from .login.store import LoginSessionStore, LoginStatusStore
from .orchestrator import TurnOrchestrator
from .providers.registry import default_registry
from .redis_client import close_redis_client, get_redis_client
from .schemas import (
    ChatCompletionRequest,
    HealthResponse,
    ModelInfo,
    ModelsResponse,
    ProviderInfo,
    ProvidersResponse,
)
from .settings import settings
from .streaming.reconciler import ReconcilerTiming

_REDACTED_HEADERS = {"authorization", "api-key"}
_TRUTHY = {"1", "true", "yes", "on"}


class TurnStreamingResponse(StreamingResponse):
    """
    Event stream whose body is closed however the response ends, including a
    disconnect before the first chunk was pulled from it.
    """

    async def __call__(self, scope, receive, send) -> None:
        try:
            await super().__call__(scope, receive, send)
        finally:
            await self.body_iterator.aclose()


def build_orchestrator() -> TurnOrchestrator:
    """
    Wire the production collaborators. Browsers are launched lazily on the
    first turn of each provider/account, so building this is cheap.
    """
    redis = get_redis_client()
    accounts = AccountDirectory.load()
    return TurnOrchestrator(
        registry=default_registry(),
        pool=SessionPool(PlaywrightDriver(), accounts),
        gate=ProviderGate(per_account=settings.gate_per_account),
        accounts=accounts,
        login_store=LoginSessionStore(redis, ttl_seconds=settings.login_session_ttl_seconds),
        status_store=LoginStatusStore(redis),
        timing=ReconcilerTiming.from_settings(),
    )


def _apply_header_overrides(
    payload: ChatCompletionRequest,
    conversation_id: str | None,
    web_search: str | None,
) -> ChatCompletionRequest:
    updates = {}
    if conversation_id and conversation_id.strip() and not payload.conversation_id:
        updates["conversation_id"] = conversation_id.strip()
    if web_search is not None and web_search.strip():
        updates["web_search"] = web_search.strip().lower() in _TRUTHY
    return payload.model_copy(update=updates) if updates else payload


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Build the orchestrator on startup unless one was installed already, and
    close every browser and the Redis client on shutdown.
    """
    if getattr(app.state, "orchestrator", None) is None:
        app.state.orchestrator = build_orchestrator()

    yield

    orchestrator = getattr(app.state, "orchestrator", None)
    if orchestrator is not None:
        await orchestrator.close()
        app.state.orchestrator = None
    await close_redis_client()


def create_app() -> FastAPI:
    app = FastAPI(title="Web LLM Gateway", version="0.1.0", lifespan=lifespan)

    @app.exception_handler(GatewayError)
    async def _gateway_error(request: Request, exc: GatewayError) -> JSONResponse:
        logger.info(
            "HTTP %s %s failed: %s (%s)",
            request.method,
            request.url.path,
            exc.kind,
            exc.message,
        )
        return error_response(exc)

    @app.exception_handler(RequestValidationError)
    async def _validation_error(request: Request, exc: RequestValidationError) -> JSONResponse:
        errors = [
            {"loc": [str(part) for part in err.get("loc", ())], "msg": err.get("msg", "")}
            for err in exc.errors()
        ]
        return error_response(InvalidRequest("Malformed request body", details={"errors": errors}))

    @app.middleware("http")
    async def log_requests(request: Request, call_next):
        """
        Request/response logging. Credentials are redacted from the logged
        headers.
        """
        client_host = request.client.host if request.client else "-"
        headers_for_log = {
            k: "***REDACTED***" if k.lower() in _REDACTED_HEADERS else v
            for k, v in request.headers.items()
        }
        logger.info(
            "HTTP %s %s from %s, headers=%s",
            request.method,
            request.url.path,
            client_host,
            headers_for_log,
        )
        try:
            response = await call_next(request)
        except Exception:
            logger.exception(
                "Unhandled error while processing %s %s",
                request.method,
                request.url.path,
            )
            raise
        logger.info(
            "HTTP %s %s -> %s", request.method, request.url.path, response.status_code
        )
        return response

    @app.get("/health", response_model=HealthResponse)
    async def health() -> HealthResponse:
        return HealthResponse()

    @app.get(
        "/v1/models",
        response_model=ModelsResponse,
        dependencies=[Depends(require_api_key)],
    )
    async def list_models(
        orchestrator: TurnOrchestrator = Depends(get_orchestrator),
    ) -> ModelsResponse:
        created = int(time.time())
        data = [
            ModelInfo(id=model_id, created=created, owned_by=provider.id)
            for provider in orchestrator.registry.all()
            for model_id in provider.supported_models()
        ]
        return ModelsResponse(data=data)

    @app.get(
        "/v1/providers",
        response_model=ProvidersResponse,
        dependencies=[Depends(require_api_key)],
    )
    async def list_providers(
        orchestrator: TurnOrchestrator = Depends(get_orchestrator),
    ) -> ProvidersResponse:
        overview = await orchestrator.provider_overview()
        return ProvidersResponse(data=[ProviderInfo(**item) for item in overview])

    @app.post("/v1/chat/completions")
    async def chat_completions(
        payload: ChatCompletionRequest,
        x_conversation_id: str | None = Header(default=None, alias="X-Conversation-ID"),
        x_web_search: str | None = Header(default=None, alias="X-Web-Search"),
        current_key: AuthenticatedAPIKey = Depends(require_api_key),
        orchestrator: TurnOrchestrator = Depends(get_orchestrator),
    ):
        """
        OpenAI-compatible chat endpoint backed by a browser session.

        Everything that can fail with a plain HTTP error (unknown model, busy
        provider, lost session, login required) is raised before the first
        response byte; afterwards failures are reported as an SSE error frame.
        """
        payload = _apply_header_overrides(payload, x_conversation_id, x_web_search)
        logger.info(
            "chat_completions: model=%r stream=%r messages=%d conversation_hint=%r",
            payload.model,
            payload.stream,
            len(payload.messages),
            payload.conversation_id,
        )
        turn = await orchestrator.prepare_turn(payload, current_key)
        if payload.stream:
            return TurnStreamingResponse(
                turn.stream_sse(),
                media_type="text/event-stream",
                headers={"Cache-Control": "no-cache", "X-Accel-Buffering": "no"},
            )
        return JSONResponse(await turn.complete())

    return app


__all__ = ["build_orchestrator", "create_app"]
