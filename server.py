from contextlib import asynccontextmanager
import asyncio
import logging
import os
import time
import uuid
from typing import AsyncIterator, Optional

from dotenv import load_dotenv
from fastapi import Depends, FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse, StreamingResponse
from prometheus_fastapi_instrumentator import Instrumentator, metrics as pfi_metrics_module
from pydantic import ValidationError
import structlog
import uvicorn

from coach.blocks import sanitize_error
from coach.cancellation import CancellationToken
from coach.config import AppConfig, ConfigLoader
from coach.errors import JournalError, RateLimiterError
from coach.logging_config import configure_logging
from coach.models import ErrorEvent, TurnRequest
from coach.planner import TurnOrchestrator
from coach.ratelimit import InMemoryRateLimiter, RateLimiter, RedisRateLimiter
from coach.sse import SSE_HEADERS, encode_event, padding_comment, wants_event_stream
from coach.turns import TurnService
from journal import ActionJournal, InMemoryActivityStore, InMemoryJournalStore
from journal.redis_store import RedisJournalStore
from providers.factory import ProviderFactory
from tools import build_registry

# Load environment variables from .env file
load_dotenv()

# --- Global Configuration ---
try:
    app_config = ConfigLoader(os.getenv("COACH_CONFIG", "config.toml")).get_config()
except Exception as e:
    # structlog isn't configured yet
    logging.basicConfig()
    logging.getLogger(__name__).critical(f"Failed to load configuration: {e}", exc_info=True)
    raise

configure_logging(log_level=app_config.log_level, force_json=app_config.log_json)
log = structlog.get_logger(__name__)

def build_journal_store(config: AppConfig):
    if config.journal.backend == "redis":
        return RedisJournalStore(config.journal.redis.url, key_prefix=config.journal.key_prefix)
    return InMemoryJournalStore()

def build_rate_limiter(config: AppConfig) -> Optional[RateLimiter]:
    """Turn limiter sharing the journal's backend; None when rate limiting is disabled."""
    settings = config.rate_limit
    if not settings.enabled:
        log.warning("Rate limiting disabled")
        return None
    if config.journal.backend == "redis":
        return RedisRateLimiter(
            config.journal.redis.url,
            limit=settings.turns_per_window,
            window_seconds=settings.window_seconds,
            key_prefix=settings.key_prefix,
        )
    return InMemoryRateLimiter(limit=settings.turns_per_window, window_seconds=settings.window_seconds)

def build_turn_service(config: AppConfig, provider_factory: ProviderFactory,
                       activity, journal: ActionJournal) -> TurnService:
    registry = build_registry()
    backend = provider_factory.get_backend()
    orchestrator = None
    if backend is not None:
        orchestrator = TurnOrchestrator(
            backend,
            registry,
            max_tool_rounds=config.planner.max_tool_rounds,
            round_timeout_seconds=config.planner.round_timeout_seconds,
        )
    return TurnService(
        registry,
        journal,
        activity,
        orchestrator=orchestrator,
        turn_timeout_seconds=config.planner.turn_timeout_seconds,
    )

# --- FastAPI Lifecycle (Startup/Shutdown) ---
@asynccontextmanager
async def lifespan(app: FastAPI):
    """Manages application startup and shutdown processes."""
    log.info("Application startup...")
    log.info(f"Using loaded configuration. Log level set to {app_config.log_level.upper()}")

    provider_factory = ProviderFactory(app_config)
    activity = InMemoryActivityStore()
    journal_store = build_journal_store(app_config)
    journal = ActionJournal(journal_store, activity)
    turn_service = build_turn_service(app_config, provider_factory, activity, journal)
    turn_limiter = build_rate_limiter(app_config)
    log.info("Services initialized", journal_backend=app_config.journal.backend, model=turn_service.model_label)

    app.state.config = app_config
    app.state.provider_factory = provider_factory
    app.state.activity = activity
    app.state.journal = journal
    app.state.journal_store = journal_store
    app.state.turn_service = turn_service
    app.state.turn_limiter = turn_limiter

    log.info("Application startup complete.")
    try:
        yield
    finally:
        log.info("Shutting down application...")
        await provider_factory.close_all()
        if hasattr(journal_store, "close"):
            await journal_store.close()
        if turn_limiter is not None:
            await turn_limiter.close()
        log.info("Application shutdown complete.")

app = FastAPI(title="Coach Agent", description="Agent turns with an undoable action journal.", version="0.1.0", lifespan=lifespan)

instrumentator = Instrumentator(
    should_group_status_codes=False,
    should_instrument_requests_inprogress=True,
    excluded_handlers=["/metrics"],
)

instrumentator.add(pfi_metrics_module.latency(
    metric_name="http_request_duration_seconds",
    metric_doc="API call duration in seconds",
    should_include_handler=True,
    should_include_method=True,
    should_include_status=True,
    buckets=(0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0, float("inf")),
))

instrumentator.add(pfi_metrics_module.requests(
    metric_name="http_requests_total",
    metric_doc="Total HTTP requests processed",
    should_include_handler=True,
    should_include_method=True,
    should_include_status=True,
))

instrumentator.instrument(app)
instrumentator.expose(app, endpoint="/metrics", include_in_schema=True, tags=["observability"])

@app.middleware("http")
async def log_requests(request: Request, call_next):
    structlog.contextvars.clear_contextvars()
    request_id = request.headers.get("x-request-id", str(uuid.uuid4()))
    structlog.contextvars.bind_contextvars(
        path=request.url.path,
        method=request.method,
        client_host=request.client.host if request.client else None,
        request_id=request_id,
    )
    log.info("Received request")
    start_time = time.time()

    response = await call_next(request)

    process_time = (time.time() - start_time) * 1000
    structlog.contextvars.bind_contextvars(status_code=response.status_code, process_time_ms=round(process_time, 2))
    log.info("Sending response")
    structlog.contextvars.clear_contextvars()
    response.headers["X-Request-ID"] = request_id
    return response

# --- Dependencies ---

def require_user(request: Request) -> str:
    """Identity is resolved upstream; we only read the forwarded user id."""
    user_id = (request.headers.get("x-user-id") or "").strip()
    if not user_id:
        raise HTTPException(status_code=401, detail="Unauthorized")
    structlog.contextvars.bind_contextvars(user_id=user_id)
    return user_id

def get_turn_service(request: Request) -> TurnService:
    return request.app.state.turn_service

def get_journal(request: Request) -> ActionJournal:
    return request.app.state.journal

# --- Turn endpoint ---

async def stream_turn(service: TurnService, turn_request: TurnRequest, user_id: str,
                      padding_bytes: int) -> AsyncIterator[str]:
    """Runs the turn in a task and relays its events as SSE frames, in emission order."""
    queue: asyncio.Queue = asyncio.Queue()
    cancel = CancellationToken()
    task = asyncio.create_task(service.run_turn(turn_request, user_id, queue.put_nowait, cancel))
    task.add_done_callback(lambda _: queue.put_nowait(None))
    try:
        while True:
            event = await queue.get()
            if event is None:
                break
            yield encode_event(event)
            if event.type == "start" and padding_bytes > 0:
                yield padding_comment(padding_bytes)
        error = task.exception() if not task.cancelled() else None
        if error is not None:
            log.error(f"Turn failed while streaming: {error}", exc_info=error)
            yield encode_event(ErrorEvent(message=sanitize_error(error)))
    finally:
        if not task.done():
            log.info("Client went away mid-turn; cancelling")
            cancel.cancel("Client disconnected.")

@app.post("/v1/coach/turns")
async def create_turn(request: Request,
                      user_id: str = Depends(require_user),
                      service: TurnService = Depends(get_turn_service)):
    """Runs one coach turn. Streams SSE when the client accepts text/event-stream."""
    try:
        payload = await request.json()
    except ValueError as e:
        log.warning("Invalid JSON payload received for /v1/coach/turns", error=str(e))
        raise HTTPException(status_code=400, detail="Invalid JSON body")

    try:
        turn_request = TurnRequest.model_validate(payload)
    except ValidationError as e:
        log.warning("Invalid turn request body", errors=e.error_count())
        raise HTTPException(status_code=400, detail="Invalid request body")

    if turn_request.latest_user_text() is None:
        raise HTTPException(status_code=400, detail="Missing user message")

    limiter: Optional[RateLimiter] = getattr(request.app.state, "turn_limiter", None)
    if limiter is not None:
        try:
            decision = await limiter.hit(user_id)
        except RateLimiterError as e:
            log.error("Rate limit check failed", error=str(e))
            raise HTTPException(status_code=500, detail="Failed to check rate limit")
        if not decision.allowed:
            return JSONResponse(
                status_code=429,
                content={
                    "detail": "Rate limit exceeded. Try again soon.",
                    "retry_after_seconds": decision.retry_after_seconds,
                    "reset_at": decision.reset_at,
                },
                headers={"Retry-After": str(decision.retry_after_seconds)},
            )

    if wants_event_stream(request.headers.get("accept")):
        padding = request.app.state.config.stream.padding_bytes
        return StreamingResponse(
            stream_turn(service, turn_request, user_id, padding),
            headers=SSE_HEADERS,
            media_type="text/event-stream",
        )

    response = await service.run_turn(turn_request, user_id)
    return JSONResponse(content=response.model_dump(mode="json"))

# --- Journal endpoints ---

@app.post("/v1/actions/{action_id}/undo")
async def undo_action(action_id: str,
                      user_id: str = Depends(require_user),
                      journal: ActionJournal = Depends(get_journal)):
    try:
        outcome = await journal.undo_one(user_id, action_id)
    except JournalError as e:
        log.error("Undo failed in the store", action_id=action_id, error=str(e))
        raise HTTPException(status_code=503, detail="Undo is temporarily unavailable.")
    return JSONResponse(content=outcome.model_dump(mode="json", exclude_none=True))

@app.post("/v1/turns/{turn_id}/undo")
async def undo_turn(turn_id: str,
                    user_id: str = Depends(require_user),
                    journal: ActionJournal = Depends(get_journal)):
    try:
        outcome = await journal.undo_turn(user_id, turn_id)
    except JournalError as e:
        log.error("Turn undo failed in the store", turn_id=turn_id, error=str(e))
        raise HTTPException(status_code=503, detail="Undo is temporarily unavailable.")
    return JSONResponse(content=outcome.model_dump(mode="json", exclude_none=True))

@app.get("/v1/turns/{turn_id}/actions")
async def list_turn_actions(turn_id: str,
                            user_id: str = Depends(require_user),
                            journal: ActionJournal = Depends(get_journal)):
    try:
        actions = await journal.list_actions_for_turn(user_id, turn_id)
    except JournalError as e:
        log.error("Could not list turn actions", turn_id=turn_id, error=str(e))
        raise HTTPException(status_code=503, detail="Journal is temporarily unavailable.")
    return {"turn_id": turn_id, "actions": [action.model_dump(mode="json") for action in actions]}

# --- Health Check Endpoint ---
@app.get("/health", status_code=200)
async def health_check(request: Request):
    log.debug("Health check requested.")
    service: Optional[TurnService] = getattr(request.app.state, "turn_service", None)
    return {"status": "ok", "model": service.model_label if service else None}

# --- Main Execution Block ---
if __name__ == "__main__":
    log.info("Starting coach server", host=app_config.host, port=app_config.port, reload=app_config.reload)
    uvicorn.run(
        "server:app",
        host=app_config.host,
        port=app_config.port,
        reload=app_config.reload,
        log_config=None
    )
    log.info("Coach server stopped")
