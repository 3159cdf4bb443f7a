"""
FastAPI application: the Lumai assistant HTTP entry point.

Routes stay thin. Identity arrives in the X-User-Id / X-User-Name headers
(set by whatever authenticates the caller upstream); everything else is
AssistantService's job.
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from lumai import __version__
from lumai.assistant import AssistantService
from lumai.completion import CompletionClient
from lumai.config import get_config
from lumai.errors import ApiError, BadRequest, CompletionError, Unauthorized
from lumai.orchestrator import ConversationOrchestrator
from lumai.ratelimit import RateLimiter
from lumai.storage import BaseConversationStore, make_store
from lumai.tools import CapabilityRegistry, FixtureWellnessSource, build_wellness_registry
from lumai.wiretap import WireLog


# ---------------------------------------------------------------------------
# Globals, initialized at startup
# ---------------------------------------------------------------------------
assistant: AssistantService | None = None
conversation_store: BaseConversationStore | None = None
capability_registry: CapabilityRegistry | None = None
rate_limiter: RateLimiter | None = None
wire_log: WireLog | None = None

UNAVAILABLE_MESSAGE = "Assistant is temporarily unavailable."


def _setup_logging(cfg: dict):
    log_cfg = cfg.get("logging", {})
    level = getattr(logging, log_cfg.get("level", "INFO").upper(), logging.INFO)
    log_file = log_cfg.get("file")

    handlers: list[logging.Handler] = [logging.StreamHandler()]
    if log_file:
        from pathlib import Path
        Path(log_file).parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(log_file))

    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        handlers=handlers,
    )


def build_assistant(cfg: dict, store: BaseConversationStore | None = None, wire: WireLog | None = None):
    """Wire store, registry, client and orchestrator into an AssistantService."""
    store = store or make_store(cfg)
    registry = build_wellness_registry(FixtureWellnessSource.from_config(cfg), cfg.get("tools", {}))
    client = CompletionClient.from_config(cfg)
    orchestrator = ConversationOrchestrator.from_config(cfg, client=client, wire=wire)
    return AssistantService.from_config(cfg, orchestrator=orchestrator, registry=registry, store=store)


def make_wire_log(cfg: dict) -> WireLog | None:
    wire_cfg = cfg.get("wiretap", {})
    if not wire_cfg.get("enabled", False):
        return None
    return WireLog(wire_cfg.get("path", "./data/wire.jsonl"))


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup / shutdown lifecycle."""
    global assistant, conversation_store, capability_registry, rate_limiter, wire_log

    cfg = get_config()
    _setup_logging(cfg)
    logger = logging.getLogger(__name__)

    wire_log = make_wire_log(cfg)

    conversation_store = make_store(cfg)
    assistant = build_assistant(cfg, store=conversation_store, wire=wire_log)
    capability_registry = assistant.registry
    rate_limiter = RateLimiter.from_config(cfg)

    client = assistant.orchestrator.client
    logger.info(
        "Lumai %s started on %s:%s, model %s",
        __version__,
        cfg.get("server", {}).get("host", "0.0.0.0"),
        cfg.get("server", {}).get("port", 4000),
        client.model,
    )
    if not client.configured:
        logger.warning("Completion endpoint not configured; chat requests will return 503")
    logger.info("Storage: %s", type(conversation_store).__name__)
    logger.info("Capabilities: %s", capability_registry.list_tools())
    logger.info("Wiretap: %s", "enabled" if wire_log else "disabled")

    yield

    if wire_log:
        wire_log.close()
    logger.info("Lumai shutting down")


app = FastAPI(
    title="Lumai",
    description="Wellness assistant with tool-calling orchestration",
    version=__version__,
    lifespan=lifespan,
)


@app.exception_handler(ApiError)
async def _api_error(request: Request, exc: ApiError):
    body = {"error": exc.message}
    if exc.details:
        body["details"] = exc.details
    return JSONResponse(body, status_code=exc.status_code)


@app.exception_handler(CompletionError)
async def _completion_error(request: Request, exc: CompletionError):
    logging.getLogger(__name__).error("Assistant completion failed: %s", exc)
    return JSONResponse({"error": UNAVAILABLE_MESSAGE}, status_code=502)


def _caller(request: Request) -> tuple[str, str | None]:
    user_id = (request.headers.get("x-user-id") or "").strip()
    if not user_id:
        raise Unauthorized("Missing user identity")
    user_name = (request.headers.get("x-user-name") or "").strip() or None
    return user_id, user_name


# ---------------------------------------------------------------------------
# Endpoints
# ---------------------------------------------------------------------------

@app.get("/health")
async def health():
    return JSONResponse({"status": "ok"})


@app.get("/api/assistant/conversation")
async def conversation(request: Request):
    user_id, _ = _caller(request)
    return JSONResponse(assistant.snapshot(user_id))


@app.post("/api/assistant/chat")
async def chat(request: Request):
    user_id, user_name = _caller(request)
    rate_limiter.check(f"{user_id}:{request.url.path}")
    try:
        body = await request.json()
    except ValueError:
        raise BadRequest("Request body must be JSON")
    message = body.get("message") if isinstance(body, dict) else None
    result = await assistant.chat(user_id, user_name, message if isinstance(message, str) else "")
    return JSONResponse(result)
