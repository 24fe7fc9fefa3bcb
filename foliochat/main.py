"""
FastAPI application — the FolioChat entry point.

Routes:
  POST    /api/chat    chat proxy (validation → model chain → reply envelope)
  OPTIONS /api/chat    CORS preflight
  GET     /api/health  liveness + configured model chain

Every response carries the CORS headers for the caller's origin.
"""

import logging
from contextlib import asynccontextmanager
from pathlib import Path

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse, Response

from foliochat import __version__
from foliochat.config import get_config
from foliochat.proxy import ERR_UNEXPECTED, ChatProxy
from foliochat.validation import resolve_cors_origin
from foliochat.wiretap import WireLog

logger = logging.getLogger(__name__)

PREFLIGHT_MAX_AGE = 86400


# ---------------------------------------------------------------------------
# Globals — initialized at startup
# ---------------------------------------------------------------------------
proxy: ChatProxy | None = None
wire_log: WireLog | None = None


def _setup_logging(cfg: dict):
    log_cfg = cfg.get("logging", {})
    level = getattr(logging, str(log_cfg.get("level", "INFO")).upper(), logging.INFO)
    log_file = log_cfg.get("file")

    handlers: list[logging.Handler] = [logging.StreamHandler()]
    if log_file:
        Path(log_file).parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(log_file))

    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        handlers=handlers,
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup / shutdown lifecycle."""
    global proxy, wire_log

    cfg = get_config()
    _setup_logging(cfg)

    wire_cfg = cfg.get("wiretap", {})
    wire_log = WireLog(wire_cfg.get("path", "./data/wire.jsonl")) if wire_cfg.get("enabled") else None

    proxy = ChatProxy.from_config(cfg, wire=wire_log)

    server_cfg = cfg.get("server", {})
    logger.info(
        "FolioChat started — listening on %s:%s, models %s",
        server_cfg.get("host", "0.0.0.0"),
        server_cfg.get("port", 8788),
        proxy.chain.models,
    )
    if not proxy.configured:
        logger.warning("GEMINI_API_KEY is not set; /api/chat will answer 503")
    logger.info("Wiretap: %s", wire_cfg.get("path") if wire_log else "disabled")

    yield

    if wire_log is not None:
        wire_log.close()
    logger.info("FolioChat shutting down")


# ---------------------------------------------------------------------------
# App
# ---------------------------------------------------------------------------
app = FastAPI(
    title="FolioChat",
    description="Portfolio chat proxy with model fallback.",
    version=__version__,
    lifespan=lifespan,
)


def _cors_headers(origin: str) -> dict:
    allowed = get_config().get("cors", {}).get("allowed_origins", [])
    headers = {
        "Access-Control-Allow-Methods": "POST, OPTIONS",
        "Access-Control-Allow-Headers": "Content-Type",
        "Cache-Control": "no-store",
        "Vary": "Origin",
    }
    allow_origin = resolve_cors_origin(origin, allowed)
    if allow_origin:
        headers["Access-Control-Allow-Origin"] = allow_origin
    return headers


@app.middleware("http")
async def add_cors_headers(request: Request, call_next):
    response = await call_next(request)
    response.headers.update(_cors_headers(request.headers.get("origin", "")))
    return response


# ---------------------------------------------------------------------------
# Chat endpoints
# ---------------------------------------------------------------------------

@app.post("/api/chat")
async def chat(request: Request):
    """
    Answer one visitor question. Always returns the uniform envelope:
    {"reply", "suggestions"} on 200, {"error", ...} otherwise.
    """
    try:
        body = await request.json()
    except ValueError:
        return JSONResponse({"error": "Invalid JSON in request body"}, status_code=400)

    try:
        result = await proxy.handle(body)
    except Exception:
        logger.exception("Unhandled error in chat handler")
        return JSONResponse({"error": ERR_UNEXPECTED}, status_code=500)

    return JSONResponse(result.payload, status_code=result.status_code)


@app.options("/api/chat")
async def chat_preflight():
    return Response(status_code=204, headers={"Access-Control-Max-Age": str(PREFLIGHT_MAX_AGE)})


@app.get("/api/health")
async def health():
    return JSONResponse({
        "status": "ok",
        "models": proxy.chain.models if proxy else [],
        "configured": bool(proxy and proxy.configured),
    })
