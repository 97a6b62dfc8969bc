# verifier_backend/main.py
#
# -----------------------------------------------------------------------------
# Architectural notes (high level)
# -----------------------------------------------------------------------------
# Thin HTTP glue over SessionController:
#   - It wires endpoints to the session lifecycle implemented in sessions.py.
#   - It MUST NOT verify proofs itself (that is the external verifier's job,
#     see verification.py).
#   - It owns no state: every app built by create_app() gets its own controller
#     (and so its own session / QR stores) on app.state.
#
# Key modules / responsibilities:
#   - config.py       : environment-driven settings (HOST, TTLs, sender DIDs, ...)
#   - validation.py   : sign-in request checks (pure)
#   - builder.py      : authorization / contract-invoke request messages
#   - storage.py      : TTL cache, session store, QR payload store
#   - sessions.py     : session state machine
#   - verification.py : external proof verifier boundary
#   - nullifiers.py   : V3 nullifier extraction from verifier output
#   - qr.py           : QR indirection URL + SVG rendering (no security)
#   - audit.py        : append-only hash-chained audit log
#
# Flow:
#   browser  POST /sign-in            -> {qrCode, sessionID}
#   wallet   GET  /qr-store?id=...    -> full request message
#   wallet   POST /callback?sessionID -> signed token (text body)
#   browser  GET  /status?sessionID   -> pending | success | error
#
# WARNING (DEPLOYMENT):
# - Sessions live in process memory. They are NOT shared across Uvicorn
#   workers or nodes; run a single worker or pin wallets and browsers to it.
# -----------------------------------------------------------------------------
import logging
from pathlib import Path
from typing import Optional
from uuid import UUID

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import HTMLResponse, JSONResponse, Response
from fastapi.templating import Jinja2Templates
from starlette.concurrency import run_in_threadpool
from starlette.middleware.base import BaseHTTPMiddleware

from .audit import AuditLog
from .config import Settings, settings as default_settings
from .errors import GatewayError
from .models import SignInRequest, SignInResponse
from .observability import configure_logging, request_logging_middleware
from .qr import make_qr_svg_bytes
from .sessions import SessionController
from .verification import HTTPProofVerifier, ProofVerifier, UnconfiguredVerifier

log = logging.getLogger("verifier_backend.api")

BASE_DIR = Path(__file__).resolve().parent
templates = Jinja2Templates(directory=str(BASE_DIR / "templates"))


def _default_verifier(cfg: Settings) -> ProofVerifier:
    if cfg.VERIFIER_URL:
        return HTTPProofVerifier(cfg.VERIFIER_URL, timeout=cfg.VERIFIER_TIMEOUT_SECONDS)
    log.warning("verifier_not_configured", extra={"event_name": "verifier_not_configured"})
    return UnconfiguredVerifier()


def _controller(request: Request) -> SessionController:
    return request.app.state.sessions


def _client_meta(request: Request):
    return (request.client.host if request.client else None), request.headers.get("user-agent")


def create_app(
    cfg: Optional[Settings] = None,
    *,
    verifier: Optional[ProofVerifier] = None,
    controller: Optional[SessionController] = None,
) -> FastAPI:
    cfg = cfg or default_settings
    configure_logging(cfg.LOG_LEVEL)

    if controller is None:
        audit = AuditLog(cfg.AUDIT_DIR) if cfg.AUDIT_ENABLED else None
        controller = SessionController(cfg, verifier or _default_verifier(cfg), audit=audit)

    app = FastAPI(title="Verifier Backend", version="0.1.0")
    app.state.settings = cfg
    app.state.sessions = controller

    app.add_middleware(CORSMiddleware, allow_origins=["*"], allow_methods=["*"], allow_headers=["*"])
    app.add_middleware(BaseHTTPMiddleware, dispatch=request_logging_middleware)

    # -------------------------------------------------------------------------
    # Errors -> {"message": ...}
    # -------------------------------------------------------------------------
    @app.exception_handler(GatewayError)
    async def gateway_error_handler(_: Request, exc: GatewayError):
        return JSONResponse(status_code=exc.status_code, content={"message": str(exc)})

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(_: Request, exc: RequestValidationError):
        # malformed JSON / wrong types / bad UUIDs are caller mistakes, not 422s
        errors = exc.errors()
        if errors:
            first = errors[0]
            loc = ".".join(str(p) for p in first.get("loc", ()) if p != "body")
            message = f"{loc}: {first.get('msg')}" if loc else str(first.get("msg"))
        else:
            message = "invalid request"
        return JSONResponse(status_code=400, content={"message": message})

    # -------------------------------------------------------------------------
    # Static
    # -------------------------------------------------------------------------
    @app.get("/", response_class=HTMLResponse)
    def documentation(request: Request):
        return templates.TemplateResponse(
            request,
            "index.html",
            {
                "host": cfg.HOST,
                "callback_path": cfg.CALLBACK_PATH,
                "qr_store_path": cfg.QR_STORE_PATH,
                "chain_ids": cfg.SUPPORTED_CHAIN_IDS,
            },
        )

    @app.get("/health")
    def health():
        return {"healthy": True}

    # -------------------------------------------------------------------------
    # Sign-in (browser)
    # -------------------------------------------------------------------------
    @app.post("/sign-in")
    def sign_in(request: Request, body: SignInRequest):
        result = _controller(request).initiate(body)
        return SignInResponse(qr_code=result.qr_code, session_id=result.session_id).to_json()

    # -------------------------------------------------------------------------
    # QR store (wallet)
    # -------------------------------------------------------------------------
    @app.get(cfg.QR_STORE_PATH)
    def get_qr_code_from_store(request: Request, id: UUID):
        return _controller(request).fetch_payload(str(id)).to_json()

    @app.get(cfg.QR_STORE_PATH + "/qr.svg")
    def qr_code_svg(request: Request, id: UUID):
        uri = _controller(request).qr_uri(str(id))
        return Response(content=make_qr_svg_bytes(uri), media_type="image/svg+xml")

    # -------------------------------------------------------------------------
    # Callback (wallet)
    # -------------------------------------------------------------------------
    @app.post(cfg.CALLBACK_PATH)
    async def callback(request: Request, sessionID: UUID):
        token = (await request.body()).decode("utf-8", errors="replace").strip()
        request_ip, user_agent = _client_meta(request)

        # verification may hit the network; keep it off the event loop
        await run_in_threadpool(
            _controller(request).callback,
            str(sessionID),
            token,
            request_ip=request_ip,
            user_agent=user_agent,
        )
        return Response(status_code=200)

    # -------------------------------------------------------------------------
    # Status (browser polling)
    # -------------------------------------------------------------------------
    @app.get("/status")
    def status(request: Request, sessionID: UUID):
        return _controller(request).status(str(sessionID)).to_json()

    return app


app = create_app()
