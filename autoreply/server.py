"""
Status server - lets an operator see the session state and scan the QR code.

Endpoints:
- GET /        - auto-refreshing HTML status page (shows the QR while pairing)
- GET /status  - JSON status snapshot
- GET /qr      - current QR challenge as PNG (404 when there is none)
- GET /health  - liveness probe
"""
from __future__ import annotations

import html
import logging
import time
from datetime import datetime, timezone

from fastapi import FastAPI, HTTPException, Request
from fastapi.responses import HTMLResponse, Response
from pydantic import BaseModel
from qrcode.exceptions import DataOverflowError

from autoreply import perf
from autoreply.config import ResponderSettings
from autoreply.qr import render_qr_png
from autoreply.session import SessionController, SessionStatus

logger = logging.getLogger(__name__)


class StatusResponse(BaseModel):
    status: str
    hasQR: bool
    repliedCount: int
    reconnectAttempts: int
    gaveUp: bool
    authenticated: bool
    updatedAt: str


class HealthResponse(BaseModel):
    status: str
    version: str
    time: str


PAGE_TEMPLATE = """<!doctype html>
<html>
<head>
<meta charset="utf-8">
<meta http-equiv="refresh" content="{refresh}">
<title>WhatsApp Auto-Reply Status</title>
<style>
    body {{ font-family: Arial, sans-serif; text-align: center; padding-top: 50px; }}
    img {{ width: 250px; margin-top: 20px; }}
    .status {{ font-size: 1.2rem; margin-top: 10px; }}
    .meta {{ color: #666; font-size: 0.9rem; margin-top: 20px; }}
</style>
</head>
<body>
<h1>WhatsApp Auto-Reply Status</h1>
{body}
<div class="meta">Replied correspondents: {replied}</div>
</body>
</html>
"""


def render_status_page(controller: SessionController, refresh_seconds: int) -> str:
    st = controller.state
    snapshot = controller.get_status()
    qr_image = controller.get_qr_image()

    if st.status is not SessionStatus.READY and qr_image:
        body = (
            '<div class="status">📱 Waiting for WhatsApp login...</div>'
            f'<img src="{qr_image}" alt="QR Code" />'
        )
    elif st.status is SessionStatus.AWAITING_QR_SCAN:
        body = '<div class="status">📱 Waiting for WhatsApp login, but the QR code could not be rendered.</div>'
    elif st.status is SessionStatus.READY:
        body = '<div class="status">✅ Connected to WhatsApp successfully!</div>'
    elif st.status is SessionStatus.AUTH_FAILED:
        body = '<div class="status">❌ Authentication failed. Restart the responder to pair again.</div>'
    elif st.status is SessionStatus.DISCONNECTED:
        reason = html.escape(st.last_disconnect_reason or "unknown")
        if st.gave_up:
            body = (
                f'<div class="status">⛔ Disconnected ({reason}). '
                f'Gave up reconnecting after {st.reconnect_attempts} attempts.</div>'
            )
        else:
            body = (
                f'<div class="status">⚠️ Disconnected ({reason}), reconnecting '
                f'(attempt {st.reconnect_attempts}/{controller.max_reconnect_attempts})...</div>'
            )
    else:
        body = '<div class="status">⏳ Initializing, please wait...</div>'

    return PAGE_TEMPLATE.format(refresh=refresh_seconds, body=body, replied=snapshot["repliedCount"])


def create_app(controller: SessionController, settings: ResponderSettings | None = None) -> FastAPI:
    settings = settings or ResponderSettings()
    app = FastAPI(title="autoreply", version=settings.version)
    app.state.controller = controller
    app.state.settings = settings

    @app.middleware("http")
    async def log_requests(request: Request, call_next):
        start_time = time.time()
        response = await call_next(request)
        duration_ms = (time.time() - start_time) * 1000
        logger.info(f"{request.method} {request.url.path} → {response.status_code} ({duration_ms:.1f}ms)")
        perf.timing("request_ms", duration_ms, component="server", endpoint=request.url.path,
                    status=response.status_code)
        return response

    @app.get("/", response_class=HTMLResponse)
    async def status_page() -> HTMLResponse:
        return HTMLResponse(render_status_page(controller, settings.status_refresh_seconds))

    @app.get("/status", response_model=StatusResponse)
    async def status() -> StatusResponse:
        return StatusResponse(**controller.get_status())

    @app.get("/qr")
    async def qr_png() -> Response:
        payload = controller.state.qr_payload
        if not payload:
            raise HTTPException(status_code=404, detail="No QR code available")
        try:
            png = render_qr_png(payload)
        except DataOverflowError:
            logger.error(f"QR payload too large to render ({len(payload)} chars)")
            raise HTTPException(status_code=404, detail="QR code unavailable")
        return Response(content=png, media_type="image/png")

    @app.get("/health", response_model=HealthResponse)
    async def health() -> HealthResponse:
        return HealthResponse(status="ok", version=settings.version, time=datetime.now(timezone.utc).isoformat())

    return app
