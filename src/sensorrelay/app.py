"""HTTP routes (aiohttp.web).

Thin request/response mapping over :class:`RelayContext`.  Relay errors
are translated to status codes by one middleware.
"""

from __future__ import annotations

import base64
import hashlib
import hmac
import json
import logging
from collections.abc import AsyncIterator, Awaitable, Callable
from typing import Any

from aiohttp import web

from sensorrelay._constants import LINE_SIGNATURE_HEADER
from sensorrelay.context import RelayContext
from sensorrelay.exceptions import (
    PersistenceError,
    RateLimiterClosedError,
    SensorValidationError,
    UpstreamError,
)
from sensorrelay.formatting import humidity_status, light_status, temperature_status
from sensorrelay.models.events import parse_webhook
from sensorrelay.models.sensor import SensorReading

_logger = logging.getLogger(__name__)

CONTEXT_KEY = web.AppKey("relay_context", RelayContext)

_Handler = Callable[[web.Request], Awaitable[web.StreamResponse]]


def verify_signature(channel_secret: str, body: bytes, signature: str | None) -> bool:
    """Check ``X-Line-Signature`` (base64 HMAC-SHA256 of the raw body)."""
    if not signature:
        return False
    digest = hmac.new(channel_secret.encode("utf-8"), body, hashlib.sha256).digest()
    expected = base64.b64encode(digest).decode("ascii")
    return hmac.compare_digest(expected.encode("ascii"), signature.encode("utf-8"))


async def _read_json(request: web.Request) -> Any:
    try:
        return await request.json()
    except (json.JSONDecodeError, UnicodeDecodeError) as exc:
        raise web.HTTPBadRequest(
            text=json.dumps({"error": "invalid JSON body"}),
            content_type="application/json",
        ) from exc


@web.middleware
async def error_middleware(request: web.Request, handler: _Handler) -> web.StreamResponse:
    try:
        return await handler(request)
    except SensorValidationError as exc:
        return web.json_response({"message": "❌ ข้อมูลไม่ครบ", "error": str(exc)}, status=400)
    except UpstreamError as exc:
        _logger.warning("%s %s: completion failed: %s", request.method, request.path, exc)
        return web.json_response({"error": "AI request failed"}, status=502)
    except (RateLimiterClosedError, PersistenceError) as exc:
        _logger.warning("%s %s: service unavailable: %s", request.method, request.path, exc)
        return web.json_response({"error": "service unavailable"}, status=503)


# === SENSOR ===


async def post_sensor_data(request: web.Request) -> web.Response:
    ctx = request.app[CONTEXT_KEY]
    ctx.state.ingest(await _read_json(request))
    return web.json_response({"message": "✅ รับข้อมูลแล้ว"})


async def get_latest(request: web.Request) -> web.Response:
    reading = request.app[CONTEXT_KEY].state.latest
    if reading is None:
        return web.json_response({"message": "❌ ไม่มีข้อมูลเซ็นเซอร์"}, status=404)
    return web.json_response(reading.to_payload())


# === CHAT WEBHOOK ===


async def post_webhook(request: web.Request) -> web.Response:
    """Acknowledge at once; events are processed in the background."""
    ctx = request.app[CONTEXT_KEY]
    raw = await request.read()

    secret = ctx.config.line_channel_secret
    if secret and not verify_signature(secret, raw, request.headers.get(LINE_SIGNATURE_HEADER)):
        _logger.warning("Rejected webhook call with bad signature")
        return web.json_response({"error": "invalid signature"}, status=401)

    try:
        body = json.loads(raw or b"{}")
    except (json.JSONDecodeError, UnicodeDecodeError):
        return web.json_response({"error": "invalid JSON body"}, status=400)

    events = parse_webhook(body)
    ctx.processor.spawn(events)
    _logger.debug("Webhook accepted %d event(s)", len(events))
    return web.json_response({"status": "ok", "accepted": len(events)})


# === MODEL ===


async def post_ask_ai(request: web.Request) -> web.Response:
    ctx = request.app[CONTEXT_KEY]
    body = await _read_json(request)
    if not isinstance(body, dict):
        return web.json_response({"error": "❌ missing question"}, status=400)
    question = body.get("question")
    if not isinstance(question, str) or not question.strip():
        return web.json_response({"error": "❌ missing question"}, status=400)

    if all(body.get(key) is not None for key in ("light", "humidity")) and (
        body.get("temp") is not None or body.get("temperature") is not None
    ):
        reading = SensorReading.from_payload(body)
    elif ctx.state.latest is not None:
        reading = ctx.state.latest
    else:
        return web.json_response({"error": "❌ ยังไม่มีข้อมูลเซ็นเซอร์"}, status=400)

    answer = await ctx.orchestrator.answer(question, reading)
    return web.json_response({"answer": answer})


async def post_ask(request: web.Request) -> web.Response:
    ctx = request.app[CONTEXT_KEY]
    body = await _read_json(request)
    prompt = body.get("prompt") if isinstance(body, dict) else None
    if not isinstance(prompt, str) or not prompt.strip():
        return web.json_response({"error": "missing prompt"}, status=400)
    answer = await ctx.orchestrator.complete(prompt)
    return web.json_response({"answer": answer})


def _report_authorized(token: str | None, authorization: str | None) -> bool:
    if not token or not authorization:
        return False
    scheme, _, presented = authorization.partition(" ")
    if scheme.lower() != "bearer":
        return False
    return hmac.compare_digest(presented.strip().encode("utf-8"), token.encode("utf-8"))


async def post_report(request: web.Request) -> web.Response:
    """Broadcast the status report.  Requires ``Authorization: Bearer <report_token>``."""
    ctx = request.app[CONTEXT_KEY]
    if not _report_authorized(ctx.config.report_token, request.headers.get("Authorization")):
        _logger.warning("Rejected report call without a valid token")
        return web.json_response({"error": "unauthorized"}, status=401)

    result = await ctx.reporter.broadcast()
    if result is None:
        return web.json_response({"status": "skipped", "reason": "no sensor data"})
    return web.json_response(
        {
            "status": "sent",
            "recipients": result.recipients,
            "delivered": result.delivered,
            "used_model": result.used_model,
        }
    )


# === HEALTH ===


async def get_healthz(_request: web.Request) -> web.Response:
    return web.Response(text="ok")


async def get_root(request: web.Request) -> web.Response:
    lines = ["✅ สวัสดีครับ ตอนนี้ระบบ backend กำลังทำงานอยู่ครับ."]
    reading = request.app[CONTEXT_KEY].state.latest
    if reading is not None:
        lines += [
            f"💡 ค่าแสง: {reading.light} lux ({light_status(reading.light)})",
            f"🌡️ อุณหภูมิ: {reading.temperature} °C ({temperature_status(reading.temperature)})",
            f"💧 ความชื้น: {reading.humidity} % ({humidity_status(reading.humidity)})",
        ]
    return web.Response(text="\n".join(lines))


# --- Application Factory ---


def create_app(context: RelayContext) -> web.Application:
    """Create the aiohttp application around an (unstarted) relay context."""
    app = web.Application(middlewares=[error_middleware])
    app[CONTEXT_KEY] = context

    async def _relay_lifecycle(_app: web.Application) -> AsyncIterator[None]:
        await context.start()
        yield
        await context.aclose()

    app.cleanup_ctx.append(_relay_lifecycle)

    app.router.add_post("/sensor-data", post_sensor_data)
    app.router.add_get("/latest", get_latest)
    app.router.add_post("/webhook", post_webhook)
    app.router.add_post("/ask-ai", post_ask_ai)
    app.router.add_post("/ask", post_ask)
    app.router.add_post("/report", post_report)
    app.router.add_get("/healthz", get_healthz)
    app.router.add_get("/", get_root)
    return app
