"""HTTP surface: generation API, remote login control and the relay socket."""

import asyncio
import json
from pathlib import Path

import aiohttp
from aiohttp import web

from .core.config import get_setting
from .core.exceptions import (
    AuthExpiredException,
    ImageGenException,
    LoginInProgressException,
    NoImagesProducedException,
)
from .core.log import log
from .core.session import CookieStore
from .core.utils import save_image
from .login_stream import AuthSessionManager
from .relay_page import RELAY_PAGE_HTML
from .providers.gemini.client import AttachmentInput, GeminiClient
from .providers.gemini.schema import DEFAULT_ENDPOINTS, Endpoints

MAX_ATTACHMENTS = 10
PREVIEW_MIME = "image/png"

STORE_KEY = web.AppKey("store", CookieStore)
MANAGER_KEY = web.AppKey("manager", AuthSessionManager)
ENDPOINTS_KEY = web.AppKey("endpoints", Endpoints)
IMAGES_DIR_KEY = web.AppKey("images_dir", Path)

routes = web.RouteTableDef()


def _status_for(error: Exception) -> int:
    if isinstance(error, AuthExpiredException):
        return 401
    if isinstance(error, NoImagesProducedException):
        return 422
    if isinstance(error, LoginInProgressException):
        return 409
    return 502


def _error_response(error: Exception, context: str):
    if isinstance(error, ImageGenException):
        msg = error.message
    else:
        msg = str(error).split("\n")[0].strip() or f"{type(error).__name__}: {error!r}"
    log(f"{context}: {error}", "✕")
    return web.json_response({"error": msg}, status=_status_for(error))


async def _ensure_auth(request: web.Request) -> bool:
    store = request.app[STORE_KEY]
    if store.has_required_cookies():
        return True
    return await request.app[MANAGER_KEY].restore_session()


def _image_url(path: Path) -> str:
    return f"/images/{path.name}"


# =============================================================================
# API
# =============================================================================


@routes.get("/api/status")
async def status(request):
    return web.json_response({"authenticated": request.app[STORE_KEY].has_required_cookies()})


@routes.get("/api/login")
async def login(_request):
    return web.json_response({"redirect": "/auth/remote-login"})


@routes.post("/api/generate")
async def generate(request):
    form = await request.post()
    raw_prompt = form.get("prompt")
    if not raw_prompt or not isinstance(raw_prompt, str):
        return web.json_response({"error": "Missing 'prompt' field"}, status=400)

    aspect_ratio = form.get("aspectRatio")
    prompt = f"{raw_prompt}. Use a {aspect_ratio} aspect ratio." if aspect_ratio else raw_prompt

    attachments = []
    for field in form.getall("images", []):
        if not isinstance(field, web.FileField):
            continue
        if len(attachments) >= MAX_ATTACHMENTS:
            return web.json_response({"error": f"At most {MAX_ATTACHMENTS} images allowed"}, status=400)
        attachments.append(
            AttachmentInput(data=field.file.read(), file_name=field.filename or "image", mime_type=field.content_type)
        )

    if not await _ensure_auth(request):
        return web.json_response({"error": "Not authenticated. Call GET /api/login first."}, status=401)

    store = request.app[STORE_KEY]
    images_dir = request.app[IMAGES_DIR_KEY]
    try:
        async with GeminiClient(store, request.app[ENDPOINTS_KEY]) as client:
            result = await client.generate(prompt, attachments)
            previews = [img for img in result.images if img.mime == PREVIEW_MIME]
            outcomes = await client.download_all(previews)
    except (ImageGenException, aiohttp.ClientError, asyncio.TimeoutError) as e:
        return _error_response(e, "Generation error")

    images = []
    for outcome in outcomes:
        if not outcome.ok:
            continue
        path = save_image(outcome.data, images_dir, outcome.image.mime)
        img = outcome.image
        images.append(
            {
                "filename": img.filename,
                "mime": img.mime,
                "dimensions": list(img.dimensions) if img.dimensions else None,
                "url": _image_url(path),
                "imageToken": img.image_token,
                "responseChunkId": img.response_chunk_id,
            }
        )

    response = result.response
    return web.json_response(
        {
            "images": images,
            "metadata": {
                "conversationId": response.conversation_id,
                "responseId": response.response_id,
                "modelName": response.model_name,
                "prompt": raw_prompt,
            },
            "attachmentErrors": [{"fileName": e.file_name, "error": e.error} for e in result.attachment_errors],
        }
    )


@routes.post("/api/upscale")
async def upscale(request):
    try:
        body = await request.json()
    except json.JSONDecodeError:
        return web.json_response({"error": "Invalid JSON body"}, status=400)
    if not isinstance(body, dict):
        return web.json_response({"error": "Invalid JSON body"}, status=400)

    required = ("imageToken", "responseChunkId", "conversationId", "responseId")
    if not all(body.get(key) for key in required):
        return web.json_response({"error": "Missing upscale metadata"}, status=400)

    if not await _ensure_auth(request):
        return web.json_response({"error": "Not authenticated. Call GET /api/login first."}, status=401)

    try:
        async with GeminiClient(request.app[STORE_KEY], request.app[ENDPOINTS_KEY]) as client:
            url = await client.upscale(
                body["imageToken"],
                body["responseChunkId"],
                body["conversationId"],
                body["responseId"],
                body.get("prompt") or "",
            )
            data = await client.fetch(url)
    except (ImageGenException, aiohttp.ClientError, asyncio.TimeoutError) as e:
        return _error_response(e, "Upscale error")

    path = save_image(data, request.app[IMAGES_DIR_KEY], PREVIEW_MIME)
    return web.json_response({"url": _image_url(path), "mime": PREVIEW_MIME, "bytes": len(data)})


# =============================================================================
# REMOTE LOGIN
# =============================================================================


@routes.get("/auth/remote-login")
async def remote_login_page(_request):
    return web.Response(text=RELAY_PAGE_HTML, content_type="text/html")


@routes.post("/auth/remote-login/start")
async def remote_login_start(request):
    manager = request.app[MANAGER_KEY]
    try:
        await manager.start()
    except LoginInProgressException as e:
        return web.json_response({"error": e.message}, status=409)
    except ImageGenException as e:
        return web.json_response({"error": e.message}, status=500)
    return web.json_response({"success": True, "message": "Browser session started."})


@routes.post("/auth/remote-login/stop")
async def remote_login_stop(request):
    await request.app[MANAGER_KEY].stop()
    return web.json_response({"success": True})


@routes.get("/auth/remote-login/status")
async def remote_login_status(request):
    return web.json_response(request.app[MANAGER_KEY].status())


@routes.get("/auth/remote-login/ws")
async def remote_login_ws(request):
    manager = request.app[MANAGER_KEY]
    ws = web.WebSocketResponse()
    await ws.prepare(request)

    if not manager.running:
        await ws.close(code=aiohttp.WSCloseCode.POLICY_VIOLATION, message=b"No active login session")
        return ws

    manager.attach(ws)
    try:
        async for msg in ws:
            if msg.type == aiohttp.WSMsgType.TEXT:
                await manager.handle_input(msg.data)
            elif msg.type == aiohttp.WSMsgType.ERROR:
                log(f"Relay socket error: {ws.exception()}", "⚠")
    finally:
        manager.detach(ws)
    return ws


# =============================================================================
# APP
# =============================================================================


def create_app(
    store: CookieStore,
    manager: AuthSessionManager | None = None,
    endpoints: Endpoints = DEFAULT_ENDPOINTS,
    images_dir: str | Path | None = None,
) -> web.Application:
    images_dir = Path(images_dir or Path(get_setting("data_dir")) / "generated_images")
    images_dir.mkdir(parents=True, exist_ok=True)

    app = web.Application(client_max_size=int(get_setting("max_upload_mb", 200)) * 1024 * 1024)
    app[STORE_KEY] = store
    app[MANAGER_KEY] = manager or AuthSessionManager(store, endpoints=endpoints)
    app[ENDPOINTS_KEY] = endpoints
    app[IMAGES_DIR_KEY] = images_dir
    app.add_routes(routes)
    app.router.add_static("/images/", images_dir)

    async def on_shutdown(app):
        await app[MANAGER_KEY].stop()

    app.on_shutdown.append(on_shutdown)
    return app
