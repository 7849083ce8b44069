"""Builders for upstream fixtures and a scriptable fake Gemini backend."""

import json
from io import BytesIO

from aiohttp import web
from PIL import Image

from imagegen.providers.gemini.schema import Endpoints

TOKEN_PAGE = """<!doctype html><html><head><script>
window.WIZ_global_data = {"SNlM0e":"csrf-token-123","cfb2h":"boq_build_20250101","FdrFJe":"-424242",
"qKIAYe":"push-id-9","Ylro7b":"ctx-7","other":"x"};
</script></head><body></body></html>"""


def png_bytes(size=(4, 4)) -> bytes:
    buf = BytesIO()
    Image.new("RGB", size, "red").save(buf, "PNG")
    return buf.getvalue()


PNG_BYTES = png_bytes()


# =============================================================================
# STREAM PAYLOAD BUILDERS
# =============================================================================


def variant(url, filename="image.png", mime="image/png", token="img-token", dims=(1024, 1024)):
    v = [None] * 16
    v[2] = filename
    v[3] = url
    v[5] = token
    v[11] = mime
    v[15] = list(dims) if dims else None
    return v


def group(first, second=None):
    head = [None] * 7
    head[3] = first
    head[6] = second
    return [head]


def plain_container(*groups):
    container = [None] * 8
    container[7] = [list(groups)]
    return container


def edit_container(*groups):
    return [{"8": [list(groups)]}]


def candidate(container=None, chunk_id="rc_chunk1"):
    c = [None] * 13
    c[0] = chunk_id
    c[1] = ["Here is your image"]
    c[12] = container
    return c


def payload(candidates=None, ids=("c_conv123", "r_resp456"), model=None, thinking=None):
    p = [None] * 43
    p[1] = list(ids) if ids else None
    p[4] = candidates
    p[42] = model
    if thinking:
        p[2] = {"7": [None, [None, [None, None, "Generating"]], None, None, None, [thinking]]}
    return p


def wrb_line(inner, rpc_id=None):
    return json.dumps([["wrb.fr", rpc_id, json.dumps(inner)]])


def stream_body(*payloads, rpc_id=None):
    lines = [")]}'", ""]
    for p in payloads:
        line = wrb_line(p, rpc_id)
        lines += [str(len(line)), line]
    tail = json.dumps([["di", 97], ["af.httprm", 96, "-1", 12]])
    lines += [str(len(tail)), tail]
    return "\n".join(lines)


def image_response(*urls, chunk_id="rc_chunk1", model="gemini-3-pro"):
    groups = [group(variant(u)) for u in urls]
    return stream_body(payload([candidate(plain_container(*groups), chunk_id)], model=model))


# =============================================================================
# FAKE UPSTREAM
# =============================================================================


class FakeGemini:
    """Scriptable stand-in for the app page, upload service, RPCs and image hosts.

    Every request is recorded in ``requests`` as ``(path, headers, query, body)``.
    """

    def __init__(self):
        self.requests = []
        self.page_status = 200
        self.page_body = TOKEN_PAGE
        self.page_headers = {}
        self.upload_fail_names = set()
        self.generate_status = 200
        self.generate_body = ""
        self.upscale_status = 200
        self.upscale_body = ""
        self.images = {}

    def app(self) -> web.Application:
        app = web.Application(client_max_size=64 * 1024 * 1024)
        app.router.add_get("/app", self.page)
        app.router.add_post("/upload/", self.upload_init)
        app.router.add_post("/upload/session/{name}", self.upload_finalize)
        app.router.add_post(
            "/_/BardChatUi/data/assistant.lamda.BardFrontendService/StreamGenerate", self.generate
        )
        app.router.add_post("/_/BardChatUi/data/batchexecute", self.batchexecute)
        app.router.add_get("/img/{name}", self.image)
        return app

    async def _record(self, request):
        body = await request.read()
        self.requests.append((request.path, dict(request.headers), dict(request.query), body))
        return body

    def paths(self):
        return [r[0] for r in self.requests]

    async def page(self, request):
        await self._record(request)
        if 300 <= self.page_status < 400:
            return web.Response(status=self.page_status, headers={"Location": "https://accounts.google.com/"})
        resp = web.Response(status=self.page_status, text=self.page_body, content_type="text/html")
        for name, value in self.page_headers.items():
            resp.headers.add(name, value)
        return resp

    async def upload_init(self, request):
        body = await self._record(request)
        name = body.decode().removeprefix("File name: ")
        if name in self.upload_fail_names:
            return web.Response(status=500, text="init rejected")
        url = str(request.url.with_path(f"/upload/session/{name}").with_query({}))
        return web.Response(status=200, headers={"X-Goog-Upload-URL": url})

    async def upload_finalize(self, request):
        await self._record(request)
        return web.Response(text=f"/contrib_service/ttl_1d/{request.match_info['name']}\n")

    async def generate(self, request):
        await self._record(request)
        return web.Response(status=self.generate_status, text=self.generate_body)

    async def batchexecute(self, request):
        await self._record(request)
        return web.Response(status=self.upscale_status, text=self.upscale_body)

    async def image(self, request):
        await self._record(request)
        name = request.match_info["name"]
        if name not in self.images:
            return web.Response(status=404, text="missing")
        return web.Response(body=self.images[name], content_type="image/png")


def endpoints_for(server) -> Endpoints:
    base = str(server.make_url("/")).rstrip("/")
    return Endpoints(app_url=base, upload_url=f"{base}/upload/", login_url=f"{base}/login")


# =============================================================================
# FAKE BROWSER / RELAY CLIENT
# =============================================================================


class FakeBrowser:
    """Records CDP calls and lets tests emit DevTools events."""

    def __init__(self, on_navigate=None):
        self.handlers = {}
        self.sent = []
        self.closed = False
        self.on_navigate = on_navigate
        self.send_error = None
        self.closed_callbacks = []

    def on(self, event, handler):
        self.handlers.setdefault(event, []).append(handler)

    def emit(self, event, params):
        for handler in self.handlers.get(event, []):
            handler(params)

    async def send(self, method, params=None):
        if self.send_error:
            raise self.send_error
        self.sent.append((method, params or {}))
        if method == "Page.navigate" and self.on_navigate:
            self.on_navigate(self)
        return {}

    def on_closed(self, callback):
        self.closed_callbacks.append(callback)

    def lose(self, reason="Login tab was closed"):
        for callback in self.closed_callbacks:
            callback(reason)

    async def close(self):
        self.closed = True

    def methods(self):
        return [m for m, _ in self.sent]


class FakeSocket:
    def __init__(self, broken=False):
        self.messages = []
        self.closed = False
        self.broken = broken

    async def send_str(self, data):
        if self.broken:
            raise ConnectionResetError("gone")
        self.messages.append(json.loads(data))

    async def close(self):
        self.closed = True

    def types(self):
        return [m["type"] for m in self.messages]


def session_cookie_events(psid="psid-value", psidts="psidts-value"):
    """The two DevTools events that together reveal both mandatory cookies."""
    request_event = {
        "associatedCookies": [
            {"cookie": {"name": "__Secure-1PSID", "value": psid}},
            {"cookie": {"name": "NID", "value": "ignored"}},
        ],
        "headers": {},
    }
    response_event = {
        "headers": {"set-cookie": f"__Secure-1PSIDTS={psidts}; Path=/; Secure\nOTHER=1; Path=/"},
    }
    return request_event, response_event
