"""StreamGenerate request sending and streamed response decoding.

The response body is line-delimited:

    )]}'
    <length>
    [["wrb.fr", null, "<json string>"]]
    <length>
    [["di", 123], ["af.httprm", ...]]

Only ``wrb.fr`` lines carry content. Their third element is itself JSON and
has to be decoded a second time to reach the payload.
"""

import json
import time
from dataclasses import dataclass, field
from typing import Any, Union
from urllib.parse import urlencode

import aiohttp

from ...core.debug import dump_protocol_failure
from ...core.exceptions import GenerationFailedException, NoImagesProducedException
from ...core.log import debug_log, log, mask
from ...core.session import CookieStore
from ...core.utils import client_uuid, request_id
from .schema import (
    ANTI_SCRIPTING_PREFIX,
    CANDIDATE_CHUNK_ID,
    CANDIDATE_IMAGES,
    CLIENT_UUID_EXT_HEADER,
    COMMON_EXT_HEADERS,
    CONTENT_TAG,
    CONTROL_TAGS,
    DEFAULT_ENDPOINTS,
    DEFAULT_FILENAME,
    DEFAULT_IMAGE_MIME,
    EDIT_IMAGES_KEY,
    FORM_CONTENT_TYPE,
    GENERATE_EXT_HEADER,
    PLAIN_IMAGES_INDEX,
    RESPONSE_CHUNK_PREFIX,
    THINKING_KEY,
    VARIANT_SLOTS,
    AttachmentRef,
    Endpoints,
    GenerateRequest,
    PayloadIndex,
    VariantField,
    browser_headers,
    encode_generate_request,
    generate_model_header,
)
from .tokens import SessionTokens


@dataclass(frozen=True)
class ParsedImage:
    url: str
    filename: str = DEFAULT_FILENAME
    mime: str = DEFAULT_IMAGE_MIME
    dimensions: tuple[int, ...] | None = None
    image_token: str | None = None
    response_chunk_id: str | None = None

    @property
    def can_upscale(self) -> bool:
        return bool(self.image_token and self.response_chunk_id)


@dataclass(frozen=True)
class ParsedResponse:
    images: tuple[ParsedImage, ...] = ()
    conversation_id: str | None = None
    response_id: str | None = None
    model_name: str | None = None
    thinking: tuple[str, ...] = ()


# =============================================================================
# IMAGE CONTAINER SHAPES
# =============================================================================


@dataclass(frozen=True)
class PlainImageContainer:
    """Plain generation: groups sit at ``container[7][0]``."""

    groups: list = field(default_factory=list)


@dataclass(frozen=True)
class EditImageContainer:
    """Edit/combine generation: groups sit at ``container[0]["8"][0]``."""

    groups: list = field(default_factory=list)


ImageContainer = Union[PlainImageContainer, EditImageContainer]


def _index(value: Any, i: int) -> Any:
    if isinstance(value, list) and len(value) > i:
        return value[i]
    return None


def classify_image_containers(container: Any) -> list[ImageContainer]:
    """Recognize the known container shapes. A container may present both."""
    shapes: list[ImageContainer] = []
    if not isinstance(container, list):
        return shapes

    plain = _index(_index(container, PLAIN_IMAGES_INDEX), 0)
    if isinstance(plain, list):
        shapes.append(PlainImageContainer(plain))

    wrapper = _index(container, 0)
    if isinstance(wrapper, dict):
        edit = _index(wrapper.get(EDIT_IMAGES_KEY), 0)
        if isinstance(edit, list):
            shapes.append(EditImageContainer(edit))

    return shapes


def _parse_variant(variant: Any, chunk_id: str | None) -> ParsedImage | None:
    url = _index(variant, VariantField.URL)
    if not url or not isinstance(url, str):
        return None

    dims = _index(variant, VariantField.DIMENSIONS)
    token = _index(variant, VariantField.IMAGE_TOKEN)
    return ParsedImage(
        url=url,
        filename=_index(variant, VariantField.FILENAME) or DEFAULT_FILENAME,
        mime=_index(variant, VariantField.MIME) or DEFAULT_IMAGE_MIME,
        dimensions=tuple(dims) if isinstance(dims, list) and dims else None,
        image_token=token if isinstance(token, str) else None,
        response_chunk_id=chunk_id,
    )


def _images_from_candidate(candidate: Any) -> list[ParsedImage]:
    if not isinstance(candidate, list):
        return []
    container = _index(candidate, CANDIDATE_IMAGES)
    if not container:
        return []

    chunk = _index(candidate, CANDIDATE_CHUNK_ID)
    chunk_id = chunk if isinstance(chunk, str) and chunk.startswith(RESPONSE_CHUNK_PREFIX) else None

    images = []
    for shape in classify_image_containers(container):
        for group in shape.groups:
            head = _index(group, 0)
            if not isinstance(head, list):
                continue
            for slot in VARIANT_SLOTS:
                image = _parse_variant(_index(head, slot), chunk_id)
                if image:
                    images.append(image)
    return images


def _thinking_lines(metadata: Any) -> list[str]:
    if not isinstance(metadata, dict):
        return []
    thinking = metadata.get(THINKING_KEY)
    lines = []
    summary = _index(_index(thinking, 5), 0)
    if summary:
        lines.append(str(summary))
    status = _index(_index(_index(thinking, 1), 1), 2)
    if status:
        lines.append(str(status))
    return lines


# =============================================================================
# ENVELOPE
# =============================================================================


def iter_payloads(text: str):
    """Yield each decoded ``wrb.fr`` payload from a streamed response body."""
    body = text.lstrip()
    if body.startswith(ANTI_SCRIPTING_PREFIX):
        body = body[len(ANTI_SCRIPTING_PREFIX):]

    for raw in body.split("\n"):
        line = raw.strip()
        if not line or line.isdigit():
            continue

        try:
            outer = json.loads(line)
        except json.JSONDecodeError:
            continue

        for entry in outer if isinstance(outer, list) else []:
            if not isinstance(entry, list) or not entry:
                continue
            tag = entry[0]
            if tag in CONTROL_TAGS:
                continue
            if tag != CONTENT_TAG:
                continue

            inner_str = _index(entry, 2)
            if not isinstance(inner_str, str):
                continue
            try:
                payload = json.loads(inner_str)
            except json.JSONDecodeError:
                continue
            yield entry, payload


def parse_stream(text: str) -> ParsedResponse:
    """Decode a StreamGenerate body. Never raises on an image-less response."""
    images: list[ParsedImage] = []
    seen_urls: set[str] = set()
    conversation_id = response_id = model_name = None
    thinking: list[str] = []

    for _entry, payload in iter_payloads(text):
        if not isinstance(payload, list):
            continue

        ids = _index(payload, PayloadIndex.IDS)
        if isinstance(ids, list) and len(ids) >= 2:
            conversation_id = conversation_id or ids[0] or None
            response_id = response_id or ids[1] or None

        name = _index(payload, PayloadIndex.MODEL_NAME)
        if isinstance(name, str) and name:
            model_name = name

        for line in _thinking_lines(_index(payload, PayloadIndex.METADATA)):
            if line not in thinking:
                thinking.append(line)
                debug_log(f"Thinking: {line}")

        candidates = _index(payload, PayloadIndex.CANDIDATES)
        if not isinstance(candidates, list):
            continue

        for candidate in candidates:
            for image in _images_from_candidate(candidate):
                if image.url in seen_urls:
                    continue
                seen_urls.add(image.url)
                images.append(image)
                dims = "x".join(map(str, image.dimensions)) if image.dimensions else "?"
                debug_log(
                    f"Image: {image.filename} ({image.mime}) {dims} "
                    f"token={mask(image.image_token, 30)} chunk={image.response_chunk_id or 'NONE'}"
                )

    return ParsedResponse(
        images=tuple(images),
        conversation_id=conversation_id,
        response_id=response_id,
        model_name=model_name,
        thinking=tuple(thinking),
    )


def decode_stream(text: str) -> ParsedResponse:
    """Like ``parse_stream`` but a response with zero images is an error."""
    parsed = parse_stream(text)
    if not parsed.images:
        error = NoImagesProducedException(parsed.model_name, parsed.conversation_id)
        dump_protocol_failure("generate", error, text)
        raise error
    return parsed


# =============================================================================
# REQUEST
# =============================================================================


def _sent_at() -> tuple[int, int]:
    now_ms = int(time.time() * 1000)
    return now_ms // 1000, (now_ms % 1000) * 1_000_000


async def send_generate(
    http: aiohttp.ClientSession,
    store: CookieStore,
    tokens: SessionTokens,
    prompt: str,
    attachments: tuple[AttachmentRef, ...] = (),
    locale: str = "en",
    model_id: str = "9d8ca3786ebdfbea",
    endpoints: Endpoints = DEFAULT_ENDPOINTS,
    timeout: float = 120,
) -> ParsedResponse:
    """POST one generation request and decode the streamed reply."""
    correlation_id = client_uuid()
    request = GenerateRequest(
        prompt=prompt,
        csrf_token=tokens.csrf_token,
        client_uuid=correlation_id,
        sent_at=_sent_at(),
        locale=locale,
        attachments=tuple(attachments),
    )

    query = urlencode(
        {
            "bl": tokens.build_id,
            "f.sid": tokens.session_id,
            "hl": locale,
            "_reqid": request_id(),
            "rt": "c",
        }
    )
    headers = {
        **browser_headers(store.as_header_string(), endpoints),
        **COMMON_EXT_HEADERS,
        "Content-Type": FORM_CONTENT_TYPE,
        GENERATE_EXT_HEADER: generate_model_header(model_id),
        CLIENT_UUID_EXT_HEADER: json.dumps([correlation_id, 1]),
    }
    form = {"f.req": encode_generate_request(request), "at": tokens.csrf_token}

    log(f"Sending generation request ({len(attachments)} attachment(s))...", "→")
    async with http.post(
        f"{endpoints.generate_url}?{query}",
        headers=headers,
        data=urlencode(form),
        timeout=aiohttp.ClientTimeout(total=timeout),
    ) as res:
        text = await res.text()
        if not 200 <= res.status < 300:
            raise GenerationFailedException(res.status, text)

    parsed = decode_stream(text)
    log(f"Model: {parsed.model_name or 'unknown'}, {len(parsed.images)} image(s)", "✓")
    return parsed
