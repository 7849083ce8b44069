"""Wire schema for the Gemini web backend.

Everything positional about the private protocol lives here. The slot numbers
and constant values were read off captured browser traffic; constants with no
known meaning are sent verbatim and treated as opaque configuration. When the
upstream shape changes, bump ``SCHEMA_VERSION`` and edit the tables below.
"""

import copy
import json
from dataclasses import dataclass, field
from enum import IntEnum
from typing import Any

SCHEMA_VERSION = "2025.02"

USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) "
    "Chrome/145.0.0.0 Safari/537.36"
)


@dataclass(frozen=True)
class Endpoints:
    """Upstream base URLs. Tests point these at a local server."""

    app_url: str = "https://gemini.google.com"
    upload_url: str = "https://push.clients6.google.com/upload/"
    login_url: str = "https://accounts.google.com/ServiceLogin?continue=https://gemini.google.com/app"

    @property
    def root_page(self) -> str:
        return f"{self.app_url}/app"

    @property
    def generate_url(self) -> str:
        return f"{self.app_url}/_/BardChatUi/data/assistant.lamda.BardFrontendService/StreamGenerate"

    @property
    def batchexecute_url(self) -> str:
        return f"{self.app_url}/_/BardChatUi/data/batchexecute"

    @property
    def origin(self) -> str:
        return self.app_url

    @property
    def referer(self) -> str:
        return f"{self.app_url}/"


DEFAULT_ENDPOINTS = Endpoints()


def browser_headers(cookies: str, endpoints: Endpoints) -> dict[str, str]:
    return {
        "Cookie": cookies,
        "User-Agent": USER_AGENT,
        "Origin": endpoints.origin,
        "Referer": endpoints.referer,
    }


# =============================================================================
# ROOT PAGE TOKENS
# =============================================================================

# field name -> literal key in the page's inline WIZ_global_data
MANDATORY_TOKEN_KEYS = {
    "csrf_token": "SNlM0e",
    "build_id": "cfb2h",
    "session_id": "FdrFJe",
}
OPTIONAL_TOKEN_KEYS = {
    "push_id": "qKIAYe",
    "client_context": "Ylro7b",
}


# =============================================================================
# UPLOAD
# =============================================================================

UPLOAD_TENANT = "bard-storage"
UPLOAD_URL_HEADER = "X-Goog-Upload-URL"
FORM_CONTENT_TYPE = "application/x-www-form-urlencoded;charset=UTF-8"


# =============================================================================
# STREAM GENERATE REQUEST
# =============================================================================

GENERATE_SLOT_COUNT = 69


class GenerateSlot(IntEnum):
    MESSAGE = 0
    LOCALE = 1
    CSRF_TOKEN = 3
    CLIENT_UUID = 59
    SENT_AT = 66


# Opaque constants copied from the web client's own requests
GENERATE_CONSTANT_SLOTS: dict[int, Any] = {
    2: ["", "", "", None, None, None, None, None, None, ""],
    4: "",
    6: [1],
    7: 1,
    10: 1,
    11: 0,
    17: [[0]],
    18: 0,
    27: 1,
    30: [4],
    41: [1],
    49: 14,
    53: 0,
    61: [],
    67: 0,
    68: 2,
}

GENERATE_EXT_HEADER = "x-goog-ext-525001261-jspb"
CLIENT_UUID_EXT_HEADER = "x-goog-ext-525005358-jspb"
COMMON_EXT_HEADERS = {
    "X-Same-Domain": "1",
    "x-goog-ext-73010989-jspb": "[0]",
}


def generate_model_header(model_id: str) -> str:
    return json.dumps([1, None, None, None, model_id, None, None, 0, [4], None, None, 1])


@dataclass(frozen=True)
class AttachmentRef:
    storage_ref: str
    file_name: str
    mime_type: str


@dataclass(frozen=True)
class GenerateRequest:
    """Named view of the meaningful StreamGenerate fields."""

    prompt: str
    csrf_token: str
    client_uuid: str
    sent_at: tuple[int, int]
    locale: str = "en"
    attachments: tuple[AttachmentRef, ...] = field(default_factory=tuple)


def encode_generate_request(request: GenerateRequest) -> str:
    """Build the ``f.req`` form value: ``[null, "<inner json>"]``."""
    inner: list[Any] = [None] * GENERATE_SLOT_COUNT
    for slot, value in GENERATE_CONSTANT_SLOTS.items():
        inner[slot] = copy.deepcopy(value)

    attachment_data = (
        [[[a.storage_ref, 1, None, a.mime_type], a.file_name] for a in request.attachments]
        if request.attachments
        else None
    )

    inner[GenerateSlot.MESSAGE] = [request.prompt, 0, None, attachment_data, None, None, 0]
    inner[GenerateSlot.LOCALE] = [request.locale]
    inner[GenerateSlot.CSRF_TOKEN] = request.csrf_token
    inner[GenerateSlot.CLIENT_UUID] = request.client_uuid
    inner[GenerateSlot.SENT_AT] = list(request.sent_at)

    return json.dumps([None, json.dumps(inner)])


# =============================================================================
# STREAM RESPONSE
# =============================================================================

ANTI_SCRIPTING_PREFIX = ")]}'"
CONTENT_TAG = "wrb.fr"
CONTROL_TAGS = frozenset({"di", "e", "af.httprm"})


class PayloadIndex(IntEnum):
    IDS = 1
    METADATA = 2
    CANDIDATES = 4
    MODEL_NAME = 42


THINKING_KEY = "7"
RESPONSE_CHUNK_PREFIX = "rc_"
CANDIDATE_CHUNK_ID = 0
CANDIDATE_IMAGES = 12

# Plain generation: container[7][0] -> groups
PLAIN_IMAGES_INDEX = 7
# Edit/combine generation: container[0]["8"][0] -> groups
EDIT_IMAGES_KEY = "8"

# Each group holds up to two resolution variants at group[0][3] and group[0][6]
VARIANT_SLOTS = (3, 6)


class VariantField(IntEnum):
    FILENAME = 2
    URL = 3
    IMAGE_TOKEN = 5
    MIME = 11
    DIMENSIONS = 15


DEFAULT_FILENAME = "image"
DEFAULT_IMAGE_MIME = "image/png"


# =============================================================================
# UPSCALE (batchexecute)
# =============================================================================

UPSCALE_RPC_ID = "c8o8Fe"
UPSCALE_PLACEHOLDER_REF = "http://googleusercontent.com/image_generation_content/0"
UPSCALE_PROMPT_TAG = 19
UPSCALE_EXT_HEADER_VALUE = json.dumps([1, None, None, None, None, None, None, 0, [4, 4]])
FULL_SIZE_SUFFIX = "=d-I?alr=yes"


@dataclass(frozen=True)
class UpscaleRequest:
    image_token: str
    response_chunk_id: str
    conversation_id: str
    response_id: str
    prompt: str
    request_token: str


def encode_upscale_request(request: UpscaleRequest) -> str:
    """Build the batch-RPC ``f.req`` value for the full-size image RPC."""
    inner = [
        [
            [None, None, None, [None, None, None, None, None, request.image_token]],
            [UPSCALE_PLACEHOLDER_REF, 0],
            None,
            [UPSCALE_PROMPT_TAG, request.prompt],
            None,
            None,
            None,
            None,
            None,
            request.request_token,
        ],
        [request.response_id, request.response_chunk_id, request.conversation_id, None, request.request_token],
        1,
        0,
        1,
    ]
    return json.dumps([[[UPSCALE_RPC_ID, json.dumps(inner), None, "generic"]]])


def source_path(conversation_id: str) -> str:
    return f"/app/{conversation_id.removeprefix('c_')}"
