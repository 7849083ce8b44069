"""Custom exceptions for ImageGen."""

BODY_PREVIEW_CHARS = 500


def preview(text: str | bytes | None, limit: int = BODY_PREVIEW_CHARS) -> str:
    """Truncate an upstream body for error details."""
    if text is None:
        return ""
    if isinstance(text, bytes):
        text = text.decode("utf-8", errors="replace")
    return text if len(text) <= limit else text[:limit] + "..."


class ImageGenException(Exception):
    """Base exception for all ImageGen errors."""

    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def __str__(self):
        if self.details:
            return f"{self.message} | Details: {self.details}"
        return self.message


class AuthExpiredException(ImageGenException):
    """Raised when the session cookies no longer authenticate."""

    def __init__(self, reason: str = "Session cookies expired", status: int | None = None):
        super().__init__(f"Authentication expired: {reason}", {"reason": reason, "status": status})
        self.status = status


class ProtocolMismatchException(ImageGenException):
    """Raised when an expected token or field is missing upstream (schema drift)."""

    def __init__(self, field: str, reason: str = "Not found", status: int | None = None, body: str | None = None):
        super().__init__(
            f"Upstream protocol mismatch on '{field}': {reason}",
            {"field": field, "reason": reason, "status": status, "body": preview(body)},
        )
        self.field = field
        self.status = status


class UploadException(ImageGenException):
    """Base exception for attachment upload errors."""

    def __init__(self, message: str, file_name: str, status: int | None = None, body: str | None = None):
        super().__init__(message, {"file_name": file_name, "status": status, "body": preview(body)})
        self.file_name = file_name
        self.status = status


class UploadInitFailedException(UploadException):
    """Raised when the upload service does not hand back a continuation URL."""

    def __init__(self, file_name: str, status: int | None = None, body: str | None = None, reason: str = ""):
        reason = reason or (f"HTTP {status}" if status else "No upload URL returned")
        super().__init__(f"Upload init failed for {file_name}: {reason}", file_name, status, body)


class UploadFailedException(UploadException):
    """Raised when the finalize phase of an upload is rejected."""

    def __init__(self, file_name: str, status: int | None = None, body: str | None = None):
        super().__init__(f"Upload finalize failed for {file_name}: HTTP {status}", file_name, status, body)


class DownloadFailedException(ImageGenException):
    """Raised when an image cannot be retrieved."""

    def __init__(self, url: str, reason: str, status: int | None = None, hops: int = 0):
        super().__init__(
            f"Failed to download image: {reason}",
            {"url": preview(url, 120), "reason": reason, "status": status, "hops": hops},
        )
        self.url = url
        self.status = status
        self.hops = hops


class GenerationFailedException(ImageGenException):
    """Raised when the generation RPC returns a non-success status."""

    def __init__(self, status: int, body: str | None = None):
        super().__init__(f"Generation request failed: HTTP {status}", {"status": status, "body": preview(body)})
        self.status = status


class NoImagesProducedException(ImageGenException):
    """Raised when a well-formed response contains no images."""

    def __init__(self, model_name: str | None = None, conversation_id: str | None = None):
        super().__init__(
            "Gemini returned text instead of images. Try rephrasing the prompt to ask for an image explicitly.",
            {"model": model_name, "conversation_id": conversation_id},
        )
        self.model_name = model_name
        self.conversation_id = conversation_id


class UpscaleFailedException(ImageGenException):
    """Raised when the full-size RPC returns a non-success status."""

    def __init__(self, status: int, body: str | None = None):
        super().__init__(f"Full-size request failed: HTTP {status}", {"status": status, "body": preview(body)})
        self.status = status


class UpscaleParseFailedException(ImageGenException):
    """Raised when no full-size URL can be found in the upscale response."""

    def __init__(self, body: str | None = None):
        super().__init__("Could not parse full-size URL from upscale response", {"body": preview(body, 1000)})


class LoginException(ImageGenException):
    """Base exception for the browser login flow."""

    pass


class LoginInProgressException(LoginException):
    """Raised when a login session is started while another one is running."""

    def __init__(self):
        super().__init__("A login session is already running")


class SessionTimeoutException(LoginException):
    """Raised when the login deadline passes before cookies were captured."""

    def __init__(self, timeout_seconds: float):
        super().__init__(
            f"Login session timed out after {timeout_seconds:.0f}s", {"timeout": timeout_seconds}
        )


class SessionErrorException(LoginException):
    """Raised when driving the login browser fails."""

    def __init__(self, reason: str = "Unknown error"):
        super().__init__(f"Login session failed: {reason}", {"reason": reason})


class ConfigurationException(ImageGenException):
    """Raised when configuration is invalid."""

    def __init__(self, config_file: str, reason: str):
        super().__init__(
            f"Invalid configuration in {config_file}: {reason}", {"config_file": config_file, "reason": reason}
        )
