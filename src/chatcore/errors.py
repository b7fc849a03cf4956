from __future__ import annotations


class ChatError(Exception):
    """Base class for every failure surfaced by the engine."""

    code = "error"


class ValidationError(ChatError, ValueError):
    code = "invalid_request"


class PermissionDenied(ChatError, PermissionError):
    code = "forbidden"


class NotFoundError(ChatError, LookupError):
    code = "not_found"


class UploadError(ChatError):
    code = "upload_failed"


class StoreError(ChatError):
    code = "store_failed"
