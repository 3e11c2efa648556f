"""
Shared error types for core services.

Every error carries an ``error_kind`` that the HTTP layer maps to a status
code; messages never include credentials or stored content.
"""


class MemoryServiceError(Exception):
    error_kind = "internal_error"

    def __init__(self, message: str, data: dict | None = None):
        super().__init__(message)
        self.message = message
        self.data = data


class ValidationIssue(MemoryServiceError, ValueError):
    error_kind = "validation_error"

    def __init__(
        self,
        message: str,
        field: str = "unknown",
        error_type: str = "invalid",
        data: dict | None = None,
    ):
        super().__init__(message, data=data)
        self.field = field
        self.error_type = error_type


class Unauthorized(MemoryServiceError):
    error_kind = "unauthorized"

    def __init__(self, message: str = "Unauthorized"):
        super().__init__(message)


class NotFound(MemoryServiceError, LookupError):
    error_kind = "not_found"

    def __init__(self, message: str, entity: str = "resource"):
        super().__init__(message)
        self.entity = entity


class QuotaExceeded(MemoryServiceError):
    error_kind = "quota_exceeded"

    def __init__(self, used_mb: float, max_mb: int, requested_bytes: int):
        super().__init__(
            f"Storage quota exceeded ({used_mb:.2f}MB used of {max_mb}MB)",
            data={
                "used_mb": round(used_mb, 2),
                "max_documents_mb": max_mb,
                "requested_bytes": requested_bytes,
            },
        )
        self.used_mb = used_mb
        self.max_mb = max_mb
        self.requested_bytes = requested_bytes


class EmptyContent(MemoryServiceError):
    error_kind = "empty_content"

    def __init__(self, message: str = "Could not extract text from file"):
        super().__init__(message)


class UpstreamUnavailable(MemoryServiceError, RuntimeError):
    error_kind = "upstream_unavailable"
