from __future__ import annotations


class ServiceError(Exception):
    """Base of every failure that may cross the lifecycle manager boundary."""

    kind = "error"
    http_status = 500

    def __init__(self, message: str = ""):
        super().__init__(message or self.kind)
        self.message = message or self.kind


class InitError(ServiceError):
    kind = "init"
    http_status = 500


class ConversionError(ServiceError):
    kind = "conversion"
    http_status = 500


class ConversionTimeout(ServiceError):
    kind = "timeout"
    http_status = 504


class ServiceBusy(ServiceError):
    kind = "busy"
    http_status = 503
    retry_after = 5


class StagingError(ServiceError):
    kind = "io"
    http_status = 500


class NotFoundError(ServiceError):
    # collect() raises this; the manager reports it as ConversionError
    kind = "not_found"
    http_status = 500
