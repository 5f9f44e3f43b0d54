from __future__ import annotations


class AlertEngineError(Exception):
    """Base class for errors raised by the alert engine."""


class CacheUnavailableError(AlertEngineError):
    """The status cache or the dedup cache could not be reached.

    Fatal to the whole pass: detection without reliable cache access could
    fabricate or miss transitions.
    """

    def __init__(self, cache: str, detail: str) -> None:
        super().__init__(f"{cache} unavailable: {detail}")
        self.cache = cache


class CatalogUnavailableError(AlertEngineError):
    """The catalog snapshot could not be retrieved or parsed."""


class BatchStateError(AlertEngineError):
    """A subscriber batch was moved through an illegal state transition."""


class InvalidDeviceTokenError(AlertEngineError):
    """A push provider rejected a device token as invalid or expired."""

    def __init__(self, device_id: int, reason: str) -> None:
        super().__init__(f"device {device_id} token rejected: {reason}")
        self.device_id = device_id
        self.reason = reason
