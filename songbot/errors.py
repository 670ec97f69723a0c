from __future__ import annotations
from typing import Optional


class SpotifyError(RuntimeError):
    def __init__(self, status: int, detail: object):
        message = detail if isinstance(detail, str) else str(detail)
        super().__init__(message)
        self.status = status
        self.detail = message


class TransientSearchFailure(RuntimeError):
    """Catalog search failed; the request should be retried later."""


class DeviceUnavailable(RuntimeError):
    NO_DEVICES = 'no-devices'
    ACTIVATION_FAILED = 'activation-failed'

    def __init__(self, reason: str, detail: Optional[str] = None):
        super().__init__(detail or reason)
        self.reason = reason


class RemoteEnqueueFailure(RuntimeError):
    def __init__(self, message: str, last_error: Optional[BaseException] = None):
        super().__init__(message)
        self.last_error = last_error


class PersistenceError(OSError):
    pass


# ---- command surface ----
class QueueError(ValueError):
    pass


class InvalidRequest(QueueError):
    pass


class DuplicateRequest(QueueError):
    def __init__(self, song_name: str):
        super().__init__(f'"{song_name}" is already in the queue')
        self.song_name = song_name


class InvalidPosition(QueueError):
    def __init__(self, position: object, size: int):
        super().__init__(f'Invalid queue position {position}; queue has {size} items')
        self.position = position
        self.size = size
