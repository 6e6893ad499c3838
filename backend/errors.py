"""Error taxonomy shared by the discovery, fan-out and addon layers."""

import errno


class SignageError(Exception):
    """Base class for all coordinator errors."""


class NotFound(SignageError):
    """Unknown peer id, addon id or media file."""


class Unreachable(SignageError):
    """A peer is offline or did not answer within its timeout."""


class ValidationError(SignageError):
    """Malformed manifest, setting value or caller input."""


class LifecycleError(SignageError):
    """An addon hook raised or timed out."""

    def __init__(self, addon_id: str, hook: str, cause: BaseException | None = None):
        self.addon_id = addon_id
        self.hook = hook
        self.cause = cause
        detail = f": {cause}" if cause is not None else ""
        super().__init__(f"Addon '{addon_id}' failed in {hook}(){detail}")


class TransientIOError(SignageError, OSError):
    """I/O failure that is expected while the host is shutting down."""


class ConfigStoreError(SignageError):
    """The config blob could not be written."""


_TRANSIENT_ERRNOS = {errno.EPIPE, errno.EIO, errno.EBADF}


def is_transient_io(exc: BaseException) -> bool:
    """Return True for stdio/socket write failures that happen during shutdown."""
    if isinstance(exc, (TransientIOError, BrokenPipeError, ConnectionResetError)):
        return True
    return isinstance(exc, OSError) and exc.errno in _TRANSIENT_ERRNOS
