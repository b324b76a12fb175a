"""Exception hierarchy for the try-on backend."""


class MirrifyError(Exception):
    """Base class for all errors raised by this package."""


class UnsupportedFormat(MirrifyError):
    """The byte buffer could not be parsed as an image."""


class BackendError(MirrifyError):
    """An encoder backend failed; the orchestrator falls through to the next tier."""


class BackendUnavailable(BackendError):
    """Network, service, credential or timeout failure of a backend."""


class EncodeError(BackendError):
    """Malformed parameters or corrupt intermediate output."""


class AuthError(MirrifyError):
    """Could not obtain a cloud access token."""


class CompressionError(MirrifyError):
    """The smart compression API rejected or failed the request."""


class PredictionError(MirrifyError):
    """The try-on prediction call failed upstream."""

    def __init__(self, message: str, status_code: int = 500):
        super().__init__(message)
        self.status_code = status_code


class SessionError(MirrifyError):
    """An upload session policy was violated."""
