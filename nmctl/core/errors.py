"""Domain-specific errors for nmctl."""


class NmctlError(Exception):
    """Base error for nmctl."""


class ProfileValidationError(NmctlError):
    """Raised when a connection profile does not conform to schema or semantics."""


class ProfileLoadError(NmctlError):
    """Raised when reading connection profile files fails."""


class ProfileSelectionError(NmctlError):
    """Raised when a single connection profile cannot be resolved."""


class InsufficientMtuError(NmctlError):
    """Raised when the transport MTU cannot carry any payload after framing."""


class EncodingError(NmctlError):
    """Raised when a message cannot be framed or a response cannot be parsed."""


class ResponseMismatchError(EncodingError):
    """Raised when a response does not belong to the request that was sent."""


class DeviceError(NmctlError):
    """Raised by convenience layers when the device answers with a nonzero rc."""

    def __init__(self, rc: int, message: str | None = None) -> None:
        self.rc = rc
        super().__init__(message or f"device returned error code {rc}")


class TransportError(NmctlError):
    """Base transport error."""


class TransportConnectError(TransportError):
    """Raised when a session cannot be opened."""


class TransportSendError(TransportError):
    """Raised when sending or receiving a packet fails."""


class TransportTimeoutError(TransportError):
    """Raised when no response arrives in time."""
