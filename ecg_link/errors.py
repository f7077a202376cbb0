"""Custom exceptions for the ECG serial link library."""


class EcgLinkError(Exception):
    """Base exception for all ECG link errors."""

    pass


class DiscoveryError(EcgLinkError):
    """Raised when serial port enumeration fails or finds no candidates."""

    pass


class OpenError(EcgLinkError):
    """Raised when a serial port cannot be opened (busy, unplugged, no permission)."""

    pass


class LinkError(EcgLinkError):
    """Raised when I/O on an open port fails (write error, read error, timeout)."""

    pass


class ParseError(EcgLinkError):
    """Raised when a frame does not match the device reading format."""

    pass


class DecodeError(EcgLinkError):
    """Raised when a byte sequence can never decode as UTF-8 text."""

    pass


class StorageError(EcgLinkError):
    """Raised when the session log directory or file cannot be created or written."""

    pass


class RowRejected(EcgLinkError):
    """Raised when a reading cannot be represented as a session log row."""

    pass
