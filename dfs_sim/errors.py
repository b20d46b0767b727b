class DFSError(Exception):
    """Base class for errors raised by the optimizer and simulator"""


class ValidationError(DFSError):
    """
    Raised synchronously for malformed requests.
    The message is returned to the caller verbatim.
    """


class CacheUnavailableError(DFSError):
    """Raised by a cache backend that cannot serve the request"""
