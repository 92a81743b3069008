from typing import Any, Optional


class PycouchError(Exception):
    pass


class SessionNotInitializedError(PycouchError):
    pass


class TranslationUnsupportedError(PycouchError):
    """The query expression cannot be mapped to a Mango query document."""


class ConflictingConditionsError(TranslationUnsupportedError):
    def __init__(self, path: str, operator: str, first: Any, second: Any):
        super().__init__(f"conflicting {operator} constraints on {path!r}: {first!r} and {second!r}")
        self.path = path
        self.operator = operator
        self.values = (first, second)


class ProtocolMalformedError(PycouchError):
    """The server answered with a body that does not have the expected shape."""

    def __init__(self, message: str, body: Optional[bytes] = None):
        super().__init__(message)
        self.body = body


class ServerRejectedError(PycouchError):
    def __init__(self, status_code: int, error: Optional[str] = None, reason: Optional[str] = None):
        super().__init__(f"{status_code} {error or 'unknown_error'}: {reason or ''}".rstrip(": "))
        self.status_code = status_code
        self.error = error
        self.reason = reason


class DocumentNotFoundError(ServerRejectedError):
    pass


class ConflictError(ServerRejectedError):
    pass


class StreamTerminatedEarlyError(PycouchError):
    """A continuous feed closed without sending its ``last_seq`` marker."""

    def __init__(self, message: str, last_seq: Any = None):
        super().__init__(message)
        self.last_seq = last_seq


class FeedStateError(PycouchError):
    pass
