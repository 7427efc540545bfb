"""
Error taxonomy shared by the server, the engine bridge and the client side.

Every error carries a stable numeric ``code`` so the RPC dispatch boundary can turn
it into an Error envelope without knowing where it was raised.
"""
from __future__ import annotations

PARSE_ERROR = -32700
INVALID_REQUEST = -32600
METHOD_NOT_FOUND = -32601
INVALID_PARAMS = -32602
INTERNAL_ERROR = -32603
UPSTREAM_AUTH_FAILURE = -32001
TIMEOUT = -32002


class GoMcpError(Exception):
    code: int = INTERNAL_ERROR

    def __init__(self, message: str = "", code: int | None = None):
        super().__init__(message or self.__class__.__name__)
        if code is not None:
            self.code = code

    @property
    def message(self) -> str:
        return str(self)


# ---------------- Validation -----------------
class InvalidSize(GoMcpError):
    code = INVALID_PARAMS


class InvalidCoordinate(GoMcpError):
    code = INVALID_PARAMS


class OutOfBounds(InvalidCoordinate):
    pass


class GameRecordError(GoMcpError):
    code = INVALID_PARAMS


# ---------------- Protocol -----------------
class ProtocolMalformed(GoMcpError):
    code = INVALID_REQUEST
    # id of the offending Request when it could still be read, echoed in the Error envelope
    request_id = None


class UnknownMethod(GoMcpError):
    code = METHOD_NOT_FOUND


# ---------------- Engine subprocess -----------------
class EngineError(GoMcpError):
    """Base class for failures talking to the engine subprocess."""


class EngineUnavailable(EngineError):
    pass


class EngineNotReady(EngineUnavailable):
    pass


class EngineTerminated(EngineUnavailable):
    pass


class EngineCommandFailed(EngineError):
    pass


class EngineTimeout(EngineError):
    code = TIMEOUT


# ---------------- RPC client -----------------
class RpcError(GoMcpError):
    pass


class RpcTimeout(RpcError):
    code = TIMEOUT


class RpcConnectionClosed(RpcError):
    pass


class RpcCallError(RpcError):
    """The server answered a Request with an Error envelope."""


# ---------------- Text-generation endpoint -----------------
class UpstreamError(GoMcpError):
    pass


class UpstreamAuthFailure(UpstreamError):
    code = UPSTREAM_AUTH_FAILURE
