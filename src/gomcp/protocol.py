"""
RPC envelopes and capability descriptors.

Wire format: one JSON object per line. Every object is exactly one of
Request{id, method, params}, Success{id, result}, Error{id, error{code, message}} or
Notification{method, params}, all carrying protocolVersion. parse_envelope() validates
against these models and raises ProtocolMalformed for anything else.

Tool parameter models double as the JSON schemas advertised in the capability
descriptor, so what the prompt builder shows is what dispatch validates.
"""
from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any, Literal, Optional, Union

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, StrictInt, StrictStr, ValidationError, field_validator

from . import __version__
from .errors import PARSE_ERROR, ProtocolMalformed

PROTOCOL_VERSION = "2.0"
CAPABILITIES_METHOD = "capabilities"

RequestId = Union[StrictInt, StrictStr]


# ---------------- Envelopes -----------------
class _Envelope(BaseModel):
    model_config = ConfigDict(extra="forbid")

    protocolVersion: Literal["2.0"] = PROTOCOL_VERSION


class Request(_Envelope):
    id: RequestId
    method: str = Field(min_length=1)
    params: dict[str, Any] = Field(default_factory=dict)

    @field_validator("params", mode="before")
    @classmethod
    def _null_params(cls, value):
        return {} if value is None else value


class Notification(_Envelope):
    method: str = Field(min_length=1)
    params: dict[str, Any] = Field(default_factory=dict)

    @field_validator("params", mode="before")
    @classmethod
    def _null_params(cls, value):
        return {} if value is None else value


class Success(_Envelope):
    id: RequestId
    result: Any = None


class ErrorBody(BaseModel):
    code: int
    message: str


class ErrorResponse(_Envelope):
    id: Optional[RequestId] = None
    error: ErrorBody


Envelope = Union[Request, Notification, Success, ErrorResponse]


def _classify(data: dict) -> type[_Envelope]:
    if "method" in data:
        return Request if "id" in data else Notification
    if "error" in data:
        return ErrorResponse
    if "result" in data:
        return Success
    raise ProtocolMalformed("envelope is not a Request, Success, Error or Notification")


def parse_envelope(raw: str | bytes | dict) -> Envelope:
    """Decode and validate one envelope. Raises ProtocolMalformed (with request_id when recoverable)."""
    if isinstance(raw, dict):
        data = raw
    else:
        try:
            data = json.loads(raw)
        except (ValueError, UnicodeDecodeError) as e:
            raise ProtocolMalformed(f"invalid JSON: {e}", code=PARSE_ERROR) from e
    if not isinstance(data, dict):
        raise ProtocolMalformed("envelope must be a JSON object")
    try:
        return _classify(data).model_validate(data)
    except (ProtocolMalformed, ValidationError) as e:
        err = e if isinstance(e, ProtocolMalformed) else ProtocolMalformed(f"malformed envelope: {e.errors(include_url=False)}")
        rid = data.get("id")
        err.request_id = rid if isinstance(rid, (int, str)) and not isinstance(rid, bool) else None
        raise err from None


def encode(envelope: _Envelope) -> bytes:
    return (envelope.model_dump_json() + "\n").encode("utf-8")


def success(request_id: RequestId, result: Any) -> Success:
    return Success(id=request_id, result=result)


def error(request_id: RequestId | None, code: int, message: str) -> ErrorResponse:
    return ErrorResponse(id=request_id, error=ErrorBody(code=code, message=message))


# ---------------- Tool parameters -----------------
class AnalyzePositionParams(BaseModel):
    boardSize: Optional[int] = Field(None, description="Board size; defaults to the current board (initially 19)")
    moves: Optional[list[str]] = Field(
        None,
        description="Moves in play order as '<Color><Column><Row>', color A or B, e.g. 'AD4'. Replaces the current position.",
    )


class LoadSgfParams(BaseModel):
    gameRecordText: str = Field(
        validation_alias=AliasChoices("gameRecordText", "sgfContent"),
        description="Game record text with move tags such as ';A[pd];B[dp]'",
    )


class GetBoardParams(BaseModel):
    pass


# ---------------- Capabilities -----------------
@dataclass(frozen=True)
class ToolDescriptor:
    name: str
    description: str
    parameters: dict = field(default_factory=dict)

    def to_dict(self) -> dict:
        return {"name": self.name, "description": self.description, "parameters": self.parameters}


@dataclass(frozen=True)
class CapabilityDescriptor:
    name: str
    version: str
    description: str
    tools: tuple[ToolDescriptor, ...]

    def to_dict(self) -> dict:
        return {
            "name": self.name,
            "version": self.version,
            "description": self.description,
            "tools": [t.to_dict() for t in self.tools],
        }

    @classmethod
    def from_dict(cls, data: dict) -> "CapabilityDescriptor":
        tools = tuple(
            ToolDescriptor(t.get("name", ""), t.get("description", ""), t.get("parameters") or {})
            for t in data.get("tools") or []
        )
        return cls(data.get("name", ""), data.get("version", ""), data.get("description", ""), tools)

    def tool_names(self) -> list[str]:
        return [t.name for t in self.tools]


TOOL_PARAMS: dict[str, type[BaseModel]] = {
    "analyze_position": AnalyzePositionParams,
    "load_sgf": LoadSgfParams,
    "get_board": GetBoardParams,
}

TOOL_DESCRIPTIONS = {
    "analyze_position": "Set up a Go position (optional board size and move list) and analyze it",
    "load_sgf": "Load a game record, replay its moves on the board and analyze the result",
    "get_board": "Return a text rendering of the current board",
}


def build_capabilities() -> CapabilityDescriptor:
    tools = tuple(
        ToolDescriptor(name, TOOL_DESCRIPTIONS[name], model.model_json_schema(by_alias=True))
        for name, model in TOOL_PARAMS.items()
    )
    return CapabilityDescriptor(
        name="GoAnalysisService",
        version=__version__,
        description="Go analysis service: board state, game-record loading and move suggestions",
        tools=tools,
    )


def capabilities_notification(descriptor: CapabilityDescriptor) -> Notification:
    return Notification(method=CAPABILITIES_METHOD, params=descriptor.to_dict())
