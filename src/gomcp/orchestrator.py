"""
Tool orchestrator: one user message in, one assistant answer out.

Flow:
1) Game records (raw ";A[pd]..." text, or "load sgf:" / "analyze sgf:" prefixes) and
   "analyze moves:" requests go straight to the RPC server; the endpoint is not consulted.
2) Otherwise the endpoint gets the capability-derived system prompt plus the message.
3) A reply that is a single JSON object with a "method" field is treated as a tool call:
   the tool runs, its result (or error) is appended, and the endpoint answers again.
   Any other reply is returned verbatim.

UpstreamAuthFailure is re-raised so callers can ask for a new key.
"""
from __future__ import annotations

import asyncio
import json
import logging
import re
from typing import Dict, List

from .errors import RpcError, UpstreamAuthFailure, UpstreamError
from .llm_client import LLMClient
from .prompting import DEFAULT_SYSTEM_TEMPLATE, build_system_prompt, tool_error_message, tool_result_message
from .rpc_client import RpcClient

RECORD_PREFIX_RE = re.compile(r"^\s*(?:load|analy[sz]e)\s+sgf\s*:\s*(.*)$", re.I | re.S)
MOVES_PREFIX_RE = re.compile(r"^\s*analy[sz]e\s+moves\s*:\s*(.*)$", re.I | re.S)


def _strip_code_fence(text: str) -> str:
    """Remove simple ``` fences if present."""
    text = text.strip()
    if text.startswith("```") and text.endswith("```"):
        inner = text.split("\n", 1)
        if len(inner) == 2:
            return inner[1].rsplit("\n", 1)[0].strip()
    return text


def looks_like_game_record(text: str) -> bool:
    stripped = text.strip()
    return stripped.startswith((";", "(;")) and ("[" in stripped or "]" in stripped)


def detect_direct_call(text: str) -> tuple[str, dict] | None:
    """Return (method, params) for inputs that bypass the endpoint, else None."""
    if looks_like_game_record(text):
        return "load_sgf", {"gameRecordText": text.strip()}
    m = RECORD_PREFIX_RE.match(text)
    if m:
        return "load_sgf", {"gameRecordText": m.group(1).strip()}
    m = MOVES_PREFIX_RE.match(text)
    if m:
        moves = [tok for tok in re.split(r"[\s,]+", m.group(1)) if tok]
        return "analyze_position", {"moves": moves}
    return None


def parse_tool_call(reply: str) -> dict | None:
    """Return {"method", "params"} when the reply is exactly one JSON tool-call object."""
    text = _strip_code_fence(reply or "")
    if not (text.startswith("{") and text.endswith("}")):
        return None
    try:
        obj = json.loads(text)
    except ValueError:
        return None
    if not isinstance(obj, dict) or not isinstance(obj.get("method"), str):
        return None
    params = obj.get("params")
    return {"method": obj["method"], "params": params if isinstance(params, dict) else {}}


class ToolOrchestrator:
    def __init__(self, rpc: RpcClient, llm: LLMClient, system_template: str = DEFAULT_SYSTEM_TEMPLATE):
        self.log = logging.getLogger("orchestrator")
        self.rpc = rpc
        self.llm = llm
        self.system_template = system_template

    async def _complete(self, messages: List[Dict[str, str]]) -> str:
        return await asyncio.to_thread(self.llm.complete, messages)

    async def process(self, user_input: str) -> str:
        direct = detect_direct_call(user_input)
        if direct is not None:
            return await self._direct(*direct)

        messages = [
            {"role": "system", "content": build_system_prompt(self.rpc.capabilities, self.system_template)},
            {"role": "user", "content": user_input},
        ]
        try:
            reply = await self._complete(messages)
            tool_call = parse_tool_call(reply)
            if tool_call is None or self.rpc.capabilities is None:
                return reply
            method, params = tool_call["method"], tool_call["params"]
            self.log.info("Model requested tool %s", method)
            messages.append({"role": "assistant", "content": reply})
            try:
                result = await self.rpc.call(method, params)
                messages.append(tool_result_message(method, result))
            except RpcError as e:
                self.log.warning("Tool %s failed: %s", method, e)
                messages.append(tool_error_message(method, str(e)))
            return await self._complete(messages)
        except UpstreamAuthFailure:
            raise
        except UpstreamError as e:
            return f"Error processing request: {e}"

    async def _direct(self, method: str, params: dict) -> str:
        self.log.info("Calling %s directly", method)
        try:
            result = await self.rpc.call(method, params)
        except RpcError as e:
            if method == "load_sgf":
                return f"Failed to load game record: {e}"
            return f"Analysis failed: {e}"
        body = json.dumps(result, indent=2, ensure_ascii=False)
        if method == "load_sgf":
            return f"Game record loaded. Analysis of the current position:\n\n{body}"
        return f"Analysis of the position:\n\n{body}"
