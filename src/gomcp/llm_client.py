from __future__ import annotations
"""
LLM client facade over an OpenAI-compatible chat completions endpoint (DeepSeek by default).

The orchestrator only passes `messages` and gets text back. The API key is read from a
Credentials value on every request, so swapping it takes effect without rebuilding
anything else. Authentication failures surface as UpstreamAuthFailure right away;
other failures are retried with jittered backoff and then raised as UpstreamError.
"""
from typing import Optional, List, Dict
import logging
import random
import time

import openai
from openai import OpenAI

from .config import SETTINGS, Credentials, Settings
from .errors import UpstreamAuthFailure, UpstreamError

log = logging.getLogger("llm_client")


class LLMClient:
    def __init__(self, credentials: Credentials, settings: Settings = SETTINGS, model: Optional[str] = None):
        self.credentials = credentials
        self.settings = settings
        self.model = model or settings.llm_model
        self._client: OpenAI | None = None
        self._client_key: str | None = None

    def _sdk(self) -> OpenAI:
        key = self.credentials.api_key
        if not self.credentials.has_valid_key():
            raise UpstreamAuthFailure("No API key configured for the text-generation endpoint")
        if self._client is None or key != self._client_key:
            self._client = OpenAI(api_key=key, base_url=self.settings.llm_base_url or None, max_retries=0)
            self._client_key = key
        return self._client

    def complete(self, messages: List[Dict[str, str]]) -> str:
        """Send a chat-style conversation and return the assistant's text."""
        delay = 0.5
        retries = self.settings.responses_retries
        for attempt in range(retries + 1):
            client = self._sdk()
            try:
                rsp = client.chat.completions.create(
                    model=self.model,
                    messages=messages,
                    temperature=self.settings.llm_temperature,
                    max_tokens=self.settings.llm_max_tokens,
                    timeout=self.settings.responses_timeout_s,
                )
            except openai.AuthenticationError as e:
                log.warning("Endpoint rejected credentials (401)")
                raise UpstreamAuthFailure(f"Authentication failed (401): API key invalid or expired ({e})") from e
            except openai.OpenAIError as e:
                if attempt >= retries:
                    log.exception("Chat request failed after %d attempts", attempt + 1)
                    raise UpstreamError(f"Text-generation endpoint error: {e}") from e
                sleep_s = delay * (2 ** attempt) * (0.8 + 0.4 * random.random())
                time.sleep(min(sleep_s, 10.0))
                continue
            return _extract_text(rsp).strip()
        raise UpstreamError("Text-generation endpoint returned no response")


def _extract_text(rsp) -> str:
    if not getattr(rsp, "choices", None):
        return ""
    msg = rsp.choices[0].message
    content = getattr(msg, "content", None)
    if isinstance(content, str):
        return content
    if isinstance(content, list):
        parts = []
        for c in content:
            if isinstance(c, dict):
                if c.get("type") == "text" and isinstance(c.get("text"), str):
                    parts.append(c["text"])
                continue
            t = getattr(c, "text", None)
            if isinstance(t, str):
                parts.append(t)
        return "\n".join(parts)
    return ""
