"""
Configuration and environment loading for gomcp.

- Loads .env (python-dotenv) and settings.yml (YAML) from the repo root if present.
- settings.yml takes precedence over environment variables; each key falls back to
  the legacy variable names of the Node bridge (DEEPSEEK_API_KEY, KATAGO_PATH, MCP_PORT...).
- Exposes SETTINGS (frozen) and Credentials, the one value that is swapped at runtime.
"""
from dataclasses import dataclass
import os
import threading
from typing import Any, Callable

import yaml
from dotenv import load_dotenv

load_dotenv()


def _repo_root() -> str:
    # this file: src/gomcp/config.py → repo root is two levels up
    return os.path.abspath(os.path.join(os.path.dirname(__file__), "..", ".."))


def _load_yaml(path: str) -> dict:
    if not os.path.isfile(path):
        return {}
    with open(path, "r", encoding="utf-8") as f:
        data = yaml.safe_load(f) or {}
    return data if isinstance(data, dict) else {}


_cfg = _load_yaml(os.environ.get("GOMCP_SETTINGS_FILE") or os.path.join(_repo_root(), "settings.yml"))


def _get(name: str, default: Any, cast: Callable[[Any], Any] | None = None) -> Any:
    if name in _cfg:
        val = _cfg[name]
        return cast(val) if cast else val
    env = os.environ.get(name)
    if env is not None:
        return cast(env) if cast else env
    return default


@dataclass(frozen=True)
class Settings:
    # Text-generation endpoint (OpenAI-compatible wire format)
    llm_api_key: str
    llm_base_url: str
    llm_model: str
    llm_temperature: float
    llm_max_tokens: int
    responses_timeout_s: float
    responses_retries: int

    # RPC server / HTTP bridge
    rpc_host: str
    rpc_port: int
    web_port: int
    rpc_call_timeout_s: float

    # Engine subprocess
    engine_path: str
    engine_model: str
    engine_config: str
    engine_startup_grace_s: float
    engine_command_timeout_s: float
    engine_shutdown_grace_s: float

    # Analysis
    analysis_mode: str  # "engine" | "stub"
    analysis_command: str
    default_board_size: int

    log_level: str


SETTINGS = Settings(
    llm_api_key=_get("GOMCP_LLM_API_KEY", _get("DEEPSEEK_API_KEY", "")),
    llm_base_url=_get("GOMCP_LLM_BASE_URL", _get("DEEPSEEK_API_BASE", "https://api.deepseek.com")),
    llm_model=_get("GOMCP_LLM_MODEL", "deepseek-chat"),
    llm_temperature=float(_get("GOMCP_LLM_TEMPERATURE", 0.7, cast=float)),
    llm_max_tokens=int(_get("GOMCP_LLM_MAX_TOKENS", 1000, cast=int)),
    responses_timeout_s=float(_get("GOMCP_RESPONSES_TIMEOUT_S", 60.0, cast=float)),
    responses_retries=int(_get("GOMCP_RESPONSES_RETRIES", 2, cast=int)),
    rpc_host=_get("GOMCP_RPC_HOST", "127.0.0.1"),
    rpc_port=int(_get("GOMCP_RPC_PORT", _get("MCP_PORT", 8080, cast=int), cast=int)),
    web_port=int(_get("GOMCP_WEB_PORT", _get("PORT", 3000, cast=int), cast=int)),
    rpc_call_timeout_s=float(_get("GOMCP_RPC_CALL_TIMEOUT_S", 30.0, cast=float)),
    engine_path=_get("GOMCP_ENGINE_PATH", _get("KATAGO_PATH", "katago")),
    engine_model=_get("GOMCP_ENGINE_MODEL", _get("KATAGO_MODEL", "")),
    engine_config=_get("GOMCP_ENGINE_CONFIG", _get("KATAGO_CONFIG", "")),
    engine_startup_grace_s=float(_get("GOMCP_ENGINE_STARTUP_GRACE_S", 3.0, cast=float)),
    engine_command_timeout_s=float(_get("GOMCP_ENGINE_COMMAND_TIMEOUT_S", 10.0, cast=float)),
    engine_shutdown_grace_s=float(_get("GOMCP_ENGINE_SHUTDOWN_GRACE_S", 1.0, cast=float)),
    analysis_mode=str(_get("GOMCP_ANALYSIS_MODE", "engine")).lower(),
    analysis_command=_get("GOMCP_ANALYSIS_COMMAND", "kata-search_analyze"),
    default_board_size=int(_get("GOMCP_DEFAULT_BOARD_SIZE", 19, cast=int)),
    log_level=str(_get("GOMCP_LOG_LEVEL", "INFO")).upper(),
)

# Placeholder shipped in the Node bridge's .env template; never a usable key.
_PLACEHOLDER_KEYS = {"", "your_deepseek_api_key_here"}


class Credentials:
    """Mutable holder for the endpoint API key, read by reference on every request."""

    def __init__(self, api_key: str = ""):
        self._lock = threading.Lock()
        self._api_key = api_key or ""

    @classmethod
    def from_settings(cls, settings: Settings = SETTINGS) -> "Credentials":
        return cls(settings.llm_api_key)

    @property
    def api_key(self) -> str:
        with self._lock:
            return self._api_key

    def swap(self, api_key: str) -> None:
        with self._lock:
            self._api_key = (api_key or "").strip()

    def has_valid_key(self) -> bool:
        return self.api_key.strip() not in _PLACEHOLDER_KEYS
