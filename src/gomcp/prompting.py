"""
Prompt builders for the text-generation endpoint.

The system prompt lists the tools from the server's capability descriptor and tells the
model how to request one: reply with a single JSON object {"method": ..., "params": {...}}.
"""
from __future__ import annotations

import json
from typing import Dict

from .protocol import CapabilityDescriptor, ToolDescriptor

DEFAULT_SYSTEM_TEMPLATE = """You are a Go (weiqi/baduk) analysis assistant connected to {SERVICE_NAME} ({SERVICE_DESCRIPTION}).

Available tools:
{TOOLS}

Moves use the notation <Color><Column><Row>: color A moves first, B second; columns are letters from A; rows count from 1 at the bottom. Example: AD4.

If a tool is needed to answer, reply with ONLY one JSON object of the form
{"method": "<tool name>", "params": {...}}
and nothing else. If you already have enough information, answer directly in plain language."""

NO_TOOLS_SYSTEM = "You are a Go (weiqi/baduk) analysis assistant. No analysis tools are currently available; answer from general knowledge."

TOOL_RESULT_TEMPLATE = "Tool {METHOD} result:\n{RESULT}"
TOOL_ERROR_TEMPLATE = "Tool {METHOD} failed: {ERROR}"


def render_custom_prompt(template: str, values: Dict[str, str]) -> str:
    """Replace known placeholders in the template. Unknown tokens are left intact."""
    rendered = template or ""
    for key, val in values.items():
        rendered = rendered.replace(f"{{{key}}}", val)
    return rendered


def describe_tool(index: int, tool: ToolDescriptor) -> str:
    lines = [f"{index}. {tool.name} - {tool.description}"]
    props = (tool.parameters or {}).get("properties") or {}
    required = set((tool.parameters or {}).get("required") or [])
    if not props:
        lines.append("   parameters: none")
    for name, schema in props.items():
        desc = schema.get("description", "")
        flag = "required" if name in required else "optional"
        lines.append(f"   - {name} ({flag}): {desc}".rstrip())
    return "\n".join(lines)


def build_system_prompt(capabilities: CapabilityDescriptor | None, template: str = DEFAULT_SYSTEM_TEMPLATE) -> str:
    if capabilities is None or not capabilities.tools:
        return NO_TOOLS_SYSTEM
    tools = "\n".join(describe_tool(i, t) for i, t in enumerate(capabilities.tools, start=1))
    return render_custom_prompt(template, {
        "SERVICE_NAME": capabilities.name,
        "SERVICE_DESCRIPTION": capabilities.description,
        "TOOLS": tools,
    })


def tool_result_message(method: str, result) -> Dict[str, str]:
    body = json.dumps(result, indent=2, ensure_ascii=False)
    return {"role": "system", "content": render_custom_prompt(TOOL_RESULT_TEMPLATE, {"METHOD": method, "RESULT": body})}


def tool_error_message(method: str, error: str) -> Dict[str, str]:
    return {"role": "system", "content": render_custom_prompt(TOOL_ERROR_TEMPLATE, {"METHOD": method, "ERROR": error})}
