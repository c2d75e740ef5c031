"""Forward agent hook documents to the relay.

Agents call a hook command with a JSON document on stdin for every
lifecycle event. Only SessionStart, SessionEnd and PreToolUse for the
Read, Write and Edit tools are forwarded; everything else is ignored.
"""

from __future__ import annotations

from typing import Any

import httpx

from agentgalaxy.logging import get_logger

log = get_logger("hook")

DEFAULT_RELAY_URL = "http://127.0.0.1:8080"

_TOOL_ENDPOINTS = {
    "Read": "/read",
    "Write": "/write",
    "Edit": "/edit",
}


def build_request(document: dict[str, Any]) -> tuple[str, dict[str, Any]] | None:
    """Map a hook document to (endpoint, body), or None if not relayed."""
    event = document.get("hook_event_name")
    session_id = document.get("session_id")
    if not session_id:
        return None

    if event == "SessionStart":
        return "/session-start", {
            "session_id": session_id,
            "cwd": document.get("cwd", ""),
            "model": document.get("model", ""),
        }

    if event == "SessionEnd":
        body: dict[str, Any] = {"session_id": session_id}
        if document.get("reason"):
            body["reason"] = document["reason"]
        return "/session-end", body

    if event == "PreToolUse":
        tool_name = document.get("tool_name")
        endpoint = _TOOL_ENDPOINTS.get(tool_name or "")
        tool_input = document.get("tool_input") or {}
        file_path = tool_input.get("file_path") if isinstance(tool_input, dict) else None
        if endpoint is None or not file_path:
            return None
        return endpoint, {
            "session_id": session_id,
            "tool_name": tool_name,
            "tool_input": {"file_path": file_path},
        }

    return None


async def forward(
    document: dict[str, Any],
    base_url: str = DEFAULT_RELAY_URL,
    timeout: float = 2.0,
    transport: httpx.AsyncBaseTransport | None = None,
) -> int | None:
    """POST the relay request for a hook document.

    Returns the HTTP status, or None when the document is not relayed or the
    relay is unreachable. A hook must never fail the agent that ran it.
    """
    request = build_request(document)
    if request is None:
        log.debug("Ignoring hook event %r", document.get("hook_event_name"))
        return None

    endpoint, body = request
    async with httpx.AsyncClient(base_url=base_url, timeout=timeout, transport=transport) as client:
        try:
            response = await client.post(endpoint, json=body)
        except httpx.HTTPError as e:
            log.warning("Relay unreachable at %s: %s", base_url, e)
            return None
    if response.status_code >= 400:
        log.warning("Relay rejected %s: %s", endpoint, response.text)
    return response.status_code
