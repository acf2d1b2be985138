from __future__ import annotations

import json
import logging
import os
from typing import Any, Dict, Optional

import requests
from mcp.server.fastmcp import FastMCP

BACKEND_BASE_URL = os.getenv("BACKEND_BASE_URL", "http://localhost:8000").rstrip("/")
BACKEND_API_BASE = os.getenv("BACKEND_API_BASE", "/api").rstrip("/")
DEFAULT_SESSION_ID = os.getenv("SCHEDULE_SESSION_ID", "mcp").strip() or "mcp"
REQUEST_TIMEOUT = float(os.getenv("MCP_BACKEND_TIMEOUT", "15"))
DEBUG_MODE = os.getenv("MCP_DEBUG", "0").strip() in ("1", "true", "True", "yes")

mcp = FastMCP("schedule-agent")
logger = logging.getLogger(__name__)


def _log_tool_call(tool_name: str, input_data: Dict[str, Any], output_data: Dict[str, Any]) -> None:
  if not DEBUG_MODE:
    return
  print(f"\n{'=' * 80}")
  print(f"Tool: {tool_name}")
  print("input:")
  print(json.dumps(input_data, indent=2, ensure_ascii=False))
  print("output:")
  print(json.dumps(output_data, indent=2, ensure_ascii=False))
  print(f"{'=' * 80}\n", flush=True)


def _api_path(path: str) -> str:
  return f"{BACKEND_API_BASE}/{path.lstrip('/')}"


def _session(session_id: Optional[str]) -> str:
  return (session_id or DEFAULT_SESSION_ID).strip() or DEFAULT_SESSION_ID


def _request(method: str,
             path: str,
             params: Optional[Dict[str, Any]] = None,
             payload: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
  url = f"{BACKEND_BASE_URL}{path}"
  try:
    resp = requests.request(method,
                            url,
                            params=params,
                            json=payload,
                            timeout=REQUEST_TIMEOUT)
  except requests.RequestException as exc:
    logger.warning("backend request failed: %s %s: %s", method, url, exc)
    return {
        "ok": False,
        "code": "request_failed",
        "message": f"Backend request failed: {exc}",
    }

  content_type = resp.headers.get("content-type", "")
  if "application/json" in content_type:
    try:
      data: Any = resp.json()
    except ValueError:
      data = {"raw": resp.text}
  else:
    data = resp.text

  if resp.status_code >= 400:
    return {
        "ok": False,
        "code": "backend_error",
        "status": resp.status_code,
        "error": data,
    }

  return {"ok": True, "data": data}


@mcp.tool(name="schedule.turn")
def schedule_turn(text: str, session_id: Optional[str] = None) -> Dict[str, Any]:
  """Send one user message to the scheduling assistant and return its reply."""
  input_data = {"text": text, "session_id": session_id}
  result = _request("POST",
                    _api_path("agent/turn"),
                    payload={"input_as_text": text, "session_id": _session(session_id)})
  _log_tool_call("schedule.turn", input_data, result)
  return result


@mcp.tool(name="schedule.history")
def schedule_history(session_id: Optional[str] = None) -> Dict[str, Any]:
  """Conversation summary and turns for a session."""
  result = _request("GET", _api_path("agent/history"),
                    params={"session_id": _session(session_id)})
  _log_tool_call("schedule.history", {"session_id": session_id}, result)
  return result


@mcp.tool(name="schedule.clear_history")
def schedule_clear_history(session_id: Optional[str] = None) -> Dict[str, Any]:
  result = _request("DELETE", _api_path("agent/history"),
                    params={"session_id": _session(session_id)})
  _log_tool_call("schedule.clear_history", {"session_id": session_id}, result)
  return result


if __name__ == "__main__":
  mcp.run()
