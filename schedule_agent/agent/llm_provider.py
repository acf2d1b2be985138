from __future__ import annotations

import asyncio
import json
import logging
import os
import re
from typing import Any, Dict, List, Optional, Tuple, Type, TypeVar

from google import genai
from google.genai import types as genai_types
from openai import AsyncOpenAI
from pydantic import BaseModel

from ..config import GEMINI_API_KEY, OPENAI_API_KEY
from ..utils import _log_debug

logger = logging.getLogger(__name__)

T = TypeVar("T", bound=BaseModel)

_openai_client: Optional[AsyncOpenAI] = None
_gemini_client: Any = None
_gemini_api_key_cached: str = ""


def _get_openai_reasoning_effort() -> str:
  return os.getenv("OPENAI_REASONING_EFFORT", "low").strip() or "low"


def _get_openai_verbosity() -> str:
  return os.getenv("OPENAI_VERBOSITY", "low").strip() or "low"


def get_async_client() -> AsyncOpenAI:
  global _openai_client
  api_key = os.getenv("OPENAI_API_KEY") or OPENAI_API_KEY
  if not api_key:
    raise RuntimeError("OPENAI_API_KEY is not set")
  if _openai_client is None:
    _openai_client = AsyncOpenAI(api_key=api_key)
  return _openai_client


def llm_configured() -> bool:
  return bool(os.getenv("OPENAI_API_KEY") or OPENAI_API_KEY
              or os.getenv("GEMINI_API_KEY") or GEMINI_API_KEY)


def _print_raw_output(*, provider: str, model: str, raw_output: str,
                      verbose: bool) -> None:
  if not verbose:
    return
  _log_debug(f"[AGENT LLM RAW] provider={provider} model={model}", verbose)
  _log_debug(raw_output if raw_output else "(empty)", verbose)
  _log_debug("[AGENT LLM RAW END]", verbose)


def _extract_message_text(content: Any) -> str:
  if isinstance(content, str):
    return content.strip()
  if isinstance(content, list):
    chunks = []
    for item in content:
      if isinstance(item, dict):
        text_val = item.get("text")
        if isinstance(text_val, str) and text_val.strip():
          chunks.append(text_val.strip())
      elif isinstance(item, str) and item.strip():
        chunks.append(item.strip())
    return " ".join(chunks).strip()
  return ""


def _provider_for_model(model: str) -> str:
  provider = os.getenv("AGENT_LLM_PROVIDER", "auto").strip().lower()
  if provider in ("openai", "gemini"):
    return provider
  model_name = str(model or "").strip().lower()
  if model_name.startswith("gemini") or model_name.startswith("models/gemini"):
    return "gemini"
  return "openai"


def _canonical_gemini_model(model: str) -> str:
  model_name = str(model or "").strip()
  if not model_name:
    return "models/gemini-flash-latest"
  if model_name.startswith("models/"):
    return model_name
  return f"models/{model_name}"


def _gemini_client_or_reason() -> Tuple[Any, Optional[str]]:
  global _gemini_client, _gemini_api_key_cached
  gemini_api_key = (os.getenv("GEMINI_API_KEY") or GEMINI_API_KEY).strip()
  if not gemini_api_key:
    return None, "gemini_api_key_missing"
  if _gemini_client is None or _gemini_api_key_cached != gemini_api_key:
    _gemini_client = genai.Client(api_key=gemini_api_key)
    _gemini_api_key_cached = gemini_api_key
  return _gemini_client, None


def _gemini_text_from_response(response: Any) -> str:
  text = getattr(response, "text", None)
  if isinstance(text, str) and text.strip():
    return text.strip()
  candidates = getattr(response, "candidates", None)
  if not isinstance(candidates, list):
    return ""
  chunks: List[str] = []
  for candidate in candidates:
    content = getattr(candidate, "content", None)
    parts = getattr(content, "parts", None) if content is not None else None
    if not isinstance(parts, list):
      continue
    for part in parts:
      text_val = getattr(part, "text", None)
      if isinstance(text_val, str) and text_val.strip():
        chunks.append(text_val.strip())
  return " ".join(chunks).strip()


def _compose_prompt(system_prompt: str, user_content: str) -> str:
  return f"{system_prompt}\n\nUser:\n{user_content}"


def _clean_json_text(text: str) -> str:
  cleaned = (text or "").strip()
  if cleaned.startswith("```"):
    cleaned = re.sub(r"^```[a-zA-Z0-9_-]*\s*", "", cleaned).strip()
    cleaned = re.sub(r"\s*```$", "", cleaned).strip()
  return cleaned


def validate_structured_response(response_model: Type[T],
                                 raw_output: str) -> Optional[T]:
  """Parse model text into ``response_model``, tolerating fences and chatter."""
  if not raw_output:
    return None
  candidates = [raw_output, _clean_json_text(raw_output)]
  cleaned = candidates[-1]
  if cleaned:
    left = cleaned.find("{")
    right = cleaned.rfind("}")
    if left != -1 and right != -1 and right > left:
      candidates.append(cleaned[left:right + 1])
  seen = set()
  for candidate in candidates:
    text = (candidate or "").strip()
    if not text or text in seen:
      continue
    seen.add(text)
    try:
      return response_model.model_validate_json(text)
    except ValueError:
      continue
  return None


def _gemini_structured_sync(client: Any,
                            model: str,
                            prompt: str,
                            response_model: Type[T],
                            max_completion_tokens: int) -> Tuple[Optional[T], str]:
  config = genai_types.GenerateContentConfig(
      response_mime_type="application/json",
      max_output_tokens=max_completion_tokens,
  )
  response = client.models.generate_content(
      model=_canonical_gemini_model(model),
      contents=prompt,
      config=config,
  )
  raw_output = _gemini_text_from_response(response)
  return validate_structured_response(response_model, raw_output), raw_output


def _compose_openai_messages(system_prompt: str,
                             user_content: str) -> List[Dict[str, str]]:
  instruction = system_prompt
  # JSON mode requires the word "json" somewhere in the instructions.
  if "json" not in instruction.lower():
    instruction += "\n\nResponse must be a valid JSON object."
  return [
      {
          "role": "system",
          "content": instruction,
      },
      {
          "role": "user",
          "content": user_content,
      },
  ]


async def run_structured_completion(
    *,
    model: str,
    system_prompt: str,
    user_payload: Dict[str, Any],
    response_model: Type[T],
    max_completion_tokens: int = 2000,
    verbose: bool = False,
) -> Tuple[Optional[T], str, Dict[str, Any]]:
  """Returns ``(parsed, raw_text, meta)``; transport errors land in ``meta``."""
  provider = _provider_for_model(model)
  user_content = json.dumps(user_payload, ensure_ascii=False)

  if provider == "gemini":
    client, unavailable_reason = _gemini_client_or_reason()
    if client is None:
      return None, "", {
          "model": model,
          "provider": provider,
          "llm_available": False,
          "unavailable_reason": unavailable_reason,
      }
    prompt = _compose_prompt(system_prompt, user_content)
    try:
      parsed, raw_output = await asyncio.to_thread(
          _gemini_structured_sync,
          client,
          model,
          prompt,
          response_model,
          max_completion_tokens,
      )
    except Exception as exc:
      logger.warning("gemini completion failed: model=%s error=%s", model, exc)
      return None, "", {
          "model": model,
          "provider": provider,
          "llm_available": True,
          "llm_output_empty_or_error": True,
          "llm_error": str(exc),
      }
    _print_raw_output(provider=provider, model=model, raw_output=raw_output,
                      verbose=verbose)
    return parsed, raw_output, {
        "model": model,
        "provider": provider,
        "llm_available": True,
    }

  try:
    client = get_async_client()
  except RuntimeError:
    return None, "", {
        "model": model,
        "provider": provider,
        "llm_available": False,
        "unavailable_reason": "openai_api_key_missing",
    }

  messages = _compose_openai_messages(system_prompt, user_content)
  reasoning_effort = _get_openai_reasoning_effort()
  try:
    completion = await client.chat.completions.create(
        model=model,
        messages=messages,
        response_format={"type": "json_object"},
        reasoning_effort=reasoning_effort,
        verbosity=_get_openai_verbosity(),
        max_completion_tokens=max_completion_tokens,
    )
  except Exception as exc:
    logger.warning("openai completion failed: model=%s error=%s", model, exc)
    return None, "", {
        "model": model,
        "provider": provider,
        "reasoning_effort": reasoning_effort,
        "llm_available": True,
        "llm_output_empty_or_error": True,
        "llm_error": str(exc),
    }
  raw_output = _extract_message_text(completion.choices[0].message.content)
  parsed = validate_structured_response(response_model, raw_output)
  _print_raw_output(provider=provider, model=model, raw_output=raw_output,
                    verbose=verbose)
  return parsed, raw_output, {
      "model": model,
      "provider": provider,
      "reasoning_effort": reasoning_effort,
      "llm_available": True,
  }
