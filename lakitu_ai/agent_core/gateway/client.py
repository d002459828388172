"""Model gateway client

Overview
--------
Thin async HTTP client for the authenticated LLM proxy used by the agent
loop. The proxy exposes a single ``POST {base_url}/agent/call`` endpoint that
dispatches to a named internal function (``path``) with ``args``; chat
completions go through ``services.OpenRouter.internal.chatCompletion`` by
default.

Request
-------
::

    {"path": "<path>",
     "args": {"model": ..., "messages": [...], "tools": [<schema>],
              "maxTokens": 4096, "temperature": ...}}

``tools`` is omitted when no tool is offered and ``temperature`` when unset.

Response
--------
The proxy wraps the provider payload in an envelope ``{ok, data, error}``;
``data`` follows the OpenAI chat-completion shape
(``choices[0].message.{content, tool_calls}``, ``finish_reason``, ``usage``).

Errors
------
- ``GatewayUnavailable``: base URL or token missing, or the transport failed.
- ``GatewayRequestFailed``: non-2xx status, undecodable body, or ``ok: false``.

Neither error is retried here: the loop aborts the whole run on both.
"""

from __future__ import annotations

import json
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence

import httpx

from ...core.monitoring import log_llm_call
from ..errors import GatewayRequestFailed, GatewayUnavailable
from ..schemas.domain import Message, ToolCall

DEFAULT_GATEWAY_PATH = "services.OpenRouter.internal.chatCompletion"
DEFAULT_MODEL = "google/gemini-3-flash-preview"
DEFAULT_MAX_TOKENS = 4096

EXECUTE_CODE_TOOL: Dict[str, Any] = {
    "type": "function",
    "function": {
        "name": "execute_code",
        "description": (
            "Execute code in the sandbox. Import the capability modules available in the "
            "sandbox to perform actions like saving artifacts, searching the web, generating PDFs, etc."
        ),
        "parameters": {
            "type": "object",
            "properties": {
                "code": {
                    "type": "string",
                    "description": "Code to execute. Import capability modules for sandbox actions.",
                },
            },
            "required": ["code"],
        },
    },
}


@dataclass(frozen=True)
class GatewayResponse:
    """Parsed completion: assistant text plus any requested tool calls."""

    text: str
    tool_calls: List[ToolCall] = field(default_factory=list)
    finish_reason: Optional[str] = None
    usage: Dict[str, Any] = field(default_factory=dict)

    @property
    def tool_call(self) -> Optional[ToolCall]:
        return self.tool_calls[0] if self.tool_calls else None


def _parse_arguments(raw: Any) -> Dict[str, Any]:
    # Malformed JSON degrades to "the raw text is the code" instead of failing the turn.
    if isinstance(raw, str):
        if not raw:
            return {}
        try:
            parsed = json.loads(raw)
        except ValueError:
            return {"code": raw}
        return parsed if isinstance(parsed, dict) else {"code": raw}
    if isinstance(raw, dict):
        return dict(raw)
    return {}


def _parse_tool_calls(message: Dict[str, Any]) -> List[ToolCall]:
    calls: List[ToolCall] = []
    for tc in message.get("tool_calls") or []:
        if not isinstance(tc, dict):
            continue
        fn = tc.get("function") or {}
        name = fn.get("name") or tc.get("name")
        if not name:
            continue
        raw = fn.get("arguments") if fn.get("arguments") is not None else tc.get("arguments")
        calls.append(ToolCall(tool_name=str(name), args=_parse_arguments(raw)))
    return calls


class ModelGatewayClient:
    """Async client for chat completions through the LLM proxy.

    The client is referentially transparent from the loop's point of view:
    no caching, no retries, no state besides the underlying connection pool.
    """

    def __init__(
        self,
        base_url: Optional[str],
        *,
        token: Optional[str],
        path: str = DEFAULT_GATEWAY_PATH,
        default_model: str = DEFAULT_MODEL,
        timeout: float = 120.0,
        client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        """Create a gateway client.

        Args:
            base_url: Base URL of the proxy. ``None``/empty leaves the client unconfigured.
            token: Bearer credential (the raw JWT, without the ``Bearer`` prefix).
            path: Proxy function path used for chat completions.
            default_model: Model used when ``complete`` is called without one.
            timeout: Default HTTP timeout for the internal client.
            client: Optional preconfigured ``httpx.AsyncClient`` to use.
        """
        self.base_url = (base_url or "").rstrip("/")
        self.token = token
        self.path = path
        self.default_model = default_model
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(timeout=timeout)
        self._logger = logging.getLogger(__name__)

    @property
    def configured(self) -> bool:
        return bool(self.base_url and self.token)

    def _headers(self) -> dict[str, str]:
        return {
            "Content-Type": "application/json",
            "Authorization": f"Bearer {self.token}",
        }

    def _build_body(
        self,
        messages: Sequence[Message],
        *,
        tool: Optional[Dict[str, Any]],
        model: str,
        max_tokens: int,
        temperature: Optional[float],
    ) -> Dict[str, Any]:
        args: Dict[str, Any] = {
            "model": model,
            "messages": [{"role": m.role.value, "content": m.content} for m in messages],
            "maxTokens": max_tokens,
        }
        if tool is not None:
            args["tools"] = [tool]
        if temperature is not None:
            args["temperature"] = temperature
        return {"path": self.path, "args": args}

    async def complete(
        self,
        messages: Sequence[Message],
        *,
        tool: Optional[Dict[str, Any]] = None,
        model: Optional[str] = None,
        max_tokens: int = DEFAULT_MAX_TOKENS,
        temperature: Optional[float] = None,
    ) -> GatewayResponse:
        """Request one chat completion.

        Args:
            messages: The full ordered conversation.
            tool: At most one tool schema offered to the model.
            model: Provider model id; defaults to ``default_model``.
            max_tokens: Completion token cap.
            temperature: Sampling temperature; omitted from the request when ``None``.

        Returns:
            The parsed ``GatewayResponse``. ``text`` is ``""`` when the model
            returned no content.

        Raises:
            GatewayUnavailable: The client is not configured or the transport failed.
            GatewayRequestFailed: The proxy returned an error status or payload.
        """
        if not self.configured:
            raise GatewayUnavailable("Gateway not configured")

        model_id = model or self.default_model
        body = self._build_body(messages, tool=tool, model=model_id, max_tokens=max_tokens, temperature=temperature)
        started = time.perf_counter()
        try:
            r = await self._client.post(f"{self.base_url}/agent/call", headers=self._headers(), json=body)
        except httpx.TransportError as e:
            raise GatewayUnavailable(f"Gateway unreachable: {e}") from e

        if not r.is_success:
            raise GatewayRequestFailed(f"LLM call failed: {r.status_code}", status_code=r.status_code, details=r.text)

        try:
            payload = r.json()
        except ValueError as e:
            raise GatewayRequestFailed(
                "LLM call returned a non-JSON body", status_code=r.status_code, details=r.text
            ) from e

        if not isinstance(payload, dict) or not payload.get("ok"):
            error = payload.get("error") if isinstance(payload, dict) else None
            raise GatewayRequestFailed(
                f"LLM error: {error or json.dumps(payload)}", status_code=r.status_code, details=payload
            )

        data = payload.get("data") or {}
        choices = data.get("choices") or []
        choice = choices[0] if choices and isinstance(choices[0], dict) else {}
        message = choice.get("message") or {}
        usage = data.get("usage") if isinstance(data.get("usage"), dict) else {}

        response = GatewayResponse(
            text=message.get("content") or "",
            tool_calls=_parse_tool_calls(message),
            finish_reason=choice.get("finish_reason"),
            usage=dict(usage),
        )

        duration_ms = (time.perf_counter() - started) * 1000
        self._logger.debug(
            "gateway completion model=%s tool_calls=%d finish=%s in %.1fms",
            model_id,
            len(response.tool_calls),
            response.finish_reason,
            duration_ms,
        )
        log_llm_call(model_id, duration_ms, bool(response.tool_calls), response.usage.get("total_tokens"))
        return response

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()
