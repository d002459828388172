from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

import httpx

from ..errors import ExecutorUnavailable
from ..gateway.client import EXECUTE_CODE_TOOL
from ..schemas.domain import ToolResult
from .base import Capability, CapabilityContext, CodeExecutor

logger = logging.getLogger(__name__)


class HttpCodeExecutor:
    """
    ``CodeExecutor`` backed by the sandbox's HTTP execution endpoint.

    Posts ``{"code", "timeoutMs"}`` and maps ``{"success", "output", "error"}``
    back to a ``ToolResult``. A non-2xx answer is a failed execution, while a
    missing URL or a transport failure raises ``ExecutorUnavailable``.
    """

    def __init__(
        self,
        url: Optional[str],
        *,
        token: Optional[str] = None,
        client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        self.url = url or ""
        self.token = token
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient()

    def _headers(self) -> dict[str, str]:
        headers: dict[str, str] = {"Content-Type": "application/json"}
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        return headers

    async def execute(self, code: str, *, timeout_ms: int) -> ToolResult:
        if not self.url:
            raise ExecutorUnavailable("Code executor not configured")

        # Give the sandbox time to report its own timeout before the HTTP call gives up.
        http_timeout = timeout_ms / 1000 + 5.0
        try:
            r = await self._client.post(
                self.url,
                headers=self._headers(),
                json={"code": code, "timeoutMs": timeout_ms},
                timeout=http_timeout,
            )
        except httpx.TransportError as e:
            raise ExecutorUnavailable(f"Code executor unreachable: {e}") from e

        if not r.is_success:
            logger.warning("code executor returned HTTP %s", r.status_code)
            return ToolResult(success=False, output=r.text, error=f"executor returned HTTP {r.status_code}")

        try:
            data = r.json()
        except ValueError:
            return ToolResult(success=False, output=r.text, error="executor returned a non-JSON body")

        return ToolResult(
            success=bool(data.get("success")),
            output=str(data.get("output") or ""),
            error=data.get("error") or None,
        )

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()


@dataclass(frozen=True)
class ExecuteCodeCapability(Capability):
    """
    Capability that runs model-written code through a ``CodeExecutor``.

    This is the single tool of the code-execution loop.
    """

    executor: CodeExecutor
    name: str = "execute_code"
    description: str = EXECUTE_CODE_TOOL["function"]["description"]
    parameters: Dict[str, Any] = field(default_factory=lambda: dict(EXECUTE_CODE_TOOL["function"]["parameters"]))

    async def execute(self, ctx: CapabilityContext, *, args: Dict[str, Any]) -> ToolResult:
        """
        Execute the ``code`` argument.

        Args:
            ctx: The execution context (thread id and timeout).
            args: Dictionary of arguments:
                - code (str): The program to run.

        Returns:
            ToolResult: The executor's outcome, or a failure when ``code`` is empty.
        """
        code = str(args.get("code") or "")
        if not code.strip():
            return ToolResult(success=False, error="missing code")
        return await self.executor.execute(code, timeout_ms=ctx.timeout_ms)
