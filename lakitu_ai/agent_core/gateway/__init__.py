"""Model gateway client.

The loop talks to LLM providers only through ``ModelGatewayClient``, which
offers the model at most one tool per call (``EXECUTE_CODE_TOOL``).
"""

from .client import (
    DEFAULT_GATEWAY_PATH,
    DEFAULT_MODEL,
    EXECUTE_CODE_TOOL,
    GatewayResponse,
    ModelGatewayClient,
)

__all__ = [
    "DEFAULT_GATEWAY_PATH",
    "DEFAULT_MODEL",
    "EXECUTE_CODE_TOOL",
    "GatewayResponse",
    "ModelGatewayClient",
]
